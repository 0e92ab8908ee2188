"""Validation of raw policy documents."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from pydantic import ValidationError

from agentguard.policy.types import SecurityPolicy


@dataclass
class ValidationReport:
    """Validated policies plus any errors found along the way."""

    policies: list[SecurityPolicy] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.errors


def _format_error(error: Mapping[str, Any]) -> str:
    loc = ".".join(str(part) for part in error.get("loc", ()))
    msg = str(error.get("msg", "invalid value"))
    return f"{loc}: {msg}" if loc else msg


def validate_policy(raw: Any) -> tuple[SecurityPolicy | None, list[str]]:
    """Validate one raw policy mapping.

    Returns:
        ``(policy, [])`` on success, ``(None, errors)`` otherwise.
    """
    if not isinstance(raw, Mapping):
        return None, ["policy must be a mapping"]
    try:
        return SecurityPolicy.model_validate(dict(raw)), []
    except ValidationError as e:
        return None, [_format_error(err) for err in e.errors()]


def validate_policies(raw_policies: Sequence[Any]) -> ValidationReport:
    """Validate every policy in a document; names must be unique."""
    report = ValidationReport()
    seen: set[str] = set()

    for index, raw in enumerate(raw_policies, 1):
        name = raw.get("name") if isinstance(raw, Mapping) else None
        policy, errors = validate_policy(raw)
        for error in errors:
            report.errors.append(f"Policy {index} ({name}): {error}")
        if policy is None:
            continue
        if policy.name in seen:
            report.errors.append(f"Policy {index} ({name}): duplicate policy name")
            continue
        seen.add(policy.name)
        report.policies.append(policy)

    return report
