"""Declarative policy engine.

Policies are loaded once from YAML, validated, filtered to enabled rules and
sorted ascending by priority. A failed load substitutes a single built-in
policy so evaluation never runs without rules.

Note that matched results are returned sorted *descending* by priority, the
reverse of evaluation order. Callers that take the first result therefore get
the matched policy with the numerically highest priority value.
"""

from __future__ import annotations

import time
from enum import StrEnum
from pathlib import Path
from typing import Any

import yaml

from agentguard.exceptions import PolicyLoadError
from agentguard.logging import get_logger
from agentguard.models import ActionType
from agentguard.policy.types import (
    ConditionType,
    Operator,
    PolicyAction,
    PolicyCondition,
    PolicyContext,
    PolicyEvaluationResult,
    SecurityPolicy,
    Severity,
)
from agentguard.policy.validator import validate_policies

log = get_logger("agentguard.policy.engine")

DEFAULT_POLICIES_PATH = Path(__file__).with_name("default_policies.yaml")

RISK_SCORE_TOLERANCE = 0.01

FALLBACK_POLICY = SecurityPolicy(
    name="basic_security",
    description="Basic security policy",
    enabled=True,
    severity=Severity.MEDIUM,
    priority=1,
    conditions=(
        PolicyCondition(type=ConditionType.RISK_SCORE, operator=Operator.GREATER_THAN, value=0.7),
    ),
    actions=(PolicyAction(type=ActionType.BLOCK, message="High risk content detected"),),
)

_NO_MATCH_ACTION = PolicyAction(type=ActionType.ALLOW)


class PolicyEngineState(StrEnum):
    LOADED = "loaded"
    FALLBACK = "fallback"


def load_policy_file(path: Path) -> list[SecurityPolicy]:
    """Read, parse and validate a policy document.

    Raises:
        PolicyLoadError: If the file cannot be read or parsed, has the wrong
            shape, or any policy fails validation.
    """
    try:
        document = yaml.safe_load(path.read_text(encoding="utf-8"))
    except OSError as e:
        raise PolicyLoadError(f"Cannot read policy file {path}: {e}") from e
    except yaml.YAMLError as e:
        raise PolicyLoadError(f"Invalid YAML in policy file {path}: {e}") from e

    if not isinstance(document, dict) or not isinstance(document.get("policies"), list):
        raise PolicyLoadError(f"Policy file {path} must contain a 'policies' list")

    report = validate_policies(document["policies"])
    if not report.valid:
        raise PolicyLoadError("Policy validation failed", report.errors)
    return report.policies


class PolicyEngine:
    """Evaluate request contexts against the active policy set."""

    def __init__(self, policies_path: str | Path | None = None) -> None:
        self._path = Path(policies_path) if policies_path else DEFAULT_POLICIES_PATH
        self._policies: tuple[SecurityPolicy, ...] = ()
        self._state = PolicyEngineState.FALLBACK
        self._load_errors: list[str] = []
        self._load()

    @property
    def state(self) -> PolicyEngineState:
        return self._state

    @property
    def load_errors(self) -> list[str]:
        return list(self._load_errors)

    def _load(self) -> None:
        try:
            loaded = load_policy_file(self._path)
        except PolicyLoadError as e:
            log.warning(
                "policy_load_failed_using_fallback",
                path=str(self._path),
                error=str(e),
                validation_errors=e.errors,
            )
            self._policies = (FALLBACK_POLICY,)
            self._state = PolicyEngineState.FALLBACK
            self._load_errors = [str(e), *e.errors]
            return

        active = sorted((p for p in loaded if p.enabled), key=lambda p: p.priority)
        self._policies = tuple(active)
        self._state = PolicyEngineState.LOADED
        self._load_errors = []
        log.info("policies_loaded", path=str(self._path), count=len(self._policies))

    def reload_policies(self) -> None:
        """Re-read the policy source; a failure switches to the fallback policy."""
        self._load()

    def get_policies(self) -> tuple[SecurityPolicy, ...]:
        return self._policies

    def is_healthy(self) -> bool:
        return len(self._policies) > 0

    def evaluate_policies(self, context: PolicyContext) -> list[PolicyEvaluationResult]:
        """Return every matching policy, ordered by descending priority value."""
        results: list[PolicyEvaluationResult] = []
        for policy in self._policies:
            try:
                result = self._evaluate_policy(policy, context)
            except Exception:
                log.exception("policy_evaluation_failed", policy=policy.name)
                continue
            if result.matched:
                results.append(result)

        return sorted(results, key=lambda r: r.policy.priority, reverse=True)

    def _evaluate_policy(
        self, policy: SecurityPolicy, context: PolicyContext
    ) -> PolicyEvaluationResult:
        start = time.perf_counter()
        matched_conditions: list[PolicyCondition] = []

        for condition in policy.conditions:
            if not evaluate_condition(condition, context):
                return PolicyEvaluationResult(
                    matched=False,
                    policy=policy,
                    confidence=0.0,
                    recommended_action=_NO_MATCH_ACTION,
                    evaluation_time_ms=(time.perf_counter() - start) * 1000,
                )
            matched_conditions.append(condition)

        return PolicyEvaluationResult(
            matched=True,
            policy=policy,
            confidence=calculate_confidence(matched_conditions, context),
            recommended_action=policy.actions[0],
            matched_conditions=matched_conditions,
            evaluation_time_ms=(time.perf_counter() - start) * 1000,
        )


def evaluate_condition(condition: PolicyCondition, context: PolicyContext) -> bool:
    match condition.type:
        case ConditionType.PATTERN_MATCH:
            return _pattern_match(condition, context.prompt)
        case ConditionType.RISK_SCORE:
            return _compare(condition, context.risk_score, tolerance=RISK_SCORE_TOLERANCE)
        case ConditionType.REQUEST_FREQUENCY:
            return _compare(condition, context.request_count, tolerance=0)
        case ConditionType.AGENT_HISTORY:
            # TODO: match against per-agent verdict history once the audit ledger exposes it
            return False
    return False


def _pattern_match(condition: PolicyCondition, prompt: str) -> bool:
    if condition.operator != Operator.CONTAINS or not isinstance(condition.value, list):
        return False
    lower = prompt.lower()
    return any(str(pattern).lower() in lower for pattern in condition.value)


def _compare(condition: PolicyCondition, actual: float, *, tolerance: float) -> bool:
    value: Any = condition.value
    match condition.operator:
        case Operator.GREATER_THAN:
            return actual > value
        case Operator.LESS_THAN:
            return actual < value
        case Operator.EQUALS:
            if tolerance:
                return abs(actual - value) < tolerance
            return actual == value
        case Operator.IN_RANGE:
            low, high = value
            return low <= actual <= high
    return False


def calculate_confidence(
    matched_conditions: list[PolicyCondition], context: PolicyContext
) -> float:
    confidence = 0.5
    confidence += min(len(matched_conditions) * 0.2, 0.4)

    if context.risk_score > 0.8:
        confidence += 0.2
    elif context.risk_score > 0.5:
        confidence += 0.1

    if context.detected_patterns:
        confidence += 0.1

    return min(confidence, 1.0)
