"""Policy rule models.

Rules are declared in YAML and validated into these pydantic models at load
time; evaluation-time structures are plain dataclasses.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Self

from pydantic import BaseModel, ConfigDict, Field, StrictBool, StrictInt, StrictStr, model_validator

from agentguard.models import ActionType


class Severity(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ConditionType(StrEnum):
    PATTERN_MATCH = "pattern_match"
    RISK_SCORE = "risk_score"
    AGENT_HISTORY = "agent_history"  # Reserved, never matches
    REQUEST_FREQUENCY = "request_frequency"


class Operator(StrEnum):
    EQUALS = "equals"
    CONTAINS = "contains"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    IN_RANGE = "in_range"


_NUMERIC_CONDITIONS = (ConditionType.RISK_SCORE, ConditionType.REQUEST_FREQUENCY)


def _is_number(value: Any) -> bool:
    return isinstance(value, int | float) and not isinstance(value, bool)


class PolicyCondition(BaseModel):
    """One predicate over the request context."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    type: ConditionType
    operator: Operator
    value: Any
    field: StrictStr | None = None  # Reserved; not read during evaluation

    @model_validator(mode="after")
    def validate_value(self) -> Self:
        if self.value is None:
            raise ValueError("condition value is required")

        if self.type == ConditionType.PATTERN_MATCH:
            if self.operator != Operator.CONTAINS:
                raise ValueError("pattern_match conditions must use the 'contains' operator")
            if not isinstance(self.value, list) or not all(
                isinstance(p, str) for p in self.value
            ):
                raise ValueError("pattern_match condition value must be a list of strings")

        elif self.type in _NUMERIC_CONDITIONS:
            if self.operator == Operator.IN_RANGE:
                if (
                    not isinstance(self.value, list)
                    or len(self.value) != 2
                    or not all(_is_number(v) for v in self.value)
                ):
                    raise ValueError(f"{self.type} in_range value must be [low, high]")
                if self.value[0] > self.value[1]:
                    raise ValueError(f"{self.type} in_range low bound exceeds high bound")
            elif not _is_number(self.value):
                raise ValueError(f"{self.type} condition value must be a number")

        return self


class PolicyAction(BaseModel):
    """Action recommended when a policy matches."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    type: ActionType
    message: StrictStr | None = None
    metadata: dict[str, Any] | None = None


class SecurityPolicy(BaseModel):
    """A named, prioritised rule mapping a condition set to an action."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: StrictStr = Field(min_length=1)
    description: StrictStr = Field(min_length=1)
    enabled: StrictBool
    severity: Severity
    priority: StrictInt = Field(ge=1)
    conditions: tuple[PolicyCondition, ...] = Field(min_length=1)
    actions: tuple[PolicyAction, ...] = Field(min_length=1)


@dataclass(frozen=True)
class PolicyContext:
    """Signals a single request contributes to policy evaluation."""

    agent_id: str
    prompt: str
    risk_score: float
    detected_patterns: tuple[str, ...] = ()
    request_count: int = 0
    timestamp: int = 0


@dataclass
class PolicyEvaluationResult:
    """Outcome of evaluating one policy against a context."""

    matched: bool
    policy: SecurityPolicy
    confidence: float
    recommended_action: PolicyAction
    matched_conditions: list[PolicyCondition] = field(default_factory=list)
    evaluation_time_ms: float = 0.0
