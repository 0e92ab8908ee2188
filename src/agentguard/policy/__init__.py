"""Declarative policy engine.

Public API
----------
- :class:`PolicyEngine`: load, validate and evaluate policies
- :class:`SecurityPolicy`, :class:`PolicyCondition`, :class:`PolicyAction`: rule models
- :class:`PolicyContext`, :class:`PolicyEvaluationResult`: evaluation types
- :func:`validate_policies`: validate a raw policy list
"""

from agentguard.policy.engine import (
    FALLBACK_POLICY,
    PolicyEngine,
    PolicyEngineState,
    calculate_confidence,
    evaluate_condition,
    load_policy_file,
)
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
from agentguard.policy.validator import ValidationReport, validate_policies, validate_policy

__all__ = [
    "FALLBACK_POLICY",
    "ConditionType",
    "Operator",
    "PolicyAction",
    "PolicyCondition",
    "PolicyContext",
    "PolicyEngine",
    "PolicyEngineState",
    "PolicyEvaluationResult",
    "SecurityPolicy",
    "Severity",
    "ValidationReport",
    "calculate_confidence",
    "evaluate_condition",
    "load_policy_file",
    "validate_policies",
    "validate_policy",
]
