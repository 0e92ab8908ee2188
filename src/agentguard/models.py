"""Data models for the request-screening pipeline."""

from __future__ import annotations

import math
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any


class ActionType(StrEnum):
    """Verdict for a single request."""

    ALLOW = "allow"
    WARN = "warn"  # Allow but flag
    MODIFY = "modify"
    BLOCK = "block"  # Reject request


class CallStatus(StrEnum):
    """Outcome of a call to an external dependency."""

    OK = "ok"
    DEGRADED = "degraded"  # Dependency raised; caller falls back
    TIMEOUT = "timeout"


@dataclass(frozen=True)
class AnalyzeRequest:
    """A prompt submitted by an agent for screening."""

    agent_id: str
    prompt: str
    timestamp: int  # epoch milliseconds
    context: Mapping[str, Any] | None = None

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> AnalyzeRequest:
        """Build a request from the camelCase wire shape."""
        agent_id = payload.get("agentId")
        prompt = payload.get("prompt")
        timestamp = payload.get("timestamp")
        context = payload.get("context")
        # Wrong-typed fields become blank so the analyzer rejects them
        return cls(
            agent_id=agent_id if isinstance(agent_id, str) else "",
            prompt=prompt if isinstance(prompt, str) else "",
            timestamp=_timestamp_ms(timestamp),
            context=context if isinstance(context, Mapping) else None,
        )


def _timestamp_ms(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int | float):
        return 0
    if not math.isfinite(value):
        return 0
    return int(value)


@dataclass
class ThreatResult:
    """Output of the threat scorer for one prompt."""

    threat_probability: float  # 0.0 - 1.0
    confidence: float  # 0.0 - 1.0
    detected_patterns: list[str] = field(default_factory=list)
    cached: bool = False
    processing_time_ms: float = 0.0

    def to_cache(self) -> dict[str, Any]:
        return {
            "threat_probability": self.threat_probability,
            "confidence": self.confidence,
            "detected_patterns": list(self.detected_patterns),
            "cached": self.cached,
        }

    @classmethod
    def from_cache(cls, payload: Any) -> ThreatResult:
        if not isinstance(payload, Mapping):
            raise ValueError(f"expected a cached object, got {type(payload).__name__}")
        return cls(
            threat_probability=float(payload.get("threat_probability", 0.0)),
            confidence=float(payload.get("confidence", 0.0)),
            detected_patterns=[str(p) for p in payload.get("detected_patterns") or []],
            cached=bool(payload.get("cached", False)),
        )


@dataclass
class Evidence:
    """Explanatory data attached to a verdict."""

    prompt_length: int
    suspicious_patterns: list[str] = field(default_factory=list)
    confidence: float | None = None
    cached: bool | None = None
    policies_matched: int | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "promptLength": self.prompt_length,
            "suspiciousPatterns": list(self.suspicious_patterns),
        }
        if self.confidence is not None:
            data["confidence"] = self.confidence
        if self.cached is not None:
            data["cached"] = self.cached
        if self.policies_matched is not None:
            data["policiesMatched"] = self.policies_matched
        return data


@dataclass
class SecurityResponse:
    """The final verdict returned to the caller."""

    action: ActionType
    reason: str
    risk_score: float  # 0.0 - 1.0
    processing_time_ms: float = 0.0
    evidence: Evidence = field(default_factory=lambda: Evidence(prompt_length=0))

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the camelCase wire shape consumed by the HTTP layer."""
        return {
            "action": self.action.value,
            "reason": self.reason,
            "riskScore": self.risk_score,
            "processingTime": self.processing_time_ms,
            "evidence": self.evidence.to_dict(),
        }
