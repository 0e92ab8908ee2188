"""Audit trail for screening verdicts.

Two sinks:

- :func:`log_security_event` writes a forensic structured-log record for
  every non-allow verdict.
- :class:`AuditLogger` forwards verdicts to an append-only ledger through a
  :class:`LedgerClient`. It runs strictly after the verdict was returned and
  never raises; failures come back as :class:`TransactionResult` values.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import math
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Protocol

from agentguard.config import get_settings
from agentguard.logging import get_logger
from agentguard.models import ActionType, AnalyzeRequest, SecurityResponse

log = get_logger("agentguard.audit")

_EVENT_TYPES: dict[ActionType, str] = {
    ActionType.ALLOW: "request_allowed",
    ActionType.WARN: "threat_warning",
    ActionType.MODIFY: "content_modified",
    ActionType.BLOCK: "threat_blocked",
}

# Delay between ledger writes in a batch
_BATCH_DELAY_SECONDS = 0.1


def log_security_event(
    *,
    request: AnalyzeRequest,
    response: SecurityResponse,
) -> None:
    """Log a forensic record for a screening verdict."""
    content_hash = hashlib.sha256(request.prompt.encode("utf-8")).hexdigest()

    log.warning(
        "security_event",
        event_type=_EVENT_TYPES[response.action],
        agent_id=request.agent_id,
        timestamp=datetime.now(UTC).isoformat(),
        action=response.action.value,
        reason=response.reason,
        risk_score=round(response.risk_score, 4),
        patterns=response.evidence.suspicious_patterns,
        policies_matched=response.evidence.policies_matched,
        content_hash=content_hash,
        content_length=len(request.prompt),
        processing_ms=round(response.processing_time_ms, 2),
    )


@dataclass
class AuditEvent:
    """A security event destined for the ledger."""

    agent_id: str
    event_type: str
    severity: float  # 0.0 - 1.0, rescaled to 0-100 on write
    evidence: dict[str, Any] = field(default_factory=dict)
    timestamp: int = 0


@dataclass
class PolicyEnforcementEvent:
    """Record that a policy drove a verdict."""

    agent_id: str
    policy_name: str
    action: str
    timestamp: int = 0


@dataclass
class TransactionResult:
    """Outcome of a ledger write."""

    success: bool
    tx_hash: str | None = None
    error: str | None = None
    gas_used: int | None = None
    block_number: int | None = None


class LedgerClient(Protocol):
    """Append-only ledger used as the durable audit sink."""

    async def initialize(self) -> None: ...

    async def is_authorized_logger(self) -> bool: ...

    async def log_security_event(
        self,
        agent_address: str,
        event_type: str,
        severity: int,
        evidence_hash: str,
    ) -> TransactionResult: ...

    async def log_policy_enforcement(
        self,
        agent_address: str,
        policy_name: str,
        action: str,
    ) -> TransactionResult: ...

    async def get_health_status(self) -> dict[str, Any]: ...


def hash_evidence(evidence: Any) -> str:
    """SHA-256 hex digest of the canonical JSON encoding of *evidence*."""
    payload = json.dumps(evidence, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def ledger_severity(risk_score: float) -> int:
    """Rescale a 0-1 risk score to the ledger's 0-100 integer severity."""
    return max(0, min(math.floor(risk_score * 100 + 0.5), 100))


class AuditLogger:
    """Forward verdicts to a :class:`LedgerClient`, degrading silently."""

    def __init__(self, ledger: LedgerClient, *, enabled: bool = True) -> None:
        self._ledger = ledger
        self._enabled = enabled
        self._initialized = False
        self._pending: set[asyncio.Task[TransactionResult | None]] = set()

    @classmethod
    def from_settings(cls, ledger: LedgerClient) -> AuditLogger:
        return cls(ledger, enabled=get_settings().audit_enabled)

    async def initialize(self) -> None:
        if not self._enabled:
            log.info("audit_ledger_disabled")
            return

        try:
            await self._ledger.initialize()
            if not await self._ledger.is_authorized_logger():
                log.warning("audit_ledger_not_authorized")
                self._enabled = False
                return
        except Exception as e:
            log.error("audit_ledger_init_failed", error=str(e))
            self._enabled = False
            return

        self._initialized = True
        log.info("audit_ledger_initialized")

    def is_available(self) -> bool:
        return self._enabled and self._initialized

    def set_enabled(self, enabled: bool) -> None:
        self._enabled = enabled
        log.info("audit_ledger_toggled", enabled=enabled)

    async def log_security_event(self, event: AuditEvent) -> TransactionResult | None:
        """Write one security event; ``None`` when the ledger is unavailable."""
        if not self.is_available():
            log.debug("audit_ledger_unavailable")
            return None

        evidence_hash = hash_evidence(event.evidence)
        severity = ledger_severity(event.severity)
        try:
            result = await self._ledger.log_security_event(
                event.agent_id, event.event_type, severity, evidence_hash
            )
        except Exception as e:
            log.error("audit_ledger_write_failed", agent_id=event.agent_id, error=str(e))
            return TransactionResult(success=False, error=str(e))

        if result.success:
            log.info(
                "audit_event_recorded",
                agent_id=event.agent_id,
                event_type=event.event_type,
                severity=severity,
                tx_hash=result.tx_hash,
                block_number=result.block_number,
            )
        else:
            log.error("audit_event_rejected", agent_id=event.agent_id, error=result.error)
        return result

    async def log_policy_enforcement(
        self, event: PolicyEnforcementEvent
    ) -> TransactionResult | None:
        if not self.is_available():
            return None

        try:
            result = await self._ledger.log_policy_enforcement(
                event.agent_id, event.policy_name, event.action
            )
        except Exception as e:
            log.error("audit_policy_write_failed", policy=event.policy_name, error=str(e))
            return TransactionResult(success=False, error=str(e))

        if result.success:
            log.info(
                "audit_policy_recorded",
                agent_id=event.agent_id,
                policy=event.policy_name,
                tx_hash=result.tx_hash,
            )
        return result

    async def batch_log_events(self, events: list[AuditEvent]) -> list[TransactionResult]:
        """Write events one at a time with a short pause between writes."""
        if not self.is_available():
            return []

        results: list[TransactionResult] = []
        for event in events:
            result = await self.log_security_event(event)
            if result is not None:
                results.append(result)
            await asyncio.sleep(_BATCH_DELAY_SECONDS)
        return results

    async def record(
        self, request: AnalyzeRequest, response: SecurityResponse
    ) -> TransactionResult | None:
        """Build an :class:`AuditEvent` from a verdict and write it."""
        event = AuditEvent(
            agent_id=request.agent_id,
            event_type=_EVENT_TYPES[response.action],
            severity=response.risk_score,
            evidence=response.evidence.to_dict(),
            timestamp=request.timestamp,
        )
        return await self.log_security_event(event)

    def schedule(self, request: AnalyzeRequest, response: SecurityResponse) -> None:
        """Fire-and-forget :meth:`record` on the running loop."""
        task = asyncio.create_task(self.record(request, response))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def drain(self) -> None:
        """Wait for scheduled writes to finish."""
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)

    async def get_health_status(self) -> dict[str, Any]:
        if not self._enabled:
            return {"connected": False}
        try:
            details = await self._ledger.get_health_status()
        except Exception as e:
            log.error("audit_ledger_health_failed", error=str(e))
            return {"connected": False}
        return {"connected": bool(details.get("connected")), "details": details}
