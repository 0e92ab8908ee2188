"""Request screening orchestrator.

Per request: reject empty prompts and blank agent ids, count the request,
score the prompt, evaluate policies, then resolve the final action.
Resolution order:

1. The first result returned by the policy engine.
2. Heuristic thresholds on the threat probability (block / warn / allow).
3. Rate limit: more than ``rate_limit_max_requests`` in the current window
   always blocks, overriding 1 and 2.

Any unexpected error resolves to a ``block`` verdict (fail-closed).
"""

from __future__ import annotations

import time
from typing import Any

from agentguard.audit import AuditLogger, log_security_event
from agentguard.cache import ResultCache, create_cache
from agentguard.config import get_settings
from agentguard.counter import RequestCounter
from agentguard.detector import ThreatDetector
from agentguard.logging import get_logger
from agentguard.ml import MLScorer
from agentguard.models import ActionType, AnalyzeRequest, Evidence, SecurityResponse
from agentguard.policy import PolicyContext, PolicyEngine

log = get_logger("agentguard.analyzer")

EMPTY_PROMPT_REASON = "Empty prompt not allowed"
MISSING_AGENT_REASON = "Missing agent identifier"
HIGH_RISK_REASON = "High risk content detected"
MODERATE_RISK_REASON = "Moderate risk content detected"
SAFE_REASON = "Request appears safe"
RATE_LIMIT_REASON = "Rate limit exceeded"
FAILURE_REASON = "Security analysis failed"


class SecurityAnalyzer:
    """Combine the threat detector and policy engine into one verdict."""

    def __init__(
        self,
        *,
        detector: ThreatDetector,
        policy_engine: PolicyEngine,
        counter: RequestCounter,
        rate_limit: int = 100,
        high_risk_threshold: float = 0.7,
        moderate_risk_threshold: float = 0.3,
        audit_logger: AuditLogger | None = None,
    ) -> None:
        self._detector = detector
        self._policy_engine = policy_engine
        self._counter = counter
        self._rate_limit = rate_limit
        self._high_risk_threshold = high_risk_threshold
        self._moderate_risk_threshold = moderate_risk_threshold
        self._audit_logger = audit_logger

    @classmethod
    def from_settings(
        cls,
        cache: ResultCache | None = None,
        audit_logger: AuditLogger | None = None,
    ) -> SecurityAnalyzer:
        """Wire an analyzer from application settings."""
        settings = get_settings()
        ml_scorer = MLScorer() if settings.ml_scorer_enabled else None
        return cls(
            detector=ThreatDetector(
                cache if cache is not None else create_cache(), ml_scorer=ml_scorer
            ),
            policy_engine=PolicyEngine(settings.policies_path),
            counter=RequestCounter(
                capacity=settings.request_counter_capacity,
                window_seconds=settings.rate_limit_window_seconds,
            ),
            rate_limit=settings.rate_limit_max_requests,
            high_risk_threshold=settings.high_risk_threshold,
            moderate_risk_threshold=settings.moderate_risk_threshold,
            audit_logger=audit_logger,
        )

    @property
    def policy_engine(self) -> PolicyEngine:
        return self._policy_engine

    async def evaluate(self, request: AnalyzeRequest) -> SecurityResponse:
        """Screen one request. Never raises."""
        start = time.perf_counter()
        prompt = request.prompt

        if not prompt or not prompt.strip():
            log.info("empty_prompt_rejected", agent_id=request.agent_id)
            return SecurityResponse(
                action=ActionType.BLOCK,
                reason=EMPTY_PROMPT_REASON,
                risk_score=1.0,
                processing_time_ms=(time.perf_counter() - start) * 1000,
                evidence=Evidence(prompt_length=len(prompt or "")),
            )

        if not request.agent_id or not request.agent_id.strip():
            log.info("missing_agent_id_rejected", prompt_length=len(prompt))
            return SecurityResponse(
                action=ActionType.BLOCK,
                reason=MISSING_AGENT_REASON,
                risk_score=1.0,
                processing_time_ms=(time.perf_counter() - start) * 1000,
                evidence=Evidence(prompt_length=len(prompt)),
            )

        try:
            return await self._evaluate(request, start)
        except Exception:
            log.exception("security_analysis_failed", agent_id=request.agent_id)
            return SecurityResponse(
                action=ActionType.BLOCK,
                reason=FAILURE_REASON,
                risk_score=1.0,
                processing_time_ms=(time.perf_counter() - start) * 1000,
                evidence=Evidence(prompt_length=len(prompt)),
            )

    async def _evaluate(self, request: AnalyzeRequest, start: float) -> SecurityResponse:
        request_count = self._counter.increment(request.agent_id)

        threat = await self._detector.analyze(request.prompt, request.agent_id)

        context = PolicyContext(
            agent_id=request.agent_id,
            prompt=request.prompt,
            risk_score=threat.threat_probability,
            detected_patterns=tuple(threat.detected_patterns),
            request_count=request_count,
            timestamp=request.timestamp,
        )
        results = self._policy_engine.evaluate_policies(context)

        if results:
            top = results[0]
            action = top.recommended_action.type
            reason = top.recommended_action.message or f"Policy '{top.policy.name}' triggered"
        elif threat.threat_probability > self._high_risk_threshold:
            action, reason = ActionType.BLOCK, HIGH_RISK_REASON
        elif threat.threat_probability > self._moderate_risk_threshold:
            action, reason = ActionType.WARN, MODERATE_RISK_REASON
        else:
            action, reason = ActionType.ALLOW, SAFE_REASON

        if request_count > self._rate_limit:
            action, reason = ActionType.BLOCK, RATE_LIMIT_REASON

        elapsed = (time.perf_counter() - start) * 1000
        log.info(
            "security_analysis_complete",
            agent_id=request.agent_id,
            action=action.value,
            risk_score=round(threat.threat_probability, 4),
            policies_matched=len(results),
            request_count=request_count,
            cached=threat.cached,
            processing_ms=round(elapsed, 2),
        )

        response = SecurityResponse(
            action=action,
            reason=reason,
            risk_score=threat.threat_probability,
            processing_time_ms=elapsed,
            evidence=Evidence(
                prompt_length=len(request.prompt),
                suspicious_patterns=list(threat.detected_patterns),
                confidence=threat.confidence,
                cached=threat.cached,
                policies_matched=len(results),
            ),
        )
        if action != ActionType.ALLOW:
            log_security_event(request=request, response=response)
        if self._audit_logger is not None:
            self._audit_logger.schedule(request, response)
        return response

    async def health(self) -> dict[str, Any]:
        """Report component health for status endpoints."""
        cache_ok = await self._detector.is_healthy()
        policies_ok = self._policy_engine.is_healthy()
        return {
            "status": "healthy" if cache_ok and policies_ok else "degraded",
            "cache": cache_ok,
            "policy_engine": policies_ok,
            "policy_state": self._policy_engine.state.value,
            "policies_loaded": len(self._policy_engine.get_policies()),
            "tracked_agents": len(self._counter),
        }
