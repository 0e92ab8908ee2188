"""Optional ML threat scorer.

Calls an external prediction endpoint that returns a threat probability for
a prompt. The scorer is fail-open: timeouts and errors yield an outcome
without a prediction and the detector falls back to heuristics only.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import UTC, datetime

import httpx

from agentguard.config import get_settings
from agentguard.logging import get_logger
from agentguard.models import CallStatus

log = get_logger("agentguard.ml")

# Used for batch items whose prediction failed
_FALLBACK_PROBABILITY = 0.5
_FALLBACK_CONFIDENCE = 0.3


@dataclass
class MLPrediction:
    """A single model prediction."""

    threat_probability: float
    confidence: float
    model_version: str = "unknown"
    processing_time_ms: float = 0.0
    predicted_at: str = ""


@dataclass(frozen=True)
class MLOutcome:
    """Result of one call to the prediction endpoint."""

    status: CallStatus
    prediction: MLPrediction | None = None


class MLScorer:
    """HTTP client for the external prediction endpoint."""

    def __init__(
        self,
        url: str | None = None,
        *,
        timeout: float | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        settings = get_settings()
        self._url = url or settings.ml_scorer_url
        self._timeout = timeout if timeout is not None else settings.ml_scorer_timeout
        self._client = client

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        return self._client

    async def predict(self, text: str) -> MLOutcome:
        """Score *text*; never raises."""
        start = asyncio.get_running_loop().time()
        try:
            client = await self._get_client()
            response = await asyncio.wait_for(
                client.post(self._url, json={"inputs": text}),
                timeout=self._timeout,
            )
            response.raise_for_status()
            body = response.json()
            prediction = MLPrediction(
                threat_probability=_clamp(float(body.get("threat_probability") or 0.0)),
                confidence=_clamp(float(body.get("confidence") or 0.0)),
                model_version=str(body.get("model_version") or "unknown"),
                processing_time_ms=(asyncio.get_running_loop().time() - start) * 1000,
                predicted_at=datetime.now(UTC).isoformat(),
            )
            return MLOutcome(CallStatus.OK, prediction)
        except (TimeoutError, httpx.TimeoutException):
            log.warning("ml_prediction_timeout", url=self._url, timeout=self._timeout)
            return MLOutcome(CallStatus.TIMEOUT)
        except Exception as e:
            log.warning("ml_prediction_failed", url=self._url, error=str(e))
            return MLOutcome(CallStatus.DEGRADED)  # Fail open

    async def batch_predict(self, texts: list[str]) -> list[MLPrediction]:
        """Score several texts sequentially, substituting a fallback for failures."""
        results: list[MLPrediction] = []
        for text in texts:
            outcome = await self.predict(text)
            if outcome.prediction is not None:
                results.append(outcome.prediction)
            else:
                results.append(
                    MLPrediction(
                        threat_probability=_FALLBACK_PROBABILITY,
                        confidence=_FALLBACK_CONFIDENCE,
                        model_version="fallback",
                        predicted_at=datetime.now(UTC).isoformat(),
                    )
                )
        return results

    async def is_healthy(self) -> bool:
        outcome = await self.predict("health check")
        return outcome.status == CallStatus.OK

    async def close(self) -> None:
        """Close the shared HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))
