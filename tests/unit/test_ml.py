"""Unit tests for the optional ML threat scorer."""

from __future__ import annotations

import json

import httpx
import pytest

from agentguard.ml import MLScorer
from agentguard.models import CallStatus

ENDPOINT = "http://ml.internal/predict"


def _scorer(handler, timeout: float = 1.0) -> MLScorer:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return MLScorer(ENDPOINT, timeout=timeout, client=client)


class TestPredict:
    """Tests for MLScorer.predict."""

    @pytest.mark.asyncio
    async def test_success(self) -> None:
        seen: dict[str, object] = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["body"] = json.loads(request.content)
            return httpx.Response(
                200,
                json={"threat_probability": 0.42, "confidence": 0.8, "model_version": "v3"},
            )

        scorer = _scorer(handler)
        outcome = await scorer.predict("some text")
        assert seen["body"] == {"inputs": "some text"}
        assert outcome.status == CallStatus.OK
        assert outcome.prediction is not None
        assert outcome.prediction.threat_probability == pytest.approx(0.42)
        assert outcome.prediction.model_version == "v3"
        await scorer.close()

    @pytest.mark.asyncio
    async def test_out_of_range_values_clamped(self) -> None:
        scorer = _scorer(
            lambda request: httpx.Response(200, json={"threat_probability": 3, "confidence": -1})
        )
        outcome = await scorer.predict("x")
        assert outcome.prediction is not None
        assert outcome.prediction.threat_probability == 1.0
        assert outcome.prediction.confidence == 0.0

    @pytest.mark.asyncio
    async def test_server_error_degrades(self) -> None:
        scorer = _scorer(lambda request: httpx.Response(500))
        outcome = await scorer.predict("x")
        assert outcome.status == CallStatus.DEGRADED
        assert outcome.prediction is None

    @pytest.mark.asyncio
    async def test_timeout(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        outcome = await _scorer(handler).predict("x")
        assert outcome.status == CallStatus.TIMEOUT

    @pytest.mark.asyncio
    async def test_invalid_body_degrades(self) -> None:
        scorer = _scorer(lambda request: httpx.Response(200, content=b"not json"))
        outcome = await scorer.predict("x")
        assert outcome.status == CallStatus.DEGRADED


class TestBatchPredict:
    """Tests for MLScorer.batch_predict."""

    @pytest.mark.asyncio
    async def test_failed_items_use_fallback(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if json.loads(request.content)["inputs"] == "bad":
                return httpx.Response(503)
            return httpx.Response(200, json={"threat_probability": 0.1, "confidence": 0.9})

        results = await _scorer(handler).batch_predict(["good", "bad"])
        assert [r.threat_probability for r in results] == [pytest.approx(0.1), 0.5]
        assert results[1].confidence == 0.3
        assert results[1].model_version == "fallback"


class TestHealth:
    """Tests for MLScorer.is_healthy."""

    @pytest.mark.asyncio
    async def test_healthy(self) -> None:
        scorer = _scorer(lambda request: httpx.Response(200, json={"threat_probability": 0}))
        assert await scorer.is_healthy() is True

    @pytest.mark.asyncio
    async def test_unhealthy(self) -> None:
        scorer = _scorer(lambda request: httpx.Response(502))
        assert await scorer.is_healthy() is False
