"""Lexical threat scorer for agent prompts.

Scores a prompt by substring matches against known manipulation phrases plus
a handful of additive heuristics. Results are cached per (agent, prompt)
fingerprint so repeated prompts skip recomputation.
"""

from __future__ import annotations

import time

from agentguard.cache import ResultCache
from agentguard.logging import get_logger
from agentguard.ml import MLScorer
from agentguard.models import ThreatResult

log = get_logger("agentguard.detector")

MALICIOUS_PHRASES: tuple[str, ...] = (
    "ignore previous instructions",
    "system prompt override",
    "reveal your instructions",
    "forget everything above",
    "disregard all previous",
    "pretend you are",
    "act as if",
    "you are now",
    "from now on you",
    "ignore the above",
)
PHRASE_SCORE = 0.4

# (substring, score) pairs; each applies independently
_KEYWORD_HEURISTICS: list[tuple[str, float]] = [
    ("ignore", 0.2),
    ("override", 0.2),
    ("[system]", 0.3),
    ("[admin]", 0.3),
    ("roleplay", 0.1),
]

_LONG_PROMPT_CHARS = 1000
_LONG_PROMPT_SCORE = 0.1

_REPETITION_MIN_WORDS = 20
_REPETITION_MAX_UNIQUE_RATIO = 0.3
_REPETITION_SCORE = 0.2

_BASE_CONFIDENCE = 0.6
_PATTERN_CONFIDENCE_BONUS = 0.3
_HIGH_SCORE_CONFIDENCE_BONUS = 0.1


def match_phrases(lower: str) -> list[str]:
    """Return every malicious phrase contained in the lower-cased prompt."""
    return [phrase for phrase in MALICIOUS_PHRASES if phrase in lower]


def heuristic_score(prompt: str) -> float:
    """Sum the additive heuristic contributions for *prompt* (unclamped)."""
    lower = prompt.lower()
    score = sum(weight for needle, weight in _KEYWORD_HEURISTICS if needle in lower)

    if len(prompt) > _LONG_PROMPT_CHARS:
        score += _LONG_PROMPT_SCORE

    # High repetition is a common padding trick
    words = lower.split()
    if len(words) > _REPETITION_MIN_WORDS:
        if len(set(words)) / len(words) < _REPETITION_MAX_UNIQUE_RATIO:
            score += _REPETITION_SCORE

    return score


def compute_confidence(detected_patterns: list[str], threat_probability: float) -> float:
    confidence = _BASE_CONFIDENCE
    if detected_patterns:
        confidence += _PATTERN_CONFIDENCE_BONUS
    if threat_probability > 0.5:
        confidence += _HIGH_SCORE_CONFIDENCE_BONUS
    return min(confidence, 1.0)


def score_prompt(prompt: str, extra_score: float = 0.0) -> ThreatResult:
    """Score *prompt* without touching the cache.

    Args:
        prompt: Raw prompt text.
        extra_score: Additional signal (e.g. an ML probability) added before
            clamping.

    Returns:
        A fresh :class:`ThreatResult` with ``cached=False``.
    """
    detected = match_phrases(prompt.lower())
    score = len(detected) * PHRASE_SCORE + heuristic_score(prompt) + extra_score
    probability = max(0.0, min(score, 1.0))
    return ThreatResult(
        threat_probability=probability,
        confidence=compute_confidence(detected, probability),
        detected_patterns=detected,
        cached=False,
    )


class ThreatDetector:
    """Cache-backed threat scorer."""

    def __init__(self, cache: ResultCache, *, ml_scorer: MLScorer | None = None) -> None:
        self._cache = cache
        self._ml_scorer = ml_scorer

    async def analyze(self, prompt: str, agent_id: str) -> ThreatResult:
        """Score a prompt for *agent_id*, reusing a cached verdict when present."""
        start = time.perf_counter()

        if not prompt.strip():
            return ThreatResult(threat_probability=0.0, confidence=_BASE_CONFIDENCE)

        key = self._cache.generate_key(agent_id, prompt)
        cached = await self._cache.get(key)
        if cached is not None:
            try:
                result = ThreatResult.from_cache(cached)
            except (TypeError, ValueError) as e:
                # Unreadable entries count as a miss and get overwritten below
                log.warning("threat_cache_entry_invalid", key=key, error=str(e))
            else:
                result.cached = True
                result.processing_time_ms = (time.perf_counter() - start) * 1000
                log.debug("threat_cache_hit", agent_id=agent_id, key=key)
                return result

        extra = 0.0
        if self._ml_scorer is not None:
            outcome = await self._ml_scorer.predict(prompt)
            if outcome.prediction is not None:
                extra = outcome.prediction.threat_probability

        result = score_prompt(prompt, extra_score=extra)
        await self._cache.set(key, result.to_cache(), self._cache.default_ttl)
        result.processing_time_ms = (time.perf_counter() - start) * 1000

        log.debug(
            "threat_scored",
            agent_id=agent_id,
            threat_probability=round(result.threat_probability, 4),
            patterns=result.detected_patterns,
        )
        return result

    async def is_healthy(self) -> bool:
        return await self._cache.health_check()
