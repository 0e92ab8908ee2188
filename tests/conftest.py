"""Pytest fixtures for AgentGuard tests."""

from pathlib import Path

import pytest

from agentguard.analyzer import SecurityAnalyzer
from agentguard.cache import MemoryResultCache
from agentguard.counter import RequestCounter
from agentguard.detector import ThreatDetector
from agentguard.policy import PolicyEngine


@pytest.fixture(autouse=True)
def clear_settings_cache():
    """Clear settings cache before each test."""
    from agentguard.config import get_settings

    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def memory_cache() -> MemoryResultCache:
    """Fresh in-process verdict cache."""
    return MemoryResultCache(max_entries=1000)


@pytest.fixture
def detector(memory_cache: MemoryResultCache) -> ThreatDetector:
    return ThreatDetector(memory_cache)


@pytest.fixture
def policy_engine() -> PolicyEngine:
    """Engine loaded with the packaged default policies."""
    return PolicyEngine()


@pytest.fixture
def analyzer(detector: ThreatDetector, policy_engine: PolicyEngine) -> SecurityAnalyzer:
    return SecurityAnalyzer(
        detector=detector,
        policy_engine=policy_engine,
        counter=RequestCounter(capacity=100),
    )


@pytest.fixture
def write_policies(tmp_path: Path):
    """Write a YAML policy document and return its path."""

    def _write(content: str) -> Path:
        path = tmp_path / "policies.yaml"
        path.write_text(content, encoding="utf-8")
        return path

    return _write
