"""AgentGuard: prompt screening for autonomous agents.

Public API
----------
- :class:`SecurityAnalyzer`: per-request orchestrator
- :class:`ThreatDetector`: cached lexical threat scorer
- :class:`PolicyEngine`: declarative policy evaluation
- :class:`RedisResultCache`, :class:`MemoryResultCache`: verdict caches
- :class:`RequestCounter`: bounded per-agent request counter
- :class:`AuditLogger`: after-the-fact ledger writes

Call :func:`setup_logging` once at process start to configure structlog
output; the library itself never configures logging.
"""

from agentguard.analyzer import SecurityAnalyzer
from agentguard.audit import AuditLogger
from agentguard.cache import MemoryResultCache, RedisResultCache, ResultCache
from agentguard.counter import RequestCounter
from agentguard.detector import ThreatDetector
from agentguard.logging import setup_logging
from agentguard.models import (
    ActionType,
    AnalyzeRequest,
    Evidence,
    SecurityResponse,
    ThreatResult,
)
from agentguard.policy import PolicyEngine

__version__ = "0.1.0"

__all__ = [
    "ActionType",
    "AnalyzeRequest",
    "AuditLogger",
    "Evidence",
    "MemoryResultCache",
    "PolicyEngine",
    "RedisResultCache",
    "RequestCounter",
    "ResultCache",
    "SecurityAnalyzer",
    "SecurityResponse",
    "ThreatDetector",
    "ThreatResult",
    "setup_logging",
]
