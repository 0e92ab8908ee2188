"""Exception types raised inside AgentGuard.

None of these escape :meth:`SecurityAnalyzer.evaluate`; callers always get a
well-formed :class:`~agentguard.models.SecurityResponse`.
"""


class AgentGuardError(Exception):
    """Base class for AgentGuard errors."""


class PolicyLoadError(AgentGuardError):
    """Raised when a policy document cannot be read or fails validation."""

    def __init__(self, message: str, errors: list[str] | None = None) -> None:
        super().__init__(message)
        self.errors = errors or []
