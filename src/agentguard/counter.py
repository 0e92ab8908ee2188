"""Per-agent request counter with fixed hourly windows.

The number of tracked agents is capped; the least recently seen agent is
evicted when the counter is full.
"""

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

from cachetools import LRUCache  # type: ignore[import-untyped]


@dataclass
class CounterState:
    """Request count for one agent in its current window."""

    count: int = 0
    reset_time: float = 0.0


class RequestCounter:
    """Count requests per agent within a resetting window."""

    def __init__(
        self,
        capacity: int = 50000,
        window_seconds: float = 3600.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the counter.

        Args:
            capacity: Maximum number of agents tracked at once.
            window_seconds: Length of each counting window.
            clock: Monotonic time source (injectable for tests).
        """
        self._window_seconds = window_seconds
        self._clock = clock
        self._states: LRUCache = LRUCache(maxsize=capacity)
        self._lock = threading.Lock()

    def increment(self, agent_id: str) -> int:
        """Record one request and return the agent's count for the current window."""
        now = self._clock()
        with self._lock:
            state = self._states.get(agent_id)
            if state is None or now >= state.reset_time:
                state = CounterState(count=0, reset_time=now + self._window_seconds)
                self._states[agent_id] = state
            state.count += 1
            return state.count

    def current(self, agent_id: str) -> int:
        """Return the agent's count without recording a request."""
        now = self._clock()
        with self._lock:
            state = self._states.get(agent_id)
            if state is None or now >= state.reset_time:
                return 0
            return state.count

    def reset(self, agent_id: str | None = None) -> None:
        with self._lock:
            if agent_id is None:
                self._states.clear()
            else:
                self._states.pop(agent_id, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._states)
