"""Result cache for threat verdicts.

Verdicts are stored as JSON keyed by ``security:{agent_id}:{fingerprint}``.
The cache is best-effort: every store call is bounded by a timeout, and any
failure degrades to cache-miss behaviour instead of raising.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import threading
import time
from abc import ABC, abstractmethod
from collections.abc import Awaitable
from dataclasses import dataclass
from typing import Any

from cachetools import TLRUCache  # type: ignore[import-untyped]
from redis.asyncio import Redis

from agentguard.config import get_settings
from agentguard.logging import get_logger
from agentguard.models import CallStatus

log = get_logger("agentguard.cache")

KEY_PREFIX = "security"
DEFAULT_TTL_SECONDS = 3600
DEFAULT_FINGERPRINT_LENGTH = 16


def fingerprint(prompt: str, length: int = DEFAULT_FINGERPRINT_LENGTH) -> str:
    """Return the first *length* hex characters of the prompt's SHA-256."""
    return hashlib.sha256(prompt.encode("utf-8")).hexdigest()[:length]


@dataclass(frozen=True)
class CacheOutcome:
    """Result of a single cache call."""

    status: CallStatus
    value: Any = None

    @property
    def ok(self) -> bool:
        return self.status == CallStatus.OK


class ResultCache(ABC):
    """Best-effort key/value store with expiry.

    Subclasses implement the raw ``_get``/``_set``/... operations and may
    raise freely; the public methods convert failures and timeouts into
    :class:`CacheOutcome` values and log them.
    """

    def __init__(
        self,
        *,
        default_ttl: int = DEFAULT_TTL_SECONDS,
        timeout: float | None = None,
        fingerprint_length: int = DEFAULT_FINGERPRINT_LENGTH,
    ) -> None:
        self.default_ttl = default_ttl
        self._timeout = timeout
        self._fingerprint_length = fingerprint_length

    def generate_key(self, agent_id: str, prompt: str) -> str:
        """Build the deterministic cache key for an (agent, prompt) pair."""
        return f"{KEY_PREFIX}:{agent_id}:{fingerprint(prompt, self._fingerprint_length)}"

    async def _call(self, operation: str, key: str | None, awaitable: Awaitable[Any]) -> CacheOutcome:
        try:
            if self._timeout is None:
                value = await awaitable
            else:
                value = await asyncio.wait_for(awaitable, timeout=self._timeout)
        except TimeoutError:
            log.warning("cache_timeout", operation=operation, key=key, timeout=self._timeout)
            return CacheOutcome(CallStatus.TIMEOUT)
        except Exception as e:
            log.warning("cache_operation_failed", operation=operation, key=key, error=str(e))
            return CacheOutcome(CallStatus.DEGRADED)
        return CacheOutcome(CallStatus.OK, value)

    async def lookup(self, key: str) -> CacheOutcome:
        """Fetch and decode *key*; ``value`` is ``None`` on a miss."""
        outcome = await self._call("get", key, self._get(key))
        if not outcome.ok or outcome.value is None:
            return outcome
        try:
            return CacheOutcome(CallStatus.OK, json.loads(outcome.value))
        except (TypeError, ValueError) as e:
            log.warning("cache_decode_failed", key=key, error=str(e))
            return CacheOutcome(CallStatus.DEGRADED)

    async def get(self, key: str) -> Any:
        """Return the cached value for *key*, or ``None``."""
        return (await self.lookup(key)).value

    async def set(self, key: str, value: Any, ttl: int | None = None) -> CacheOutcome:
        """Store *value* under *key* for *ttl* seconds (default TTL if omitted)."""
        try:
            serialized = json.dumps(value)
        except (TypeError, ValueError) as e:
            log.warning("cache_encode_failed", key=key, error=str(e))
            return CacheOutcome(CallStatus.DEGRADED)
        return await self._call("set", key, self._set(key, serialized, ttl or self.default_ttl))

    async def exists(self, key: str) -> bool:
        outcome = await self._call("exists", key, self._exists(key))
        return bool(outcome.value) if outcome.ok else False

    async def delete(self, key: str) -> None:
        await self._call("delete", key, self._delete(key))

    async def flush_all(self) -> None:
        await self._call("flush", None, self._flush())

    async def health_check(self) -> bool:
        outcome = await self._call("ping", None, self._ping())
        return outcome.ok and bool(outcome.value)

    async def close(self) -> None:
        """Release backend resources."""

    @abstractmethod
    async def _get(self, key: str) -> str | None: ...

    @abstractmethod
    async def _set(self, key: str, value: str, ttl: int) -> None: ...

    @abstractmethod
    async def _exists(self, key: str) -> bool: ...

    @abstractmethod
    async def _delete(self, key: str) -> None: ...

    @abstractmethod
    async def _flush(self) -> None: ...

    @abstractmethod
    async def _ping(self) -> bool: ...


class RedisResultCache(ResultCache):
    """Cache backed by Redis ``SETEX`` entries."""

    def __init__(
        self,
        url: str | None = None,
        *,
        client: Redis | None = None,
        default_ttl: int = DEFAULT_TTL_SECONDS,
        timeout: float | None = None,
        fingerprint_length: int = DEFAULT_FINGERPRINT_LENGTH,
    ) -> None:
        super().__init__(
            default_ttl=default_ttl, timeout=timeout, fingerprint_length=fingerprint_length
        )
        if client is None:
            url = url or get_settings().redis_url
            client = Redis.from_url(url, decode_responses=True)
            log.info("redis_cache_initialized", url=url)
        self._redis = client

    async def _get(self, key: str) -> str | None:
        value = await self._redis.get(key)
        if isinstance(value, bytes):
            return value.decode("utf-8")
        return value

    async def _set(self, key: str, value: str, ttl: int) -> None:
        await self._redis.setex(key, ttl, value)

    async def _exists(self, key: str) -> bool:
        return int(await self._redis.exists(key)) == 1

    async def _delete(self, key: str) -> None:
        await self._redis.delete(key)

    async def _flush(self) -> None:
        await self._redis.flushdb()

    async def _ping(self) -> bool:
        return bool(await self._redis.ping())

    async def close(self) -> None:
        try:
            await self._redis.aclose()
        except Exception as e:
            log.warning("redis_close_failed", error=str(e))


def _entry_expiry(_key: str, value: tuple[int, str], now: float) -> float:
    return now + value[0]


class MemoryResultCache(ResultCache):
    """In-process cache with per-entry TTL, for single-node deployments."""

    def __init__(
        self,
        *,
        max_entries: int = 10000,
        default_ttl: int = DEFAULT_TTL_SECONDS,
        timeout: float | None = None,
        fingerprint_length: int = DEFAULT_FINGERPRINT_LENGTH,
    ) -> None:
        super().__init__(
            default_ttl=default_ttl, timeout=timeout, fingerprint_length=fingerprint_length
        )
        self._entries: TLRUCache = TLRUCache(
            maxsize=max_entries, ttu=_entry_expiry, timer=time.monotonic
        )
        self._lock = threading.Lock()

    async def _get(self, key: str) -> str | None:
        with self._lock:
            entry = self._entries.get(key)
        return entry[1] if entry is not None else None

    async def _set(self, key: str, value: str, ttl: int) -> None:
        with self._lock:
            self._entries[key] = (ttl, value)

    async def _exists(self, key: str) -> bool:
        with self._lock:
            return key in self._entries

    async def _delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    async def _flush(self) -> None:
        with self._lock:
            self._entries.clear()

    async def _ping(self) -> bool:
        return True

    def __len__(self) -> int:
        with self._lock:
            self._entries.expire()
            return len(self._entries)


def create_cache() -> ResultCache:
    """Build the cache backend selected in settings."""
    settings = get_settings()
    if settings.cache_backend == "memory":
        return MemoryResultCache(
            max_entries=settings.cache_max_entries,
            default_ttl=settings.cache_ttl_seconds,
            timeout=settings.cache_timeout_seconds,
            fingerprint_length=settings.cache_fingerprint_length,
        )
    return RedisResultCache(
        settings.redis_url,
        default_ttl=settings.cache_ttl_seconds,
        timeout=settings.cache_timeout_seconds,
        fingerprint_length=settings.cache_fingerprint_length,
    )
