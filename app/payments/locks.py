"""
Lock manager for per-subscription mutual exclusion.

Every mutation of a logical subscription runs while holding a short-lived,
non-blocking lock on ``subscriber_id:creator_id:interval``. The lock is a
coordination primitive only; nothing about it is persisted past its TTL.

Backends:
    InMemoryLockBackend: process-local, for single-node runs and tests
    RedisLockBackend: SET NX PX + Lua compare-and-delete, for multi-node

Usage:
    from payments.locks import hold_lock, subscription_lock_key

    key = subscription_lock_key(subscriber_id, creator_id, "month")
    with hold_lock(key) as token:
        if token is None:
            # Another worker is already handling this subscription
            return
        ...

Note:
    Acquisition never waits. A caller that does not get the lock treats the
    event as already being handled and acknowledges it without doing work.
    The TTL must exceed the worst-case critical section so a crashed
    worker's lock self-expires.
"""

from __future__ import annotations

import logging
import threading
import time
import uuid as uuid_module
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import TYPE_CHECKING

from django.conf import settings
from django_redis import get_redis_connection
from redis.exceptions import RedisError

from payments.exceptions import LockBackendUnavailableError

if TYPE_CHECKING:
    from collections.abc import Iterator
    from typing import Any

    from redis import Redis

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

DEFAULT_LOCK_TTL_SECONDS = 30
LOCK_KEY_PREFIX = "lock:subscription:"


def subscription_lock_key(subscriber_id: Any, creator_id: Any, interval: str) -> str:
    """Build the lock key matching a subscription's natural identity."""
    return f"{subscriber_id}:{creator_id}:{interval}"


# =============================================================================
# Backends
# =============================================================================


class LockBackend(ABC):
    """
    Abstract non-blocking lock capability.

    Implementations must make ``try_acquire`` atomic: for a given key at most
    one unexpired token exists at any time.
    """

    @abstractmethod
    def try_acquire(self, key: str, ttl_seconds: float) -> str | None:
        """
        Try once to take ownership of ``key``.

        Returns:
            An opaque ownership token, or None if the key is already held
        """

    @abstractmethod
    def release(self, key: str, token: str) -> bool:
        """
        Release ``key`` if ``token`` still owns it.

        Returns:
            True if released, False if the lock had expired or changed hands
        """


class InMemoryLockBackend(LockBackend):
    """
    Process-local lock table guarded by a mutex.

    Expiry uses the monotonic clock so wall-clock changes (and frozen time
    in tests) do not affect TTLs.
    """

    def __init__(self) -> None:
        self._mutex = threading.Lock()
        self._locks: dict[str, tuple[str, float]] = {}

    def try_acquire(self, key: str, ttl_seconds: float) -> str | None:
        now = time.monotonic()
        with self._mutex:
            held = self._locks.get(key)
            if held is not None and held[1] > now:
                return None
            token = str(uuid_module.uuid4())
            self._locks[key] = (token, now + ttl_seconds)
            return token

    def release(self, key: str, token: str) -> bool:
        with self._mutex:
            held = self._locks.get(key)
            if held is None or held[0] != token:
                return False
            del self._locks[key]
            return True

    def reset(self) -> None:
        """Drop every lock (test isolation)."""
        with self._mutex:
            self._locks.clear()


class RedisLockBackend(LockBackend):
    """
    Redis-based lock with TTL.

    Token-based ownership prevents one worker from releasing a lock that
    expired and was re-acquired by another.
    """

    # Lua script for atomic check-and-delete (release)
    RELEASE_SCRIPT = """
    if redis.call("get", KEYS[1]) == ARGV[1] then
        return redis.call("del", KEYS[1])
    else
        return 0
    end
    """

    def __init__(self, alias: str = "default", prefix: str = LOCK_KEY_PREFIX) -> None:
        self.alias = alias
        self.prefix = prefix
        self._redis: Redis | None = None

    def _get_redis(self) -> Redis:
        """Get Redis connection (lazy initialization)."""
        if self._redis is None:
            self._redis = get_redis_connection(self.alias)
        return self._redis

    def try_acquire(self, key: str, ttl_seconds: float) -> str | None:
        token = str(uuid_module.uuid4())
        ttl_ms = max(int(ttl_seconds * 1000), 1)
        try:
            acquired = self._get_redis().set(
                f"{self.prefix}{key}", token, nx=True, px=ttl_ms
            )
        except RedisError as e:
            raise LockBackendUnavailableError(
                f"Lock backend unreachable while acquiring '{key}'",
                details={"key": key, "error": str(e)},
            ) from e
        return token if acquired else None

    def release(self, key: str, token: str) -> bool:
        try:
            result = self._get_redis().eval(
                self.RELEASE_SCRIPT, 1, f"{self.prefix}{key}", token
            )
        except RedisError:
            # The TTL reclaims the key; the caller's work is already committed
            logger.warning(
                f"Failed to release lock '{key}', leaving it to expire",
                extra={"lock_key": key},
                exc_info=True,
            )
            return False
        return bool(result)


# =============================================================================
# Backend Selection
# =============================================================================

_memory_backend = InMemoryLockBackend()
_backend_override: LockBackend | None = None


def get_lock_backend() -> LockBackend:
    """
    Return the configured lock backend.

    ``PAYMENTS_LOCK_BACKEND`` selects ``"redis"`` (default) or ``"memory"``.
    The in-memory backend is a process-wide singleton so every caller in
    the process shares one lock table.
    """
    if _backend_override is not None:
        return _backend_override
    name = getattr(settings, "PAYMENTS_LOCK_BACKEND", "redis")
    if name == "memory":
        return _memory_backend
    return RedisLockBackend()


def set_lock_backend(backend: LockBackend | None) -> None:
    """Install a specific backend (None restores settings-driven selection)."""
    global _backend_override
    _backend_override = backend


def get_lock_ttl() -> float:
    """Return the configured lock TTL in seconds."""
    return getattr(settings, "PAYMENTS_LOCK_TTL_SECONDS", DEFAULT_LOCK_TTL_SECONDS)


@contextmanager
def hold_lock(
    key: str,
    ttl_seconds: float | None = None,
    backend: LockBackend | None = None,
) -> Iterator[str | None]:
    """
    Hold ``key`` for the duration of the block, without waiting.

    Yields the ownership token, or None when another worker holds the key.
    The lock is released on exit only if it was acquired here.

    Raises:
        LockBackendUnavailableError: If the backend cannot be reached
    """
    backend = backend or get_lock_backend()
    ttl = ttl_seconds if ttl_seconds is not None else get_lock_ttl()
    token = backend.try_acquire(key, ttl)
    if token is None:
        logger.info(
            f"Lock '{key}' already held, skipping",
            extra={"lock_key": key},
        )
        yield None
        return

    try:
        yield token
    finally:
        if not backend.release(key, token):
            logger.warning(
                f"Lock '{key}' expired before release",
                extra={"lock_key": key, "ttl_seconds": ttl},
            )


__all__ = [
    "DEFAULT_LOCK_TTL_SECONDS",
    "LockBackend",
    "InMemoryLockBackend",
    "RedisLockBackend",
    "get_lock_backend",
    "set_lock_backend",
    "get_lock_ttl",
    "hold_lock",
    "subscription_lock_key",
]
