"""
Tests for subscription locking.

Tests the lock backends and the hold_lock context manager that give the
pipeline per-subscription mutual exclusion.
"""

import threading
import uuid
from unittest.mock import MagicMock, patch

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from payments.exceptions import LockBackendUnavailableError
from payments.locks import (
    InMemoryLockBackend,
    RedisLockBackend,
    get_lock_backend,
    hold_lock,
    set_lock_backend,
    subscription_lock_key,
)


@pytest.fixture
def mock_redis():
    """Mock Redis connection for lock tests."""
    with patch("payments.locks.get_redis_connection") as mock_get_conn:
        mock_conn = MagicMock()
        mock_get_conn.return_value = mock_conn
        yield mock_conn


class TestSubscriptionLockKey:
    def test_key_is_derived_from_identity(self):
        """Same identity always maps to the same key."""
        subscriber, creator = uuid.uuid4(), uuid.uuid4()

        assert subscription_lock_key(subscriber, creator, "month") == (
            subscription_lock_key(str(subscriber), str(creator), "month")
        )

    def test_interval_is_part_of_the_key(self):
        subscriber, creator = uuid.uuid4(), uuid.uuid4()

        assert subscription_lock_key(subscriber, creator, "month") != (
            subscription_lock_key(subscriber, creator, "one_time")
        )


class TestInMemoryLockBackend:
    """Tests for the process-local backend."""

    def test_acquire_returns_token(self):
        backend = InMemoryLockBackend()

        token = backend.try_acquire("k", 30)

        assert token is not None

    def test_second_acquire_fails_while_held(self):
        backend = InMemoryLockBackend()
        backend.try_acquire("k", 30)

        assert backend.try_acquire("k", 30) is None

    def test_release_with_wrong_token_keeps_lock(self):
        """Only the owner's token releases the lock."""
        backend = InMemoryLockBackend()
        backend.try_acquire("k", 30)

        assert backend.release("k", "not-the-token") is False
        assert backend.try_acquire("k", 30) is None

    def test_release_allows_reacquire(self):
        backend = InMemoryLockBackend()
        token = backend.try_acquire("k", 30)

        assert backend.release("k", token) is True
        assert backend.try_acquire("k", 30) is not None

    def test_expired_lock_can_be_taken_over(self):
        """A holder that exceeds its TTL loses the lock."""
        backend = InMemoryLockBackend()
        with patch("payments.locks.time.monotonic", return_value=100.0):
            stale = backend.try_acquire("k", 5)
        with patch("payments.locks.time.monotonic", return_value=106.0):
            fresh = backend.try_acquire("k", 5)

        assert fresh is not None
        assert fresh != stale
        # The stale holder cannot release the new owner's lock
        assert backend.release("k", stale) is False

    def test_concurrent_acquire_grants_exactly_one_token(self):
        """N threads racing for one key: exactly one wins."""
        backend = InMemoryLockBackend()
        barrier = threading.Barrier(8)
        tokens = []

        def contend():
            barrier.wait()
            tokens.append(backend.try_acquire("contended", 30))

        threads = [threading.Thread(target=contend) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len([t for t in tokens if t is not None]) == 1


class TestRedisLockBackend:
    """Tests for the Redis backend (SET NX PX + Lua release)."""

    def test_acquire_uses_set_nx_px(self, mock_redis):
        mock_redis.set.return_value = True
        backend = RedisLockBackend()

        token = backend.try_acquire("sub:1", 30)

        assert token is not None
        args, kwargs = mock_redis.set.call_args
        assert args[0].endswith("sub:1")
        assert args[1] == token
        assert kwargs["nx"] is True
        assert kwargs["px"] == 30000

    def test_acquire_returns_none_when_held(self, mock_redis):
        mock_redis.set.return_value = None

        assert RedisLockBackend().try_acquire("sub:1", 30) is None

    def test_release_checks_token_atomically(self, mock_redis):
        mock_redis.eval.return_value = 1
        backend = RedisLockBackend()

        assert backend.release("sub:1", "tok") is True
        args = mock_redis.eval.call_args[0]
        assert args[0] == RedisLockBackend.RELEASE_SCRIPT
        assert args[3] == "tok"

    def test_unreachable_backend_is_retryable(self, mock_redis):
        """Connection errors surface as a retryable application error."""
        mock_redis.set.side_effect = RedisConnectionError("down")

        with pytest.raises(LockBackendUnavailableError) as exc_info:
            RedisLockBackend().try_acquire("sub:1", 30)

        assert exc_info.value.retryable is True

    def test_release_failure_is_logged_not_raised(self, mock_redis):
        mock_redis.eval.side_effect = RedisConnectionError("down")

        assert RedisLockBackend().release("sub:1", "tok") is False


class TestHoldLock:
    """Tests for the hold_lock context manager."""

    def test_yields_token_and_releases(self):
        backend = InMemoryLockBackend()

        with hold_lock("k", backend=backend) as token:
            assert token is not None
            assert backend.try_acquire("k", 30) is None

        assert backend.try_acquire("k", 30) is not None

    def test_yields_none_when_busy_without_waiting(self):
        backend = InMemoryLockBackend()
        backend.try_acquire("k", 30)

        with hold_lock("k", backend=backend) as token:
            assert token is None

    def test_busy_exit_does_not_release_other_holder(self):
        backend = InMemoryLockBackend()
        backend.try_acquire("k", 30)

        with hold_lock("k", backend=backend):
            pass

        assert backend.try_acquire("k", 30) is None

    def test_releases_on_exception(self):
        backend = InMemoryLockBackend()

        with pytest.raises(RuntimeError):
            with hold_lock("k", backend=backend):
                raise RuntimeError("boom")

        assert backend.try_acquire("k", 30) is not None


class TestBackendSelection:
    def test_memory_backend_from_settings(self, settings):
        settings.PAYMENTS_LOCK_BACKEND = "memory"

        assert isinstance(get_lock_backend(), InMemoryLockBackend)

    def test_redis_backend_from_settings(self, settings):
        settings.PAYMENTS_LOCK_BACKEND = "redis"

        assert isinstance(get_lock_backend(), RedisLockBackend)

    def test_override_wins(self, settings):
        settings.PAYMENTS_LOCK_BACKEND = "redis"
        backend = InMemoryLockBackend()
        set_lock_backend(backend)
        try:
            assert get_lock_backend() is backend
        finally:
            set_lock_backend(None)
