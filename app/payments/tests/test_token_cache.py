"""
Tests for the gateway token cache.

Tests cover:
- Reuse of a token inside its validity window
- Refresh once the safety margin is reached
- Single-flight refresh under concurrent acquires
- Failure propagation to every waiter, and no caching of failures
- Invalidation after a token rejection
"""

import threading
import time
from datetime import datetime, timedelta, timezone

import pytest

from payments.exceptions import AuthenticationFailedError
from payments.token_cache import CredentialToken, TokenCache


NOW = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, start=NOW):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


class CountingAuthenticator:
    """Issues tokens tok-1, tok-2, ... valid for five minutes."""

    def __init__(self, clock, delay=0.0):
        self.clock = clock
        self.delay = delay
        self.calls = 0
        self._lock = threading.Lock()

    def __call__(self):
        with self._lock:
            self.calls += 1
            n = self.calls
        if self.delay:
            time.sleep(self.delay)
        return CredentialToken(
            value=f"tok-{n}",
            expires_at=self.clock() + timedelta(minutes=5),
        )


@pytest.fixture
def clock():
    return FakeClock()


class TestCredentialToken:
    """Tests for CredentialToken."""

    def test_valid_outside_margin(self):
        token = CredentialToken("abc", NOW + timedelta(minutes=5))

        assert token.is_valid_at(NOW, timedelta(seconds=60)) is True

    def test_invalid_inside_margin(self):
        token = CredentialToken("abc", NOW + timedelta(seconds=30))

        assert token.is_valid_at(NOW, timedelta(seconds=60)) is False

    def test_repr_hides_value(self):
        token = CredentialToken("super-secret", NOW)

        assert "super-secret" not in repr(token)


class TestTokenCacheAcquire:
    """Tests for TokenCache.acquire."""

    def test_first_acquire_authenticates(self, clock):
        auth = CountingAuthenticator(clock)
        cache = TokenCache(auth, clock=clock)

        token = cache.acquire()

        assert token.value == "tok-1"
        assert auth.calls == 1
        assert cache.cached_token == token

    def test_reuses_token_within_margin(self, clock):
        """Two acquires 10s apart with a 5-minute token share one authentication."""
        auth = CountingAuthenticator(clock)
        cache = TokenCache(auth, safety_margin=timedelta(seconds=60), clock=clock)

        first = cache.acquire()
        clock.advance(seconds=10)
        second = cache.acquire()

        assert first is second
        assert auth.calls == 1

    def test_refreshes_when_margin_reached(self, clock):
        auth = CountingAuthenticator(clock)
        cache = TokenCache(auth, safety_margin=timedelta(seconds=60), clock=clock)

        cache.acquire()
        clock.advance(minutes=4, seconds=1)
        token = cache.acquire()

        assert token.value == "tok-2"
        assert auth.calls == 2

    def test_concurrent_acquires_authenticate_once(self, clock):
        """Ten threads racing on an empty cache cause exactly one token request."""
        auth = CountingAuthenticator(clock, delay=0.2)
        cache = TokenCache(auth, clock=clock)
        barrier = threading.Barrier(10)
        results = []
        errors = []

        def worker():
            barrier.wait()
            try:
                results.append(cache.acquire())
            except Exception as exc:  # pragma: no cover - reported below
                errors.append(exc)

        threads = [threading.Thread(target=worker) for _ in range(10)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=5)

        assert errors == []
        assert auth.calls == 1
        assert len(results) == 10
        assert {token.value for token in results} == {"tok-1"}

    def test_failure_reaches_every_waiter(self, clock):
        started = threading.Event()
        release = threading.Event()
        calls = []

        def failing_auth():
            calls.append(1)
            started.set()
            release.wait(timeout=5)
            raise AuthenticationFailedError("bad credentials")

        cache = TokenCache(failing_auth, clock=clock)
        outcomes = []

        def worker():
            try:
                cache.acquire()
            except AuthenticationFailedError as exc:
                outcomes.append(exc)

        leader = threading.Thread(target=worker)
        leader.start()
        started.wait(timeout=5)
        followers = [threading.Thread(target=worker) for _ in range(3)]
        for thread in followers:
            thread.start()
        time.sleep(0.1)
        release.set()
        for thread in [leader, *followers]:
            thread.join(timeout=5)

        assert len(calls) == 1
        assert len(outcomes) == 4
        assert all(isinstance(exc, AuthenticationFailedError) for exc in outcomes)

    def test_failure_is_not_cached(self, clock):
        attempts = []

        def flaky_auth():
            attempts.append(1)
            if len(attempts) == 1:
                raise AuthenticationFailedError("temporarily refused")
            return CredentialToken("tok-ok", clock() + timedelta(minutes=5))

        cache = TokenCache(flaky_auth, clock=clock)

        with pytest.raises(AuthenticationFailedError):
            cache.acquire()

        assert cache.cached_token is None
        assert cache.acquire().value == "tok-ok"
        assert len(attempts) == 2

    def test_unexpected_error_is_wrapped(self, clock):
        def broken_auth():
            raise RuntimeError("socket closed")

        cache = TokenCache(broken_auth, clock=clock)

        with pytest.raises(AuthenticationFailedError, match="socket closed"):
            cache.acquire()


class Interrupted(BaseException):
    """Stands in for gevent.Timeout, SystemExit and the like."""


class TestTokenCacheInterruption:
    """A refresh interrupted by a BaseException must not wedge the cache."""

    def test_interrupted_refresh_is_retried(self, clock):
        attempts = []

        def interrupted_once():
            attempts.append(1)
            if len(attempts) == 1:
                raise Interrupted()
            return CredentialToken("tok-ok", clock() + timedelta(minutes=5))

        cache = TokenCache(interrupted_once, clock=clock)

        with pytest.raises(Interrupted):
            cache.acquire()

        assert cache.cached_token is None
        assert cache.acquire().value == "tok-ok"
        assert len(attempts) == 2

    def test_waiters_released_when_leader_interrupted(self, clock):
        started = threading.Event()
        release = threading.Event()

        def interrupted_auth():
            started.set()
            release.wait(timeout=5)
            raise Interrupted()

        cache = TokenCache(interrupted_auth, clock=clock)
        leader_outcome = []
        follower_outcome = []

        def leader():
            try:
                cache.acquire()
            except Interrupted as exc:
                leader_outcome.append(exc)

        def follower():
            try:
                cache.acquire()
            except AuthenticationFailedError as exc:
                follower_outcome.append(exc)

        leader_thread = threading.Thread(target=leader)
        leader_thread.start()
        started.wait(timeout=5)
        follower_thread = threading.Thread(target=follower)
        follower_thread.start()
        time.sleep(0.1)
        release.set()
        leader_thread.join(timeout=5)
        follower_thread.join(timeout=5)

        assert not follower_thread.is_alive()
        assert len(leader_outcome) == 1
        assert len(follower_outcome) == 1
        assert "interrupted" in follower_outcome[0].message


class TestTokenCacheInvalidate:
    """Tests for TokenCache.invalidate."""

    def test_invalidate_forces_refresh(self, clock):
        auth = CountingAuthenticator(clock)
        cache = TokenCache(auth, clock=clock)

        token = cache.acquire()
        cache.invalidate(token)

        assert cache.acquire().value == "tok-2"
        assert auth.calls == 2

    def test_invalidate_ignores_stale_token(self, clock):
        """A late rejection of an old token keeps the newer one."""
        auth = CountingAuthenticator(clock)
        cache = TokenCache(auth, clock=clock)

        old = cache.acquire()
        cache.invalidate(old)
        new = cache.acquire()
        cache.invalidate(old)

        assert cache.cached_token == new

    def test_invalidate_without_token_clears(self, clock):
        auth = CountingAuthenticator(clock)
        cache = TokenCache(auth, clock=clock)

        cache.acquire()
        cache.invalidate()

        assert cache.cached_token is None
