"""
Bearer token cache for the Pesapal API.

Pesapal tokens live for a few minutes. The TokenCache keeps the current one
and refreshes it on demand with a single-flight guarantee: when many
threads find the cache empty or stale at the same time, exactly one of them
calls the gateway and the others wait for and share that result.

Usage:
    from payments.token_cache import TokenCache

    cache = TokenCache(client.authenticate, safety_margin=timedelta(seconds=60))
    token = cache.acquire()
    headers = {"Authorization": f"Bearer {token.value}"}

    # Gateway refused the token: drop it so the next acquire refreshes
    cache.invalidate(token)
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from django.utils import timezone

from payments.exceptions import AuthenticationFailedError

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CredentialToken:
    """
    An issued bearer token.

    Attributes:
        value: Opaque token string
        expires_at: Aware datetime after which the gateway refuses it
    """

    value: str
    expires_at: datetime

    def __repr__(self) -> str:
        return f"CredentialToken(expires_at={self.expires_at.isoformat()})"

    def is_valid_at(self, moment: datetime, margin: timedelta) -> bool:
        """True if the token stays valid for more than ``margin`` after ``moment``."""
        return self.expires_at - margin > moment


class TokenCache:
    """
    Caches one CredentialToken and refreshes it single-flight.

    Thread-safe. Authentication failures are raised to every caller waiting
    on that refresh and are never cached.

    Args:
        authenticate: Callable performing the remote token request
        safety_margin: Refresh tokens this long before they expire
        clock: Returns the current aware datetime
    """

    def __init__(
        self,
        authenticate: Callable[[], CredentialToken],
        safety_margin: timedelta = timedelta(seconds=60),
        clock: Callable[[], datetime] = timezone.now,
    ) -> None:
        self._authenticate = authenticate
        self._safety_margin = safety_margin
        self._clock = clock
        self._lock = threading.Lock()
        self._token: CredentialToken | None = None
        self._refresh: Future[CredentialToken] | None = None

    @property
    def cached_token(self) -> CredentialToken | None:
        """The currently cached token, fresh or not."""
        return self._token

    @property
    def safety_margin(self) -> timedelta:
        return self._safety_margin

    def acquire(self) -> CredentialToken:
        """
        Return a token valid beyond the safety margin.

        Raises:
            AuthenticationFailedError: If the refresh this call waited on failed
        """
        with self._lock:
            token = self._token
            if token is not None and token.is_valid_at(self._clock(), self._safety_margin):
                return token

            refresh = self._refresh
            leader = refresh is None
            if leader:
                refresh = Future()
                self._refresh = refresh

        if not leader:
            return refresh.result()

        try:
            token = self._authenticate()
        except AuthenticationFailedError as exc:
            self._finish_refresh(refresh, error=exc)
            raise
        except Exception as exc:
            wrapped = AuthenticationFailedError(f"Token request failed: {exc}")
            self._finish_refresh(refresh, error=wrapped)
            raise wrapped from exc
        except BaseException as exc:
            # Interrupted (timeout, shutdown); waiters must not hang on the future
            self._finish_refresh(
                refresh,
                error=AuthenticationFailedError(f"Token request interrupted: {exc!r}"),
            )
            raise

        self._finish_refresh(refresh, token=token)
        logger.info(
            "Gateway token refreshed",
            extra={"expires_at": token.expires_at.isoformat()},
        )
        return token

    def invalidate(self, token: CredentialToken | None = None) -> None:
        """
        Discard the cached token.

        When ``token`` is given, only discard it if it is still the cached
        one, so a token refreshed by another thread survives a late report
        about its predecessor.
        """
        with self._lock:
            if token is None or self._token == token:
                self._token = None
                logger.info("Gateway token invalidated")

    def _finish_refresh(
        self,
        refresh: Future[CredentialToken],
        token: CredentialToken | None = None,
        error: BaseException | None = None,
    ) -> None:
        with self._lock:
            if token is not None:
                self._token = token
            self._refresh = None
        if error is not None:
            refresh.set_exception(error)
        else:
            refresh.set_result(token)
