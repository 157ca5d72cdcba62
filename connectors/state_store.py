"""
OAuth state registry — single-use, time-boxed CSRF nonces.

A nonce binds the outbound authorization redirect to the user who started
it.  ``consume`` deletes the entry on every attempt, so a nonce can never
be replayed, and checks expiry itself so correctness never depends on when
the sweep last ran.
"""

from __future__ import annotations

import logging
import secrets
import threading
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Protocol, Tuple, runtime_checkable

from connectors.errors import StateExpired, StateNotFound

logger = logging.getLogger(__name__)

DEFAULT_STATE_TTL_SECONDS = 600
_NONCE_BYTES = 32


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@runtime_checkable
class StateRegistry(Protocol):
    """Storage seam for state nonces (in-memory here; a shared cache when scaled out)."""

    def issue(self, user_id: str) -> str:
        ...

    def consume(self, nonce: str) -> str:
        ...

    def sweep(self) -> int:
        ...


class InMemoryStateRegistry:
    """
    Process-local registry.

    Suitable for single-instance deployments.  Behind several instances the
    callback must be routed to the instance that issued the nonce.
    """

    def __init__(
        self,
        ttl_seconds: int = DEFAULT_STATE_TTL_SECONDS,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._ttl = timedelta(seconds=ttl_seconds)
        self._clock = clock
        self._entries: Dict[str, Tuple[str, datetime]] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def issue(self, user_id: str) -> str:
        """Mint a 256-bit nonce for ``user_id`` and return it."""
        nonce = secrets.token_hex(_NONCE_BYTES)
        now = self._clock()
        with self._lock:
            self._entries[nonce] = (user_id, now + self._ttl)
            self._purge_locked(now)
        return nonce

    def consume(self, nonce: str) -> str:
        """
        Return the user bound to ``nonce`` and forget it.

        Raises ``StateNotFound`` for unknown or already-used nonces and
        ``StateExpired`` for entries past their TTL.
        """
        with self._lock:
            entry = self._entries.pop(nonce, None)
        if entry is None:
            raise StateNotFound("Invalid or expired state parameter")

        user_id, expires_at = entry
        if self._clock() > expires_at:
            raise StateExpired("OAuth state expired")
        return user_id

    def sweep(self) -> int:
        """Drop expired entries; return how many were removed."""
        with self._lock:
            return self._purge_locked(self._clock())

    def _purge_locked(self, now: datetime) -> int:
        expired = [n for n, (_, exp) in self._entries.items() if now > exp]
        for nonce in expired:
            del self._entries[nonce]
        if expired:
            logger.debug("Swept %d expired OAuth states", len(expired))
        return len(expired)
