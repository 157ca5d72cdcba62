"""
Token manager — the single entry point for a user's linked Gmail credential.

Owns the per-user lifecycle::

    Disconnected ──begin──▶ PendingAuthorization ──callback──▶ Connected
         ▲                                                       │  ▲
         └──────────────────────── disconnect ───────────────────┘  │
                                                     refresh ───────┘

``PendingAuthorization`` is never persisted; it is a live entry in the
state registry and lapses on its own after the registry TTL.
"""

from __future__ import annotations

import asyncio
import logging
import weakref
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from connectors.base import BaseConnector
from connectors.credential_store import CredentialStore
from connectors.encryption import TokenCipher
from connectors.errors import (
    AuthorizationFailed,
    CodeExchangeFailed,
    IncompleteGrant,
    NotConnected,
    ProviderError,
    RefreshFailed,
    StateExpired,
    StateNotFound,
)
from connectors.models import ConnectionStatus, StoredCredential
from connectors.state_store import StateRegistry

logger = logging.getLogger(__name__)

DEFAULT_REFRESH_BUFFER_SECONDS = 300


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TokenManager:
    """Orchestrates state registry, connector, cipher and credential store."""

    def __init__(
        self,
        connector: BaseConnector,
        state_registry: StateRegistry,
        store: CredentialStore,
        cipher: TokenCipher,
        *,
        refresh_buffer_seconds: int = DEFAULT_REFRESH_BUFFER_SECONDS,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.connector = connector
        self.state_registry = state_registry
        self.store = store
        self.cipher = cipher
        self._refresh_buffer = timedelta(seconds=refresh_buffer_seconds)
        self._clock = clock
        self._refresh_locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = (
            weakref.WeakValueDictionary()
        )

    # ── Authorization handshake ────────────────────────────────────────

    def begin_authorization(self, user_id: str) -> str:
        """Issue a state nonce for ``user_id`` and return the consent URL."""
        nonce = self.state_registry.issue(user_id)
        return self.connector.build_authorization_url(self.connector.scopes, nonce)

    async def complete_callback(self, nonce: str, code: str) -> StoredCredential:
        """
        Finish the handshake started by :meth:`begin_authorization`.

        1. Consume the nonce (one-time) to recover the user.
        2. Exchange the code; both tokens must come back.
        3. Look up the account email and granted scopes.
        4. Encrypt and upsert.
        """
        try:
            user_id = self.state_registry.consume(nonce)
        except (StateNotFound, StateExpired) as exc:
            logger.warning("OAuth callback rejected: %s", exc)
            raise AuthorizationFailed(str(exc)) from exc

        try:
            grant = await self.connector.exchange_code(code)
        except ProviderError as exc:
            logger.error("Code exchange failed for user %s: %s", user_id, exc)
            raise CodeExchangeFailed(f"Failed to exchange authorization code: {exc}") from exc

        if not grant.access_token or not grant.refresh_token:
            logger.error("Incomplete grant for user %s", user_id)
            raise IncompleteGrant("No tokens received from provider")

        try:
            info = await self.connector.introspect(grant.access_token)
        except ProviderError as exc:
            logger.error("Token introspection failed for user %s: %s", user_id, exc)
            raise CodeExchangeFailed(f"Failed to read linked account: {exc}") from exc

        credential = await self.store.upsert(
            user_id,
            encrypted_access_token=self.cipher.encrypt(grant.access_token),
            encrypted_refresh_token=self.cipher.encrypt(grant.refresh_token),
            expires_at=grant.expires_at,
            account_email=info.account_email,
            scopes=info.granted_scopes,
        )
        logger.info("Connected %s for user %s", self.connector.display_name, user_id)
        return credential

    # ── Token use ──────────────────────────────────────────────────────

    async def get_valid_access_token(self, user_id: str) -> str:
        """
        Return a plaintext access token that is good for at least the
        refresh buffer, refreshing it first when needed.
        """
        credential = await self._load(user_id)
        if not self._needs_refresh(credential):
            token = self.cipher.decrypt(credential.encrypted_access_token)
            await self.store.mark_used(user_id)
            return token

        lock = self._refresh_lock(user_id)
        async with lock:
            # Another waiter may have refreshed while we queued.
            credential = await self._load(user_id)
            if not self._needs_refresh(credential):
                token = self.cipher.decrypt(credential.encrypted_access_token)
                await self.store.mark_used(user_id)
                return token
            return await self._refresh(credential)

    async def _refresh(self, credential: StoredCredential) -> str:
        user_id = credential.user_id
        refresh_token = self.cipher.decrypt(credential.encrypted_refresh_token)
        try:
            refreshed = await self.connector.refresh(refresh_token)
        except ProviderError as exc:
            logger.warning("Token refresh failed for user %s: %s", user_id, exc)
            raise RefreshFailed(f"Failed to refresh access token: {exc}") from exc

        rotated: Optional[str] = None
        if refreshed.refresh_token and refreshed.refresh_token != refresh_token:
            rotated = self.cipher.encrypt(refreshed.refresh_token)

        updated = await self.store.update_access_token(
            user_id,
            encrypted_access_token=self.cipher.encrypt(refreshed.access_token),
            expires_at=refreshed.expires_at,
            encrypted_refresh_token=rotated,
        )
        if not updated:
            # Disconnected while the refresh was in flight.
            raise NotConnected("Gmail account not connected")

        logger.info(
            "Refreshed %s token for user %s%s",
            self.connector.provider_name,
            user_id,
            " (refresh token rotated)" if rotated else "",
        )
        return refreshed.access_token

    # ── Disconnect / status ────────────────────────────────────────────

    async def disconnect(self, user_id: str) -> bool:
        """
        Revoke at the provider (best-effort) and always delete locally.

        Raises ``NotConnected`` only when there was nothing to disconnect.
        """
        credential = await self._load(user_id)

        try:
            access_token = self.cipher.decrypt(credential.encrypted_access_token)
            await self.connector.revoke(access_token)
        except Exception as exc:
            logger.warning(
                "Failed to revoke %s token for user %s: %s",
                self.connector.provider_name,
                user_id,
                exc,
            )

        await self.store.delete(user_id)
        logger.info("Disconnected %s for user %s", self.connector.provider_name, user_id)
        return True

    async def get_connection_status(self, user_id: str) -> ConnectionStatus:
        credential = await self.store.get(user_id)
        if credential is None:
            return ConnectionStatus(connected=False)
        return ConnectionStatus(
            connected=True,
            email_address=credential.account_email,
            scopes=credential.scopes,
            connected_at=credential.created_at,
            expires_at=credential.expires_at,
        )

    # ── Helpers ─────────────────────────────────────────────────────────

    async def _load(self, user_id: str) -> StoredCredential:
        credential = await self.store.get(user_id)
        if credential is None:
            raise NotConnected("Gmail account not connected")
        return credential

    def _needs_refresh(self, credential: StoredCredential) -> bool:
        return credential.expires_at - self._refresh_buffer <= self._clock()

    def _refresh_lock(self, user_id: str) -> asyncio.Lock:
        lock = self._refresh_locks.get(user_id)
        if lock is None:
            lock = asyncio.Lock()
            self._refresh_locks[user_id] = lock
        return lock
