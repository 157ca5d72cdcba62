"""
Tests for the OAuth lifecycle: connect, refresh, disconnect, status.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qs, urlparse

import pytest

from connectors.errors import (
    AuthorizationFailed,
    CodeExchangeFailed,
    DecryptionError,
    IncompleteGrant,
    NotConnected,
    ProviderError,
    RefreshFailed,
    RevocationFailed,
)
from connectors.models import RefreshedToken, TokenGrant


def utcnow():
    return datetime.now(timezone.utc)


def _state_from(url: str) -> str:
    return parse_qs(urlparse(url).query)["state"][0]


async def _seed(manager, cipher, user_id="user-1", expires_in=timedelta(hours=1)):
    return await manager.store.upsert(
        user_id,
        encrypted_access_token=cipher.encrypt("A"),
        encrypted_refresh_token=cipher.encrypt("R"),
        expires_at=utcnow() + expires_in,
        account_email="user@gmail.com",
        scopes=["scope"],
    )


# ── Connect ────────────────────────────────────────────────────────────────


class TestConnect:
    @pytest.mark.asyncio
    async def test_begin_authorization_embeds_issued_nonce(self, manager, connector, state_registry):
        url = manager.begin_authorization("user-1")

        nonce = _state_from(url)
        assert len(state_registry) == 1
        connector.build_authorization_url.assert_called_once_with(connector.scopes, nonce)

    @pytest.mark.asyncio
    async def test_complete_callback_stores_encrypted_credential(self, manager, connector, cipher):
        nonce = _state_from(manager.begin_authorization("user-1"))

        credential = await manager.complete_callback(nonce, "code-xyz")

        connector.exchange_code.assert_awaited_once_with("code-xyz")
        connector.introspect.assert_awaited_once_with("A")
        assert credential.user_id == "user-1"
        assert credential.account_email == "user@gmail.com"
        assert "A" != credential.encrypted_access_token
        assert "R" != credential.encrypted_refresh_token
        assert cipher.decrypt(credential.encrypted_refresh_token) == "R"
        assert await manager.get_valid_access_token("user-1") == "A"
        connector.refresh.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_reconnect_updates_in_place(self, manager, connector, cipher):
        await manager.complete_callback(_state_from(manager.begin_authorization("user-1")), "c1")
        connector.exchange_code.return_value = TokenGrant(
            access_token="A-new", refresh_token="R-new", expires_at=utcnow() + timedelta(hours=1)
        )
        credential = await manager.complete_callback(
            _state_from(manager.begin_authorization("user-1")), "c2"
        )

        assert cipher.decrypt(credential.encrypted_access_token) == "A-new"
        assert cipher.decrypt(credential.encrypted_refresh_token) == "R-new"

    @pytest.mark.asyncio
    async def test_replayed_nonce_is_rejected(self, manager, connector):
        nonce = _state_from(manager.begin_authorization("user-1"))
        await manager.complete_callback(nonce, "code")

        with pytest.raises(AuthorizationFailed):
            await manager.complete_callback(nonce, "code")
        assert connector.exchange_code.await_count == 1

    @pytest.mark.asyncio
    async def test_unknown_nonce_never_reaches_provider(self, manager, connector):
        with pytest.raises(AuthorizationFailed):
            await manager.complete_callback("forged", "code")
        connector.exchange_code.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_exchange_failure_is_wrapped(self, manager, connector):
        connector.exchange_code.side_effect = ProviderError("code exchange failed: invalid_grant")
        nonce = _state_from(manager.begin_authorization("user-1"))

        with pytest.raises(CodeExchangeFailed, match="invalid_grant") as info:
            await manager.complete_callback(nonce, "code-secret")
        assert "code-secret" not in str(info.value)
        assert await manager.store.get("user-1") is None

    @pytest.mark.asyncio
    async def test_missing_refresh_token_is_incomplete(self, manager, connector):
        connector.exchange_code.return_value = TokenGrant(
            access_token="A", refresh_token=None, expires_at=utcnow() + timedelta(hours=1)
        )
        nonce = _state_from(manager.begin_authorization("user-1"))

        with pytest.raises(IncompleteGrant):
            await manager.complete_callback(nonce, "code")
        assert await manager.store.get("user-1") is None

    @pytest.mark.asyncio
    async def test_introspection_failure_is_wrapped(self, manager, connector):
        connector.introspect.side_effect = ProviderError("token introspection failed: HTTP 500")
        nonce = _state_from(manager.begin_authorization("user-1"))

        with pytest.raises(CodeExchangeFailed):
            await manager.complete_callback(nonce, "code")


# ── Access token / refresh ─────────────────────────────────────────────────


class TestGetValidAccessToken:
    @pytest.mark.asyncio
    async def test_not_connected(self, manager):
        with pytest.raises(NotConnected):
            await manager.get_valid_access_token("user-2")

    @pytest.mark.asyncio
    async def test_fresh_token_skips_provider(self, manager, connector, cipher):
        await _seed(manager, cipher, expires_in=timedelta(minutes=6))

        assert await manager.get_valid_access_token("user-1") == "A"
        connector.refresh.assert_not_awaited()
        assert (await manager.store.get("user-1")).last_used_at is not None

    @pytest.mark.asyncio
    async def test_token_inside_buffer_is_refreshed(self, manager, connector, cipher):
        await _seed(manager, cipher, expires_in=timedelta(minutes=4))

        assert await manager.get_valid_access_token("user-1") == "A2"
        connector.refresh.assert_awaited_once_with("R")

    @pytest.mark.asyncio
    async def test_stale_token_refresh_persists_new_expiry(self, manager, connector, cipher):
        await _seed(manager, cipher, expires_in=timedelta(seconds=-10))
        new_expiry = utcnow() + timedelta(hours=1)
        connector.refresh.return_value = RefreshedToken(access_token="A2", expires_at=new_expiry)

        assert await manager.get_valid_access_token("user-1") == "A2"

        stored = await manager.store.get("user-1")
        assert cipher.decrypt(stored.encrypted_access_token) == "A2"
        assert cipher.decrypt(stored.encrypted_refresh_token) == "R"
        assert abs(stored.expires_at - new_expiry) < timedelta(seconds=1)

        # second call uses the stored token
        assert await manager.get_valid_access_token("user-1") == "A2"
        assert connector.refresh.await_count == 1

    @pytest.mark.asyncio
    async def test_rotated_refresh_token_is_persisted(self, manager, connector, cipher):
        await _seed(manager, cipher, expires_in=timedelta(seconds=-10))
        connector.refresh.return_value = RefreshedToken(
            access_token="A2", expires_at=utcnow() + timedelta(hours=1), refresh_token="R2"
        )

        await manager.get_valid_access_token("user-1")

        stored = await manager.store.get("user-1")
        assert cipher.decrypt(stored.encrypted_refresh_token) == "R2"

    @pytest.mark.asyncio
    async def test_refresh_failure_keeps_credential(self, manager, connector, cipher):
        seeded = await _seed(manager, cipher, expires_in=timedelta(seconds=-10))
        connector.refresh.side_effect = ProviderError("token refresh failed: invalid_grant")

        with pytest.raises(RefreshFailed):
            await manager.get_valid_access_token("user-1")

        stored = await manager.store.get("user-1")
        assert stored.encrypted_access_token == seeded.encrypted_access_token
        assert stored.encrypted_refresh_token == seeded.encrypted_refresh_token

    @pytest.mark.asyncio
    async def test_tampered_record_raises(self, manager, cipher):
        await manager.store.upsert(
            "user-1",
            encrypted_access_token="00:11:22",
            encrypted_refresh_token=cipher.encrypt("R"),
            expires_at=utcnow() + timedelta(hours=1),
            account_email="",
            scopes=[],
        )
        with pytest.raises(DecryptionError):
            await manager.get_valid_access_token("user-1")

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_refresh(self, manager, connector, cipher):
        await _seed(manager, cipher, expires_in=timedelta(seconds=-10))

        async def slow_refresh(refresh_token):
            await asyncio.sleep(0.05)
            return RefreshedToken(access_token="A2", expires_at=utcnow() + timedelta(hours=1))

        connector.refresh.side_effect = slow_refresh

        tokens = await asyncio.gather(
            *(manager.get_valid_access_token("user-1") for _ in range(3))
        )

        assert tokens == ["A2", "A2", "A2"]
        assert connector.refresh.await_count == 1


# ── Disconnect / status ────────────────────────────────────────────────────


class TestDisconnect:
    @pytest.mark.asyncio
    async def test_not_connected(self, manager):
        with pytest.raises(NotConnected):
            await manager.disconnect("user-2")

    @pytest.mark.asyncio
    async def test_revokes_and_deletes(self, manager, connector, cipher):
        await _seed(manager, cipher)

        assert await manager.disconnect("user-1") is True
        connector.revoke.assert_awaited_once_with("A")
        assert await manager.store.get("user-1") is None

    @pytest.mark.parametrize(
        "failure",
        [RevocationFailed("token revocation failed: invalid_token"), RuntimeError("network down")],
    )
    @pytest.mark.asyncio
    async def test_revoke_failure_still_deletes(self, manager, connector, cipher, failure):
        await _seed(manager, cipher)
        connector.revoke.side_effect = failure

        assert await manager.disconnect("user-1") is True
        assert await manager.store.get("user-1") is None

    @pytest.mark.asyncio
    async def test_undecryptable_token_still_deletes(self, manager, connector, cipher):
        await manager.store.upsert(
            "user-1",
            encrypted_access_token="garbage",
            encrypted_refresh_token=cipher.encrypt("R"),
            expires_at=utcnow() + timedelta(hours=1),
            account_email="",
            scopes=[],
        )

        assert await manager.disconnect("user-1") is True
        connector.revoke.assert_not_awaited()
        assert await manager.store.get("user-1") is None


class TestConnectionStatus:
    @pytest.mark.asyncio
    async def test_disconnected(self, manager):
        status = await manager.get_connection_status("user-1")
        assert status.connected is False
        assert status.email_address is None
        assert status.expires_at is None

    @pytest.mark.asyncio
    async def test_connected_has_no_token_material(self, manager, cipher):
        seeded = await _seed(manager, cipher)

        status = await manager.get_connection_status("user-1")
        dumped = status.model_dump()

        assert status.connected is True
        assert status.email_address == "user@gmail.com"
        assert status.scopes == ["scope"]
        assert status.expires_at == seeded.expires_at
        assert seeded.encrypted_access_token not in str(dumped)
        assert not any("token" in key for key in dumped)
