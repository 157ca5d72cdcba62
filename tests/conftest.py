"""
Shared fixtures.

Settings are validated at import time, so the required environment is
populated before any project module is imported.
"""

import os

os.environ.setdefault("GOOGLE_CLIENT_ID", "test-client-id.apps.googleusercontent.com")
os.environ.setdefault("GOOGLE_CLIENT_SECRET", "test-client-secret")
os.environ.setdefault("GOOGLE_REDIRECT_URI", "http://localhost:8000/api/v1/connectors/gmail/callback")
os.environ.setdefault("ENCRYPTION_KEY", "0123456789abcdef" * 4)
os.environ.setdefault("JWT_SECRET", "test-jwt-secret")

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock
from urllib.parse import urlencode

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from connectors.base import BaseConnector
from connectors.credential_store import SqlCredentialStore
from connectors.encryption import TokenCipher
from connectors.models import RefreshedToken, TokenGrant, TokenInfo
from connectors.state_store import InMemoryStateRegistry
from connectors.token_manager import TokenManager
from database.models import Base

TEST_KEY_HEX = "0123456789abcdef" * 4
SEND_SCOPE = "https://www.googleapis.com/auth/gmail.send"
READONLY_SCOPE = "https://www.googleapis.com/auth/gmail.readonly"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def make_connector() -> MagicMock:
    """A BaseConnector double whose async methods are AsyncMocks."""
    connector = MagicMock(spec=BaseConnector)
    connector.provider_name = "gmail"
    connector.display_name = "Gmail"
    connector.scopes = [SEND_SCOPE, READONLY_SCOPE]
    connector.build_authorization_url.side_effect = lambda scopes, nonce: (
        "https://accounts.google.com/o/oauth2/v2/auth?"
        + urlencode({"scope": " ".join(scopes), "state": nonce})
    )
    connector.exchange_code = AsyncMock(
        return_value=TokenGrant(
            access_token="A",
            refresh_token="R",
            expires_at=utcnow() + timedelta(seconds=3600),
        )
    )
    connector.introspect = AsyncMock(
        return_value=TokenInfo(
            account_email="user@gmail.com",
            granted_scopes=[SEND_SCOPE, READONLY_SCOPE],
        )
    )
    connector.refresh = AsyncMock(
        return_value=RefreshedToken(
            access_token="A2",
            expires_at=utcnow() + timedelta(seconds=3600),
        )
    )
    connector.revoke = AsyncMock(return_value=None)
    return connector


@pytest.fixture
def cipher() -> TokenCipher:
    return TokenCipher.from_hex(TEST_KEY_HEX)


@pytest.fixture
def state_registry() -> InMemoryStateRegistry:
    return InMemoryStateRegistry()


@pytest.fixture
def connector() -> MagicMock:
    return make_connector()


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'credentials.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
def store(session_factory) -> SqlCredentialStore:
    return SqlCredentialStore(session_factory)


@pytest.fixture
def manager(connector, state_registry, store, cipher) -> TokenManager:
    return TokenManager(
        connector=connector,
        state_registry=state_registry,
        store=store,
        cipher=cipher,
    )
