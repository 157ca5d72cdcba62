"""
Wiring — builds the process-wide ``TokenManager`` from settings.

Routes take it through ``Depends(get_token_manager)`` so tests can swap it
with ``app.dependency_overrides``.
"""

from __future__ import annotations

import logging
from typing import Optional

from config.settings import config
from connectors.credential_store import SqlCredentialStore
from connectors.encryption import get_token_cipher
from connectors.gmail import GmailConnector
from connectors.state_store import InMemoryStateRegistry
from connectors.token_manager import TokenManager

logger = logging.getLogger(__name__)

_token_manager: Optional[TokenManager] = None


def build_token_manager() -> TokenManager:
    from database.session import async_session_factory

    connector = GmailConnector(
        config.google_client_id,
        config.google_client_secret,
        config.google_redirect_uri,
        timeout=config.oauth_http_timeout_seconds,
    )
    manager = TokenManager(
        connector=connector,
        state_registry=InMemoryStateRegistry(ttl_seconds=config.oauth_state_ttl_seconds),
        store=SqlCredentialStore(async_session_factory),
        cipher=get_token_cipher(),
        refresh_buffer_seconds=config.token_refresh_buffer_seconds,
    )
    logger.info("Connector registered: %s (%s)", connector.display_name, connector.provider_name)
    return manager


def get_token_manager() -> TokenManager:
    """Return the singleton manager, building it on first use."""
    global _token_manager
    if _token_manager is None:
        _token_manager = build_token_manager()
    return _token_manager
