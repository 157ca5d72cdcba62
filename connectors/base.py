"""
BaseConnector — abstract interface for OAuth2 provider connectors.

The token manager depends only on this interface.  Every method that
talks to the provider is a network call and reports failure by raising
``ProviderError``; connectors do not retry internally.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import List

from connectors.models import RefreshedToken, TokenGrant, TokenInfo


class BaseConnector(ABC):
    """Abstract base for OAuth2 connectors."""

    # ── Identity ────────────────────────────────────────────────────────
    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Unique slug: 'gmail'."""
        ...

    @property
    @abstractmethod
    def display_name(self) -> str:
        """Human-readable: 'Gmail'."""
        ...

    @property
    @abstractmethod
    def scopes(self) -> List[str]:
        """Minimum OAuth scopes required by this connector."""
        ...

    # ── OAuth flow ──────────────────────────────────────────────────────

    @abstractmethod
    def build_authorization_url(self, scopes: List[str], nonce: str) -> str:
        """
        Build the provider's OAuth2 authorization URL.

        Parameters
        ----------
        scopes : list[str]
            Permissions to request.
        nonce : str
            Single-use CSRF state issued by the state registry.

        Returns
        -------
        The full URL to redirect the user to.  Must request offline access
        and force the consent prompt so a refresh token is always granted.
        """
        ...

    @abstractmethod
    async def exchange_code(self, code: str) -> TokenGrant:
        """Exchange the authorization code for an access + refresh token."""
        ...

    @abstractmethod
    async def introspect(self, access_token: str) -> TokenInfo:
        """Return the linked account's email and the scopes actually granted."""
        ...

    @abstractmethod
    async def refresh(self, refresh_token: str) -> RefreshedToken:
        """Mint a new access token from a refresh token."""
        ...

    @abstractmethod
    async def revoke(self, access_token: str) -> None:
        """Revoke the token at the provider. Raises ``RevocationFailed``."""
        ...
