"""
GmailConnector — OAuth2 web flow for Gmail.

Uses Google's OAuth2 endpoints to get per-user Gmail send/read access
without the user sharing any credentials with the application.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Type
from urllib.parse import urlencode

import httpx

from connectors.base import BaseConnector
from connectors.errors import ProviderError, RevocationFailed
from connectors.models import RefreshedToken, TokenGrant, TokenInfo

logger = logging.getLogger(__name__)

# Google OAuth2 endpoints
_GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
_GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
_GOOGLE_TOKENINFO_URL = "https://oauth2.googleapis.com/tokeninfo"
_GOOGLE_REVOKE_URL = "https://oauth2.googleapis.com/revoke"

GMAIL_SEND_SCOPE = "https://www.googleapis.com/auth/gmail.send"
GMAIL_READONLY_SCOPE = "https://www.googleapis.com/auth/gmail.readonly"

_DEFAULT_EXPIRES_IN = 3600


def _expiry(expires_in: Any) -> datetime:
    try:
        seconds = int(expires_in)
    except (TypeError, ValueError):
        seconds = _DEFAULT_EXPIRES_IN
    return datetime.now(timezone.utc) + timedelta(seconds=seconds)


def _provider_message(resp: httpx.Response) -> str:
    """Google's error text for a failed response; never echoes the request."""
    try:
        body = resp.json()
    except ValueError:
        return f"HTTP {resp.status_code}"
    if not isinstance(body, dict):
        return f"HTTP {resp.status_code}"
    error = body.get("error")
    if isinstance(error, dict):  # Google API style envelope
        return str(error.get("message") or f"HTTP {resp.status_code}")
    description = body.get("error_description")
    if error and description:
        return f"{error}: {description}"
    return str(error or description or f"HTTP {resp.status_code}")


class GmailConnector(BaseConnector):
    """OAuth2 connector for Gmail."""

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
        *,
        timeout: float = 5.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._client_id = client_id
        self._client_secret = client_secret
        self._redirect_uri = redirect_uri
        self._timeout = timeout
        self._transport = transport

    @property
    def provider_name(self) -> str:
        return "gmail"

    @property
    def display_name(self) -> str:
        return "Gmail"

    @property
    def scopes(self) -> List[str]:
        return [GMAIL_SEND_SCOPE, GMAIL_READONLY_SCOPE]

    def build_authorization_url(self, scopes: List[str], nonce: str) -> str:
        params = {
            "client_id": self._client_id,
            "redirect_uri": self._redirect_uri,
            "response_type": "code",
            "scope": " ".join(scopes),
            "access_type": "offline",       # gets refresh_token
            "prompt": "consent",            # force consent to always get refresh_token
            "state": nonce,
        }
        return f"{_GOOGLE_AUTH_URL}?{urlencode(params)}"

    async def exchange_code(self, code: str) -> TokenGrant:
        """Exchange auth code for tokens."""
        data = await self._post_form(
            _GOOGLE_TOKEN_URL,
            {
                "code": code,
                "client_id": self._client_id,
                "client_secret": self._client_secret,
                "redirect_uri": self._redirect_uri,
                "grant_type": "authorization_code",
            },
            action="code exchange",
        )
        return TokenGrant(
            access_token=data.get("access_token") or None,
            refresh_token=data.get("refresh_token") or None,
            expires_at=_expiry(data.get("expires_in", _DEFAULT_EXPIRES_IN)),
        )

    async def introspect(self, access_token: str) -> TokenInfo:
        data = await self._post_form(
            _GOOGLE_TOKENINFO_URL,
            {"access_token": access_token},
            action="token introspection",
        )
        return TokenInfo(
            account_email=data.get("email", ""),
            granted_scopes=data.get("scope", "").split(),
        )

    async def refresh(self, refresh_token: str) -> RefreshedToken:
        """Use refresh token to get a new access token."""
        data = await self._post_form(
            _GOOGLE_TOKEN_URL,
            {
                "client_id": self._client_id,
                "client_secret": self._client_secret,
                "refresh_token": refresh_token,
                "grant_type": "refresh_token",
            },
            action="token refresh",
        )
        if not data.get("access_token"):
            raise ProviderError("token refresh failed: no access token in response")
        return RefreshedToken(
            access_token=data["access_token"],
            expires_at=_expiry(data.get("expires_in", _DEFAULT_EXPIRES_IN)),
            refresh_token=data.get("refresh_token") or None,
        )

    async def revoke(self, access_token: str) -> None:
        """Revoke the token at Google."""
        await self._post_form(
            _GOOGLE_REVOKE_URL,
            {"token": access_token},
            action="token revocation",
            error_cls=RevocationFailed,
        )

    # ── Helpers ─────────────────────────────────────────────────────────

    async def _post_form(
        self,
        url: str,
        form: Dict[str, str],
        *,
        action: str,
        error_cls: Type[ProviderError] = ProviderError,
    ) -> Dict[str, Any]:
        # Secrets travel in the form body only, so URLs in httpx errors stay clean.
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                resp = await client.post(url, data=form)
        except httpx.HTTPError as exc:
            logger.warning("Google %s request failed: %s", action, type(exc).__name__)
            raise error_cls(f"{action} failed: {type(exc).__name__}") from None

        if resp.status_code != 200:
            message = _provider_message(resp)
            logger.warning("Google %s rejected (%d): %s", action, resp.status_code, message)
            raise error_cls(f"{action} failed: {message}")

        if not resp.content:
            return {}
        try:
            data = resp.json()
        except ValueError:
            raise error_cls(f"{action} failed: invalid JSON response") from None
        return data if isinstance(data, dict) else {}
