"""
Connector API routes — Gmail OAuth authorize/callback, status, disconnect.

Route prefix: /api/v1/connectors
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import RedirectResponse

from auth.dependencies import get_current_user_id
from config.settings import config
from connectors.errors import NotConnected, OAuthError
from connectors.models import ConnectionStatus
from connectors.registry import get_token_manager
from connectors.token_manager import TokenManager

logger = logging.getLogger(__name__)

router = APIRouter(tags=["connectors"])


def _redirect_to(base: str, **params: str) -> RedirectResponse:
    sep = "&" if "?" in base else "?"
    return RedirectResponse(f"{base}{sep}{urlencode(params)}", status_code=status.HTTP_302_FOUND)


# ── Routes ─────────────────────────────────────────────────────────────


@router.get("/gmail/auth-url")
async def get_auth_url(
    user_id: str = Depends(get_current_user_id),
    manager: TokenManager = Depends(get_token_manager),
) -> Dict[str, str]:
    """
    Get the Gmail OAuth authorization URL.

    Frontend should open this URL in a popup window.
    """
    auth_url = manager.begin_authorization(user_id)
    return {"auth_url": auth_url, "provider": manager.connector.provider_name}


@router.get("/gmail/authorize")
async def authorize(
    user_id: str = Depends(get_current_user_id),
    manager: TokenManager = Depends(get_token_manager),
) -> RedirectResponse:
    """Redirect straight to Google's consent screen."""
    return RedirectResponse(manager.begin_authorization(user_id), status_code=status.HTTP_302_FOUND)


@router.get("/gmail/callback")
async def oauth_callback(
    state: str = Query(...),
    code: Optional[str] = Query(None),
    error: Optional[str] = Query(None),
    error_description: Optional[str] = Query(None),
    manager: TokenManager = Depends(get_token_manager),
) -> RedirectResponse:
    """
    OAuth callback — Google redirects here after consent.

    Exactly one of ``code`` or ``error`` must be present.  Provider errors
    (e.g. the user denied consent) never reach the token manager.
    """
    if bool(code) == bool(error):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Exactly one of 'code' or 'error' is required",
        )

    if error:
        logger.info("OAuth provider returned error: %s", error)
        return _redirect_to(config.oauth_error_redirect, error=error_description or error)

    try:
        credential = await manager.complete_callback(state, code)
    except OAuthError as exc:
        return _redirect_to(config.oauth_error_redirect, error=str(exc))

    logger.info("OAuth connected: user=%s account=%s", credential.user_id, credential.account_email)
    return _redirect_to(config.oauth_success_redirect, success="true")


@router.get("/gmail/status", response_model=ConnectionStatus)
async def get_status(
    user_id: str = Depends(get_current_user_id),
    manager: TokenManager = Depends(get_token_manager),
) -> ConnectionStatus:
    """Connection status for the authenticated user. Never includes tokens."""
    return await manager.get_connection_status(user_id)


@router.delete("/gmail/disconnect")
async def disconnect(
    user_id: str = Depends(get_current_user_id),
    manager: TokenManager = Depends(get_token_manager),
) -> Dict[str, Any]:
    """Revoke (best-effort) and delete the Gmail connection."""
    try:
        await manager.disconnect(user_id)
    except NotConnected as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    return {"success": True, "message": "Gmail account disconnected successfully"}
