"""
Pydantic schemas exchanged between the token manager, the credential store
and the provider connector.
"""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


# ═══════════════════════════════════════════════════════════════════════════════
# Provider results
# ═══════════════════════════════════════════════════════════════════════════════


class TokenGrant(BaseModel):
    """Result of an authorization-code exchange."""

    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    expires_at: datetime


class TokenInfo(BaseModel):
    """Identity and granted scopes of an access token."""

    account_email: str = ""
    granted_scopes: List[str] = Field(default_factory=list)


class RefreshedToken(BaseModel):
    access_token: str
    expires_at: datetime
    refresh_token: Optional[str] = None  # set only when the provider rotates it


# ═══════════════════════════════════════════════════════════════════════════════
# Persisted credential
# ═══════════════════════════════════════════════════════════════════════════════


class StoredCredential(BaseModel):
    """
    One user's credential as held by the store.

    Token fields are ciphertext.  This model is never returned over HTTP;
    use ``ConnectionStatus`` for that.
    """

    user_id: str
    encrypted_access_token: str
    encrypted_refresh_token: str
    expires_at: datetime
    account_email: str = ""
    scopes: List[str] = Field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    last_used_at: Optional[datetime] = None


class ConnectionStatus(BaseModel):
    """Read-only projection of a credential. Never carries token material."""

    connected: bool
    email_address: Optional[str] = None
    scopes: List[str] = Field(default_factory=list)
    connected_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
