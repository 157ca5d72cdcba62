"""
JWT-style token creation and verification.

Tokens are base64-encoded JSON payloads signed with HMAC-SHA256.
Secret key is loaded from ``config.jwt_secret`` (env var: ``JWT_SECRET``).
"""

from __future__ import annotations

import hashlib
import hmac
import json
import time
from base64 import b64decode, b64encode
from typing import Optional

from config.settings import config


class InvalidToken(Exception):
    """Raised when a bearer token is malformed, forged or expired."""


def _sign(raw: bytes) -> str:
    return hmac.new(config.jwt_secret.encode(), raw, hashlib.sha256).hexdigest()


def create_token(user_id: str, *, expires_in: Optional[int] = None) -> str:
    """Create a signed token containing ``user_id`` and expiry."""
    ttl = config.jwt_expiry_seconds if expires_in is None else expires_in
    payload = {"user_id": user_id, "exp": int(time.time()) + ttl}
    raw = json.dumps(payload).encode()
    return b64encode(raw).decode() + "." + _sign(raw)


def verify_token(token: str) -> str:
    """
    Verify token and return ``user_id``.

    Raises ``InvalidToken`` on bad format, signature or expiry.
    """
    parts = token.split(".", 1)
    if len(parts) != 2:
        raise InvalidToken("bad format")
    try:
        raw = b64decode(parts[0], validate=True)
    except ValueError:
        raise InvalidToken("bad format") from None
    if not hmac.compare_digest(parts[1], _sign(raw)):
        raise InvalidToken("bad signature")
    try:
        payload = json.loads(raw)
    except ValueError:
        raise InvalidToken("bad payload") from None
    if not isinstance(payload, dict) or not payload.get("user_id"):
        raise InvalidToken("bad payload")
    if payload.get("exp", 0) < time.time():
        raise InvalidToken("token expired")
    return str(payload["user_id"])
