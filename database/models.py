"""
SQLAlchemy ORM models.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import JSON, Column, DateTime, String, Text, UniqueConstraint, Uuid
from sqlalchemy.dialects.postgresql import ARRAY
from sqlalchemy.orm import DeclarativeBase


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class GmailCredential(Base):
    """Encrypted OAuth credential linking one user to one Gmail account."""

    __tablename__ = "gmail_credentials"
    __table_args__ = (UniqueConstraint("user_id", name="uq_gmail_credentials_user_id"),)

    credential_id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(String(128), nullable=False)
    encrypted_access_token = Column(Text, nullable=False)
    encrypted_refresh_token = Column(Text, nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    account_email = Column(String(255), nullable=False, default="")
    scopes = Column(ARRAY(Text).with_variant(JSON(), "sqlite"), nullable=False, default=list)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)
    last_used_at = Column(DateTime(timezone=True))
