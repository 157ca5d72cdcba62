"""
Credential store — persistence boundary for encrypted Gmail credentials.

Exactly one row per user.  Writes are explicit upserts keyed by
``user_id``; token updates go out as a single UPDATE so a row is never
left holding a fresh access token next to a stale refresh token.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import List, Optional, Protocol, runtime_checkable

from sqlalchemy import delete, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from connectors.models import StoredCredential
from database.models import GmailCredential

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes even for timezone=True columns
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


@runtime_checkable
class CredentialStore(Protocol):
    async def get(self, user_id: str) -> Optional[StoredCredential]:
        ...

    async def upsert(
        self,
        user_id: str,
        *,
        encrypted_access_token: str,
        encrypted_refresh_token: str,
        expires_at: datetime,
        account_email: str,
        scopes: List[str],
    ) -> StoredCredential:
        ...

    async def update_access_token(
        self,
        user_id: str,
        *,
        encrypted_access_token: str,
        expires_at: datetime,
        encrypted_refresh_token: Optional[str] = None,
    ) -> bool:
        ...

    async def mark_used(self, user_id: str) -> None:
        ...

    async def delete(self, user_id: str) -> bool:
        ...


class SqlCredentialStore:
    """``CredentialStore`` over SQLAlchemy async sessions (PostgreSQL or SQLite)."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get(self, user_id: str) -> Optional[StoredCredential]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(GmailCredential).where(GmailCredential.user_id == user_id)
            )
            row = result.scalar_one_or_none()
            return self._to_model(row) if row else None

    async def upsert(
        self,
        user_id: str,
        *,
        encrypted_access_token: str,
        encrypted_refresh_token: str,
        expires_at: datetime,
        account_email: str,
        scopes: List[str],
    ) -> StoredCredential:
        """Create the user's credential, or overwrite it in place on re-link."""
        now = _utcnow()
        values = {
            "encrypted_access_token": encrypted_access_token,
            "encrypted_refresh_token": encrypted_refresh_token,
            "expires_at": expires_at,
            "account_email": account_email,
            "scopes": list(scopes),
            "updated_at": now,
        }
        async with self._session_factory() as session:
            insert = self._insert_for(session)
            stmt = (
                insert(GmailCredential)
                .values(user_id=user_id, created_at=now, **values)
                .on_conflict_do_update(index_elements=["user_id"], set_=values)
            )
            await session.execute(stmt)
            await session.commit()

            result = await session.execute(
                select(GmailCredential).where(GmailCredential.user_id == user_id)
            )
            row = result.scalar_one()
            logger.info("Stored Gmail credential for user %s", user_id)
            return self._to_model(row)

    async def update_access_token(
        self,
        user_id: str,
        *,
        encrypted_access_token: str,
        expires_at: datetime,
        encrypted_refresh_token: Optional[str] = None,
    ) -> bool:
        """Replace the access token (and a rotated refresh token). False if no row."""
        now = _utcnow()
        values = {
            "encrypted_access_token": encrypted_access_token,
            "expires_at": expires_at,
            "updated_at": now,
            "last_used_at": now,
        }
        if encrypted_refresh_token is not None:
            values["encrypted_refresh_token"] = encrypted_refresh_token

        async with self._session_factory() as session:
            result = await session.execute(
                update(GmailCredential)
                .where(GmailCredential.user_id == user_id)
                .values(**values)
            )
            await session.commit()
            return result.rowcount > 0

    async def mark_used(self, user_id: str) -> None:
        async with self._session_factory() as session:
            await session.execute(
                update(GmailCredential)
                .where(GmailCredential.user_id == user_id)
                .values(last_used_at=_utcnow())
            )
            await session.commit()

    async def delete(self, user_id: str) -> bool:
        async with self._session_factory() as session:
            result = await session.execute(
                delete(GmailCredential).where(GmailCredential.user_id == user_id)
            )
            await session.commit()
            return result.rowcount > 0

    # ── Helpers ─────────────────────────────────────────────────────────

    @staticmethod
    def _insert_for(session: AsyncSession):
        dialect = session.bind.dialect.name
        if dialect == "postgresql":
            return pg_insert
        if dialect == "sqlite":
            return sqlite_insert
        raise RuntimeError(f"Unsupported database dialect for upsert: {dialect}")

    @staticmethod
    def _to_model(row: GmailCredential) -> StoredCredential:
        return StoredCredential(
            user_id=row.user_id,
            encrypted_access_token=row.encrypted_access_token,
            encrypted_refresh_token=row.encrypted_refresh_token,
            expires_at=_aware(row.expires_at),
            account_email=row.account_email or "",
            scopes=list(row.scopes or []),
            created_at=_aware(row.created_at),
            updated_at=_aware(row.updated_at),
            last_used_at=_aware(row.last_used_at),
        )
