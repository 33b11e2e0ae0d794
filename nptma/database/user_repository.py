"""Repository for mini-app user records."""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import Table, func, insert, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from nptma.database.models import as_utc, row_to_record
from nptma.models.user import UserRecord, VerifiedIdentity

logger = logging.getLogger(__name__)

# Dialects with INSERT ... ON CONFLICT DO UPDATE
_UPSERT_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


class StorageError(RuntimeError):
    """A storage read or write failed; the current request must abort."""


def _optional_text(value: Optional[str]) -> Optional[str]:
    return value or None


class UserRepository:
    """Repository for UserRecord operations.

    Each method runs in its own short transaction, so every call can be
    retried independently.
    """

    def __init__(self, engine: Engine, table: Table):
        self.engine = engine
        self.table = table

    def _fail(self, operation: str, user_id: Optional[int], e: Exception) -> StorageError:
        target = f" for user {user_id}" if user_id is not None else ""
        logger.error(f"Failed to {operation}{target}: {type(e).__name__}: {str(e)}")
        return StorageError(f"Failed to {operation}")

    def get(self, user_id: int) -> Optional[UserRecord]:
        """Get user record by Telegram user id."""
        try:
            with self.engine.connect() as conn:
                row = conn.execute(select(self.table).where(self.table.c.user_id == user_id)).first()
        except SQLAlchemyError as e:
            raise self._fail("read user", user_id, e) from e
        return row_to_record(row) if row else None

    def get_first_seen_at(self, user_id: int) -> Optional[datetime]:
        """Return `first_seen_at` for a user, or None if the user is new."""
        try:
            with self.engine.connect() as conn:
                value = conn.execute(
                    select(self.table.c.first_seen_at).where(self.table.c.user_id == user_id)
                ).scalar()
        except SQLAlchemyError as e:
            raise self._fail("read first_seen_at", user_id, e) from e
        return as_utc(value)

    def upsert_seen(
        self,
        user_id: int,
        username: Optional[str],
        first_name: Optional[str],
        last_name: Optional[str],
        first_seen_at: datetime,
        last_seen_at: datetime,
    ) -> None:
        """Insert the user or refresh names and `last_seen_at`.

        `first_seen_at` is only written when the row is created; an existing
        value is never overwritten.
        """
        values = {
            "user_id": user_id,
            "username": _optional_text(username),
            "first_name": _optional_text(first_name),
            "last_name": _optional_text(last_name),
            "first_seen_at": first_seen_at,
            "last_seen_at": last_seen_at,
        }
        refreshed = {k: v for k, v in values.items() if k not in ("user_id", "first_seen_at")}

        try:
            with self.engine.begin() as conn:
                dialect_insert = _UPSERT_INSERTS.get(conn.dialect.name)
                if dialect_insert is not None:
                    stmt = dialect_insert(self.table).values(**values)
                    stmt = stmt.on_conflict_do_update(
                        index_elements=[self.table.c.user_id],
                        set_={name: stmt.excluded[name] for name in refreshed},
                    )
                    conn.execute(stmt)
                    return

                exists = conn.execute(
                    select(self.table.c.user_id).where(self.table.c.user_id == user_id)
                ).first()
                if exists:
                    conn.execute(update(self.table).where(self.table.c.user_id == user_id).values(**refreshed))
                else:
                    conn.execute(insert(self.table).values(**values))
        except SQLAlchemyError as e:
            raise self._fail("upsert user", user_id, e) from e

    def record_seen(self, identity: VerifiedIdentity, now: datetime) -> datetime:
        """Record a verified request for `identity`.

        Reads the existing `first_seen_at` and carries it forward, or uses
        `now` for a first observation. Returns the effective `first_seen_at`.
        """
        first_seen_at = self.get_first_seen_at(identity.id) or now
        self.upsert_seen(
            user_id=identity.id,
            username=identity.username,
            first_name=identity.first_name,
            last_name=identity.last_name,
            first_seen_at=first_seen_at,
            last_seen_at=now,
        )
        return first_seen_at

    def count_all(self) -> int:
        """Count all user rows (uncached full aggregate)."""
        try:
            with self.engine.connect() as conn:
                total = conn.execute(select(func.count()).select_from(self.table)).scalar()
        except SQLAlchemyError as e:
            raise self._fail("count users", None, e) from e
        return int(total or 0)

    def get_last_lead_at(self, user_id: int) -> Optional[datetime]:
        """Return when the user's last lead was dispatched, if ever."""
        try:
            with self.engine.connect() as conn:
                value = conn.execute(
                    select(self.table.c.last_lead_at).where(self.table.c.user_id == user_id)
                ).scalar()
        except SQLAlchemyError as e:
            raise self._fail("read last_lead_at", user_id, e) from e
        return as_utc(value)

    def set_last_lead_at(self, user_id: int, lead_at: datetime) -> None:
        """Stamp the time of a dispatched lead on an existing user row."""
        try:
            with self.engine.begin() as conn:
                conn.execute(
                    update(self.table).where(self.table.c.user_id == user_id).values(last_lead_at=lead_at)
                )
        except SQLAlchemyError as e:
            raise self._fail("update last_lead_at", user_id, e) from e
