"""SQLAlchemy table definitions for nptma.

The users table name is deployment configuration (`DB_TABLE`), so the table
is built by a cached factory instead of a fixed declarative class.
"""

from datetime import datetime, timezone
from functools import lru_cache
from typing import Optional

from sqlalchemy import BigInteger, Column, DateTime, MetaData, String, Table

from nptma.models.user import UserRecord

DEFAULT_USERS_TABLE = "tma_users"

metadata = MetaData()


@lru_cache(maxsize=None)
def users_table(name: str = DEFAULT_USERS_TABLE) -> Table:
    """Return the users Table for `name`, registering it once on `metadata`."""
    return Table(
        name,
        metadata,
        Column("user_id", BigInteger, primary_key=True, autoincrement=False),
        Column("username", String, nullable=True),
        Column("first_name", String, nullable=True),
        Column("last_name", String, nullable=True),
        Column("first_seen_at", DateTime(timezone=True), nullable=False),
        Column("last_seen_at", DateTime(timezone=True), nullable=False),
        Column("last_lead_at", DateTime(timezone=True), nullable=True),
    )


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes (SQLite drops tzinfo on the way back)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def row_to_record(row) -> UserRecord:
    """Convert a result row into a UserRecord."""
    return UserRecord(
        user_id=row.user_id,
        username=row.username,
        first_name=row.first_name,
        last_name=row.last_name,
        first_seen_at=as_utc(row.first_seen_at),
        last_seen_at=as_utc(row.last_seen_at),
        last_lead_at=as_utc(row.last_lead_at),
    )
