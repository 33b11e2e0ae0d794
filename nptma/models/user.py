"""User data models for nptma."""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field


class VerifiedIdentity(BaseModel):
    """Identity claim extracted from a verified Telegram initData payload.

    Lives for one request only; never persisted as-is.
    """

    id: int = Field(..., description="Telegram user id")
    first_name: str = Field("", description="First name as reported by Telegram")
    last_name: str = Field("", description="Last name as reported by Telegram")
    username: str = Field("", description="Telegram @handle without the @")
    photo_url: str = Field("", description="Avatar URL")


class UserRecord(BaseModel):
    """Persisted mini-app user, one row per Telegram user id."""

    user_id: int = Field(..., description="Telegram user id (primary key)")
    username: Optional[str] = Field(None, description="Last observed username")
    first_name: Optional[str] = Field(None, description="Last observed first name")
    last_name: Optional[str] = Field(None, description="Last observed last name")
    first_seen_at: datetime = Field(..., description="First verified request (never overwritten)")
    last_seen_at: datetime = Field(..., description="Most recent verified request")
    last_lead_at: Optional[datetime] = Field(None, description="Last successfully dispatched lead")
