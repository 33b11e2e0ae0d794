"""Outcome event model for the structured request log."""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field


class OutcomeEventType(str, Enum):
    """Terminal outcome of a gateway request."""
    VALIDATE_OK = "validate_ok"
    VALIDATE_FAIL = "validate_fail"
    LEAD_OK = "lead_ok"
    LEAD_FAIL = "lead_fail"


class OutcomeEvent(BaseModel):
    """One log record per terminal outcome.

    Carries nothing but the event type, the user id and a timestamp: the
    signed payload and request bodies must never reach the logs.
    """

    event_type: OutcomeEventType = Field(..., description="Outcome type")
    user_id: Optional[int] = Field(None, description="Telegram user id, if verified")
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="When the outcome was recorded (UTC)",
    )

    class Config:
        """Pydantic configuration."""
        use_enum_values = True

    def to_log_line(self) -> str:
        """Serialize as a compact JSON object."""
        return self.model_dump_json()
