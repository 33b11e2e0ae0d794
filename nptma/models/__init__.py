"""Data models for nptma."""

from nptma.models.user import VerifiedIdentity, UserRecord
from nptma.models.outcome_event import OutcomeEvent, OutcomeEventType
from nptma.models.constants import ErrorCode

__all__ = [
    "VerifiedIdentity",
    "UserRecord",
    "OutcomeEvent",
    "OutcomeEventType",
    "ErrorCode",
]
