"""Bookkeeping records persisted alongside the corpus.

- SyncStatus: health of the reconciliation against one authority
- NotificationReason / SentNotification: de-duplication of emitted notifications
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from scheme_engine.utils.timestamps import ensure_utc


class SyncStatus(BaseModel):
    """Health and freshness of the corpus relative to one remote authority."""

    authority: str = Field(..., description="Authority identifier (its base URL)")
    corpus_version: int = Field(0, ge=0, description="Corpus version after the last cycle")
    authority_version: Optional[int] = Field(
        None, description="Manifest version last reconciled against"
    )
    last_success_at: Optional[datetime] = Field(None, description="Last completed cycle (UTC)")
    last_error_at: Optional[datetime] = Field(None, description="Last failed cycle (UTC)")
    error_message: Optional[str] = Field(None, description="Most recent error message")
    is_stale: bool = Field(False, description="Whether the corpus missed its last refresh")

    @field_validator("last_success_at", "last_error_at")
    @classmethod
    def validate_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(v)


class NotificationReason(str, Enum):
    """Why a notification request was produced."""

    NEW_ELIGIBILITY = "new_eligibility"
    LOST_ELIGIBILITY = "lost_eligibility"
    SCHEME_REMOVED = "scheme_removed"
    DEADLINE_REMINDER = "deadline_reminder"


class SentNotification(BaseModel):
    """Record of a notification handed to the delivery collaborator.

    ``dedupe_key`` identifies the occurrence being notified: the scheme content
    hash for eligibility changes and removals, the deadline for reminders.
    """

    user_id: str
    scheme_id: str
    reason: NotificationReason
    dedupe_key: str
    sent_at: datetime

    @field_validator("sent_at")
    @classmethod
    def validate_utc(cls, v: datetime) -> datetime:
        return ensure_utc(v)

    model_config = {"json_schema_extra": {"example": {
        "user_id": "user-42",
        "scheme_id": "IGNOAPS",
        "reason": "deadline_reminder",
        "dedupe_key": "2025-12-31",
        "sent_at": "2025-12-24T06:00:00Z",
    }}}
