"""Pydantic models for notifications and the ``notification_log`` table.

The log is append-only and is the dedup ledger's source of truth.
Payloads are structured; rendering them is the notifier's concern.
"""

from datetime import datetime
from typing import Any
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field

from certengine.models.enums import NotificationKind


class NotificationPayload(BaseModel):
    """Structured notification handed to the notifier."""
    kind: NotificationKind
    recipient_id: UUID
    subject_id: UUID | None = None  # process or certificate the notice is about
    data: dict[str, Any] = Field(default_factory=dict)


class NotificationLogEntry(BaseModel):
    """One successful send."""
    model_config = ConfigDict(from_attributes=True)

    id: UUID = Field(default_factory=uuid4)
    recipient_id: UUID
    kind: NotificationKind
    sent_at: datetime
    subject_id: UUID | None = None  # informational, never matched on
