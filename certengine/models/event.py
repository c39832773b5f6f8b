"""Structured domain events handed to the event sink."""

from datetime import datetime
from typing import Any
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from certengine.models.enums import EventName


class DomainEvent(BaseModel):
    id: UUID = Field(default_factory=uuid4)
    name: EventName
    entity_id: UUID
    related_user_id: UUID | None = None
    occurred_at: datetime
    data: dict[str, Any] = Field(default_factory=dict)
