"""Pydantic models for the ``candidates`` table.

A candidate is one user's request for one competency at one level.
"""

from datetime import datetime
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field

from certengine.models.enums import CandidateStatus


class CandidateCreate(BaseModel):
    """Payload for requesting a certification."""
    user_id: UUID
    competency_id: UUID
    level: int = Field(ge=1)


class Candidate(BaseModel):
    """Full candidate record returned from the database."""
    model_config = ConfigDict(from_attributes=True)

    id: UUID = Field(default_factory=uuid4)
    user_id: UUID
    competency_id: UUID
    level: int
    status: CandidateStatus = CandidateStatus.pending
    requested_at: datetime
