"""Pydantic models for the ``certificates`` table and expiry reporting."""

from datetime import datetime
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field

from certengine.models.enums import CertificateStatus


class Certificate(BaseModel):
    """Full certificate record returned from the database.

    ``holder_id``, ``competency_id`` and ``level`` are a snapshot taken at
    issuance so expiry sweeps do not need to walk back to the candidate.
    """
    model_config = ConfigDict(from_attributes=True)

    id: UUID = Field(default_factory=uuid4)
    process_id: UUID
    holder_id: UUID
    competency_id: UUID
    level: int
    folio: str
    status: CertificateStatus = CertificateStatus.active
    issued_at: datetime
    expires_at: datetime | None = None  # None -> never expires
    issued_by: UUID | None = None


class CertificateVerification(BaseModel):
    """Public verification answer for a folio."""
    folio: str
    valid: bool
    status: CertificateStatus
    issued_at: datetime
    expires_at: datetime | None = None
    is_expired: bool


class CompetencyExpiryCount(BaseModel):
    competency_id: UUID
    count: int


class ExpiredCertificatesSummary(BaseModel):
    """Batch summary sent to administrators after an expiry sweep."""
    total_expired: int
    by_competency: list[CompetencyExpiryCount] = []
    folios: list[str] = []
    generated_at: datetime
