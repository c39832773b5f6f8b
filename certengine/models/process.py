"""Pydantic models for the ``processes`` and ``evaluations`` tables.

Also holds the result objects returned by the synchronous process
operations (document check, assignment, evaluation submission).
"""

from datetime import datetime
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field

from certengine.models.certificate import Certificate
from certengine.models.enums import EvaluationResult, ProcessStage


class Process(BaseModel):
    """Full process record returned from the database."""
    model_config = ConfigDict(from_attributes=True)

    id: UUID = Field(default_factory=uuid4)
    candidate_id: UUID
    stage: ProcessStage = ProcessStage.requested
    evaluator_id: UUID | None = None
    result: EvaluationResult | None = None
    notes: str | None = None
    started_at: datetime
    assigned_at: datetime | None = None
    evaluated_at: datetime | None = None
    ended_at: datetime | None = None
    updated_at: datetime | None = None
    quarantine_reason: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.stage.is_terminal


class EvaluationSubmit(BaseModel):
    """Payload submitted by the assigned evaluator."""
    result: EvaluationResult
    notes: str | None = None
    score: float | None = None
    comments: str | None = None
    recommendations: str | None = None


class Evaluation(BaseModel):
    """Evaluation detail record, one per submission."""
    model_config = ConfigDict(from_attributes=True)

    id: UUID = Field(default_factory=uuid4)
    process_id: UUID
    evaluator_id: UUID
    result: EvaluationResult
    score: float | None = None
    comments: str | None = None
    recommendations: str | None = None
    created_at: datetime


class AssignmentRequest(BaseModel):
    evaluator_id: UUID
    note: str | None = None


class AssignmentResult(BaseModel):
    """Outcome of a successful evaluator assignment."""
    process: Process
    evaluator_id: UUID
    evaluator_notified: bool = False
    candidate_notified: bool = False


class EvaluationOutcome(BaseModel):
    """Outcome of a successful evaluation submission."""
    process: Process
    evaluation: Evaluation
    certificate: Certificate | None = None
    certificate_pending: bool = False  # approved, issuance retried by the sweep
    candidate_notified: bool = False


class DocumentStatus(BaseModel):
    """Document completeness of a process's candidate."""
    process_id: UUID
    required: list[str]
    submitted: list[str]
    pending: list[str]
    complete: bool
    stage: ProcessStage
