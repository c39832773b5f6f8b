"""Pydantic models for the ``evaluators`` table."""

from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field

from certengine.models.enums import EvaluatorStatus


class Evaluator(BaseModel):
    """Full evaluator record returned from the database."""
    model_config = ConfigDict(from_attributes=True)

    id: UUID = Field(default_factory=uuid4)
    user_id: UUID
    status: EvaluatorStatus = EvaluatorStatus.active
    competencies: set[UUID] = Field(default_factory=set)
    capacity: int | None = None  # None -> settings.DEFAULT_EVALUATOR_CAPACITY

    @property
    def is_active(self) -> bool:
        return self.status == EvaluatorStatus.active

    def can_evaluate(self, competency_id: UUID) -> bool:
        return competency_id in self.competencies


class EvaluatorWorkload(BaseModel):
    """Assignment statistics for one evaluator."""
    evaluator_id: UUID
    capacity: int
    total_assigned: int = 0
    pending: int = 0
    completed: int = 0
    evaluated_recently: int = 0
    remaining_capacity: int = 0
