"""Pydantic models for the ``competencies`` table."""

from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field

from certengine.core.constants import DEFAULT_EVALUATION_DAYS, DEFAULT_REQUIRED_DOCUMENTS


class Competency(BaseModel):
    """A certifiable competency standard."""
    model_config = ConfigDict(from_attributes=True)

    id: UUID = Field(default_factory=uuid4)
    code: str
    name: str
    levels: list[int] = Field(default_factory=lambda: [1])
    duration_days: int | None = None  # evaluation deadline after assignment
    validity_years: int | None = None  # None -> settings default, 0 -> never expires
    required_documents: list[str] = Field(default_factory=list)
    is_active: bool = True

    @property
    def evaluation_days(self) -> int:
        return self.duration_days or DEFAULT_EVALUATION_DAYS

    @property
    def required_kinds(self) -> list[str]:
        return self.required_documents or list(DEFAULT_REQUIRED_DOCUMENTS)
