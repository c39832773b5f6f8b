"""Response models for sweep runs.

These are reporting schemas, not direct table mappings.
"""

from datetime import datetime
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from certengine.models.enums import JobKind, SweepStatus


class JobReport(BaseModel):
    """Counters for one job class within a sweep."""
    kind: JobKind
    examined: int = 0
    sent: int = 0
    skipped: int = 0
    failed: int = 0
    quarantined: int = 0
    duration_ms: int = 0


class SweepReport(BaseModel):
    """Summary of one ``run_sweep`` invocation."""
    run_id: UUID = Field(default_factory=uuid4)
    now: datetime
    trigger: str = "scheduler"
    status: SweepStatus = SweepStatus.success
    jobs: list[JobReport] = []
    expired_certificates: list[UUID] = []
    admin_reports_sent: int = 0
    reason: str | None = None
    duration_seconds: float = 0.0

    def job(self, kind: JobKind) -> JobReport | None:
        for report in self.jobs:
            if report.kind == kind:
                return report
        return None
