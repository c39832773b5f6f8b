"""Time-polled reminder jobs.

Each job knows which records it looks at, when one of them is due, who
receives the reminder and what it says.  Sending and dedup are left to the
sweep and the ``DedupLedger``.

Processes that break the stage invariants are quarantined instead of being
reminded about: the record is flagged, an ``invariant_violation`` event is
emitted and a CRITICAL line is logged.  Nothing repairs them automatically.
"""

from __future__ import annotations

import logging
from collections.abc import Hashable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Generic, TypeVar
from uuid import UUID

from certengine.core.constants import (
    DEADLINE_ALERT_LEAD,
    DEDUP_WINDOWS,
    DOCUMENT_REMINDER_DELAY,
    EVALUATOR_STALL_DELAY,
    EXPIRING_SOON_MAX,
    EXPIRING_SOON_MIN,
)
from certengine.core.errors import (
    CandidateNotFound,
    CompetencyNotFound,
    EvaluatorNotFound,
    InvariantViolation,
)
from certengine.models.candidate import Candidate
from certengine.models.certificate import Certificate
from certengine.models.competency import Competency
from certengine.models.enums import (
    CertificateStatus,
    EventName,
    JobKind,
    NotificationKind,
    ProcessStage,
)
from certengine.models.evaluator import Evaluator
from certengine.models.notification import NotificationPayload
from certengine.models.process import Process
from certengine.services.context import EngineContext
from certengine.services.state_machine import check_invariants

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class ProcessTarget:
    """A process with the records needed to decide and address a reminder."""
    process: Process
    candidate: Candidate
    competency: Competency | None = None
    evaluator: Evaluator | None = None


@dataclass
class Selection(Generic[T]):
    records: list[T] = field(default_factory=list)
    failed: int = 0
    quarantined: int = 0


def quarantine(ctx: EngineContext, process: Process, reason: str, now: datetime) -> None:
    """Flag *process* so automated jobs leave it alone."""
    logger.critical(
        "invariant_violation",
        extra={
            "process_id": str(process.id),
            "stage": process.stage.value,
            "reason": reason,
        },
    )
    try:
        ctx.repository.quarantine_process(process.id, reason)
    except Exception as exc:
        logger.error(
            "quarantine_failed",
            extra={"process_id": str(process.id), "error_message": str(exc)},
        )
    ctx.emit(
        EventName.invariant_violation,
        process.id,
        data={"stage": process.stage.value, "reason": reason},
        now=now,
    )


class ReminderJob(Generic[T]):
    kind: JobKind
    notification_kind: NotificationKind

    def __init__(self, ctx: EngineContext) -> None:
        self.ctx = ctx

    @property
    def window(self) -> timedelta:
        return DEDUP_WINDOWS[self.notification_kind]

    def select(self, now: datetime) -> Selection[T]:
        raise NotImplementedError

    def is_due(self, record: T, now: datetime) -> bool:
        raise NotImplementedError

    def recipient(self, record: T) -> UUID:
        raise NotImplementedError

    def payload(self, record: T, now: datetime) -> NotificationPayload:
        raise NotImplementedError

    def dedup_key(self, record: T) -> Hashable:
        return (self.recipient(record), self.notification_kind)

    def _notice(self, record: T, subject_id: UUID, data: dict[str, Any]) -> NotificationPayload:
        return NotificationPayload(
            kind=self.notification_kind,
            recipient_id=self.recipient(record),
            subject_id=subject_id,
            data=data,
        )


class ProcessReminderJob(ReminderJob[ProcessTarget]):
    """Base for reminders about open processes."""
    needs_competency = False
    needs_evaluator = False

    def resolve(self, process: Process) -> ProcessTarget:
        repository = self.ctx.repository
        candidate = repository.get_candidate(process.candidate_id)
        if candidate is None:
            raise CandidateNotFound(f"candidate {process.candidate_id} not found")
        target = ProcessTarget(process=process, candidate=candidate)

        if self.needs_competency:
            target.competency = repository.get_competency(candidate.competency_id)
            if target.competency is None:
                raise CompetencyNotFound(f"competency {candidate.competency_id} not found")
        if self.needs_evaluator:
            target.evaluator = repository.get_evaluator(process.evaluator_id)
            if target.evaluator is None:
                raise EvaluatorNotFound(f"evaluator {process.evaluator_id} not found")
        return target

    def select(self, now: datetime) -> Selection[ProcessTarget]:
        selection: Selection[ProcessTarget] = Selection()
        for process in self.ctx.repository.find_candidates_needing(self.kind, now):
            if process.quarantine_reason:
                continue
            try:
                check_invariants(process)
            except InvariantViolation as exc:
                quarantine(self.ctx, process, str(exc), now)
                selection.quarantined += 1
                continue
            try:
                selection.records.append(self.resolve(process))
            except Exception as exc:
                logger.error(
                    "reminder_target_failed",
                    extra={
                        "job": self.kind.value,
                        "process_id": str(process.id),
                        "error_type": type(exc).__name__,
                        "error_message": str(exc),
                    },
                )
                selection.failed += 1
        return selection


class DocumentReminderJob(ProcessReminderJob):
    """Candidate still missing documents a week after requesting."""
    kind = JobKind.document_reminder
    notification_kind = NotificationKind.document_reminder
    needs_competency = True

    def is_due(self, record: ProcessTarget, now: datetime) -> bool:
        process = record.process
        if process.stage != ProcessStage.requested:
            return False
        if now - process.started_at <= DOCUMENT_REMINDER_DELAY:
            return False
        return not self.ctx.documents.is_complete(
            record.candidate.id, record.competency.required_kinds
        )

    def recipient(self, record: ProcessTarget) -> UUID:
        return record.candidate.user_id

    def payload(self, record: ProcessTarget, now: datetime) -> NotificationPayload:
        required = record.competency.required_kinds
        submitted = self.ctx.documents.submitted_kinds(record.candidate.id)
        return self._notice(record, record.process.id, {
            "process_id": str(record.process.id),
            "competency_id": str(record.candidate.competency_id),
            "level": record.candidate.level,
            "pending_documents": [kind for kind in required if kind not in submitted],
            "days_since_request": (now - record.process.started_at).days,
        })


class EvaluatorStallJob(ProcessReminderJob):
    """Evaluator has held a process for more than three days without a result."""
    kind = JobKind.evaluator_stall
    notification_kind = NotificationKind.evaluator_stall_reminder
    needs_evaluator = True

    def is_due(self, record: ProcessTarget, now: datetime) -> bool:
        process = record.process
        if process.stage != ProcessStage.under_evaluation or process.evaluated_at is not None:
            return False
        return process.assigned_at is not None and now - process.assigned_at > EVALUATOR_STALL_DELAY

    def recipient(self, record: ProcessTarget) -> UUID:
        return record.evaluator.user_id

    def payload(self, record: ProcessTarget, now: datetime) -> NotificationPayload:
        return self._notice(record, record.process.id, {
            "process_id": str(record.process.id),
            "candidate_id": str(record.candidate.id),
            "days_assigned": (now - record.process.assigned_at).days,
        })


class DeadlineApproachingJob(ProcessReminderJob):
    """Evaluation deadline falls within the next five days."""
    kind = JobKind.deadline_approaching
    notification_kind = NotificationKind.deadline_approaching
    needs_competency = True
    needs_evaluator = True

    @staticmethod
    def deadline(record: ProcessTarget) -> datetime | None:
        if record.process.assigned_at is None:
            return None
        return record.process.assigned_at + timedelta(days=record.competency.evaluation_days)

    def is_due(self, record: ProcessTarget, now: datetime) -> bool:
        process = record.process
        if process.stage != ProcessStage.under_evaluation or process.evaluated_at is not None:
            return False
        deadline = self.deadline(record)
        if deadline is None:
            return False
        remaining = deadline - now
        return timedelta(0) < remaining <= DEADLINE_ALERT_LEAD

    def recipient(self, record: ProcessTarget) -> UUID:
        return record.evaluator.user_id

    def payload(self, record: ProcessTarget, now: datetime) -> NotificationPayload:
        deadline = self.deadline(record)
        return self._notice(record, record.process.id, {
            "process_id": str(record.process.id),
            "candidate_id": str(record.candidate.id),
            "deadline": deadline.isoformat(),
            "days_remaining": (deadline - now).days,
        })


class CertificateExpiringSoonJob(ReminderJob[Certificate]):
    """Holder warning roughly thirty days before expiry."""
    kind = JobKind.certificate_expiring_soon
    notification_kind = NotificationKind.certificate_expiring_soon

    def select(self, now: datetime) -> Selection[Certificate]:
        certificates = self.ctx.repository.find_certificates(
            CertificateStatus.active,
            # upper bound of the query is exclusive
            before=now + EXPIRING_SOON_MAX + timedelta(seconds=1),
            after=now + EXPIRING_SOON_MIN,
        )
        return Selection(records=certificates)

    def is_due(self, record: Certificate, now: datetime) -> bool:
        if record.status != CertificateStatus.active or record.expires_at is None:
            return False
        return EXPIRING_SOON_MIN <= record.expires_at - now <= EXPIRING_SOON_MAX

    def recipient(self, record: Certificate) -> UUID:
        return record.holder_id

    def payload(self, record: Certificate, now: datetime) -> NotificationPayload:
        return self._notice(record, record.id, {
            "folio": record.folio,
            "competency_id": str(record.competency_id),
            "level": record.level,
            "expires_at": record.expires_at.isoformat(),
            "days_remaining": (record.expires_at - now).days,
        })


def reminder_jobs(ctx: EngineContext) -> list[ReminderJob]:
    """Reminder jobs in sweep order."""
    return [
        DocumentReminderJob(ctx),
        EvaluatorStallJob(ctx),
        DeadlineApproachingJob(ctx),
        CertificateExpiringSoonJob(ctx),
    ]
