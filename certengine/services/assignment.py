"""Evaluator assignment service.

Validates that an evaluator may take a process (active, competent
for it, under capacity, process not already assigned), applies the
transition through the state machine, and sends the two assignment
notices.

Capacity is enforced by the repository write itself
(``Repository.assign_evaluator``), so concurrent app instances cannot
double-book an evaluator.  The in-process per-evaluator lock only keeps
threads of one instance from racing into that write.

The process write happens first and is authoritative; the notices are
decoupled from it.  A failed notice is logged and reported in the
result, never rolled back into the assignment.
"""

from __future__ import annotations

import logging
from datetime import datetime
from uuid import UUID

from certengine.core.constants import WORKLOAD_RECENT_WINDOW
from certengine.core.errors import (
    AlreadyFinalized,
    CandidateNotFound,
    DuplicateAssignment,
    EvaluatorAtCapacity,
    EvaluatorInactive,
    EvaluatorNotFound,
    EvaluatorNotQualified,
    ProcessNotFound,
)
from certengine.models.enums import EventName, NotificationKind, ProcessStage
from certengine.models.evaluator import Evaluator, EvaluatorWorkload
from certengine.models.notification import NotificationPayload
from certengine.models.process import AssignmentResult
from certengine.scheduler.lock import KeyedLock
from certengine.services.context import EngineContext
from certengine.services.ledger import DedupLedger, Delivery
from certengine.services.state_machine import ProcessStateMachine

logger = logging.getLogger(__name__)

_evaluator_locks = KeyedLock()


class EvaluatorAssignmentService:
    def __init__(self, ctx: EngineContext) -> None:
        self.ctx = ctx
        self.machine = ProcessStateMachine(ctx)
        self.ledger = DedupLedger(ctx.repository, ctx.notifier)

    def capacity_of(self, evaluator: Evaluator) -> int:
        if evaluator.capacity is None:
            return self.ctx.default_capacity
        return evaluator.capacity

    def list_available(self, competency_id: UUID) -> list[Evaluator]:
        """Active evaluators able to evaluate *competency_id*."""
        return [
            evaluator
            for evaluator in self.ctx.evaluators.list_active(competency_id)
            if evaluator.is_active and evaluator.can_evaluate(competency_id)
        ]

    def assign(
        self,
        process_id: UUID,
        evaluator_id: UUID,
        note: str | None = None,
        now: datetime | None = None,
    ) -> AssignmentResult:
        """Assign *evaluator_id* to *process_id*.

        Raises ``ProcessNotFound``, ``EvaluatorNotFound``, ``AlreadyFinalized``,
        ``DuplicateAssignment``, ``EvaluatorInactive``, ``EvaluatorNotQualified``,
        ``EvaluatorAtCapacity`` or ``StaleWrite`` (a concurrent operation
        changed the process first).
        """
        now = now or self.ctx.now()
        repository = self.ctx.repository

        process = repository.get_process(process_id)
        if process is None:
            raise ProcessNotFound(f"process {process_id} not found")
        evaluator = repository.get_evaluator(evaluator_id)
        if evaluator is None:
            raise EvaluatorNotFound(f"evaluator {evaluator_id} not found")
        candidate = repository.get_candidate(process.candidate_id)
        if candidate is None:
            raise CandidateNotFound(f"candidate {process.candidate_id} not found")

        with _evaluator_locks.hold(evaluator.id):
            if process.is_terminal:
                raise AlreadyFinalized(f"process {process.id} is already {process.stage.value}")
            if process.evaluator_id is not None:
                raise DuplicateAssignment(
                    f"process {process.id} already has evaluator {process.evaluator_id}"
                )
            if not evaluator.is_active:
                raise EvaluatorInactive(f"evaluator {evaluator.id} is inactive")
            if not evaluator.can_evaluate(candidate.competency_id):
                raise EvaluatorNotQualified(
                    f"evaluator {evaluator.id} is not qualified for competency {candidate.competency_id}"
                )

            capacity = self.capacity_of(evaluator)
            active = repository.count_active_for_evaluator(evaluator.id)
            if active >= capacity:
                raise EvaluatorAtCapacity(
                    f"evaluator {evaluator.id} holds {active} of {capacity} processes"
                )

            assigned = self.machine.assign(process, evaluator.id, note, now, capacity=capacity)

        logger.info(
            "evaluator_assigned",
            extra={
                "process_id": str(assigned.id),
                "evaluator_id": str(evaluator.id),
                "active_before": active,
                "capacity": capacity,
            },
        )
        self.ctx.emit(
            EventName.evaluator_assigned,
            assigned.id,
            related_user_id=candidate.user_id,
            data={"evaluator_id": str(evaluator.id), "candidate_id": str(candidate.id)},
            now=now,
        )

        data = {
            "process_id": str(assigned.id),
            "candidate_id": str(candidate.id),
            "competency_id": str(candidate.competency_id),
            "level": candidate.level,
            "note": note,
        }
        evaluator_delivery = self.ledger.deliver(
            NotificationPayload(
                kind=NotificationKind.new_assignment,
                recipient_id=evaluator.user_id,
                subject_id=assigned.id,
                data=data,
            ),
            now,
        )
        candidate_delivery = self.ledger.deliver(
            NotificationPayload(
                kind=NotificationKind.evaluator_assigned,
                recipient_id=candidate.user_id,
                subject_id=assigned.id,
                data={**data, "evaluator_user_id": str(evaluator.user_id)},
            ),
            now,
        )

        return AssignmentResult(
            process=assigned,
            evaluator_id=evaluator.id,
            evaluator_notified=evaluator_delivery == Delivery.sent,
            candidate_notified=candidate_delivery == Delivery.sent,
        )

    def workload(self, evaluator_id: UUID, now: datetime | None = None) -> EvaluatorWorkload:
        """Assignment statistics for one evaluator."""
        now = now or self.ctx.now()
        evaluator = self.ctx.repository.get_evaluator(evaluator_id)
        if evaluator is None:
            raise EvaluatorNotFound(f"evaluator {evaluator_id} not found")

        processes = self.ctx.repository.list_processes_for_evaluator(evaluator.id)
        pending = sum(
            1 for p in processes
            if p.stage in (ProcessStage.under_evaluation, ProcessStage.pending_review)
        )
        completed = sum(1 for p in processes if p.is_terminal)
        recent_after = now - WORKLOAD_RECENT_WINDOW
        evaluated_recently = sum(
            1 for p in processes if p.evaluated_at is not None and p.evaluated_at > recent_after
        )
        capacity = self.capacity_of(evaluator)

        return EvaluatorWorkload(
            evaluator_id=evaluator.id,
            capacity=capacity,
            total_assigned=len(processes),
            pending=pending,
            completed=completed,
            evaluated_recently=evaluated_recently,
            remaining_capacity=max(capacity - pending, 0),
        )
