"""State machine for the certification Process lifecycle.

Valid (stage, event) pairs and the stages they may lead to are defined
here.  Every applied transition is written with a conditional save keyed on
the stage the process was read in, so two concurrent operations can never
both succeed: the loser gets ``StaleWrite``.

    requested         --documents_complete--> requested | under_evaluation
    requested         --assign_evaluator-->   under_evaluation
    under_evaluation  --submit_evaluation-->  approved | rejected | pending_review
    pending_review    --submit_evaluation-->  approved | rejected
"""

from __future__ import annotations

import logging
from datetime import datetime
from enum import Enum
from uuid import UUID

from certengine.core.errors import (
    AlreadyFinalized,
    DuplicateAssignment,
    InvalidResult,
    InvalidTransition,
    InvariantViolation,
    NotAssignedEvaluator,
)
from certengine.models.enums import EvaluationResult, ProcessStage
from certengine.models.process import Process
from certengine.services.context import EngineContext

logger = logging.getLogger(__name__)


class ProcessEvent(str, Enum):
    documents_complete = "documents_complete"
    assign_evaluator = "assign_evaluator"
    submit_evaluation = "submit_evaluation"


_TRANSITIONS: dict[tuple[ProcessStage, ProcessEvent], set[ProcessStage]] = {
    (ProcessStage.requested, ProcessEvent.documents_complete): {
        ProcessStage.requested,
        ProcessStage.under_evaluation,
    },
    (ProcessStage.requested, ProcessEvent.assign_evaluator): {ProcessStage.under_evaluation},
    # Always refused by the duplicate-assignment guard; listed so it is not
    # reported as an invalid transition.
    (ProcessStage.under_evaluation, ProcessEvent.assign_evaluator): {ProcessStage.under_evaluation},
    (ProcessStage.under_evaluation, ProcessEvent.submit_evaluation): {
        ProcessStage.approved,
        ProcessStage.rejected,
        ProcessStage.pending_review,
    },
    (ProcessStage.pending_review, ProcessEvent.submit_evaluation): {
        ProcessStage.approved,
        ProcessStage.rejected,
    },
}

_RESULT_STAGES: dict[EvaluationResult, ProcessStage] = {
    EvaluationResult.approved: ProcessStage.approved,
    EvaluationResult.rejected: ProcessStage.rejected,
    EvaluationResult.inconclusive: ProcessStage.pending_review,
}

_STAGES_WITH_EVALUATOR: frozenset[ProcessStage] = frozenset({
    ProcessStage.under_evaluation,
    ProcessStage.pending_review,
    ProcessStage.approved,
    ProcessStage.rejected,
})


def valid_events(stage: ProcessStage) -> list[ProcessEvent]:
    """Return the events accepted from *stage*."""
    return [event for (from_stage, event) in _TRANSITIONS if from_stage == stage]


def target_stages(stage: ProcessStage, event: ProcessEvent) -> set[ProcessStage]:
    return set(_TRANSITIONS.get((stage, event), set()))


def ensure_can(process: Process, event: ProcessEvent) -> None:
    """Raise unless *event* is acceptable for the process's current stage."""
    if process.is_terminal:
        raise AlreadyFinalized(f"process {process.id} is already {process.stage.value}")
    if (process.stage, event) not in _TRANSITIONS:
        raise InvalidTransition(
            f"cannot {event.value} a process in stage {process.stage.value}"
        )


def stage_for_result(stage: ProcessStage, result: EvaluationResult) -> ProcessStage:
    """Map an evaluation *result* submitted from *stage* to the next stage."""
    target = _RESULT_STAGES[result]
    if target not in target_stages(stage, ProcessEvent.submit_evaluation):
        raise InvalidResult(
            f"result {result.value} is not accepted from stage {stage.value}"
        )
    return target


def check_invariants(process: Process) -> None:
    """Raise ``InvariantViolation`` if the process record is inconsistent."""
    has_evaluator = process.evaluator_id is not None
    needs_evaluator = process.stage in _STAGES_WITH_EVALUATOR
    if has_evaluator != needs_evaluator:
        raise InvariantViolation(
            f"process {process.id} in stage {process.stage.value} "
            f"{'has' if has_evaluator else 'lacks'} an evaluator"
        )

    has_result = process.result is not None
    if has_result != process.is_terminal:
        raise InvariantViolation(
            f"process {process.id} in stage {process.stage.value} "
            f"{'has' if has_result else 'lacks'} a result"
        )
    if has_result and _RESULT_STAGES[process.result] != process.stage:
        raise InvariantViolation(
            f"process {process.id} result {process.result.value} "
            f"does not match stage {process.stage.value}"
        )


class ProcessStateMachine:
    """Applies validated transitions and persists them conditionally."""

    def __init__(self, ctx: EngineContext) -> None:
        self.ctx = ctx

    def _commit(
        self,
        before: Process,
        after: Process,
        event: ProcessEvent,
        capacity: int | None = None,
    ) -> Process:
        if after.stage not in target_stages(before.stage, event):
            raise InvalidTransition(
                f"{before.stage.value} -> {after.stage.value} is not allowed on {event.value}"
            )
        check_invariants(after)
        if capacity is not None:
            saved = self.ctx.repository.assign_evaluator(
                after, expected_stage=before.stage, capacity=capacity
            )
        else:
            saved = self.ctx.repository.save_process(
                after,
                expected_stage=before.stage,
                expected_evaluator_id=before.evaluator_id,
            )
        logger.info(
            "process_transition",
            extra={
                "process_id": str(after.id),
                "event": event.value,
                "from_stage": before.stage.value,
                "to_stage": after.stage.value,
            },
        )
        return saved

    def documents_complete(self, process: Process, now: datetime) -> Process:
        """Handle the documents-complete event.

        The process only leaves ``requested`` when an evaluator is already
        attached; otherwise it keeps waiting for an assignment.
        """
        ensure_can(process, ProcessEvent.documents_complete)
        if process.evaluator_id is None:
            return process

        updated = process.model_copy(update={
            "stage": ProcessStage.under_evaluation,
            "assigned_at": process.assigned_at or now,
            "updated_at": now,
        })
        return self._commit(process, updated, ProcessEvent.documents_complete)

    def assign(
        self,
        process: Process,
        evaluator_id: UUID,
        note: str | None,
        now: datetime,
        *,
        capacity: int,
    ) -> Process:
        """Attach *evaluator_id* and move the process to ``under_evaluation``.

        The write fails with ``EvaluatorAtCapacity`` if the evaluator already
        holds *capacity* processes under evaluation.
        """
        if process.is_terminal:
            raise AlreadyFinalized(f"process {process.id} is already {process.stage.value}")
        if process.evaluator_id is not None:
            raise DuplicateAssignment(
                f"process {process.id} already has evaluator {process.evaluator_id}"
            )
        ensure_can(process, ProcessEvent.assign_evaluator)

        updated = process.model_copy(update={
            "stage": ProcessStage.under_evaluation,
            "evaluator_id": evaluator_id,
            "assigned_at": now,
            "notes": note if note is not None else process.notes,
            "updated_at": now,
        })
        return self._commit(process, updated, ProcessEvent.assign_evaluator, capacity=capacity)

    def record_result(
        self,
        process: Process,
        evaluator_id: UUID,
        result: EvaluationResult,
        notes: str | None,
        now: datetime,
    ) -> Process:
        """Apply an evaluation submitted by *evaluator_id*."""
        ensure_can(process, ProcessEvent.submit_evaluation)
        if process.evaluator_id != evaluator_id:
            raise NotAssignedEvaluator(
                f"evaluator {evaluator_id} is not assigned to process {process.id}"
            )
        target = stage_for_result(process.stage, result)

        update: dict = {
            "stage": target,
            "evaluated_at": now,
            "updated_at": now,
            "notes": notes if notes is not None else process.notes,
        }
        if target.is_terminal:
            update["result"] = result
            update["ended_at"] = now
        updated = process.model_copy(update=update)
        return self._commit(process, updated, ProcessEvent.submit_evaluation)
