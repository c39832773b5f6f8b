"""Certification process operations driven by the front end.

- ``request_certification``: creates the candidate (or reuses the user's
  candidate for the competency) and opens a process in ``requested``.
  A candidate never holds two non-terminal processes.
- ``check_documents``: evaluates document completeness and applies the
  documents-complete transition.
- ``submit_evaluation``: the assigned evaluator records a result; the
  candidate is notified and, on approval, a certificate is issued.
"""

from __future__ import annotations

import logging
from datetime import datetime
from uuid import UUID

from certengine.core.errors import (
    ActiveProcessExists,
    CandidateNotFound,
    CertificationError,
    CompetencyNotFound,
    InvalidLevel,
    NotAssignedEvaluator,
    ProcessNotFound,
)
from certengine.models.candidate import Candidate
from certengine.models.enums import (
    CandidateStatus,
    EvaluationResult,
    EventName,
    NotificationKind,
    ProcessStage,
)
from certengine.models.notification import NotificationPayload
from certengine.models.process import (
    DocumentStatus,
    Evaluation,
    EvaluationOutcome,
    EvaluationSubmit,
    Process,
)
from certengine.services.certificates import CertificateLifecycleManager
from certengine.services.context import EngineContext
from certengine.services.ledger import DedupLedger, Delivery
from certengine.services.state_machine import ProcessEvent, ProcessStateMachine, ensure_can

logger = logging.getLogger(__name__)


class ProcessService:
    def __init__(self, ctx: EngineContext) -> None:
        self.ctx = ctx
        self.machine = ProcessStateMachine(ctx)
        self.ledger = DedupLedger(ctx.repository, ctx.notifier)
        self.certificates = CertificateLifecycleManager(ctx)

    def _load(self, process_id: UUID) -> tuple[Process, Candidate]:
        process = self.ctx.repository.get_process(process_id)
        if process is None:
            raise ProcessNotFound(f"process {process_id} not found")
        candidate = self.ctx.repository.get_candidate(process.candidate_id)
        if candidate is None:
            raise CandidateNotFound(f"candidate {process.candidate_id} not found")
        return process, candidate

    # ------------------------------------------------------------------
    # Intake
    # ------------------------------------------------------------------

    @staticmethod
    def _new_process(candidate: Candidate, now: datetime) -> Process:
        return Process(
            candidate_id=candidate.id,
            stage=ProcessStage.requested,
            started_at=now,
            updated_at=now,
        )

    def request_certification(
        self,
        user_id: UUID,
        competency_id: UUID,
        level: int,
        now: datetime | None = None,
    ) -> Process:
        """Open a certification process for *user_id*."""
        now = now or self.ctx.now()
        repository = self.ctx.repository

        competency = repository.get_competency(competency_id)
        if competency is None or not competency.is_active:
            raise CompetencyNotFound(f"competency {competency_id} not found or inactive")
        if level not in competency.levels:
            raise InvalidLevel(
                f"competency {competency.code} has no level {level}"
            )

        candidate = repository.find_candidate(user_id, competency_id)
        if candidate is None:
            candidate = repository.create_candidate(Candidate(
                user_id=user_id,
                competency_id=competency_id,
                level=level,
                status=CandidateStatus.pending,
                requested_at=now,
            ))
            process = repository.create_process(self._new_process(candidate, now))
        else:
            active = repository.find_active_process(candidate.id)
            if active is not None:
                raise ActiveProcessExists(
                    f"candidate {candidate.id} already has process {active.id} "
                    f"in stage {active.stage.value}"
                )
            # the candidate is only touched once the process insert has won
            process = repository.create_process(self._new_process(candidate, now))
            status = (
                CandidateStatus.renewal
                if candidate.status == CandidateStatus.approved
                else CandidateStatus.pending
            )
            candidate = repository.save_candidate(candidate.model_copy(update={
                "level": level,
                "status": status,
                "requested_at": now,
            }))

        logger.info(
            "process_requested",
            extra={
                "process_id": str(process.id),
                "candidate_id": str(candidate.id),
                "competency": competency.code,
                "level": level,
            },
        )
        self.ctx.emit(
            EventName.process_requested,
            process.id,
            related_user_id=user_id,
            data={"candidate_id": str(candidate.id), "competency_id": str(competency_id), "level": level},
            now=now,
        )
        return process

    def check_documents(self, process_id: UUID, now: datetime | None = None) -> DocumentStatus:
        """Report document completeness and apply the documents-complete event."""
        now = now or self.ctx.now()
        process, candidate = self._load(process_id)

        competency = self.ctx.repository.get_competency(candidate.competency_id)
        if competency is None:
            raise CompetencyNotFound(f"competency {candidate.competency_id} not found")

        required = competency.required_kinds
        submitted = self.ctx.documents.submitted_kinds(candidate.id)
        complete = self.ctx.documents.is_complete(candidate.id, required)

        if complete and process.stage == ProcessStage.requested:
            process = self.machine.documents_complete(process, now)

        return DocumentStatus(
            process_id=process.id,
            required=required,
            submitted=sorted(submitted),
            pending=[kind for kind in required if kind not in submitted],
            complete=complete,
            stage=process.stage,
        )

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    def submit_evaluation(
        self,
        process_id: UUID,
        actor_user_id: UUID,
        submission: EvaluationSubmit,
        now: datetime | None = None,
    ) -> EvaluationOutcome:
        """Record the assigned evaluator's result for *process_id*.

        Raises ``ProcessNotFound``, ``AlreadyFinalized``, ``InvalidTransition``,
        ``NotAssignedEvaluator``, ``InvalidResult`` or ``StaleWrite``.
        """
        now = now or self.ctx.now()
        repository = self.ctx.repository
        process, candidate = self._load(process_id)

        ensure_can(process, ProcessEvent.submit_evaluation)
        evaluator = (
            repository.get_evaluator(process.evaluator_id)
            if process.evaluator_id is not None
            else None
        )
        if evaluator is None or evaluator.user_id != actor_user_id:
            raise NotAssignedEvaluator(
                f"user {actor_user_id} is not the evaluator assigned to process {process.id}"
            )

        updated = self.machine.record_result(
            process,
            evaluator.id,
            submission.result,
            submission.notes,
            now,
        )

        evaluation = repository.add_evaluation(Evaluation(
            process_id=updated.id,
            evaluator_id=updated.evaluator_id,
            result=submission.result,
            score=submission.score,
            comments=submission.comments,
            recommendations=submission.recommendations,
            created_at=now,
        ))

        if updated.is_terminal:
            status = (
                CandidateStatus.approved
                if submission.result == EvaluationResult.approved
                else CandidateStatus.rejected
            )
            candidate = repository.save_candidate(candidate.model_copy(update={"status": status}))

        logger.info(
            "evaluation_submitted",
            extra={
                "process_id": str(updated.id),
                "result": submission.result.value,
                "stage": updated.stage.value,
            },
        )
        self.ctx.emit(
            EventName.evaluation_submitted,
            updated.id,
            related_user_id=candidate.user_id,
            data={"result": submission.result.value, "evaluation_id": str(evaluation.id)},
            now=now,
        )

        certificate = None
        certificate_pending = False
        if updated.stage == ProcessStage.approved:
            try:
                certificate = self.certificates.issue(
                    updated, candidate, issued_by=actor_user_id, now=now
                )
            except CertificationError as exc:
                # the approval stands, the sweep issues the certificate later
                certificate_pending = True
                logger.error(
                    "certificate_issue_failed",
                    extra={
                        "process_id": str(updated.id),
                        "error_code": exc.code,
                        "error_message": exc.message,
                    },
                )

        if updated.is_terminal:
            self.ctx.emit(
                EventName.certification_completed,
                updated.id,
                related_user_id=candidate.user_id,
                data={
                    "result": submission.result.value,
                    "competency_id": str(candidate.competency_id),
                    "level": candidate.level,
                    "certificate_id": str(certificate.id) if certificate else None,
                },
                now=now,
            )

        delivery = self.ledger.deliver(
            NotificationPayload(
                kind=NotificationKind.evaluation_result,
                recipient_id=candidate.user_id,
                subject_id=updated.id,
                data={
                    "result": submission.result.value,
                    "stage": updated.stage.value,
                    "competency_id": str(candidate.competency_id),
                    "level": candidate.level,
                    "folio": certificate.folio if certificate else None,
                },
            ),
            now,
        )

        return EvaluationOutcome(
            process=updated,
            evaluation=evaluation,
            certificate=certificate,
            certificate_pending=certificate_pending,
            candidate_notified=delivery == Delivery.sent,
        )
