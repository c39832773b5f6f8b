"""Unit tests for certification requests, document checks and evaluation."""

from __future__ import annotations

from unittest.mock import patch
from uuid import uuid4

import pytest

from certengine.core.constants import DEFAULT_REQUIRED_DOCUMENTS
from certengine.core.errors import (
    ActiveProcessExists,
    AlreadyFinalized,
    CompetencyNotFound,
    InvalidLevel,
    InvalidTransition,
    NotAssignedEvaluator,
)
from certengine.models.enums import (
    CandidateStatus,
    CertificateStatus,
    EvaluationResult,
    NotificationKind,
    ProcessStage,
)
from certengine.models.process import EvaluationSubmit
from certengine.services.assignment import EvaluatorAssignmentService
from certengine.services.processes import ProcessService


class TestRequestCertification:
    """Intake and the one-open-process rule."""

    def test_creates_candidate_and_process(self, ctx, seed, repository, events, clock) -> None:
        competency = seed.competency()
        user_id = uuid4()

        process = ProcessService(ctx).request_certification(user_id, competency.id, 2)

        assert process.stage == ProcessStage.requested
        assert process.evaluator_id is None
        assert process.started_at == clock()
        candidate = repository.candidates[process.candidate_id]
        assert candidate.user_id == user_id
        assert candidate.level == 2
        assert candidate.status == CandidateStatus.pending
        assert events.names() == ["process_requested"]

    def test_open_process_blocks_second_request(self, ctx, seed) -> None:
        competency = seed.competency()
        user_id = uuid4()
        service = ProcessService(ctx)
        service.request_certification(user_id, competency.id, 1)

        with pytest.raises(ActiveProcessExists):
            service.request_certification(user_id, competency.id, 1)

    def test_reuses_candidate_after_terminal_process(self, ctx, seed, repository) -> None:
        competency = seed.competency()
        candidate = seed.candidate(competency, status=CandidateStatus.rejected)
        evaluator = seed.evaluator(competency)
        seed.process(candidate, ProcessStage.rejected, evaluator, result=EvaluationResult.rejected)

        process = ProcessService(ctx).request_certification(candidate.user_id, competency.id, 3)

        assert process.candidate_id == candidate.id
        assert repository.candidates[candidate.id].level == 3
        assert repository.candidates[candidate.id].status == CandidateStatus.pending

    def test_holder_requesting_again_is_a_renewal(self, ctx, seed, repository) -> None:
        competency = seed.competency()
        candidate = seed.candidate(competency, status=CandidateStatus.approved)
        seed.process(candidate, ProcessStage.approved, seed.evaluator(competency), result=EvaluationResult.approved)

        process = ProcessService(ctx).request_certification(candidate.user_id, competency.id, 1)

        assert process.stage == ProcessStage.requested
        assert repository.candidates[candidate.id].status == CandidateStatus.renewal

    def test_concurrent_request_loses_at_the_insert(self, ctx, seed, repository) -> None:
        """Both requests read no open process; only one insert wins."""
        competency = seed.competency()
        candidate = seed.candidate(competency, status=CandidateStatus.approved, level=1)
        open_process = seed.process(candidate)

        with patch.object(repository, "find_active_process", return_value=None):
            with pytest.raises(ActiveProcessExists):
                ProcessService(ctx).request_certification(candidate.user_id, competency.id, 2)

        assert [p.id for p in repository.processes.values()] == [open_process.id]
        assert repository.candidates[candidate.id].status == CandidateStatus.approved
        assert repository.candidates[candidate.id].level == 1

    def test_concurrent_first_requests_share_one_candidate(self, ctx, seed, repository) -> None:
        competency = seed.competency()
        user_id = uuid4()
        service = ProcessService(ctx)
        service.request_certification(user_id, competency.id, 1)

        with patch.object(repository, "find_candidate", return_value=None):
            with pytest.raises(ActiveProcessExists):
                service.request_certification(user_id, competency.id, 1)

        assert len(repository.candidates) == 1
        assert len(repository.processes) == 1

    def test_unknown_competency(self, ctx) -> None:
        with pytest.raises(CompetencyNotFound):
            ProcessService(ctx).request_certification(uuid4(), uuid4(), 1)

    def test_inactive_competency(self, ctx, seed) -> None:
        competency = seed.competency(is_active=False)
        with pytest.raises(CompetencyNotFound):
            ProcessService(ctx).request_certification(uuid4(), competency.id, 1)

    def test_level_not_offered(self, ctx, seed) -> None:
        competency = seed.competency(levels=[1, 2])
        with pytest.raises(InvalidLevel):
            ProcessService(ctx).request_certification(uuid4(), competency.id, 4)


class TestCheckDocuments:
    """Document completeness against the competency's required kinds."""

    def test_default_required_set(self, ctx, seed, documents) -> None:
        candidate = seed.candidate(seed.competency())
        process = seed.process(candidate)
        documents.submit(candidate.id, "id_oficial", "fotografia")

        status = ProcessService(ctx).check_documents(process.id)

        assert status.required == DEFAULT_REQUIRED_DOCUMENTS
        assert status.complete is False
        assert status.pending == ["curp_doc", "comprobante_domicilio", "evidencia_laboral"]
        assert status.stage == ProcessStage.requested

    def test_complete_without_evaluator_stays_requested(self, ctx, seed, documents) -> None:
        candidate = seed.candidate(seed.competency(required_documents=["ine"]))
        process = seed.process(candidate)
        documents.submit(candidate.id, "ine")

        status = ProcessService(ctx).check_documents(process.id)

        assert status.complete is True
        assert status.pending == []
        assert status.stage == ProcessStage.requested

    def test_complete_with_preassigned_evaluator_starts_evaluation(self, ctx, seed, documents) -> None:
        competency = seed.competency(required_documents=["ine"])
        candidate = seed.candidate(competency)
        process = seed.process(candidate, evaluator=seed.evaluator(competency))
        documents.submit(candidate.id, "ine")

        status = ProcessService(ctx).check_documents(process.id)

        assert status.stage == ProcessStage.under_evaluation


class TestSubmitEvaluation:
    """Evaluation submission, certificate issuance and candidate notices."""

    def _assigned(self, ctx, seed):
        competency = seed.competency(validity_years=3)
        candidate = seed.candidate(competency)
        process = seed.process(candidate)
        evaluator = seed.evaluator(competency)
        EvaluatorAssignmentService(ctx).assign(process.id, evaluator.id)
        return candidate, process, evaluator

    def test_happy_path_issues_certificate(self, ctx, seed, repository, notifier, events, clock) -> None:
        """Request, assign, approve: one active certificate and a result notice."""
        candidate, process, evaluator = self._assigned(ctx, seed)

        outcome = ProcessService(ctx).submit_evaluation(
            process.id,
            evaluator.user_id,
            EvaluationSubmit(result=EvaluationResult.approved, score=92.5, comments="ok"),
        )

        assert outcome.process.stage == ProcessStage.approved
        assert outcome.evaluation.score == 92.5
        assert outcome.certificate is not None
        assert outcome.certificate.status == CertificateStatus.active
        assert outcome.certificate.folio == f"CERT-{clock().year}-000001"
        assert outcome.certificate.expires_at == clock().replace(year=clock().year + 3)
        assert outcome.candidate_notified is True
        assert repository.candidates[candidate.id].status == CandidateStatus.approved
        assert len(repository.evaluations) == 1
        assert [p.recipient_id for p in notifier.of_kind(NotificationKind.evaluation_result)] == [candidate.user_id]
        assert len(notifier.of_kind(NotificationKind.certificate_available)) == 1
        assert "certificate_issued" in events.names()
        assert "certification_completed" in events.names()

    def test_inconclusive_then_approved(self, ctx, seed, repository) -> None:
        candidate, process, evaluator = self._assigned(ctx, seed)
        service = ProcessService(ctx)

        first = service.submit_evaluation(
            process.id, evaluator.user_id, EvaluationSubmit(result=EvaluationResult.inconclusive)
        )
        assert first.process.stage == ProcessStage.pending_review
        assert first.certificate is None
        assert repository.candidates[candidate.id].status == CandidateStatus.pending

        second = service.submit_evaluation(
            process.id, evaluator.user_id, EvaluationSubmit(result=EvaluationResult.approved)
        )
        assert second.process.stage == ProcessStage.approved
        assert second.certificate is not None

    def test_rejection_issues_no_certificate(self, ctx, seed, repository) -> None:
        candidate, process, evaluator = self._assigned(ctx, seed)

        outcome = ProcessService(ctx).submit_evaluation(
            process.id, evaluator.user_id, EvaluationSubmit(result=EvaluationResult.rejected)
        )

        assert outcome.process.stage == ProcessStage.rejected
        assert outcome.certificate is None
        assert repository.certificates == {}
        assert repository.candidates[candidate.id].status == CandidateStatus.rejected

    def test_only_assigned_evaluator_may_submit(self, ctx, seed) -> None:
        _, process, _ = self._assigned(ctx, seed)

        with pytest.raises(NotAssignedEvaluator):
            ProcessService(ctx).submit_evaluation(
                process.id, uuid4(), EvaluationSubmit(result=EvaluationResult.approved)
            )

    def test_submit_on_requested_is_invalid(self, ctx, seed) -> None:
        process = seed.process(seed.candidate(seed.competency()))

        with pytest.raises(InvalidTransition):
            ProcessService(ctx).submit_evaluation(
                process.id, uuid4(), EvaluationSubmit(result=EvaluationResult.approved)
            )

    def test_second_submission_after_final_result(self, ctx, seed) -> None:
        _, process, evaluator = self._assigned(ctx, seed)
        service = ProcessService(ctx)
        service.submit_evaluation(
            process.id, evaluator.user_id, EvaluationSubmit(result=EvaluationResult.rejected)
        )

        with pytest.raises(AlreadyFinalized):
            service.submit_evaluation(
                process.id, evaluator.user_id, EvaluationSubmit(result=EvaluationResult.approved)
            )

    def test_result_notice_failure_is_reported(self, ctx, seed, notifier, repository) -> None:
        candidate, process, evaluator = self._assigned(ctx, seed)
        notifier.fail_for.add(candidate.user_id)

        outcome = ProcessService(ctx).submit_evaluation(
            process.id, evaluator.user_id, EvaluationSubmit(result=EvaluationResult.approved)
        )

        assert outcome.candidate_notified is False
        assert repository.processes[process.id].stage == ProcessStage.approved

    def test_approval_survives_a_failed_issuance(self, ctx, seed, repository, notifier) -> None:
        """The certificate write fails: the approval stands and the sweep issues it."""
        from certengine.services.sweep import run_sweep

        candidate, process, evaluator = self._assigned(ctx, seed)
        repository.fail_on.add("create_certificate")
        service = ProcessService(ctx)

        outcome = service.submit_evaluation(
            process.id, evaluator.user_id, EvaluationSubmit(result=EvaluationResult.approved)
        )

        assert outcome.process.stage == ProcessStage.approved
        assert outcome.certificate is None
        assert outcome.certificate_pending is True
        assert outcome.candidate_notified is True
        assert repository.certificates == {}
        assert repository.candidates[candidate.id].status == CandidateStatus.approved
        with pytest.raises(AlreadyFinalized):
            service.submit_evaluation(
                process.id, evaluator.user_id, EvaluationSubmit(result=EvaluationResult.approved)
            )

        repository.fail_on.clear()
        run_sweep(ctx=ctx)
        run_sweep(ctx=ctx)

        certificates = list(repository.certificates.values())
        assert [c.process_id for c in certificates] == [process.id]
        assert certificates[0].holder_id == candidate.user_id
        assert certificates[0].issued_by == evaluator.user_id
        assert len(notifier.of_kind(NotificationKind.certificate_available)) == 1
