"""Collaborator interfaces consumed by the engine.

The engine never talks to storage, identity, or the document store
directly; it goes through these protocols.  ``certengine.db.supabase_repository``
implements them on Supabase, and the tests implement them in memory.

Writes that move a process or certificate between states are conditional:
``save_process``, ``assign_evaluator`` and ``save_certificate`` must raise
``StaleWrite`` when the stored record no longer has the expected stage or
status.
"""

from __future__ import annotations

from datetime import datetime
from typing import Protocol
from uuid import UUID

from certengine.models.candidate import Candidate
from certengine.models.certificate import Certificate
from certengine.models.competency import Competency
from certengine.models.enums import CertificateStatus, JobKind, NotificationKind, ProcessStage
from certengine.models.evaluator import Evaluator
from certengine.models.event import DomainEvent
from certengine.models.notification import NotificationLogEntry
from certengine.models.process import Evaluation, Process


class Repository(Protocol):
    # Competencies / candidates
    def get_competency(self, competency_id: UUID) -> Competency | None: ...

    def get_candidate(self, candidate_id: UUID) -> Candidate | None: ...

    def find_candidate(self, user_id: UUID, competency_id: UUID) -> Candidate | None: ...

    def create_candidate(self, candidate: Candidate) -> Candidate:
        """Raises ActiveProcessExists if the user already has a candidate row
        for the competency (a concurrent first request won)."""
        ...

    def save_candidate(self, candidate: Candidate) -> Candidate: ...

    # Processes
    def get_process(self, process_id: UUID) -> Process | None: ...

    def find_active_process(self, candidate_id: UUID) -> Process | None: ...

    def create_process(self, process: Process) -> Process:
        """Insert *process*; ``ActiveProcessExists`` if its candidate already
        holds a non-terminal process."""
        ...

    def save_process(
        self,
        process: Process,
        expected_stage: ProcessStage,
        expected_evaluator_id: UUID | None = None,
    ) -> Process:
        """Persist *process* only if the stored record is still as read.

        The stored stage must be *expected_stage* and the stored
        ``evaluator_id`` must equal *expected_evaluator_id* (``None`` means
        no evaluator), so two assignments of one process cannot both win.
        """
        ...

    def assign_evaluator(
        self, process: Process, expected_stage: ProcessStage, capacity: int
    ) -> Process:
        """Persist an assignment in one atomic step.

        Succeeds only if the stored process is still unassigned in
        *expected_stage* and its new evaluator holds fewer than *capacity*
        processes under evaluation.  Raises ``StaleWrite`` or
        ``EvaluatorAtCapacity``.
        """
        ...

    def quarantine_process(self, process_id: UUID, reason: str) -> None: ...

    def find_candidates_needing(self, job_kind: JobKind, now: datetime) -> list[Process]:
        """Coarse pre-selection for a reminder job.

        May return a superset; the job's own predicate is authoritative.
        """
        ...

    def count_active_for_evaluator(self, evaluator_id: UUID) -> int: ...

    def list_processes_for_evaluator(self, evaluator_id: UUID) -> list[Process]: ...

    def add_evaluation(self, evaluation: Evaluation) -> Evaluation: ...

    # Evaluators
    def get_evaluator(self, evaluator_id: UUID) -> Evaluator | None: ...

    # Certificates
    def create_certificate(self, certificate: Certificate) -> Certificate: ...

    def get_certificate_for_process(self, process_id: UUID) -> Certificate | None: ...

    def find_uncertified_approved(self) -> list[Process]:
        """Approved processes that have no certificate yet."""
        ...

    def count_certificates(self) -> int: ...

    def get_certificate_by_folio(self, folio: str) -> Certificate | None: ...

    def find_certificates(
        self,
        status: CertificateStatus,
        before: datetime | None = None,
        after: datetime | None = None,
    ) -> list[Certificate]:
        """Certificates in *status* with ``after <= expires_at < before``."""
        ...

    def save_certificate(
        self, certificate: Certificate, expected_status: CertificateStatus
    ) -> Certificate: ...

    # Notification ledger
    def append_notification_log(self, entry: NotificationLogEntry) -> None: ...

    def exists_log_entry(
        self, recipient_id: UUID, kind: NotificationKind, after: datetime
    ) -> bool:
        """True if an entry for (recipient, kind) has ``sent_at > after``."""
        ...


class AuthorizationOracle(Protocol):
    def list_principals_with_capability(self, capability: str) -> list[UUID]: ...


class EvaluatorDirectory(Protocol):
    def list_active(self, competency_id: UUID) -> list[Evaluator]: ...


class DocumentStore(Protocol):
    def is_complete(self, candidate_id: UUID, required_kinds: list[str]) -> bool: ...

    def submitted_kinds(self, candidate_id: UUID) -> set[str]: ...


class EventSink(Protocol):
    def emit(self, event: DomainEvent) -> None: ...
