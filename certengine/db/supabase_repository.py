"""Supabase implementations of the engine's collaborator interfaces.

One class per interface, all sharing the ``get_supabase()`` singleton by
default.  Conditional writes filter the UPDATE on the previously-read
stage/status and treat an empty result as a stale write.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any
from uuid import UUID

from postgrest.exceptions import APIError
from supabase import Client

from certengine.core.errors import (
    ActiveProcessExists,
    CertificationError,
    CollaboratorError,
    EvaluatorAtCapacity,
    StaleWrite,
)
from certengine.db.supabase import get_supabase
from certengine.models.candidate import Candidate
from certengine.models.certificate import Certificate
from certengine.models.competency import Competency
from certengine.models.enums import (
    CertificateStatus,
    EvaluatorStatus,
    JobKind,
    NotificationKind,
    ProcessStage,
)
from certengine.models.evaluator import Evaluator
from certengine.models.event import DomainEvent
from certengine.models.notification import NotificationLogEntry
from certengine.models.process import Evaluation, Process

logger = logging.getLogger(__name__)

_ACTIVE_STAGES: list[str] = [
    ProcessStage.requested.value,
    ProcessStage.under_evaluation.value,
    ProcessStage.pending_review.value,
]
_EVALUATING_STAGES: list[str] = [
    ProcessStage.under_evaluation.value,
    ProcessStage.pending_review.value,
]

# PostgreSQL unique_violation
_UNIQUE_VIOLATION = "23505"


def _rows(result: Any) -> list[dict[str, Any]]:
    return (result.data if result is not None else None) or []


def _first(result: Any) -> dict[str, Any] | None:
    rows = _rows(result)
    return rows[0] if rows else None


class _SupabaseAdapter:
    """Holds the client and wraps driver failures as ``CollaboratorError``."""

    def __init__(self, client: Client | None = None) -> None:
        self._client = client

    @property
    def client(self) -> Client:
        if self._client is None:
            self._client = get_supabase()
        return self._client

    def _execute(
        self,
        query: Any,
        operation: str,
        on_unique: type[CertificationError] | None = None,
    ) -> Any:
        try:
            return query.execute()
        except APIError as exc:
            if on_unique is not None and exc.code == _UNIQUE_VIOLATION:
                raise on_unique(f"{operation}: {exc.message}") from exc
            logger.warning(
                "supabase_query_failed",
                extra={"operation": operation, "error_code": exc.code, "error_message": exc.message},
            )
            raise CollaboratorError(f"{operation} failed: {exc.message}") from exc
        except Exception as exc:
            logger.warning(
                "supabase_query_failed",
                extra={"operation": operation, "error_message": str(exc)},
            )
            raise CollaboratorError(f"{operation} failed: {exc}") from exc


class SupabaseRepository(_SupabaseAdapter):
    """``Repository`` backed by Supabase tables."""

    # ---- Competencies / candidates ----

    def get_competency(self, competency_id: UUID) -> Competency | None:
        row = _first(self._execute(
            self.client.table("competencies").select("*").eq("id", str(competency_id)).limit(1),
            "get_competency",
        ))
        return Competency(**row) if row else None

    def get_candidate(self, candidate_id: UUID) -> Candidate | None:
        row = _first(self._execute(
            self.client.table("candidates").select("*").eq("id", str(candidate_id)).limit(1),
            "get_candidate",
        ))
        return Candidate(**row) if row else None

    def find_candidate(self, user_id: UUID, competency_id: UUID) -> Candidate | None:
        row = _first(self._execute(
            self.client.table("candidates")
            .select("*")
            .eq("user_id", str(user_id))
            .eq("competency_id", str(competency_id))
            .order("requested_at", desc=True)
            .limit(1),
            "find_candidate",
        ))
        return Candidate(**row) if row else None

    def create_candidate(self, candidate: Candidate) -> Candidate:
        self._execute(
            self.client.table("candidates").insert(candidate.model_dump(mode="json")),
            "create_candidate",
            on_unique=ActiveProcessExists,
        )
        return candidate

    def save_candidate(self, candidate: Candidate) -> Candidate:
        self._execute(
            self.client.table("candidates")
            .update(candidate.model_dump(mode="json", exclude={"id"}))
            .eq("id", str(candidate.id)),
            "save_candidate",
        )
        return candidate

    # ---- Processes ----

    def get_process(self, process_id: UUID) -> Process | None:
        row = _first(self._execute(
            self.client.table("processes").select("*").eq("id", str(process_id)).limit(1),
            "get_process",
        ))
        return Process(**row) if row else None

    def find_active_process(self, candidate_id: UUID) -> Process | None:
        row = _first(self._execute(
            self.client.table("processes")
            .select("*")
            .eq("candidate_id", str(candidate_id))
            .in_("stage", _ACTIVE_STAGES)
            .limit(1),
            "find_active_process",
        ))
        return Process(**row) if row else None

    def create_process(self, process: Process) -> Process:
        self._execute(
            self.client.table("processes").insert(process.model_dump(mode="json")),
            "create_process",
            on_unique=ActiveProcessExists,
        )
        return process

    def save_process(
        self,
        process: Process,
        expected_stage: ProcessStage,
        expected_evaluator_id: UUID | None = None,
    ) -> Process:
        query = (
            self.client.table("processes")
            .update(process.model_dump(mode="json", exclude={"id"}))
            .eq("id", str(process.id))
            .eq("stage", expected_stage.value)
        )
        if expected_evaluator_id is None:
            query = query.is_("evaluator_id", "null")
        else:
            query = query.eq("evaluator_id", str(expected_evaluator_id))
        result = self._execute(query, "save_process")
        if not _rows(result):
            raise StaleWrite(
                f"process {process.id} is no longer in stage {expected_stage.value}"
            )
        return process

    def assign_evaluator(
        self, process: Process, expected_stage: ProcessStage, capacity: int
    ) -> Process:
        # assign_process_evaluator locks the evaluator row, counts its load
        # and updates the process in one transaction.
        row = _first(self._execute(
            self.client.rpc(
                "assign_process_evaluator",
                {
                    "p_process_id": str(process.id),
                    "p_evaluator_id": str(process.evaluator_id),
                    "p_expected_stage": expected_stage.value,
                    "p_capacity": capacity,
                    "p_assigned_at": process.assigned_at.isoformat() if process.assigned_at else None,
                    "p_notes": process.notes,
                    "p_updated_at": process.updated_at.isoformat() if process.updated_at else None,
                },
            ),
            "assign_evaluator",
        )) or {}
        outcome = row.get("outcome")
        if outcome == "at_capacity":
            raise EvaluatorAtCapacity(
                f"evaluator {process.evaluator_id} holds {row.get('active')} of {capacity} processes"
            )
        if outcome != "assigned":
            raise StaleWrite(
                f"process {process.id} is no longer unassigned in stage {expected_stage.value}"
            )
        return process

    def quarantine_process(self, process_id: UUID, reason: str) -> None:
        self._execute(
            self.client.table("processes")
            .update({"quarantine_reason": reason})
            .eq("id", str(process_id)),
            "quarantine_process",
        )

    def find_candidates_needing(self, job_kind: JobKind, now: datetime) -> list[Process]:
        query = self.client.table("processes").select("*").is_("quarantine_reason", "null")
        if job_kind == JobKind.document_reminder:
            query = query.eq("stage", ProcessStage.requested.value)
        elif job_kind in (JobKind.evaluator_stall, JobKind.deadline_approaching):
            query = (
                query.eq("stage", ProcessStage.under_evaluation.value)
                .is_("evaluated_at", "null")
            )
        else:
            raise ValueError(f"{job_kind.value} does not select processes")
        result = self._execute(query, f"find_candidates_needing:{job_kind.value}")
        return [Process(**row) for row in _rows(result)]

    def count_active_for_evaluator(self, evaluator_id: UUID) -> int:
        result = self._execute(
            self.client.table("processes")
            .select("id", count="exact")
            .eq("evaluator_id", str(evaluator_id))
            .in_("stage", _EVALUATING_STAGES),
            "count_active_for_evaluator",
        )
        if result.count is not None:
            return int(result.count)
        return len(_rows(result))

    def list_processes_for_evaluator(self, evaluator_id: UUID) -> list[Process]:
        result = self._execute(
            self.client.table("processes").select("*").eq("evaluator_id", str(evaluator_id)),
            "list_processes_for_evaluator",
        )
        return [Process(**row) for row in _rows(result)]

    def add_evaluation(self, evaluation: Evaluation) -> Evaluation:
        self._execute(
            self.client.table("evaluations").insert(evaluation.model_dump(mode="json")),
            "add_evaluation",
        )
        return evaluation

    # ---- Evaluators ----

    def get_evaluator(self, evaluator_id: UUID) -> Evaluator | None:
        row = _first(self._execute(
            self.client.table("evaluators").select("*").eq("id", str(evaluator_id)).limit(1),
            "get_evaluator",
        ))
        return Evaluator(**row) if row else None

    # ---- Certificates ----

    def create_certificate(self, certificate: Certificate) -> Certificate:
        self._execute(
            self.client.table("certificates").insert(certificate.model_dump(mode="json")),
            "create_certificate",
        )
        return certificate

    def get_certificate_for_process(self, process_id: UUID) -> Certificate | None:
        row = _first(self._execute(
            self.client.table("certificates").select("*").eq("process_id", str(process_id)).limit(1),
            "get_certificate_for_process",
        ))
        return Certificate(**row) if row else None

    def find_uncertified_approved(self) -> list[Process]:
        # Anti-join: embedded certificates filtered to null.
        result = self._execute(
            self.client.table("processes")
            .select("*, certificates(id)")
            .eq("stage", ProcessStage.approved.value)
            .is_("quarantine_reason", "null")
            .is_("certificates", "null"),
            "find_uncertified_approved",
        )
        return [Process(**row) for row in _rows(result)]

    def count_certificates(self) -> int:
        result = self._execute(
            self.client.table("certificates").select("id", count="exact"),
            "count_certificates",
        )
        if result.count is not None:
            return int(result.count)
        return len(_rows(result))

    def get_certificate_by_folio(self, folio: str) -> Certificate | None:
        row = _first(self._execute(
            self.client.table("certificates").select("*").eq("folio", folio).limit(1),
            "get_certificate_by_folio",
        ))
        return Certificate(**row) if row else None

    def find_certificates(
        self,
        status: CertificateStatus,
        before: datetime | None = None,
        after: datetime | None = None,
    ) -> list[Certificate]:
        query = (
            self.client.table("certificates")
            .select("*")
            .eq("status", status.value)
            .not_.is_("expires_at", "null")
        )
        if before is not None:
            query = query.lt("expires_at", before.isoformat())
        if after is not None:
            query = query.gte("expires_at", after.isoformat())
        result = self._execute(query, "find_certificates")
        return [Certificate(**row) for row in _rows(result)]

    def save_certificate(
        self, certificate: Certificate, expected_status: CertificateStatus
    ) -> Certificate:
        result = self._execute(
            self.client.table("certificates")
            .update(certificate.model_dump(mode="json", exclude={"id"}))
            .eq("id", str(certificate.id))
            .eq("status", expected_status.value),
            "save_certificate",
        )
        if not _rows(result):
            raise StaleWrite(
                f"certificate {certificate.id} is no longer {expected_status.value}"
            )
        return certificate

    # ---- Notification ledger ----

    def append_notification_log(self, entry: NotificationLogEntry) -> None:
        self._execute(
            self.client.table("notification_log").insert(entry.model_dump(mode="json")),
            "append_notification_log",
        )

    def exists_log_entry(
        self, recipient_id: UUID, kind: NotificationKind, after: datetime
    ) -> bool:
        result = self._execute(
            self.client.table("notification_log")
            .select("id")
            .eq("recipient_id", str(recipient_id))
            .eq("kind", kind.value)
            .gt("sent_at", after.isoformat())
            .limit(1),
            "exists_log_entry",
        )
        return bool(_rows(result))


class SupabaseAuthorizationOracle(_SupabaseAdapter):
    """Reads the ``user_capabilities`` grant table."""

    def list_principals_with_capability(self, capability: str) -> list[UUID]:
        result = self._execute(
            self.client.table("user_capabilities").select("user_id").eq("capability", capability),
            "list_principals_with_capability",
        )
        return list(dict.fromkeys(UUID(row["user_id"]) for row in _rows(result)))


class SupabaseEvaluatorDirectory(_SupabaseAdapter):
    """Active evaluators by competency via array containment."""

    def list_active(self, competency_id: UUID) -> list[Evaluator]:
        result = self._execute(
            self.client.table("evaluators")
            .select("*")
            .eq("status", EvaluatorStatus.active.value)
            .contains("competencies", [str(competency_id)]),
            "list_active_evaluators",
        )
        return [Evaluator(**row) for row in _rows(result)]


class SupabaseDocumentStore(_SupabaseAdapter):
    """Document presence read from the ``documents`` table."""

    def submitted_kinds(self, candidate_id: UUID) -> set[str]:
        result = self._execute(
            self.client.table("documents").select("kind").eq("candidate_id", str(candidate_id)),
            "submitted_kinds",
        )
        return {row["kind"] for row in _rows(result)}

    def is_complete(self, candidate_id: UUID, required_kinds: list[str]) -> bool:
        return set(required_kinds) <= self.submitted_kinds(candidate_id)


class SupabaseEventSink(_SupabaseAdapter):
    """Appends domain events to ``certification_events``."""

    def emit(self, event: DomainEvent) -> None:
        self._execute(
            self.client.table("certification_events").insert(event.model_dump(mode="json")),
            "emit_event",
        )
