"""Unit tests for the Supabase adapters (mocked client)."""

from __future__ import annotations

from datetime import datetime, timezone
from unittest.mock import MagicMock
from uuid import uuid4

import pytest
from postgrest.exceptions import APIError

from certengine.core.errors import (
    ActiveProcessExists,
    CollaboratorError,
    EvaluatorAtCapacity,
    StaleWrite,
)
from certengine.models.certificate import Certificate
from certengine.models.enums import CertificateStatus, JobKind, NotificationKind, ProcessStage
from certengine.models.process import Process


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _chainable_table_mock() -> MagicMock:
    """Return a mock that supports fluent chaining."""
    m = MagicMock()
    for method in (
        "select", "insert", "upsert", "update", "eq", "limit",
        "in_", "gt", "gte", "lt", "is_", "order", "contains",
    ):
        getattr(m, method).return_value = m
    m.not_ = m
    m.count = None
    return m


def _client_with(table_mock: MagicMock) -> MagicMock:
    client = MagicMock()
    client.table.return_value = table_mock
    return client


NOW = datetime(2025, 3, 10, 9, 0, tzinfo=timezone.utc)


def _process(**overrides) -> Process:
    data = {"candidate_id": uuid4(), "started_at": NOW}
    data.update(overrides)
    return Process(**data)


class TestConditionalWrites:
    """UPDATEs filter on the previously-read state."""

    def test_save_process_filters_on_stage_and_empty_evaluator(self) -> None:
        from certengine.db.supabase_repository import SupabaseRepository

        table = _chainable_table_mock()
        table.execute.return_value = MagicMock(data=[{"id": "x"}])
        repository = SupabaseRepository(client=_client_with(table))
        process = _process(stage=ProcessStage.under_evaluation, evaluator_id=uuid4())

        repository.save_process(process, expected_stage=ProcessStage.requested)

        table.eq.assert_any_call("stage", "requested")
        table.is_.assert_called_once_with("evaluator_id", "null")

    def test_save_process_filters_on_expected_evaluator(self) -> None:
        from certengine.db.supabase_repository import SupabaseRepository

        table = _chainable_table_mock()
        table.execute.return_value = MagicMock(data=[{"id": "x"}])
        repository = SupabaseRepository(client=_client_with(table))
        evaluator_id = uuid4()
        process = _process(stage=ProcessStage.approved, evaluator_id=evaluator_id)

        repository.save_process(
            process,
            expected_stage=ProcessStage.under_evaluation,
            expected_evaluator_id=evaluator_id,
        )

        table.eq.assert_any_call("evaluator_id", str(evaluator_id))
        table.is_.assert_not_called()

    def test_save_process_empty_result_is_stale(self) -> None:
        from certengine.db.supabase_repository import SupabaseRepository

        table = _chainable_table_mock()
        table.execute.return_value = MagicMock(data=[])
        repository = SupabaseRepository(client=_client_with(table))

        with pytest.raises(StaleWrite):
            repository.save_process(_process(), expected_stage=ProcessStage.requested)

    def test_save_certificate_empty_result_is_stale(self) -> None:
        from certengine.db.supabase_repository import SupabaseRepository

        table = _chainable_table_mock()
        table.execute.return_value = MagicMock(data=[])
        repository = SupabaseRepository(client=_client_with(table))
        certificate = Certificate(
            process_id=uuid4(),
            holder_id=uuid4(),
            competency_id=uuid4(),
            level=1,
            folio="CERT-2025-000001",
            status=CertificateStatus.expired,
            issued_at=NOW,
            expires_at=NOW,
        )

        with pytest.raises(StaleWrite):
            repository.save_certificate(certificate, expected_status=CertificateStatus.active)
        table.eq.assert_any_call("status", "active")


class TestQueries:
    """Selections and lookups."""

    def test_exists_log_entry_uses_indexed_columns(self) -> None:
        from certengine.db.supabase_repository import SupabaseRepository

        table = _chainable_table_mock()
        table.execute.return_value = MagicMock(data=[{"id": "x"}])
        client = _client_with(table)
        recipient = uuid4()

        found = SupabaseRepository(client=client).exists_log_entry(
            recipient, NotificationKind.document_reminder, NOW
        )

        assert found is True
        client.table.assert_called_with("notification_log")
        table.eq.assert_any_call("recipient_id", str(recipient))
        table.eq.assert_any_call("kind", "document_reminder")
        table.gt.assert_called_once_with("sent_at", NOW.isoformat())

    def test_find_candidates_needing_excludes_quarantined(self) -> None:
        from certengine.db.supabase_repository import SupabaseRepository

        table = _chainable_table_mock()
        row = _process().model_dump(mode="json")
        table.execute.return_value = MagicMock(data=[row])
        repository = SupabaseRepository(client=_client_with(table))

        processes = repository.find_candidates_needing(JobKind.document_reminder, NOW)

        assert [p.id for p in processes] == [Process(**row).id]
        table.is_.assert_any_call("quarantine_reason", "null")
        table.eq.assert_any_call("stage", "requested")

    def test_find_candidates_needing_rejects_certificate_jobs(self) -> None:
        from certengine.db.supabase_repository import SupabaseRepository

        repository = SupabaseRepository(client=_client_with(_chainable_table_mock()))

        with pytest.raises(ValueError):
            repository.find_candidates_needing(JobKind.certificate_expiration, NOW)

    def test_count_uses_exact_count(self) -> None:
        from certengine.db.supabase_repository import SupabaseRepository

        table = _chainable_table_mock()
        table.execute.return_value = MagicMock(data=[], count=7)
        repository = SupabaseRepository(client=_client_with(table))

        assert repository.count_active_for_evaluator(uuid4()) == 7

    def test_driver_error_becomes_collaborator_error(self) -> None:
        from certengine.db.supabase_repository import SupabaseRepository

        table = _chainable_table_mock()
        table.execute.side_effect = Exception("connection reset")
        repository = SupabaseRepository(client=_client_with(table))

        with pytest.raises(CollaboratorError):
            repository.get_process(uuid4())


class TestGuardedWrites:
    """Uniqueness and capacity enforced by the database."""

    def test_duplicate_open_process_maps_to_active_process_exists(self) -> None:
        from certengine.db.supabase_repository import SupabaseRepository

        table = _chainable_table_mock()
        table.execute.side_effect = APIError(
            {"message": "duplicate key value", "code": "23505", "hint": None, "details": None}
        )
        repository = SupabaseRepository(client=_client_with(table))

        with pytest.raises(ActiveProcessExists):
            repository.create_process(_process())

    def test_other_api_errors_stay_collaborator_errors(self) -> None:
        from certengine.db.supabase_repository import SupabaseRepository

        table = _chainable_table_mock()
        table.execute.side_effect = APIError(
            {"message": "permission denied", "code": "42501", "hint": None, "details": None}
        )
        repository = SupabaseRepository(client=_client_with(table))

        with pytest.raises(CollaboratorError):
            repository.create_process(_process())

    def _rpc_client(self, outcome: str) -> MagicMock:
        client = MagicMock()
        client.rpc.return_value.execute.return_value = MagicMock(
            data=[{"outcome": outcome, "active": 2}]
        )
        return client

    def test_assign_evaluator_calls_the_locking_function(self) -> None:
        from certengine.db.supabase_repository import SupabaseRepository

        client = self._rpc_client("assigned")
        process = _process(stage=ProcessStage.under_evaluation, evaluator_id=uuid4(), assigned_at=NOW)

        stored = SupabaseRepository(client=client).assign_evaluator(
            process, expected_stage=ProcessStage.requested, capacity=2
        )

        assert stored is process
        name, params = client.rpc.call_args.args
        assert name == "assign_process_evaluator"
        assert params["p_evaluator_id"] == str(process.evaluator_id)
        assert params["p_expected_stage"] == "requested"
        assert params["p_capacity"] == 2

    def test_assign_evaluator_at_capacity(self) -> None:
        from certengine.db.supabase_repository import SupabaseRepository

        repository = SupabaseRepository(client=self._rpc_client("at_capacity"))
        process = _process(stage=ProcessStage.under_evaluation, evaluator_id=uuid4())

        with pytest.raises(EvaluatorAtCapacity):
            repository.assign_evaluator(process, expected_stage=ProcessStage.requested, capacity=2)

    def test_assign_evaluator_stale(self) -> None:
        from certengine.db.supabase_repository import SupabaseRepository

        repository = SupabaseRepository(client=self._rpc_client("stale"))
        process = _process(stage=ProcessStage.under_evaluation, evaluator_id=uuid4())

        with pytest.raises(StaleWrite):
            repository.assign_evaluator(process, expected_stage=ProcessStage.requested, capacity=2)

    def test_find_uncertified_approved_anti_joins_certificates(self) -> None:
        from certengine.db.supabase_repository import SupabaseRepository

        table = _chainable_table_mock()
        row = _process(stage=ProcessStage.approved).model_dump(mode="json")
        table.execute.return_value = MagicMock(data=[{**row, "certificates": None}])
        repository = SupabaseRepository(client=_client_with(table))

        processes = repository.find_uncertified_approved()

        assert [p.id for p in processes] == [Process(**row).id]
        table.select.assert_called_once_with("*, certificates(id)")
        table.is_.assert_any_call("certificates", "null")
        table.eq.assert_any_call("stage", "approved")


class TestCollaborators:
    """Oracle, directory and document store adapters."""

    def test_capability_principals_are_unique(self) -> None:
        from certengine.db.supabase_repository import SupabaseAuthorizationOracle

        user = uuid4()
        table = _chainable_table_mock()
        table.execute.return_value = MagicMock(data=[{"user_id": str(user)}, {"user_id": str(user)}])

        principals = SupabaseAuthorizationOracle(client=_client_with(table)).list_principals_with_capability(
            "manage_candidates"
        )

        assert principals == [user]

    def test_directory_uses_set_membership(self) -> None:
        from certengine.db.supabase_repository import SupabaseEvaluatorDirectory

        competency_id = uuid4()
        table = _chainable_table_mock()
        table.execute.return_value = MagicMock(
            data=[{"id": str(uuid4()), "user_id": str(uuid4()), "status": "active",
                   "competencies": [str(competency_id)], "capacity": None}]
        )

        evaluators = SupabaseEvaluatorDirectory(client=_client_with(table)).list_active(competency_id)

        table.contains.assert_called_once_with("competencies", [str(competency_id)])
        assert evaluators[0].can_evaluate(competency_id)

    def test_document_store_completeness(self) -> None:
        from certengine.db.supabase_repository import SupabaseDocumentStore

        table = _chainable_table_mock()
        table.execute.return_value = MagicMock(data=[{"kind": "ine"}, {"kind": "curp_doc"}])
        store = SupabaseDocumentStore(client=_client_with(table))

        assert store.is_complete(uuid4(), ["ine", "curp_doc"]) is True
        assert store.is_complete(uuid4(), ["ine", "fotografia"]) is False
