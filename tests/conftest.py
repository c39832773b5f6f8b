"""Shared test fixtures.

Provides an ``EngineContext`` wired to in-memory collaborators and a fixed
clock, a ``seed`` helper for building the certification graph, FastAPI
``TestClient`` fixtures, and mock Supabase clients for the health router.
"""

from __future__ import annotations

import os

# Tests drive sweeps explicitly; keep the interval job out of the app lifespan.
os.environ.setdefault("SCHEDULER_ENABLED", "false")

from collections.abc import Generator  # noqa: E402
from datetime import datetime, timedelta, timezone
from uuid import uuid4
from unittest.mock import MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from certengine.models.candidate import Candidate
from certengine.models.certificate import Certificate
from certengine.models.competency import Competency
from certengine.models.enums import EvaluatorStatus, ProcessStage
from certengine.models.evaluator import Evaluator
from certengine.models.process import Process
from certengine.services.context import EngineContext

from fakes import (
    ADMIN_ID,
    FakeAuthorization,
    FakeDocumentStore,
    FakeEvaluatorDirectory,
    FakeEventSink,
    FakeNotifier,
    FixedClock,
    InMemoryRepository,
)

NOW = datetime(2025, 3, 10, 9, 0, tzinfo=timezone.utc)

class Seed:
    """Builds records straight into the in-memory repository."""

    def __init__(self, repository: InMemoryRepository, documents: FakeDocumentStore, now: datetime) -> None:
        self.repository = repository
        self.documents = documents
        self.now = now

    def competency(self, **overrides) -> Competency:
        data = {"code": "EC0217", "name": "Impartición de cursos", "levels": [1, 2, 3]}
        data.update(overrides)
        competency = Competency(**data)
        self.repository.add(competency)
        return competency

    def candidate(self, competency: Competency, **overrides) -> Candidate:
        data = {
            "user_id": uuid4(),
            "competency_id": competency.id,
            "level": 1,
            "requested_at": self.now,
        }
        data.update(overrides)
        candidate = Candidate(**data)
        self.repository.add(candidate)
        return candidate

    def evaluator(self, *competencies: Competency, **overrides) -> Evaluator:
        data = {
            "user_id": uuid4(),
            "status": EvaluatorStatus.active,
            "competencies": {c.id for c in competencies},
        }
        data.update(overrides)
        evaluator = Evaluator(**data)
        self.repository.add(evaluator)
        return evaluator

    def process(
        self,
        candidate: Candidate,
        stage: ProcessStage = ProcessStage.requested,
        evaluator: Evaluator | None = None,
        **overrides,
    ) -> Process:
        data = {
            "candidate_id": candidate.id,
            "stage": stage,
            "evaluator_id": evaluator.id if evaluator else None,
            "started_at": self.now,
            "assigned_at": self.now if evaluator else None,
        }
        data.update(overrides)
        process = Process(**data)
        self.repository.add(process)
        return process

    def certificate(self, candidate: Candidate, expires_at: datetime | None, **overrides) -> Certificate:
        data = {
            "process_id": uuid4(),
            "holder_id": candidate.user_id,
            "competency_id": candidate.competency_id,
            "level": candidate.level,
            "folio": f"CERT-{self.now.year}-{len(self.repository.certificates) + 1:06d}",
            "issued_at": self.now - timedelta(days=365 * 5),
            "expires_at": expires_at,
        }
        data.update(overrides)
        certificate = Certificate(**data)
        self.repository.add(certificate)
        return certificate


@pytest.fixture()
def clock() -> FixedClock:
    return FixedClock(NOW)


@pytest.fixture()
def repository() -> InMemoryRepository:
    return InMemoryRepository()


@pytest.fixture()
def notifier() -> FakeNotifier:
    return FakeNotifier()


@pytest.fixture()
def documents() -> FakeDocumentStore:
    return FakeDocumentStore()


@pytest.fixture()
def events() -> FakeEventSink:
    return FakeEventSink()


@pytest.fixture()
def authorization() -> FakeAuthorization:
    return FakeAuthorization({"manage_candidates": [ADMIN_ID]})


@pytest.fixture()
def ctx(
    repository: InMemoryRepository,
    notifier: FakeNotifier,
    authorization: FakeAuthorization,
    documents: FakeDocumentStore,
    events: FakeEventSink,
    clock: FixedClock,
) -> EngineContext:
    """Engine context over in-memory collaborators."""
    return EngineContext(
        repository=repository,
        notifier=notifier,
        authorization=authorization,
        evaluators=FakeEvaluatorDirectory(repository),
        documents=documents,
        events=events,
        clock=clock,
        max_workers=4,
        default_capacity=10,
        default_validity_years=5,
        manage_capability="manage_candidates",
    )


@pytest.fixture()
def seed(repository: InMemoryRepository, documents: FakeDocumentStore, clock: FixedClock) -> Seed:
    return Seed(repository, documents, clock())


@pytest.fixture()
def mock_supabase_module() -> Generator[MagicMock, None, None]:
    """Patch the Supabase client at module level in the health router."""
    mock_client = MagicMock()
    mock_table = MagicMock()
    mock_select = MagicMock()
    mock_limit = MagicMock()

    mock_client.table.return_value = mock_table
    mock_table.select.return_value = mock_select
    mock_select.limit.return_value = mock_limit
    mock_limit.execute.return_value = MagicMock()  # non-None result

    with patch("certengine.routers.health.get_supabase", return_value=mock_client):
        yield mock_client


@pytest.fixture()
def mock_supabase_disconnected() -> Generator[MagicMock, None, None]:
    """Patch ``get_supabase`` to simulate a disconnected database."""
    with patch(
        "certengine.routers.health.get_supabase",
        side_effect=Exception("Connection refused"),
    ):
        yield MagicMock()


@pytest.fixture()
def test_client() -> Generator[TestClient, None, None]:
    """Provide a FastAPI TestClient."""
    from certengine.main import app

    with TestClient(app) as client:
        yield client


@pytest.fixture()
def api_client(ctx: EngineContext) -> Generator[TestClient, None, None]:
    """TestClient whose routes run against the in-memory engine context."""
    from certengine.main import app
    from certengine.services.context import get_context

    app.dependency_overrides[get_context] = lambda: ctx
    try:
        with TestClient(app) as client:
            yield client
    finally:
        app.dependency_overrides.pop(get_context, None)
