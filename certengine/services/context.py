"""Engine context: the collaborators every core operation runs against.

Core services receive an ``EngineContext`` instead of reaching for
module-level clients, so tests can run the whole engine against in-memory
collaborators and a fixed clock.  ``get_context()`` lazily builds the
production context (Supabase + configured notifier) once per process.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any
from uuid import UUID

from certengine.core.config import settings
from certengine.db.repository import (
    AuthorizationOracle,
    DocumentStore,
    EvaluatorDirectory,
    EventSink,
    Repository,
)
from certengine.models.enums import EventName
from certengine.models.event import DomainEvent
from certengine.services.notifier import Notifier, get_notifier

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class EngineContext:
    repository: Repository
    notifier: Notifier
    authorization: AuthorizationOracle
    evaluators: EvaluatorDirectory
    documents: DocumentStore
    events: EventSink
    clock: Clock = utcnow
    max_workers: int = field(default_factory=lambda: settings.SWEEP_MAX_WORKERS)
    default_capacity: int = field(default_factory=lambda: settings.DEFAULT_EVALUATOR_CAPACITY)
    default_validity_years: int = field(
        default_factory=lambda: settings.DEFAULT_CERTIFICATE_VALIDITY_YEARS
    )
    manage_capability: str = field(default_factory=lambda: settings.MANAGE_CAPABILITY)

    def now(self) -> datetime:
        return self.clock()

    def emit(
        self,
        name: EventName,
        entity_id: UUID,
        related_user_id: UUID | None = None,
        data: dict[str, Any] | None = None,
        now: datetime | None = None,
    ) -> None:
        """Hand a domain event to the sink.

        A failing sink is logged and never undoes the state change that
        produced the event.
        """
        event = DomainEvent(
            name=name,
            entity_id=entity_id,
            related_user_id=related_user_id,
            occurred_at=now or self.now(),
            data=data or {},
        )
        try:
            self.events.emit(event)
        except Exception as exc:
            logger.warning(
                "event_emit_failed",
                extra={
                    "event_name": name.value,
                    "entity_id": str(entity_id),
                    "error_message": str(exc),
                },
            )


def build_context() -> EngineContext:
    """Wire the production collaborators."""
    from certengine.db.supabase_repository import (
        SupabaseAuthorizationOracle,
        SupabaseDocumentStore,
        SupabaseEvaluatorDirectory,
        SupabaseEventSink,
        SupabaseRepository,
    )

    return EngineContext(
        repository=SupabaseRepository(),
        notifier=get_notifier(),
        authorization=SupabaseAuthorizationOracle(),
        evaluators=SupabaseEvaluatorDirectory(),
        documents=SupabaseDocumentStore(),
        events=SupabaseEventSink(),
    )


_context: EngineContext | None = None
_context_lock = threading.Lock()


def get_context() -> EngineContext:
    """Return the singleton engine context, creating it on first call."""
    global _context
    with _context_lock:
        if _context is None:
            _context = build_context()
        return _context
