"""Notification dedup ledger.

Gates time-windowed reminders on the append-only ``notification_log``:
a reminder of kind K is not sent to recipient R while an entry
``(R, K, sent_at)`` exists with ``sent_at > now - window``.

Ordering is notify-then-log.  A failed send writes no entry, so the next
sweep naturally retries it; a successful send is always logged, including
event-driven notices that are not window-deduped.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from enum import Enum
from uuid import UUID

from certengine.db.repository import Repository
from certengine.models.enums import NotificationKind
from certengine.models.notification import NotificationLogEntry, NotificationPayload
from certengine.services.notifier import Notifier

logger = logging.getLogger(__name__)


class Delivery(str, Enum):
    sent = "sent"
    skipped = "skipped"
    failed = "failed"


class DedupLedger:
    def __init__(self, repository: Repository, notifier: Notifier) -> None:
        self._repository = repository
        self._notifier = notifier

    def has_recent(
        self,
        recipient_id: UUID,
        kind: NotificationKind,
        window: timedelta,
        now: datetime,
    ) -> bool:
        """True if *kind* was sent to *recipient_id* within *window* of *now*."""
        return self._repository.exists_log_entry(recipient_id, kind, now - window)

    def record(
        self,
        recipient_id: UUID,
        kind: NotificationKind,
        now: datetime,
        subject_id: UUID | None = None,
    ) -> NotificationLogEntry:
        entry = NotificationLogEntry(
            recipient_id=recipient_id,
            kind=kind,
            sent_at=now,
            subject_id=subject_id,
        )
        self._repository.append_notification_log(entry)
        return entry

    def deliver(self, payload: NotificationPayload, now: datetime) -> Delivery:
        """Send *payload* and log it on success."""
        try:
            ok = self._notifier.send(payload.recipient_id, payload.kind, payload)
        except Exception as exc:
            logger.error(
                "notification_failed",
                extra={
                    "recipient_id": str(payload.recipient_id),
                    "kind": payload.kind.value,
                    "error_type": type(exc).__name__,
                    "error_message": str(exc),
                },
            )
            return Delivery.failed

        if not ok:
            logger.warning(
                "notification_failed",
                extra={
                    "recipient_id": str(payload.recipient_id),
                    "kind": payload.kind.value,
                },
            )
            return Delivery.failed

        try:
            self.record(payload.recipient_id, payload.kind, now, payload.subject_id)
        except Exception as exc:
            # Already delivered; a missing entry only risks one early repeat.
            logger.error(
                "notification_log_write_failed",
                extra={
                    "recipient_id": str(payload.recipient_id),
                    "kind": payload.kind.value,
                    "error_message": str(exc),
                },
            )
        return Delivery.sent

    def deliver_once(
        self,
        payload: NotificationPayload,
        window: timedelta,
        now: datetime,
    ) -> Delivery:
        """Send *payload* unless an equivalent send exists inside *window*."""
        if self.has_recent(payload.recipient_id, payload.kind, window, now):
            logger.debug(
                "reminder_skipped_recent",
                extra={
                    "recipient_id": str(payload.recipient_id),
                    "kind": payload.kind.value,
                },
            )
            return Delivery.skipped
        return self.deliver(payload, now)
