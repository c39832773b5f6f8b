"""Outbound notification delivery.

The engine decides *when* and *to whom*; a ``Notifier`` decides *how*.
``WebhookNotifier`` posts the structured payload to a delivery service via
``httpx``; ``LoggingNotifier`` only logs it and is used when no webhook is
configured.  ``send`` returns ``True`` on success and ``False`` on failure,
so callers can skip the ledger write and retry on the next sweep.
"""

from __future__ import annotations

import logging
from typing import Protocol
from uuid import UUID

import httpx

from certengine.core.config import settings
from certengine.models.enums import NotificationKind
from certengine.models.notification import NotificationPayload

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    def send(
        self,
        recipient_id: UUID,
        kind: NotificationKind,
        payload: NotificationPayload,
    ) -> bool: ...


class LoggingNotifier:
    """Accepts every notification and logs it."""

    def send(
        self,
        recipient_id: UUID,
        kind: NotificationKind,
        payload: NotificationPayload,
    ) -> bool:
        logger.info(
            "notification_logged",
            extra={
                "recipient_id": str(recipient_id),
                "kind": kind.value,
                "subject_id": str(payload.subject_id) if payload.subject_id else None,
            },
        )
        return True


class WebhookNotifier:
    """Posts payloads as JSON to a delivery webhook."""

    def __init__(
        self,
        url: str,
        token: str = "",
        timeout: float = 10.0,
        client: httpx.Client | None = None,
    ) -> None:
        self.url = url
        self.token = token
        self._client = client or httpx.Client(timeout=timeout)

    def send(
        self,
        recipient_id: UUID,
        kind: NotificationKind,
        payload: NotificationPayload,
    ) -> bool:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"

        try:
            response = self._client.post(
                self.url,
                headers=headers,
                json={
                    "recipient_id": str(recipient_id),
                    "kind": kind.value,
                    "payload": payload.model_dump(mode="json"),
                },
            )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.error(
                "notification_delivery_failed",
                extra={
                    "recipient_id": str(recipient_id),
                    "kind": kind.value,
                    "error_type": type(exc).__name__,
                    "error_message": str(exc),
                },
            )
            return False
        return True

    def close(self) -> None:
        self._client.close()


def get_notifier() -> Notifier:
    """Build the notifier configured in ``settings``."""
    if not settings.NOTIFIER_WEBHOOK_URL:
        logger.warning("No NOTIFIER_WEBHOOK_URL configured, notifications are only logged")
        return LoggingNotifier()
    return WebhookNotifier(
        settings.NOTIFIER_WEBHOOK_URL,
        token=settings.NOTIFIER_TOKEN,
        timeout=settings.NOTIFIER_TIMEOUT_SECONDS,
    )
