"""Certification rule constants.

Contains reminder delays, dedup windows, and the default required
document set.  These are business rules rather than deployment knobs,
so they live here instead of in ``settings``.
"""

from datetime import timedelta

from certengine.models.enums import NotificationKind

# ---------------------------------------------------------------------------
# Reminder triggers
# ---------------------------------------------------------------------------
DOCUMENT_REMINDER_DELAY: timedelta = timedelta(days=7)
EVALUATOR_STALL_DELAY: timedelta = timedelta(days=3)
DEADLINE_ALERT_LEAD: timedelta = timedelta(days=5)
EXPIRING_SOON_MIN: timedelta = timedelta(days=29)
EXPIRING_SOON_MAX: timedelta = timedelta(days=30)

# Evaluation deadline when a competency does not define one
DEFAULT_EVALUATION_DAYS: int = 30

# Window used by the evaluator workload "recent" counter
WORKLOAD_RECENT_WINDOW: timedelta = timedelta(days=7)

# ---------------------------------------------------------------------------
# Dedup windows per notification kind
# Kinds missing here are not window-deduped (event-driven or guarded by a
# state transition).
# ---------------------------------------------------------------------------
DEDUP_WINDOWS: dict[NotificationKind, timedelta] = {
    NotificationKind.document_reminder: timedelta(hours=48),
    NotificationKind.evaluator_stall_reminder: timedelta(hours=24),
    NotificationKind.deadline_approaching: timedelta(hours=24),
    NotificationKind.certificate_expiring_soon: timedelta(days=15),
}

# ---------------------------------------------------------------------------
# Documents required when a competency does not list its own
# ---------------------------------------------------------------------------
DEFAULT_REQUIRED_DOCUMENTS: list[str] = [
    "id_oficial",
    "curp_doc",
    "comprobante_domicilio",
    "evidencia_laboral",
    "fotografia",
]

# Certificate folio prefix: CERT-<year>-<sequence>
FOLIO_PREFIX: str = "CERT"
FOLIO_SEQUENCE_WIDTH: int = 6
