"""Sweep orchestration.

Runs every time-polled job once, in order:
1. Document reminders
2. Evaluator stall reminders
3. Evaluation deadline alerts
4. Certificate expiring-soon reminders
5. Certificate issuance for approvals still missing one
6. Certificate expirations (plus the admin summary)

Only one sweep runs at a time per process.  Per-record failures are logged
and counted, never fatal; a sweep with any failure ends ``partial``.
"""

from __future__ import annotations

import logging
import time
from datetime import datetime
from uuid import UUID, uuid4

from certengine.models.enums import JobKind, SweepStatus
from certengine.models.sweep import JobReport, SweepReport
from certengine.scheduler.lock import (
    acquire_sweep_lock,
    record_sweep_report,
    release_sweep_lock,
)
from certengine.scheduler.pool import run_partitioned
from certengine.services.certificates import CertificateLifecycleManager
from certengine.services.context import EngineContext, get_context
from certengine.services.ledger import DedupLedger, Delivery
from certengine.services.reminders import ReminderJob, reminder_jobs

logger = logging.getLogger(__name__)


def _remind(job: ReminderJob, ledger: DedupLedger, record, now: datetime) -> Delivery | None:
    """Decide and deliver one reminder; None when the record is not due."""
    try:
        if not job.is_due(record, now):
            return None
        payload = job.payload(record, now)
        delivery = ledger.deliver_once(payload, job.window, now)
    except Exception as exc:
        logger.error(
            "reminder_failed",
            extra={
                "job": job.kind.value,
                "record_id": str(getattr(record, "id", None) or record.process.id),
                "error_type": type(exc).__name__,
                "error_message": str(exc),
            },
        )
        return Delivery.failed

    if delivery == Delivery.sent:
        logger.info(
            "reminder_sent",
            extra={
                "job": job.kind.value,
                "recipient_id": str(payload.recipient_id),
                "subject_id": str(payload.subject_id),
            },
        )
    return delivery


def run_job(job: ReminderJob, ctx: EngineContext, now: datetime) -> JobReport:
    """Run one reminder job and return its counters."""
    report = JobReport(kind=job.kind)
    ledger = DedupLedger(ctx.repository, ctx.notifier)

    try:
        selection = job.select(now)
    except Exception as exc:
        logger.error(
            "job_selection_failed",
            extra={
                "job": job.kind.value,
                "error_type": type(exc).__name__,
                "error_message": str(exc),
            },
        )
        report.failed = 1
        return report

    report.examined = len(selection.records) + selection.failed + selection.quarantined
    report.failed = selection.failed
    report.quarantined = selection.quarantined

    outcomes = run_partitioned(
        selection.records,
        key=job.dedup_key,
        work=lambda record: _remind(job, ledger, record, now),
        max_workers=ctx.max_workers,
    )
    for outcome in outcomes:
        if outcome == Delivery.sent:
            report.sent += 1
        elif outcome == Delivery.skipped:
            report.skipped += 1
        elif outcome == Delivery.failed:
            report.failed += 1
    return report


def _log_phase(report: JobReport) -> None:
    logger.info(
        "phase_complete",
        extra={
            "event": "phase_complete",
            "phase": report.kind.value,
            "count": report.examined,
            "sent": report.sent,
            "skipped": report.skipped,
            "failed": report.failed,
            "duration_ms": report.duration_ms,
        },
    )


def run_sweep(
    now: datetime | None = None,
    trigger: str = "scheduler",
    ctx: EngineContext | None = None,
    run_id: UUID | None = None,
    lock_held: bool = False,
) -> SweepReport:
    """Execute one full sweep at *now* (defaults to the context clock).

    Never raises: a second concurrent call returns a ``skipped`` report and
    an unexpected error ends the run ``failed``.  With ``lock_held`` the
    caller has already acquired the sweep lock for *run_id*; the sweep
    releases it when done either way.
    """
    run_id = run_id or uuid4()
    ctx = ctx or get_context()
    now = now or ctx.now()
    report = SweepReport(run_id=run_id, now=now, trigger=trigger)

    if not lock_held and not acquire_sweep_lock(run_id):
        logger.warning(
            "sweep_skipped_already_running",
            extra={"run_id": str(run_id), "trigger": trigger},
        )
        report.status = SweepStatus.skipped
        report.reason = "sweep_already_running"
        return report

    start_time = time.time()
    logger.info(
        "sweep_start",
        extra={
            "event": "sweep_start",
            "run_id": str(run_id),
            "trigger": trigger,
            "now": now.isoformat(),
        },
    )

    try:
        for job in reminder_jobs(ctx):
            phase_start = time.time()
            job_report = run_job(job, ctx, now)
            job_report.duration_ms = int((time.time() - phase_start) * 1000)
            report.jobs.append(job_report)
            _log_phase(job_report)

        # ---- Certificate issuance ----
        phase_start = time.time()
        issuance_report = JobReport(kind=JobKind.certificate_issuance)
        try:
            issued = CertificateLifecycleManager(ctx).issue_missing(now)
            issuance_report.examined = issued.examined
            issuance_report.sent = len(issued.issued)
            issuance_report.failed = issued.failed
        except Exception as exc:
            logger.error(
                "job_selection_failed",
                extra={
                    "job": JobKind.certificate_issuance.value,
                    "error_type": type(exc).__name__,
                    "error_message": str(exc),
                },
            )
            issuance_report.failed = 1
        issuance_report.duration_ms = int((time.time() - phase_start) * 1000)
        report.jobs.append(issuance_report)
        _log_phase(issuance_report)

        # ---- Certificate expirations ----
        phase_start = time.time()
        expiry_report = JobReport(kind=JobKind.certificate_expiration)
        try:
            batch = CertificateLifecycleManager(ctx).run_expirations(now)
            expiry_report.examined = batch.examined
            expiry_report.sent = batch.holder_notified
            expiry_report.failed = batch.failed
            report.expired_certificates = [cert.id for cert in batch.expired]
            report.admin_reports_sent = batch.admin_reports_sent
        except Exception as exc:
            logger.error(
                "job_selection_failed",
                extra={
                    "job": JobKind.certificate_expiration.value,
                    "error_type": type(exc).__name__,
                    "error_message": str(exc),
                },
            )
            expiry_report.failed = 1
        expiry_report.duration_ms = int((time.time() - phase_start) * 1000)
        report.jobs.append(expiry_report)
        _log_phase(expiry_report)

        # ---- Complete ----
        has_errors = any(job.failed for job in report.jobs)
        report.status = SweepStatus.partial if has_errors else SweepStatus.success
        report.duration_seconds = round(time.time() - start_time, 2)

        logger.info(
            "sweep_complete",
            extra={
                "event": "sweep_complete",
                "run_id": str(run_id),
                "status": report.status.value,
                "expired_certificates": len(report.expired_certificates),
                "admin_reports_sent": report.admin_reports_sent,
                "duration_seconds": report.duration_seconds,
            },
        )
        return report

    except Exception as exc:
        report.status = SweepStatus.failed
        report.reason = str(exc)
        report.duration_seconds = round(time.time() - start_time, 2)
        logger.error(
            "sweep_error",
            extra={
                "event": "sweep_error",
                "run_id": str(run_id),
                "error": str(exc),
            },
        )
        return report

    finally:
        record_sweep_report(report)
        release_sweep_lock()
