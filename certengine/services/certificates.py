"""Certificate lifecycle: issuance, expiry sweep, and verification.

A certificate is issued only for an approved process and only ever moves
``active -> expired``.  The expiry sweep is idempotent: the status flip is
a conditional write and expired certificates no longer match the
selection, so re-running after a partial failure is safe.

An approval whose certificate could not be created is left in
``approved`` without one; ``issue_missing`` (run by every sweep) issues it
later.  Issuance is idempotent per process.

After a non-empty expiry batch one summary is sent to every principal
holding the manage capability.  It is not window-deduped; the sweep itself
is the dedup boundary.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from uuid import UUID

from certengine.core.constants import FOLIO_PREFIX, FOLIO_SEQUENCE_WIDTH
from certengine.core.errors import (
    CandidateNotFound,
    CertificateNotFound,
    CertificationError,
    CompetencyNotFound,
    InvalidTransition,
    StaleWrite,
)
from certengine.models.candidate import Candidate
from certengine.models.certificate import (
    Certificate,
    CertificateVerification,
    CompetencyExpiryCount,
    ExpiredCertificatesSummary,
)
from certengine.models.enums import (
    CertificateStatus,
    EventName,
    NotificationKind,
    ProcessStage,
)
from certengine.models.notification import NotificationPayload
from certengine.models.process import Process
from certengine.scheduler.pool import run_partitioned
from certengine.services.context import EngineContext
from certengine.services.ledger import DedupLedger, Delivery

logger = logging.getLogger(__name__)


def add_years(moment: datetime, years: int) -> datetime:
    """Add calendar years; Feb 29 falls back to Feb 28 in non-leap years."""
    try:
        return moment.replace(year=moment.year + years)
    except ValueError:
        return moment.replace(year=moment.year + years, day=28)


def compute_expiry(issued_at: datetime, validity_years: int) -> datetime | None:
    """Return the expiry instant, or None for a non-expiring certificate."""
    if validity_years <= 0:
        return None
    return add_years(issued_at, validity_years)


def format_folio(sequence: int, year: int, prefix: str = FOLIO_PREFIX) -> str:
    return f"{prefix}-{year}-{sequence:0{FOLIO_SEQUENCE_WIDTH}d}"


def expire(certificate: Certificate) -> Certificate:
    """Return the expired copy of an active certificate."""
    if certificate.status != CertificateStatus.active:
        raise InvalidTransition(
            f"certificate {certificate.id} is {certificate.status.value}, not active"
        )
    return certificate.model_copy(update={"status": CertificateStatus.expired})


def summarize_expired(
    certificates: list[Certificate], now: datetime
) -> ExpiredCertificatesSummary:
    """Count and per-competency breakdown of an expiry batch."""
    counts = Counter(cert.competency_id for cert in certificates)
    return ExpiredCertificatesSummary(
        total_expired=len(certificates),
        by_competency=[
            CompetencyExpiryCount(competency_id=competency_id, count=count)
            for competency_id, count in counts.most_common()
        ],
        folios=[cert.folio for cert in certificates],
        generated_at=now,
    )


@dataclass
class IssuanceBatch:
    """What one missing-certificate pass did."""
    examined: int = 0
    issued: list[Certificate] = field(default_factory=list)
    failed: int = 0


@dataclass
class ExpirationBatch:
    """What one expiry pass did."""
    examined: int = 0
    expired: list[Certificate] = field(default_factory=list)
    holder_notified: int = 0
    failed: int = 0
    admin_reports_sent: int = 0


class CertificateLifecycleManager:
    def __init__(self, ctx: EngineContext) -> None:
        self.ctx = ctx
        self.ledger = DedupLedger(ctx.repository, ctx.notifier)

    # ------------------------------------------------------------------
    # Issuance
    # ------------------------------------------------------------------

    def issue(
        self,
        process: Process,
        candidate: Candidate,
        issued_by: UUID | None = None,
        now: datetime | None = None,
    ) -> Certificate:
        """Create the certificate for an approved process and notify the holder."""
        now = now or self.ctx.now()
        if process.stage != ProcessStage.approved:
            raise InvalidTransition(
                f"certificates are only issued for approved processes, "
                f"process {process.id} is {process.stage.value}"
            )

        existing = self.ctx.repository.get_certificate_for_process(process.id)
        if existing is not None:
            return existing

        competency = self.ctx.repository.get_competency(candidate.competency_id)
        if competency is None:
            raise CompetencyNotFound(f"competency {candidate.competency_id} not found")

        validity = competency.validity_years
        if validity is None:
            validity = self.ctx.default_validity_years

        sequence = self.ctx.repository.count_certificates() + 1
        certificate = Certificate(
            process_id=process.id,
            holder_id=candidate.user_id,
            competency_id=candidate.competency_id,
            level=candidate.level,
            folio=format_folio(sequence, now.year),
            status=CertificateStatus.active,
            issued_at=now,
            expires_at=compute_expiry(now, validity),
            issued_by=issued_by,
        )
        certificate = self.ctx.repository.create_certificate(certificate)

        logger.info(
            "certificate_issued",
            extra={
                "certificate_id": str(certificate.id),
                "process_id": str(process.id),
                "folio": certificate.folio,
                "expires_at": certificate.expires_at.isoformat() if certificate.expires_at else None,
            },
        )
        self.ctx.emit(
            EventName.certificate_issued,
            certificate.id,
            related_user_id=certificate.holder_id,
            data={"process_id": str(process.id), "folio": certificate.folio},
            now=now,
        )
        self.ledger.deliver(
            NotificationPayload(
                kind=NotificationKind.certificate_available,
                recipient_id=certificate.holder_id,
                subject_id=certificate.id,
                data={
                    "folio": certificate.folio,
                    "competency_id": str(certificate.competency_id),
                    "level": certificate.level,
                    "issued_at": certificate.issued_at.isoformat(),
                    "expires_at": (
                        certificate.expires_at.isoformat() if certificate.expires_at else None
                    ),
                },
            ),
            now,
        )
        return certificate

    def issue_missing(self, now: datetime | None = None) -> IssuanceBatch:
        """Issue certificates for approved processes that still lack one."""
        now = now or self.ctx.now()
        repository = self.ctx.repository
        pending = repository.find_uncertified_approved()
        batch = IssuanceBatch(examined=len(pending))

        # Sequential: folio numbers come from the running certificate count.
        for process in pending:
            try:
                candidate = repository.get_candidate(process.candidate_id)
                if candidate is None:
                    raise CandidateNotFound(f"candidate {process.candidate_id} not found")
                evaluator = (
                    repository.get_evaluator(process.evaluator_id)
                    if process.evaluator_id is not None
                    else None
                )
                certificate = self.issue(
                    process,
                    candidate,
                    issued_by=evaluator.user_id if evaluator else None,
                    now=now,
                )
            except CertificationError as exc:
                batch.failed += 1
                logger.error(
                    "certificate_issue_failed",
                    extra={
                        "process_id": str(process.id),
                        "error_code": exc.code,
                        "error_message": exc.message,
                    },
                )
                continue
            batch.issued.append(certificate)

        return batch

    # ------------------------------------------------------------------
    # Expiry sweep
    # ------------------------------------------------------------------

    def _expire_one(self, certificate: Certificate, now: datetime) -> tuple[str, Certificate | None]:
        """Flip one certificate to expired, emit, notify the holder.

        Returns ``(outcome, expired_certificate)`` where outcome is one of
        ``expired``, ``notified``, ``raced`` or ``failed``.
        """
        try:
            updated = self.ctx.repository.save_certificate(
                expire(certificate), expected_status=CertificateStatus.active
            )
        except (StaleWrite, InvalidTransition):
            logger.info(
                "certificate_already_expired",
                extra={"certificate_id": str(certificate.id)},
            )
            return "raced", None
        except Exception as exc:
            logger.error(
                "certificate_expiry_failed",
                extra={
                    "certificate_id": str(certificate.id),
                    "error_type": type(exc).__name__,
                    "error_message": str(exc),
                },
            )
            return "failed", None

        logger.info(
            "certificate_expired",
            extra={
                "certificate_id": str(updated.id),
                "folio": updated.folio,
                "holder_id": str(updated.holder_id),
            },
        )
        self.ctx.emit(
            EventName.certificate_expired,
            updated.id,
            related_user_id=updated.holder_id,
            data={
                "process_id": str(updated.process_id),
                "competency_id": str(updated.competency_id),
                "level": updated.level,
            },
            now=now,
        )

        days_expired = (now - updated.expires_at).days if updated.expires_at else 0
        delivery = self.ledger.deliver(
            NotificationPayload(
                kind=NotificationKind.certificate_expired,
                recipient_id=updated.holder_id,
                subject_id=updated.id,
                data={
                    "folio": updated.folio,
                    "competency_id": str(updated.competency_id),
                    "level": updated.level,
                    "expires_at": updated.expires_at.isoformat() if updated.expires_at else None,
                    "days_expired": days_expired,
                    "process_id": str(updated.process_id),
                },
            ),
            now,
        )
        return ("notified" if delivery == Delivery.sent else "expired"), updated

    def send_admin_report(self, expired: list[Certificate], now: datetime) -> int:
        """Send one summary per manage-capable principal; returns sends."""
        try:
            recipients = self.ctx.authorization.list_principals_with_capability(
                self.ctx.manage_capability
            )
        except Exception as exc:
            logger.error(
                "admin_report_recipients_failed",
                extra={"capability": self.ctx.manage_capability, "error_message": str(exc)},
            )
            return 0

        if not recipients:
            logger.warning(
                "admin_report_no_recipients",
                extra={"capability": self.ctx.manage_capability},
            )
            return 0

        summary = summarize_expired(expired, now)
        sent = 0
        for recipient_id in recipients:
            delivery = self.ledger.deliver(
                NotificationPayload(
                    kind=NotificationKind.expired_certificates_report,
                    recipient_id=recipient_id,
                    data=summary.model_dump(mode="json"),
                ),
                now,
            )
            if delivery == Delivery.sent:
                sent += 1

        logger.info(
            "admin_report_sent",
            extra={"total_expired": summary.total_expired, "recipients": sent},
        )
        return sent

    def run_expirations(self, now: datetime | None = None) -> ExpirationBatch:
        """Expire every active certificate past its expiry and report the batch."""
        now = now or self.ctx.now()
        candidates = self.ctx.repository.find_certificates(CertificateStatus.active, before=now)
        batch = ExpirationBatch(examined=len(candidates))

        outcomes = run_partitioned(
            candidates,
            key=lambda cert: cert.id,
            work=lambda cert: self._expire_one(cert, now),
            max_workers=self.ctx.max_workers,
        )
        for outcome, certificate in outcomes:
            if outcome == "failed":
                batch.failed += 1
            if certificate is not None:
                batch.expired.append(certificate)
            if outcome == "notified":
                batch.holder_notified += 1
            elif outcome == "expired":
                batch.failed += 1  # expired but the holder notice failed

        if batch.expired:
            batch.admin_reports_sent = self.send_admin_report(batch.expired, now)
        return batch

    def sweep_expirations(self, now: datetime | None = None) -> list[Certificate]:
        """Expire due certificates; returns the ones this call expired."""
        return self.run_expirations(now).expired

    # ------------------------------------------------------------------
    # Verification
    # ------------------------------------------------------------------

    def verify(self, folio: str, now: datetime | None = None) -> CertificateVerification:
        now = now or self.ctx.now()
        certificate = self.ctx.repository.get_certificate_by_folio(folio)
        if certificate is None:
            raise CertificateNotFound(f"no certificate with folio {folio}")

        is_expired = certificate.status == CertificateStatus.expired or (
            certificate.expires_at is not None and certificate.expires_at <= now
        )
        return CertificateVerification(
            folio=certificate.folio,
            valid=not is_expired,
            status=certificate.status,
            issued_at=certificate.issued_at,
            expires_at=certificate.expires_at,
            is_expired=is_expired,
        )
