"""Enum types mirroring PostgreSQL custom enums of the certification schema."""

from enum import Enum


class CandidateStatus(str, Enum):
    """Lifecycle status of a candidate request."""
    pending = "pending"
    renewal = "renewal"  # re-requested while holding an approval
    approved = "approved"
    rejected = "rejected"


class ProcessStage(str, Enum):
    """Current phase of a certification process."""
    requested = "requested"
    under_evaluation = "under_evaluation"
    pending_review = "pending_review"
    approved = "approved"
    rejected = "rejected"

    @property
    def is_terminal(self) -> bool:
        return self in (ProcessStage.approved, ProcessStage.rejected)


class EvaluationResult(str, Enum):
    """Outcome submitted by an evaluator."""
    approved = "approved"
    rejected = "rejected"
    inconclusive = "inconclusive"


class EvaluatorStatus(str, Enum):
    active = "active"
    inactive = "inactive"


class CertificateStatus(str, Enum):
    """Certificate status.  Only ``active -> expired`` is allowed."""
    active = "active"
    expired = "expired"


class NotificationKind(str, Enum):
    """Notification kinds the engine asks the notifier to deliver."""
    document_reminder = "document_reminder"
    evaluator_stall_reminder = "evaluator_stall_reminder"
    deadline_approaching = "deadline_approaching"
    new_assignment = "new_assignment"
    evaluator_assigned = "evaluator_assigned"
    evaluation_result = "evaluation_result"
    certificate_available = "certificate_available"
    certificate_expiring_soon = "certificate_expiring_soon"
    certificate_expired = "certificate_expired"
    expired_certificates_report = "expired_certificates_report"


class JobKind(str, Enum):
    """Job classes enumerated by a sweep, in execution order."""
    document_reminder = "document_reminder"
    evaluator_stall = "evaluator_stall"
    deadline_approaching = "deadline_approaching"
    certificate_expiring_soon = "certificate_expiring_soon"
    certificate_issuance = "certificate_issuance"
    certificate_expiration = "certificate_expiration"


class SweepStatus(str, Enum):
    """Outcome of one sweep run."""
    success = "success"
    partial = "partial"
    failed = "failed"
    skipped = "skipped"


class EventName(str, Enum):
    """Structured domain events emitted to the event sink."""
    process_requested = "process_requested"
    evaluator_assigned = "evaluator_assigned"
    evaluation_submitted = "evaluation_submitted"
    certification_completed = "certification_completed"
    certificate_issued = "certificate_issued"
    certificate_expired = "certificate_expired"
    invariant_violation = "invariant_violation"
