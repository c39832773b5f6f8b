"""Error taxonomy for the certification engine.

Validation errors and conflict errors are raised synchronously to the
caller and never retried automatically.  Collaborator errors are
transient: the sweep logs them and retries on its next run.  Invariant
violations quarantine the offending record.

Every error carries a stable ``code`` that the HTTP layer returns
verbatim, and the ``http_status`` it is mapped to.
"""

from __future__ import annotations


class CertificationError(Exception):
    """Base class for all engine errors."""

    code: str = "certification_error"
    http_status: int = 500

    def __init__(self, message: str = "", *, code: str | None = None) -> None:
        self.message = message or self.code.replace("_", " ")
        if code is not None:
            self.code = code
        super().__init__(self.message)

    def to_dict(self) -> dict[str, str]:
        return {"code": self.code, "message": self.message}


# ---------------------------------------------------------------------------
# Validation errors (bad input)
# ---------------------------------------------------------------------------

class ValidationError(CertificationError):
    code = "validation_error"
    http_status = 422


class NotFoundError(ValidationError):
    code = "not_found"
    http_status = 404


class ProcessNotFound(NotFoundError):
    code = "process_not_found"


class CandidateNotFound(NotFoundError):
    code = "candidate_not_found"


class EvaluatorNotFound(NotFoundError):
    code = "evaluator_not_found"


class CompetencyNotFound(NotFoundError):
    code = "competency_not_found"


class CertificateNotFound(NotFoundError):
    code = "certificate_not_found"


class InvalidLevel(ValidationError):
    code = "invalid_level"


class InvalidTransition(ValidationError):
    code = "invalid_transition"


class InvalidResult(ValidationError):
    code = "invalid_result"


class NotAssignedEvaluator(ValidationError):
    code = "not_assigned_evaluator"
    http_status = 403


# ---------------------------------------------------------------------------
# Conflict errors (caller must choose a different action)
# ---------------------------------------------------------------------------

class ConflictError(CertificationError):
    code = "conflict"
    http_status = 409


class AlreadyFinalized(ConflictError):
    code = "already_finalized"


class DuplicateAssignment(ConflictError):
    code = "process_already_assigned"


class EvaluatorInactive(ConflictError):
    code = "evaluator_inactive"


class EvaluatorAtCapacity(ConflictError):
    code = "evaluator_at_capacity"


class EvaluatorNotQualified(ConflictError):
    code = "evaluator_not_qualified"


class ActiveProcessExists(ConflictError):
    code = "active_process_exists"


class StaleWrite(ConflictError):
    """A conditional write found the record in a different state."""

    code = "stale_write"


# ---------------------------------------------------------------------------
# Record-level faults
# ---------------------------------------------------------------------------

class InvariantViolation(CertificationError):
    """Record is inconsistent; excluded from automation until corrected."""

    code = "invariant_violation"
    http_status = 409


class CollaboratorError(CertificationError):
    """Transient failure of the repository or notifier."""

    code = "collaborator_unavailable"
    http_status = 503
