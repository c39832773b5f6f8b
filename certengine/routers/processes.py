"""Certification process endpoints.

POST /                        -- open a certification request (201).
POST /{id}/documents/check    -- evaluate document completeness.
POST /{id}/assignment         -- assign an evaluator.
POST /{id}/evaluation         -- submit the evaluator's result.
"""

from __future__ import annotations

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, Header

from certengine.core.errors import CertificationError
from certengine.models.candidate import CandidateCreate
from certengine.models.process import (
    AssignmentRequest,
    AssignmentResult,
    DocumentStatus,
    EvaluationOutcome,
    EvaluationSubmit,
    Process,
)
from certengine.routers.errors import http_error
from certengine.services.assignment import EvaluatorAssignmentService
from certengine.services.context import EngineContext, get_context
from certengine.services.processes import ProcessService

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("", response_model=Process, status_code=201)
def request_certification(
    body: CandidateCreate,
    ctx: EngineContext = Depends(get_context),
) -> Process:
    """Open a certification process in ``requested``.

    Returns 409 when the candidate already has an open process.
    """
    try:
        return ProcessService(ctx).request_certification(
            body.user_id, body.competency_id, body.level
        )
    except CertificationError as exc:
        raise http_error(exc) from exc


@router.post("/{process_id}/documents/check", response_model=DocumentStatus)
def check_documents(
    process_id: UUID,
    ctx: EngineContext = Depends(get_context),
) -> DocumentStatus:
    try:
        return ProcessService(ctx).check_documents(process_id)
    except CertificationError as exc:
        raise http_error(exc) from exc


@router.post("/{process_id}/assignment", response_model=AssignmentResult)
def assign_evaluator(
    process_id: UUID,
    body: AssignmentRequest,
    ctx: EngineContext = Depends(get_context),
) -> AssignmentResult:
    """Assign an evaluator; 409 on capacity, inactive, duplicate or finalized."""
    try:
        return EvaluatorAssignmentService(ctx).assign(process_id, body.evaluator_id, body.note)
    except CertificationError as exc:
        raise http_error(exc) from exc


@router.post("/{process_id}/evaluation", response_model=EvaluationOutcome)
def submit_evaluation(
    process_id: UUID,
    body: EvaluationSubmit,
    x_user_id: UUID = Header(...),
    ctx: EngineContext = Depends(get_context),
) -> EvaluationOutcome:
    """Record the result from the evaluator identified by ``X-User-Id``."""
    try:
        return ProcessService(ctx).submit_evaluation(process_id, x_user_id, body)
    except CertificationError as exc:
        raise http_error(exc) from exc
