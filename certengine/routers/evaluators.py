"""Evaluator lookup endpoints."""

from __future__ import annotations

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, Query

from certengine.core.errors import CertificationError
from certengine.models.evaluator import Evaluator, EvaluatorWorkload
from certengine.routers.errors import http_error
from certengine.services.assignment import EvaluatorAssignmentService
from certengine.services.context import EngineContext, get_context

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/available", response_model=list[Evaluator])
def available_evaluators(
    competency_id: UUID = Query(..., description="Competency the evaluator must cover"),
    ctx: EngineContext = Depends(get_context),
) -> list[Evaluator]:
    """Active evaluators able to evaluate the competency."""
    try:
        return EvaluatorAssignmentService(ctx).list_available(competency_id)
    except CertificationError as exc:
        raise http_error(exc) from exc


@router.get("/{evaluator_id}/workload", response_model=EvaluatorWorkload)
def evaluator_workload(
    evaluator_id: UUID,
    ctx: EngineContext = Depends(get_context),
) -> EvaluatorWorkload:
    try:
        return EvaluatorAssignmentService(ctx).workload(evaluator_id)
    except CertificationError as exc:
        raise http_error(exc) from exc
