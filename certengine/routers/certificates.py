"""Certificate verification endpoint."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends

from certengine.core.errors import CertificationError
from certengine.models.certificate import CertificateVerification
from certengine.routers.errors import http_error
from certengine.services.certificates import CertificateLifecycleManager
from certengine.services.context import EngineContext, get_context

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/{folio}/verify", response_model=CertificateVerification)
def verify_certificate(
    folio: str,
    ctx: EngineContext = Depends(get_context),
) -> CertificateVerification:
    """Look a certificate up by folio and report whether it is still valid."""
    try:
        return CertificateLifecycleManager(ctx).verify(folio)
    except CertificationError as exc:
        raise http_error(exc) from exc
