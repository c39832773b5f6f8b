"""Mapping of engine errors onto HTTP responses."""

from fastapi import HTTPException

from certengine.core.errors import CertificationError


def http_error(exc: CertificationError) -> HTTPException:
    """Return the ``HTTPException`` for an engine error.

    The body is ``{"detail": {"code": ..., "message": ...}}``.
    """
    return HTTPException(status_code=exc.http_status, detail=exc.to_dict())
