"""Liveness plus the engine's background state.

``database`` queries the ``processes`` table, ``scheduler`` reflects
APScheduler, ``sweep_run_id`` is set while a sweep holds the lock and
``last_sweep`` summarizes the most recent finished run.
"""

import logging
from typing import Any

from fastapi import APIRouter
from starlette.responses import JSONResponse

from certengine.db.supabase import get_supabase
from certengine.scheduler.jobs import is_scheduler_running
from certengine.scheduler.lock import get_current_run_id, get_last_sweep_report

logger = logging.getLogger(__name__)

router = APIRouter()


def _check_database() -> bool:
    try:
        result = get_supabase().table("processes").select("id").limit(1).execute()
    except Exception as exc:
        logger.warning(
            "health_database_unreachable",
            extra={"error_type": type(exc).__name__, "error_message": str(exc)},
        )
        return False
    return result is not None


@router.get("/health")
async def health_check() -> Any:
    """200 when the database answers, 503 otherwise."""
    connected = _check_database()
    current_run = get_current_run_id()
    last = get_last_sweep_report()

    payload: dict[str, Any] = {
        "status": "ok" if connected else "degraded",
        "database": "connected" if connected else "disconnected",
        "scheduler": "running" if is_scheduler_running() else "stopped",
        "sweep_run_id": str(current_run) if current_run else None,
        "last_sweep": (
            {
                "run_id": str(last.run_id),
                "trigger": last.trigger,
                "status": last.status.value,
                "now": last.now.isoformat(),
                "expired_certificates": len(last.expired_certificates),
            }
            if last
            else None
        ),
    }

    if not connected:
        return JSONResponse(status_code=503, content=payload)
    return payload
