"""Manual sweep trigger.

POST /run -- starts a sweep in a background thread; 409 if one is running.
"""

from __future__ import annotations

import logging
import threading
from typing import Any
from uuid import uuid4

from fastapi import APIRouter, Depends, HTTPException

from certengine.scheduler.lock import (
    acquire_sweep_lock,
    get_current_run_id,
    release_sweep_lock,
)
from certengine.services.context import EngineContext, get_context
from certengine.services.sweep import run_sweep

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/run", status_code=202)
async def trigger_sweep(ctx: EngineContext = Depends(get_context)) -> dict[str, Any]:
    """Trigger a full sweep without waiting for it.

    Returns 202 if the sweep starts, 409 if one is already running.  The
    lock is taken here and handed to the sweep thread, which releases it.
    """
    run_id = uuid4()
    if not acquire_sweep_lock(run_id):
        current_run = get_current_run_id()
        raise HTTPException(
            status_code=409,
            detail={"code": "sweep_already_running", "message": "Sweep already in progress"},
            headers={"X-Current-Run-Id": str(current_run) if current_run else "unknown"},
        )

    def _run() -> None:
        run_sweep(trigger="manual", ctx=ctx, run_id=run_id, lock_held=True)

    thread = threading.Thread(target=_run, daemon=True)
    try:
        thread.start()
    except RuntimeError:
        release_sweep_lock()
        raise

    return {
        "run_id": str(run_id),
        "status": "started",
        "message": "Certification sweep initiated",
    }
