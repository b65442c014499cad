"""Tagging run trigger endpoints."""

from collections.abc import Awaitable, Callable
from datetime import date
from typing import Any

import structlog
from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from order_tagger.config import Settings, get_settings
from order_tagger.exceptions import SyncRunError
from order_tagger.models import DateWindow
from order_tagger.services.order_tagging import RunSummary, run_tagging

logger = structlog.get_logger()

router = APIRouter()

RunExecutor = Callable[[DateWindow, bool], Awaitable[RunSummary]]


# =============================================================================
# Models
# =============================================================================


class RunRequest(BaseModel):
    """Date window to (re)tag. Dates are whole UTC days, both inclusive."""

    from_date: date | None = Field(None, description="First day of the window (YYYY-MM-DD)")
    to_date: date | None = Field(None, description="Last day of the window (YYYY-MM-DD)")
    dry_run: bool = Field(False, description="Compute tags without writing them")


class RunResponse(BaseModel):
    """Summary of a completed tagging run."""

    success: bool
    summary: dict[str, Any]


class BackgroundRunResponse(BaseModel):
    """Acknowledgement of a queued tagging run."""

    queued: bool
    task_id: str
    from_date: str
    to_date: str


# =============================================================================
# Dependencies
# =============================================================================


def get_run_executor(settings: Settings = Depends(get_settings)) -> RunExecutor:
    """Dependency returning the coroutine that performs one run."""

    async def execute(window: DateWindow, dry_run: bool) -> RunSummary:
        return await run_tagging(settings, window, dry_run=dry_run)

    return execute


def _validate_window(run: RunRequest) -> DateWindow:
    if run.from_date is None or run.to_date is None:
        raise HTTPException(status_code=400, detail="Both from_date and to_date are required.")
    try:
        return DateWindow(from_date=run.from_date, to_date=run.to_date)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e


# =============================================================================
# Endpoints
# =============================================================================


@router.post("", response_model=RunResponse)
async def start_run(
    run: RunRequest,
    execute: RunExecutor = Depends(get_run_executor),
) -> Any:
    """
    Tag every order created in the window and wait for the run to finish.

    Each customer order gets its purchase sequence number and either
    `new-customer` or `returning-customer`. Other tags are preserved.
    Re-running the same window is safe.
    """
    window = _validate_window(run)
    logger.info("Running tagger", **window.to_dict(), dry_run=run.dry_run)

    try:
        summary = await execute(window, run.dry_run)
    except SyncRunError as e:
        logger.error("Tagging run failed", error=str(e))
        body = RunResponse(
            success=False,
            summary=e.summary.to_dict() if isinstance(e.summary, RunSummary) else {"error": str(e)},
        )
        return JSONResponse(status_code=502, content=body.model_dump())

    return RunResponse(success=True, summary=summary.to_dict())


@router.post("/background", response_model=BackgroundRunResponse, status_code=202)
async def enqueue_run(run: RunRequest) -> BackgroundRunResponse:
    """Queue a tagging run on the sync worker and return immediately."""
    window = _validate_window(run)

    from sync_worker.tasks.tag_orders import tag_orders_in_window

    result = tag_orders_in_window.delay(
        window.from_date.isoformat(), window.to_date.isoformat(), dry_run=run.dry_run
    )
    logger.info("Tagging run queued", task_id=result.id, **window.to_dict())
    return BackgroundRunResponse(queued=True, task_id=result.id, **window.to_dict())
