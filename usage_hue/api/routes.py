from __future__ import annotations

import json
import logging

from fastapi import APIRouter, BackgroundTasks, Depends, Request
from fastapi.responses import JSONResponse

from ..core.timeutil import to_epoch_ms
from ..services.scheduler import UsageScheduler
from .schemas import ErrorResponse, OkResponse, StatusResponse

logger = logging.getLogger(__name__)

router = APIRouter()


# Overridden in main via app.dependency_overrides
def get_scheduler() -> UsageScheduler:
    raise RuntimeError("Scheduler dependency not configured")


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=ErrorResponse(error=message).model_dump())


@router.post("/usage", response_model=OkResponse, responses={400: {"model": ErrorResponse}, 503: {"model": ErrorResponse}})
async def push_usage(
    request: Request,
    background: BackgroundTasks,
    svc: UsageScheduler = Depends(get_scheduler),
):
    body = await request.body()
    try:
        payload = json.loads(body)
    except (ValueError, UnicodeDecodeError):
        logger.info("Rejected push: invalid JSON (%d bytes)", len(body))
        return _error(400, "Invalid JSON")

    if not svc.running:
        logger.info("Rejected push: daemon is shutting down")
        return _error(503, "Daemon is shutting down")

    snapshot = svc.accept_push(payload)
    if snapshot is None:
        logger.info("Rejected push: no usage figures found")
        return _error(400, "Could not parse usage data")

    # Respond right away; the light update happens after the response is sent
    background.add_task(svc.update_light, "push", False)
    return OkResponse()


@router.get("/status", response_model=StatusResponse, response_model_by_alias=True)
async def status(svc: UsageScheduler = Depends(get_scheduler)):
    last_push = svc.resolver.store.last_push_at
    return StatusResponse(
        running=True,
        extension_connected=last_push is not None,
        last_update=to_epoch_ms(last_push) if last_push else None,
    )
