"""Sync trigger and sync state endpoints."""
from fastapi import APIRouter, Request, HTTPException
from fastapi.responses import ORJSONResponse

from ordersync.config import config
from web.schemas import SyncResponse, SyncStateResponse
from ._deps import limiter, get_sync_service, get_logger

router = APIRouter()
logger = get_logger(__name__)


@router.post("/sync", response_model=SyncResponse)
@router.get("/sync", response_model=SyncResponse)
@limiter.limit(config.web.sync_rate_limit)
async def trigger_sync(request: Request):
    """
    Run one order sync and report its counts.

    GET is accepted for manual testing. A failed run answers 500 with the
    same payload, including the error.
    """
    sync_service = await get_sync_service()
    result = await sync_service.sync_orders()
    payload = result.to_dict()

    if not result.success:
        logger.warning(f"Triggered sync failed: {result.error}")
        return ORJSONResponse(status_code=500, content=payload)
    return payload


@router.get("/sync/status", response_model=SyncStateResponse)
@limiter.limit("60/minute")
async def get_sync_status(request: Request):
    """Get the persisted sync state row."""
    sync_service = await get_sync_service()
    status = await sync_service.get_sync_status()
    if status is None:
        raise HTTPException(status_code=404, detail="Sync state not initialized")
    return status
