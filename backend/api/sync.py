"""Sync API endpoints."""

import logging
from typing import Callable, Optional

from fastapi import APIRouter, Depends, HTTPException, Response

from integrations.exceptions import ItemNotFoundError, SyncInProgressError
from schemas.sync import SyncRequest, SyncResultResponse, SyncStatusResponse
from services.resync_service import ResyncService
from services.sync_service import SyncService
from services.sync_types import ALL_STREAMS, SyncResult

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/sync", tags=["sync"])

SYNC_IN_PROGRESS_DETAIL = "Sync already in progress. Please wait for the current sync to complete."


def get_sync_service() -> SyncService:
    """Get SyncService instance; overridden in tests."""
    return SyncService()


def get_resync_service(
    sync_service: SyncService = Depends(get_sync_service),
) -> ResyncService:
    return ResyncService(sync_service)


def _streams(request: Optional[SyncRequest]):
    return tuple(request.streams) if request and request.streams else ALL_STREAMS


def _run(action: Callable[[], SyncResult], description: str) -> SyncResultResponse:
    """Run a sync action and map its errors to HTTP responses.

    Raises:
        HTTPException:
            - 404 Not Found: Unknown Item id
            - 409 Conflict: Sync is already in progress
            - 500 Internal Server Error: Unexpected sync error
    """
    try:
        result = action()
    except SyncInProgressError:
        raise HTTPException(status_code=409, detail=SYNC_IN_PROGRESS_DETAIL)
    except ItemNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except Exception:
        # Unexpected errors; str(e) is not exposed to the client
        logger.error("Unexpected error during %s", description, exc_info=True)
        raise HTTPException(
            status_code=500,
            detail=f"An unexpected error occurred during {description}.",
        )
    return SyncResultResponse.from_result(result)


@router.get("/status", response_model=SyncStatusResponse)
def sync_status(sync_service: SyncService = Depends(get_sync_service)):
    """Report whether a sync is currently running."""
    return SyncStatusResponse(in_progress=sync_service.is_sync_in_progress())


@router.post("", response_model=SyncResultResponse)
def trigger_sync(
    request: Optional[SyncRequest] = None,
    sync_service: SyncService = Depends(get_sync_service),
):
    """Sync every Item that does not require re-authentication.

    Always returns 200 with the aggregate result when the run happens;
    per-Item failures are reported in ``failures``.
    """
    return _run(lambda: sync_service.sync_all(_streams(request)), "sync")


@router.post("/items/{item_id}", response_model=SyncResultResponse)
def trigger_item_sync(
    item_id: str,
    request: Optional[SyncRequest] = None,
    sync_service: SyncService = Depends(get_sync_service),
):
    """Sync a single Item, even if it is flagged for re-authentication."""
    return _run(lambda: sync_service.sync_item(item_id, _streams(request)), "sync")


@router.post("/resync", response_model=SyncResultResponse)
def trigger_resync(
    request: Optional[SyncRequest] = None,
    resync_service: ResyncService = Depends(get_resync_service),
):
    """Reset cursors for every Item and re-download full history."""
    return _run(lambda: resync_service.resync_all(_streams(request)), "resync")


@router.post("/items/{item_id}/resync", response_model=SyncResultResponse)
def trigger_item_resync(
    item_id: str,
    request: Optional[SyncRequest] = None,
    resync_service: ResyncService = Depends(get_resync_service),
):
    """Reset one Item's cursors and re-download its full history."""
    return _run(lambda: resync_service.resync_item(item_id, _streams(request)), "resync")


@router.post("/items/{item_id}/reauth-complete", status_code=204)
def reauth_complete(
    item_id: str,
    sync_service: SyncService = Depends(get_sync_service),
):
    """Clear an Item's re-authentication flag after the user re-linked it."""
    try:
        sync_service.mark_reauth_complete(item_id)
    except ItemNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return Response(status_code=204)
