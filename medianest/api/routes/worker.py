"""Worker callback routes (status changes and detections)."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Path

from medianest.api.deps import Services, get_services
from medianest.schemas import (
    ErrorResponse,
    ResultsAppendRequest,
    ResultsAppendResponse,
    StatusUpdateRequest,
    StatusUpdateResponse,
)
from medianest.services import ingestion

router = APIRouter(tags=["worker"])

ItemId = Annotated[int, Path(gt=0, description="Item identifier")]


@router.put(
    "/items/{item_id}/status",
    response_model=StatusUpdateResponse,
    responses={
        404: {"model": ErrorResponse},
        422: {"model": ErrorResponse},
    },
)
async def update_item_status(
    item_id: ItemId,
    request: StatusUpdateRequest,
    services: Services = Depends(get_services),
) -> StatusUpdateResponse:
    """Apply a status change reported by the worker.

    Re-sending the current status is accepted.  Moves the lifecycle
    does not allow (e.g. ``Completed -> Processing``) return ``422``.
    """
    previous = await ingestion.update_status(
        item_id,
        request.status,
        error_message=request.error_message,
        duration=request.duration,
        store=services.store,
        cache=services.cache,
        metrics=services.metrics,
    )
    return StatusUpdateResponse(
        id=item_id,
        status=request.status,
        previous_status=previous,
    )


@router.post(
    "/items/{item_id}/results",
    response_model=ResultsAppendResponse,
    responses={404: {"model": ErrorResponse}},
)
async def append_item_results(
    item_id: ItemId,
    request: ResultsAppendRequest,
    services: Services = Depends(get_services),
) -> ResultsAppendResponse:
    """Merge detections reported by the worker.

    Invalid entries are dropped rather than failing the request;
    ``accepted`` counts the unique valid entries.
    """
    accepted = await ingestion.append_results(
        item_id,
        request.results,
        store=services.store,
        cache=services.cache,
    )
    return ResultsAppendResponse(id=item_id, accepted=accepted)
