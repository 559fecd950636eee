"""Client-facing item routes (upload registration and lookups)."""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Path, status

from medianest.api.deps import Services, get_services
from medianest.schemas import (
    ErrorResponse,
    ItemRecord,
    ItemUploadRequest,
    ItemUploadResponse,
    ResultsResponse,
    StatusView,
)
from medianest.services import ingestion

logger = logging.getLogger(__name__)

router = APIRouter(tags=["items"])

ItemId = Annotated[int, Path(gt=0, description="Item identifier")]


@router.post(
    "/items",
    response_model=ItemUploadResponse,
    status_code=status.HTTP_201_CREATED,
    responses={503: {"model": ErrorResponse}},
)
async def register_item(
    request: ItemUploadRequest,
    services: Services = Depends(get_services),
) -> ItemUploadResponse:
    """Register an uploaded item and enqueue its processing job.

    The media must already be stored; ``locator`` tells the worker
    where to find it.  Returns ``503`` when the job could not be
    enqueued (the item is then recorded as ``Failed``).
    """
    item_id = await ingestion.issue_and_enqueue(
        request.title,
        request.description,
        request.locator,
        sequence=services.sequence,
        store=services.store,
        publisher=services.publisher,
        metrics=services.metrics,
    )
    return ItemUploadResponse(id=item_id)


@router.get(
    "/items/{item_id}",
    response_model=ItemRecord,
    responses={404: {"model": ErrorResponse}},
)
async def read_item(
    item_id: ItemId,
    services: Services = Depends(get_services),
) -> ItemRecord:
    """Full item record, read from the durable store."""
    return await ingestion.get_item(item_id, store=services.store)


@router.get(
    "/items/{item_id}/status",
    response_model=StatusView,
    responses={404: {"model": ErrorResponse}},
)
async def read_status(
    item_id: ItemId,
    services: Services = Depends(get_services),
) -> StatusView:
    """Status and duration; served from the cache when possible."""
    return await ingestion.get_status(
        item_id,
        store=services.store,
        cache=services.cache,
    )


@router.get(
    "/items/{item_id}/results",
    response_model=ResultsResponse,
    responses={404: {"model": ErrorResponse}},
)
async def read_results(
    item_id: ItemId,
    services: Services = Depends(get_services),
) -> ResultsResponse:
    """Deduplicated detections recorded by the worker."""
    results = await ingestion.get_results(item_id, store=services.store)
    return ResultsResponse(id=item_id, results=results)
