"""
Pydantic models for records, cache entries, messages and API payloads.

All data contracts live here so that route handlers and services
can import lightweight schema objects without circular
dependencies.

For convenience every public model is re-exported from this
``__init__`` so that ``from medianest.schemas import ItemRecord``
keeps working.
"""

from medianest.schemas.cache import CacheEntry
from medianest.schemas.enums import ItemStatus
from medianest.schemas.health import DependencyHealthResponse, HealthResponse
from medianest.schemas.items import ItemRecord, ResultEntry, StatusView
from medianest.schemas.messages import QueueMessage
from medianest.schemas.requests import (
    ItemUploadRequest,
    ResultsAppendRequest,
    StatusUpdateRequest,
)
from medianest.schemas.responses import (
    ErrorResponse,
    ItemUploadResponse,
    ResultsAppendResponse,
    ResultsResponse,
    StatusUpdateResponse,
)

__all__ = [
    "CacheEntry",
    "DependencyHealthResponse",
    "ErrorResponse",
    "HealthResponse",
    "ItemRecord",
    "ItemStatus",
    "ItemUploadRequest",
    "ItemUploadResponse",
    "QueueMessage",
    "ResultEntry",
    "ResultsAppendRequest",
    "ResultsAppendResponse",
    "ResultsResponse",
    "StatusUpdateRequest",
    "StatusUpdateResponse",
    "StatusView",
]
