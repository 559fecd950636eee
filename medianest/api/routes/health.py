"""Health-check routes (liveness, readiness, metrics)."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import Response
from prometheus_client import CONTENT_TYPE_LATEST

from medianest.api.deps import Services, get_services
from medianest.core.config import get_version
from medianest.schemas import DependencyHealthResponse, HealthResponse

router = APIRouter(tags=["health"])

_version = get_version()


@router.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """Liveness probe: returns OK if the web process is running."""
    return HealthResponse(status="ok", version=_version)


@router.get(
    "/health/dependencies",
    response_model=DependencyHealthResponse,
)
async def dependency_health_check(
    services: Services = Depends(get_services),
) -> DependencyHealthResponse:
    """Readiness probe for MongoDB, RabbitMQ and Redis.

    The cache is optional, so an unreachable Redis only degrades
    the status; the store and the broker are required.
    """
    store_ok = await services.store.ping()
    broker_ok = services.publisher.is_healthy()
    cache_ok = await services.cache.ping()

    if store_ok and broker_ok:
        overall = "healthy" if cache_ok else "degraded"
    else:
        overall = "unhealthy"
    return DependencyHealthResponse(
        status=overall,
        store=store_ok,
        broker=broker_ok,
        cache=cache_ok,
    )


@router.get("/metrics", tags=["observability"])
async def prometheus_metrics(
    services: Services = Depends(get_services),
) -> Response:
    """Prometheus exposition of the process metrics."""
    return Response(
        content=services.metrics.generate(),
        media_type=CONTENT_TYPE_LATEST,
    )
