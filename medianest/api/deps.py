"""
FastAPI dependency-injection helpers.

The lifespan in ``medianest.main`` builds one ``Services`` container
per process and stores it on ``app.state.services``; route handlers
receive it through ``Depends(get_services)``.  Tests install their
own container with fakes.
"""

from __future__ import annotations

from dataclasses import dataclass

from fastapi import Request

from medianest.core.metrics import PrometheusMetrics
from medianest.services.publisher import BrokerPublisher
from medianest.services.sequence import SequenceGenerator
from medianest.services.status_cache import StatusCache
from medianest.services.status_store import StatusStore


@dataclass
class Services:
    """Process-wide collaborators of the ingestion orchestrator."""

    sequence: SequenceGenerator
    store: StatusStore
    cache: StatusCache
    publisher: BrokerPublisher
    metrics: PrometheusMetrics


def get_services(request: Request) -> Services:
    """Return the container built at startup.

    Usage as a FastAPI dependency::

        @router.get("/items/{item_id}")
        async def read(item_id: int, services: Services = Depends(get_services)):
            ...
    """
    return request.app.state.services
