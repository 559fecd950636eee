"""Health check response models."""

from __future__ import annotations

from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    """Returned by the liveness endpoint."""

    status: str = Field(
        ...,
        description="Service health status",
    )
    version: str = Field(
        ...,
        description="Application version",
    )


class DependencyHealthResponse(BaseModel):
    """Returned by the dependency readiness endpoint."""

    status: str = Field(
        ...,
        description="'healthy' when every dependency is usable",
    )
    store: bool = Field(
        ...,
        description="MongoDB answered a ping",
    )
    broker: bool = Field(
        ...,
        description="RabbitMQ connection and channel are open",
    )
    cache: bool = Field(
        ...,
        description="Redis answered a ping",
    )
