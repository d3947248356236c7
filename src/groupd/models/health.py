"""Response model for the groupd health check."""

from __future__ import annotations

from enum import Enum
from typing import Annotated

from pydantic import BaseModel, Field

__all__ = [
    "HealthCheck",
    "HealthStatus",
]


class HealthStatus(str, Enum):
    """Overall state of groupd.

    An unreachable Redis cache makes the health check fail with a server
    error, so a response body always reports the healthy state.
    """

    HEALTHY = "healthy"


class HealthCheck(BaseModel):
    """Result of checking that groupd can reach its cache."""

    status: Annotated[
        HealthStatus,
        Field(
            title="Health status",
            description=(
                "Whether groupd can serve lookups. The directory itself is not"
                " checked, since every lookup opens its own connection."
            ),
            examples=[HealthStatus.HEALTHY],
        ),
    ]
