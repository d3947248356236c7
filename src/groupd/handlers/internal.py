"""Handlers for internal routes not exposed outside the cluster."""

from typing import Annotated

from fastapi import APIRouter, Depends
from safir.metadata import Metadata, get_metadata
from safir.slack.webhook import SlackRouteErrorHandler

from ..dependencies.context import RequestContext, context_dependency
from ..models.health import HealthCheck, HealthStatus

router = APIRouter(route_class=SlackRouteErrorHandler)

__all__ = ["router"]


@router.get(
    "/",
    description=(
        "Return metadata about the running application. This route does not"
        " require authentication."
    ),
    response_model=Metadata,
    response_model_exclude_none=True,
    summary="Application metadata",
    tags=["internal"],
)
async def get_index() -> Metadata:
    return get_metadata(package_name="groupd", application_name="groupd")


@router.get(
    "/health",
    description=(
        "Perform an internal health check. If caching is enabled, this"
        " checks that Redis is reachable."
    ),
    response_model=HealthCheck,
    summary="Health check",
    tags=["internal"],
)
async def get_health(
    *,
    context: Annotated[RequestContext, Depends(context_dependency)],
) -> HealthCheck:
    if context.factory.redis:
        await context.factory.redis.ping()
    return HealthCheck(status=HealthStatus.HEALTHY)
