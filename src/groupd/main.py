"""Application definition for groupd."""

from __future__ import annotations

import json
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from importlib.metadata import version

import structlog
from fastapi import FastAPI
from fastapi.openapi.utils import get_openapi
from safir.fastapi import ClientRequestError, client_request_error_handler
from safir.logging import configure_uvicorn_logging
from safir.slack.webhook import SlackRouteErrorHandler

from .dependencies.config import config_dependency
from .dependencies.context import context_dependency
from .handlers import api, internal

__all__ = ["create_app", "create_openapi"]


def create_app(*, load_config: bool = True) -> FastAPI:
    """Create the FastAPI application.

    This is in a function rather than using a global variable (as is more
    typical for FastAPI) so that the test suite can recreate the application
    after changing the configuration.

    Parameters
    ----------
    load_config
        If set to `False`, do not try to load the configuration. This is used
        primarily for OpenAPI schema generation, where constructing the app is
        required but the configuration won't matter.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
        config = config_dependency.config()
        await context_dependency.initialize(config)

        yield

        await context_dependency.aclose()

    app = FastAPI(
        title="groupd",
        description=(
            "groupd answers group membership questions about users and groups"
            " from an Active Directory server, caching the answers in Redis."
        ),
        version=version("groupd"),
        tags_metadata=[
            {
                "name": "membership",
                "description": "Organizational group (e-group) membership.",
            },
            {
                "name": "unixmembership",
                "description": "Computing group (unix group) membership.",
            },
            {
                "name": "search",
                "description": "Search for users and groups.",
            },
            {
                "name": "update",
                "description": "Refresh cached memberships in bulk.",
            },
            {
                "name": "internal",
                "description": "Internal routes used by health checks.",
            },
        ],
        lifespan=lifespan,
    )

    # Add all of the routes.
    app.include_router(api.router, prefix="/api/v1")
    app.include_router(internal.router)

    # Load configuration if it is available to us and configure Uvicorn
    # logging.
    config = None
    if load_config:
        config = config_dependency.config()
        configure_uvicorn_logging(config.log_level)

    # Configure Slack alerts.
    if config and config.slack_alerts and config.slack_webhook:
        logger = structlog.get_logger("groupd")
        SlackRouteErrorHandler.initialize(
            config.slack_webhook.get_secret_value(), "groupd", logger
        )
        logger.debug("Initialized Slack webhook")

    # Handle exceptions descended from ClientRequestError.
    app.exception_handler(ClientRequestError)(client_request_error_handler)

    return app


def create_openapi() -> str:
    """Generate the OpenAPI schema.

    Returns
    -------
    str
        OpenAPI schema as serialized JSON.
    """
    app = create_app(load_config=False)
    schema = get_openapi(
        title=app.title,
        description=app.description,
        version=app.version,
        routes=app.routes,
    )
    return json.dumps(schema)
