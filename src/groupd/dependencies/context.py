"""Request context dependency for FastAPI.

This dependency gathers the configuration, a request logger, and a component
factory into a single object for the convenience of writing request handlers.
"""

from dataclasses import dataclass
from typing import Annotated, Any

from fastapi import Depends, Request
from safir.dependencies.logger import logger_dependency
from structlog.stdlib import BoundLogger

from ..config import Config
from ..factory import Factory, ProcessContext

__all__ = [
    "ContextDependency",
    "RequestContext",
    "context_dependency",
]


@dataclass(slots=True)
class RequestContext:
    """Holds the incoming request and its surrounding context."""

    request: Request
    """The incoming request."""

    config: Config
    """groupd's configuration."""

    logger: BoundLogger
    """The request logger, rebound with discovered context."""

    factory: Factory
    """The component factory."""

    def rebind_logger(self, **values: Any) -> None:
        """Add the given values to the logging context.

        Parameters
        ----------
        **values
            Additional values that should be added to the logging context.
        """
        self.logger = self.logger.bind(**values)
        self.factory.set_logger(self.logger)


class ContextDependency:
    """Provide a per-request context as a FastAPI dependency.

    Each request gets a `RequestContext`. The portions of the context that
    are shared by all requests are collected into the single process-global
    `~groupd.factory.ProcessContext` and reused with each request.
    """

    def __init__(self) -> None:
        self._config: Config | None = None
        self._process_context: ProcessContext | None = None

    async def __call__(
        self,
        *,
        request: Request,
        logger: Annotated[BoundLogger, Depends(logger_dependency)],
    ) -> RequestContext:
        """Create a per-request context and return it."""
        if not self._config or not self._process_context:
            raise RuntimeError("ContextDependency not initialized")
        return RequestContext(
            request=request,
            config=self._config,
            logger=logger,
            factory=Factory(self._process_context, logger),
        )

    @property
    def process_context(self) -> ProcessContext:
        """The underlying process context, primarily for use in tests."""
        if not self._process_context:
            raise RuntimeError("ContextDependency not initialized")
        return self._process_context

    async def aclose(self) -> None:
        """Clean up the per-process configuration.

        Outstanding background refreshes are cancelled.
        """
        if self._process_context:
            await self._process_context.aclose()
        self._config = None
        self._process_context = None

    async def initialize(self, config: Config) -> None:
        """Initialize the process-wide shared context.

        Parameters
        ----------
        config
            groupd configuration.
        """
        if self._process_context:
            await self._process_context.aclose()
        self._config = config
        self._process_context = await ProcessContext.from_config(config)


context_dependency = ContextDependency()
"""The dependency that will return the per-request context."""
