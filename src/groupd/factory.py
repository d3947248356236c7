"""Create groupd components."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import aclosing, asynccontextmanager
from dataclasses import dataclass
from typing import Self

import redis.asyncio
import structlog
from bonsai import LDAPClient
from redis.backoff import ExponentialBackoff
from redis.retry import Retry
from structlog.stdlib import BoundLogger

from .config import Config
from .constants import REDIS_BACKOFF_MAX, REDIS_BACKOFF_START, REDIS_RETRIES
from .services.refresh import RefreshService
from .storage.base import GroupLookup
from .storage.ldap import LDAPGroupLookup
from .storage.redis import RedisGroupLookup

__all__ = ["Factory", "ProcessContext"]


@dataclass(frozen=True, slots=True)
class ProcessContext:
    """Per-process application context.

    This object caches all of the per-process singletons that can be reused
    for every request and only need to be recreated if the application
    configuration changes.
    """

    config: Config
    """groupd's configuration."""

    ldap_client: LDAPClient
    """Client used to open a new LDAP connection for each lookup."""

    redis: redis.asyncio.Redis | None
    """Connection pool to use to talk to Redis, if caching is enabled."""

    refresh_service: RefreshService
    """Bulk refresh service, shared so refreshes outlive requests."""

    @classmethod
    async def from_config(cls, config: Config) -> Self:
        """Create a new process context from the groupd configuration.

        Parameters
        ----------
        config
            The groupd configuration.

        Returns
        -------
        ProcessContext
            Shared context for a groupd process.
        """
        client = LDAPClient(str(config.ldap.url))
        if config.ldap.user_dn and config.ldap.password:
            client.set_credentials(
                "SIMPLE",
                user=config.ldap.user_dn,
                password=config.ldap.password.get_secret_value(),
            )
        client.set_raw_attributes(["tokenGroups"])

        redis_client = None
        if config.cache_enabled:
            password = None
            if config.redis_password:
                password = config.redis_password.get_secret_value()
            redis_client = redis.asyncio.from_url(
                str(config.redis_url),
                password=password,
                retry=Retry(
                    ExponentialBackoff(
                        base=REDIS_BACKOFF_START, cap=REDIS_BACKOFF_MAX
                    ),
                    REDIS_RETRIES,
                ),
            )

        logger = structlog.get_logger("groupd")
        lookup = _build_lookup(config, client, redis_client, logger)
        refresh_service = RefreshService(
            lookup, config.refresh_concurrency, logger
        )
        return cls(
            config=config,
            ldap_client=client,
            redis=redis_client,
            refresh_service=refresh_service,
        )

    async def aclose(self) -> None:
        """Clean up a process context.

        Called during shutdown, or before recreating the process context using
        a different configuration.
        """
        await self.refresh_service.aclose()
        if self.redis:
            await self.redis.aclose()


class Factory:
    """Build groupd components.

    Uses the contents of a `ProcessContext` to construct the components of the
    application on demand.

    Parameters
    ----------
    context
        Shared process context.
    logger
        Logger to use for errors.
    """

    @classmethod
    async def create(cls, config: Config) -> Self:
        """Create a component factory outside of a request.

        If an async context manager can be used, call `standalone` rather than
        this method.

        Parameters
        ----------
        config
            groupd configuration.

        Returns
        -------
        Factory
            Newly-created factory. The caller must call `aclose` on the
            returned object during shutdown.
        """
        logger = structlog.get_logger("groupd")
        context = await ProcessContext.from_config(config)
        return cls(context, logger)

    @classmethod
    @asynccontextmanager
    async def standalone(cls, config: Config) -> AsyncIterator[Self]:
        """Async context manager for groupd components.

        Intended for command-line use. Do not use this factory inside the web
        application, since the two would not share background refreshes.

        Parameters
        ----------
        config
            groupd configuration.

        Yields
        ------
        Factory
            The factory. Must be used as an async context manager.

        Examples
        --------
        .. code-block:: python

           async with Factory.standalone(config) as factory:
               refresh_service = factory.refresh_service
               await refresh_service.refresh(namespace, groups)
        """
        factory = await cls.create(config)
        async with aclosing(factory):
            yield factory

    def __init__(self, context: ProcessContext, logger: BoundLogger) -> None:
        self._context = context
        self._logger = logger

    @property
    def redis(self) -> redis.asyncio.Redis | None:
        """Underlying Redis connection pool, mainly for tests."""
        return self._context.redis

    @property
    def refresh_service(self) -> RefreshService:
        """Process-wide bulk refresh service."""
        return self._context.refresh_service

    async def aclose(self) -> None:
        """Shut down the factory.

        After this method is called, the factory object is no longer valid and
        must not be used.
        """
        await self._context.aclose()

    def create_lookup(self) -> GroupLookup:
        """Create the lookup chain.

        Returns
        -------
        GroupLookup
            LDAP lookup wrapped in the Redis cache, or the bare LDAP lookup if
            caching is disabled.
        """
        return _build_lookup(
            self._context.config,
            self._context.ldap_client,
            self._context.redis,
            self._logger,
        )

    def set_context(self, context: ProcessContext) -> None:
        """Replace the process context.

        Used by the test suite when it reinitializes the process context.

        Parameters
        ----------
        context
            New process context.
        """
        self._context = context

    def set_logger(self, logger: BoundLogger) -> None:
        """Replace the internal logger.

        Used by the request context to inject a logger bound to the request
        data.

        Parameters
        ----------
        logger
            New logger.
        """
        self._logger = logger


def _build_lookup(
    config: Config,
    client: LDAPClient,
    redis_client: redis.asyncio.Redis | None,
    logger: BoundLogger,
) -> GroupLookup:
    lookup: GroupLookup = LDAPGroupLookup(
        config.ldap,
        client,
        logger,
        computing_groups=config.computing_groups,
    )
    if redis_client:
        lookup = RedisGroupLookup(
            lookup, redis_client, config.cache_lifetime, logger
        )
    return lookup
