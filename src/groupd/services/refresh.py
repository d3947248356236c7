"""Bulk refresh of cached group memberships."""

from __future__ import annotations

import asyncio
from collections.abc import Iterable

from structlog.stdlib import BoundLogger

from ..exceptions import NotConfiguredError, NotFoundError
from ..models.lookup import CacheNamespace
from ..storage.base import GroupLookup

__all__ = ["RefreshService"]


class RefreshService:
    """Force fresh lookups of many identifiers with bounded concurrency.

    Each identifier is resolved with ``use_cache=False``, so when the lookup
    is backed by the Redis cache every successful lookup replaces the cached
    entry and resets its lifetime. Failures for one identifier are logged and
    do not affect the others.

    Parameters
    ----------
    lookup
        Lookup chain to refresh through.
    max_concurrency
        Maximum number of lookups in flight at once.
    logger
        Logger to use.
    """

    def __init__(
        self, lookup: GroupLookup, max_concurrency: int, logger: BoundLogger
    ) -> None:
        self._lookup = lookup
        self._max_concurrency = max_concurrency
        self._logger = logger
        self._background: set[asyncio.Task[None]] = set()

    async def aclose(self) -> None:
        """Cancel and wait for refreshes still running in the background."""
        tasks = list(self._background)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._background.clear()

    async def refresh(
        self, namespace: CacheNamespace, identifiers: Iterable[str]
    ) -> None:
        """Refresh a set of identifiers and wait for all of them to finish.

        Parameters
        ----------
        namespace
            Which relation to refresh.
        identifiers
            Group names or usernames, depending on the namespace. Empty
            strings are skipped.
        """
        semaphore = asyncio.Semaphore(self._max_concurrency)
        tasks = [
            asyncio.create_task(self._refresh_one(namespace, i, semaphore))
            for i in identifiers
            if i
        ]
        if tasks:
            await asyncio.gather(*tasks)

    def start_refresh(
        self, namespace: CacheNamespace, identifiers: Iterable[str]
    ) -> asyncio.Task[None]:
        """Start a refresh in the background and return immediately.

        Parameters
        ----------
        namespace
            Which relation to refresh.
        identifiers
            Group names or usernames, depending on the namespace.

        Returns
        -------
        asyncio.Task
            Task running the refresh. The service holds a reference to it
            until it finishes, so the caller may discard it.
        """
        task = asyncio.create_task(self.refresh(namespace, list(identifiers)))
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def _refresh_one(
        self,
        namespace: CacheNamespace,
        identifier: str,
        semaphore: asyncio.Semaphore,
    ) -> None:
        logger = self._logger.bind(
            namespace=namespace.name, identifier=identifier
        )
        async with semaphore:
            try:
                members = await self._lookup.resolve(
                    namespace, identifier, use_cache=False
                )
            except NotFoundError:
                logger.warning("Nothing found while refreshing")
            except NotConfiguredError:
                logger.warning("Group taxonomy is not enabled")
            except Exception:
                logger.exception("Refresh failed")
            else:
                logger.info("Refreshed", count=len(members))
