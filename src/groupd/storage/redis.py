"""Redis cache of group memberships."""

from __future__ import annotations

from datetime import timedelta

from redis.asyncio import Redis
from structlog.stdlib import BoundLogger

from ..constants import NO_TTL
from ..models.lookup import CacheNamespace, SearchEntry
from .base import GroupLookup

__all__ = ["RedisGroupLookup"]


class RedisGroupLookup(GroupLookup):
    """Cache the answers of another lookup in Redis.

    Each answer is stored as a Redis set under a key built from its
    `~groupd.models.lookup.CacheNamespace` and identifier, and expires after
    the configured lifetime. Empty answers are never cached, since the
    wrapped lookup reports them as `~groupd.exceptions.NotFoundError`. Errors
    from the wrapped lookup propagate and leave the cache entry untouched.

    Parameters
    ----------
    lookup
        Lookup to call on a cache miss.
    redis
        Client for the Redis server holding the cache.
    lifetime
        How long a cached answer remains valid.
    logger
        Logger for debug messages.
    """

    def __init__(
        self,
        lookup: GroupLookup,
        redis: Redis,
        lifetime: timedelta,
        logger: BoundLogger,
    ) -> None:
        self._lookup = lookup
        self._redis = redis
        self._lifetime = lifetime
        self._logger = logger

    async def get_users_in_group(
        self, group: str, *, use_cache: bool = True
    ) -> list[str]:
        namespace = CacheNamespace.users_in_group
        return await self._get(namespace, group, use_cache=use_cache)

    async def get_users_in_computing_group(
        self, group: str, *, use_cache: bool = True
    ) -> list[str]:
        namespace = CacheNamespace.users_in_computing_group
        return await self._get(namespace, group, use_cache=use_cache)

    async def get_user_groups(
        self, username: str, *, use_cache: bool = True
    ) -> list[str]:
        namespace = CacheNamespace.user_groups
        return await self._get(namespace, username, use_cache=use_cache)

    async def get_user_computing_groups(
        self, username: str, *, use_cache: bool = True
    ) -> list[str]:
        namespace = CacheNamespace.user_computing_groups
        return await self._get(namespace, username, use_cache=use_cache)

    async def get_ttl(self, namespace: CacheNamespace, key: str) -> timedelta:
        ttl = await self._redis.pttl(namespace.key(key))

        # -2 means the key does not exist and -1 means it has no expiration.
        # Neither should happen for a live cache entry.
        if ttl < 0:
            return NO_TTL
        return timedelta(milliseconds=ttl)

    async def search(
        self, query: str, *, use_cache: bool = True
    ) -> list[SearchEntry]:
        return await self._lookup.search(query, use_cache=use_cache)

    async def _get(
        self, namespace: CacheNamespace, identifier: str, *, use_cache: bool
    ) -> list[str]:
        """Answer a lookup from the cache or the wrapped lookup.

        Parameters
        ----------
        namespace
            Which relation is being looked up.
        identifier
            Group name or username, depending on the namespace.
        use_cache
            If `False`, skip the cache read but still store the fresh answer.

        Returns
        -------
        list of str
            Members of the relation. Cached answers are sorted, since Redis
            sets are unordered.

        Raises
        ------
        NotFoundError
            Raised by the wrapped lookup if the relation is empty.
        redis.exceptions.RedisError
            Raised if reading or writing the cache failed.
        """
        key = namespace.key(identifier)
        logger = self._logger.bind(cache_key=key)
        if use_cache:
            cached = await self._redis.smembers(key)
            if cached:
                logger.debug("Cache hit", count=len(cached))
                return sorted(self._decode(m) for m in cached)
            logger.debug("Cache miss")

        # Never consult a cache further down the chain.
        members = await self._lookup.resolve(
            namespace, identifier, use_cache=False
        )
        await self._store(key, members)
        logger.debug("Cached lookup result", count=len(members))
        return members

    async def _store(self, key: str, members: list[str]) -> None:
        """Replace a cache entry atomically.

        The old set is deleted first so that members removed from the
        directory do not linger, and the expiration is set in the same
        transaction so that no reader sees an entry without one.
        """
        async with self._redis.pipeline(transaction=True) as pipeline:
            pipeline.delete(key)
            pipeline.sadd(key, *members)
            pipeline.pexpire(key, self._lifetime)
            await pipeline.execute()

    def _decode(self, member: bytes | str) -> str:
        return member.decode() if isinstance(member, bytes) else member
