"""Tests for the bulk refresh service."""

from __future__ import annotations

import asyncio
from unittest.mock import Mock

import pytest
import structlog
from fakeredis import FakeAsyncRedis, FakeServer

from groupd.exceptions import LDAPError, NotConfiguredError
from groupd.models.lookup import CacheNamespace
from groupd.services.refresh import RefreshService
from groupd.storage.redis import RedisGroupLookup

from ..support.constants import TEST_LIFETIME
from ..support.lookup import MockGroupLookup


def build_service(
    lookup: MockGroupLookup, max_concurrency: int = 2
) -> RefreshService:
    logger = structlog.get_logger("groupd")
    return RefreshService(lookup, max_concurrency, logger)


@pytest.mark.asyncio
async def test_refresh() -> None:
    lookup = MockGroupLookup(
        {CacheNamespace.users_in_group: {"G1": ["u1"], "G3": ["u3", "u4"]}},
        delay=0.05,
    )
    redis = FakeAsyncRedis(server=FakeServer())
    logger = structlog.get_logger("groupd")
    cache = RedisGroupLookup(lookup, redis, TEST_LIFETIME, logger)
    service = RefreshService(cache, 2, logger)

    # G2 has no members, which fails that refresh but not the others.
    await service.refresh(CacheNamespace.users_in_group, ["G1", "G2", "G3"])
    assert lookup.calls == {"egroup:G1": 1, "egroup:G2": 1, "egroup:G3": 1}
    assert lookup.max_in_flight == 2
    assert lookup.use_cache == [False, False, False]
    assert await redis.smembers("egroup:G1") == {b"u1"}
    assert not await redis.exists("egroup:G2")
    assert await redis.smembers("egroup:G3") == {b"u3", b"u4"}
    await redis.aclose()


@pytest.mark.asyncio
async def test_refresh_bypasses_cache() -> None:
    lookup = MockGroupLookup({CacheNamespace.user_groups: {"alice": ["g1"]}})
    redis = FakeAsyncRedis(server=FakeServer())
    logger = structlog.get_logger("groupd")
    cache = RedisGroupLookup(lookup, redis, TEST_LIFETIME, logger)
    await cache.get_user_groups("alice")

    lookup.data[CacheNamespace.user_groups]["alice"] = ["g1", "g2"]
    service = RefreshService(cache, 2, logger)
    await service.refresh(CacheNamespace.user_groups, ["alice"])
    assert await redis.smembers("u:alice") == {b"g1", b"g2"}
    assert lookup.calls["u:alice"] == 2
    await redis.aclose()


@pytest.mark.asyncio
async def test_refresh_concurrency() -> None:
    groups = [f"group-{i}" for i in range(10)]
    lookup = MockGroupLookup(
        {CacheNamespace.users_in_group: {g: ["u1"] for g in groups}},
        delay=0.02,
    )
    service = build_service(lookup, 3)

    await service.refresh(CacheNamespace.users_in_group, groups)
    assert sum(lookup.calls.values()) == 10
    assert lookup.max_in_flight == 3
    assert lookup.in_flight == 0


@pytest.mark.asyncio
async def test_refresh_errors() -> None:
    lookup = MockGroupLookup(
        {CacheNamespace.users_in_group: {"G1": ["u1"], "G3": ["u3"]}}
    )
    lookup.errors["G1"] = LDAPError("Server down")
    service = build_service(lookup)

    # Neither errors nor empty identifiers stop the refresh.
    await service.refresh(CacheNamespace.users_in_group, ["G1", "", "G3"])
    assert lookup.calls == {"egroup:G1": 1, "egroup:G3": 1}

    await service.refresh(CacheNamespace.users_in_group, [])
    assert sum(lookup.calls.values()) == 2


@pytest.mark.asyncio
async def test_start_refresh() -> None:
    lookup = MockGroupLookup(
        {CacheNamespace.user_groups: {"alice": ["g1"], "bob": ["g2"]}},
        delay=0.05,
    )
    service = build_service(lookup)

    task = service.start_refresh(CacheNamespace.user_groups, ["alice", "bob"])
    assert not task.done()
    await task
    assert lookup.calls == {"u:alice": 1, "u:bob": 1}


@pytest.mark.asyncio
async def test_cancel() -> None:
    lookup = MockGroupLookup(
        {CacheNamespace.user_groups: {f"u{i}": ["g1"] for i in range(6)}},
        delay=10,
    )
    service = build_service(lookup)

    # Closing the service cancels refreshes still running in the background,
    # including lookups still waiting for a slot.
    task = service.start_refresh(
        CacheNamespace.user_groups, [f"u{i}" for i in range(6)]
    )
    await asyncio.sleep(0.05)
    assert lookup.in_flight == 2
    await service.aclose()
    assert task.cancelled()
    assert lookup.in_flight == 0
    assert sum(lookup.calls.values()) == 2


@pytest.mark.asyncio
async def test_refresh_not_configured() -> None:
    lookup = MockGroupLookup(
        {CacheNamespace.user_computing_groups: {"alice": ["cg1"]}}
    )
    lookup.errors["bob"] = NotConfiguredError("bob")
    logger = Mock()
    logger.bind.return_value = logger
    service = RefreshService(lookup, 2, logger)

    # A disabled taxonomy is a warning, not an unexpected failure.
    await service.refresh(
        CacheNamespace.user_computing_groups, ["alice", "bob"]
    )
    logger.warning.assert_called_once_with("Group taxonomy is not enabled")
    logger.exception.assert_not_called()
    logger.info.assert_called_once_with("Refreshed", count=1)
