"""Test fixtures."""

from __future__ import annotations

from collections.abc import AsyncIterator, Iterator
from typing import Any

import pytest
import pytest_asyncio
import redis.asyncio
from asgi_lifespan import LifespanManager
from fakeredis import FakeAsyncRedis, FakeServer
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from groupd.config import Config
from groupd.factory import Factory
from groupd.main import create_app

from .support.config import configure
from .support.constants import TEST_HOSTNAME, TEST_SHARED_SECRET
from .support.ldap import MockLDAP, patch_ldap


@pytest_asyncio.fixture
async def app(
    config: Config, mock_ldap: MockLDAP, redis_server: FakeServer
) -> AsyncIterator[FastAPI]:
    """Return a configured test application.

    Wraps the application in a lifespan manager so that startup and shutdown
    events are sent during test execution.
    """
    app = create_app()
    async with LifespanManager(app):
        yield app


@pytest_asyncio.fixture
async def client(app: FastAPI) -> AsyncIterator[AsyncClient]:
    """Return an ``httpx.AsyncClient`` configured to talk to the test app.

    The client sends the shared secret with every request.
    """
    async with AsyncClient(
        base_url=f"https://{TEST_HOSTNAME}",
        headers={"Authorization": f"Bearer {TEST_SHARED_SECRET}"},
        transport=ASGITransport(app=app),
    ) as client:
        yield client


@pytest.fixture
def config(monkeypatch: pytest.MonkeyPatch) -> Config:
    """Set up and return the default test configuration.

    Notes
    -----
    This fixture must not be async so that it can be used by the cli tests,
    which must not be async because the Click support starts its own asyncio
    loop.
    """
    monkeypatch.setenv("GROUPD_SHARED_SECRET", TEST_SHARED_SECRET)
    return configure("default")


@pytest_asyncio.fixture
async def factory(
    config: Config, mock_ldap: MockLDAP, redis_server: FakeServer
) -> AsyncIterator[Factory]:
    """Return a component factory.

    This is separate from the process context used by the FastAPI app, but
    talks to the same mock LDAP server and fake Redis server.
    """
    async with Factory.standalone(config) as factory:
        yield factory


@pytest.fixture
def mock_ldap() -> Iterator[MockLDAP]:
    """Replace the bonsai LDAP API with a mock class."""
    yield from patch_ldap()


@pytest.fixture
def redis_server(monkeypatch: pytest.MonkeyPatch) -> FakeServer:
    """Replace the Redis server with an in-memory fake.

    Every Redis client created by groupd during the test talks to the same
    fake server, which is returned so that tests can inspect it.
    """
    server = FakeServer()

    def from_url(url: str, **kwargs: Any) -> FakeAsyncRedis:
        return FakeAsyncRedis(server=server)

    monkeypatch.setattr(redis.asyncio, "from_url", from_url)
    return server
