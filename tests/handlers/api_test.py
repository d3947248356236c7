"""Tests for the ``/api/v1`` routes."""

from __future__ import annotations

import asyncio

import bonsai
import pytest
from fakeredis import FakeAsyncRedis, FakeServer
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from ..support.config import reconfigure
from ..support.constants import TEST_HOSTNAME, TEST_LIFETIME
from ..support.ldap import MockLDAP


@pytest.mark.asyncio
async def test_users_in_group(
    client: AsyncClient, mock_ldap: MockLDAP, redis_server: FakeServer
) -> None:
    mock_ldap.add_group("cernbox-admins", ["alice", "bob"])

    r = await client.get("/api/v1/membership/usersingroup/cernbox-admins")
    assert r.status_code == 200
    assert sorted(r.json()) == ["alice", "bob"]

    # The second request is answered from the cache.
    r = await client.get("/api/v1/membership/usersingroup/cernbox-admins")
    assert r.status_code == 200
    assert r.json() == ["alice", "bob"]
    assert len(mock_ldap.searches) == 1

    redis = FakeAsyncRedis(server=redis_server)
    assert await redis.smembers("egroup:cernbox-admins") == {
        b"alice",
        b"bob",
    }
    await redis.aclose()

    r = await client.get("/api/v1/membership/usersingroupttl/cernbox-admins")
    assert r.status_code == 200
    data = r.json()
    assert data["gid"] == "cernbox-admins"
    assert 0 < data["ttl"] <= TEST_LIFETIME.total_seconds()


@pytest.mark.asyncio
async def test_user_groups(client: AsyncClient, mock_ldap: MockLDAP) -> None:
    mock_ldap.add_group("cernbox-admins", ["alice"])
    mock_ldap.add_group("it-dep", ["alice", "bob"])

    r = await client.get("/api/v1/membership/usergroupsttl/alice")
    assert r.status_code == 200
    assert r.json() == {"uid": "alice", "ttl": -1}

    r = await client.get("/api/v1/membership/usergroups/alice")
    assert r.status_code == 200
    assert sorted(r.json()) == ["cernbox-admins", "it-dep"]

    r = await client.get("/api/v1/membership/usergroupsttl/alice")
    assert r.status_code == 200
    assert 0 < r.json()["ttl"] <= TEST_LIFETIME.total_seconds()


@pytest.mark.asyncio
async def test_not_found(client: AsyncClient, mock_ldap: MockLDAP) -> None:
    mock_ldap.add_user("dave")

    r = await client.get("/api/v1/membership/usersingroup/nonexistent")
    assert r.status_code == 404
    assert r.json() == {
        "detail": [
            {
                "loc": ["path", "gid"],
                "msg": "Group nonexistent not found",
                "type": "unknown_group",
            }
        ]
    }

    r = await client.get("/api/v1/membership/usergroups/dave")
    assert r.status_code == 404
    assert r.json()["detail"][0]["type"] == "unknown_user"
    assert r.json()["detail"][0]["loc"] == ["path", "uid"]

    r = await client.get("/api/v1/membership/usersingroupttl/nonexistent")
    assert r.status_code == 200
    assert r.json() == {"gid": "nonexistent", "ttl": -1}


@pytest.mark.asyncio
async def test_invalid_identifier(client: AsyncClient) -> None:
    for url in (
        "/api/v1/membership/usersingroup/foo*",
        "/api/v1/membership/usergroups/foo(bar)",
        "/api/v1/membership/usergroupsttl/a%5Cb",
        "/api/v1/unixmembership/usersingroup/foo*",
        "/api/v1/search/*",
    ):
        r = await client.get(url)
        assert r.status_code == 400, url
        assert r.json()["detail"][0]["type"] == "invalid_identifier"

    r = await client.post(
        "/api/v1/update/usergroups", json={"users": ["alice", "b*"]}
    )
    assert r.status_code == 400
    assert r.json()["detail"][0]["loc"] == ["body", "users"]


@pytest.mark.asyncio
async def test_computing_groups(
    client: AsyncClient, mock_ldap: MockLDAP
) -> None:
    mock_ldap.add_group("def-cg", ["alice", "bob"], computing=True)

    # Computing groups are disabled by default.
    r = await client.get("/api/v1/unixmembership/usersingroup/def-cg")
    assert r.status_code == 404
    assert r.json()["detail"][0]["type"] == "not_supported"
    assert r.json()["detail"][0]["loc"] == ["path", "gid"]
    r = await client.get("/api/v1/unixmembership/usergroups/alice")
    assert r.status_code == 404

    await reconfigure("computing")
    r = await client.get("/api/v1/unixmembership/usersingroup/def-cg")
    assert r.status_code == 200
    assert r.json() == ["alice", "bob"]
    r = await client.get("/api/v1/unixmembership/usersingroupttl/def-cg")
    assert r.status_code == 200
    assert r.json()["gid"] == "def-cg"
    assert r.json()["ttl"] > 0

    r = await client.get("/api/v1/unixmembership/usergroups/bob")
    assert r.status_code == 200
    assert r.json() == ["def-cg"]
    r = await client.get("/api/v1/unixmembership/usergroupsttl/bob")
    assert r.status_code == 200
    assert r.json()["uid"] == "bob"
    assert r.json()["ttl"] > 0

    r = await client.get("/api/v1/unixmembership/usergroups/carol")
    assert r.status_code == 404
    assert r.json()["detail"][0]["type"] == "unknown_user"


@pytest.mark.asyncio
async def test_search(client: AsyncClient, mock_ldap: MockLDAP) -> None:
    mock_ldap.add_user("alice", display_name="Alice Liddell")
    mock_ldap.add_user("alice-svc", account_type="Service")
    mock_ldap.add_group("alice-fans", ["bob"])

    r = await client.get("/api/v1/search/alice")
    assert r.status_code == 200
    assert r.json() == [
        {
            "dn": "CN=alice,OU=Users,OU=Organic Units,DC=cern,DC=ch",
            "cn": "alice",
            "displayName": "Alice Liddell",
            "mail": "alice@example.com",
            "accountType": "primary",
        },
        {
            "dn": "CN=alice-fans,OU=e-groups,OU=Workgroups,DC=cern,DC=ch",
            "cn": "alice-fans",
            "displayName": None,
            "mail": None,
            "accountType": "egroup",
        },
    ]

    r = await client.get("/api/v1/search/a:alice")
    assert r.status_code == 200
    assert [e["cn"] for e in r.json()] == ["alice", "alice-svc", "alice-fans"]

    r = await client.get("/api/v1/search/nobody")
    assert r.status_code == 200
    assert r.json() == []

    # A prefix alone matches nothing.
    r = await client.get("/api/v1/search/a:")
    assert r.status_code == 200
    assert r.json() == []


@pytest.mark.asyncio
async def test_update(
    client: AsyncClient,
    mock_ldap: MockLDAP,
    redis_server: FakeServer,
) -> None:
    mock_ldap.add_group("G1", ["alice"])
    mock_ldap.add_group("G3", ["bob", "carol"])

    r = await client.post(
        "/api/v1/update/usersingroups", json={"groups": ["G1", "G2", "G3"]}
    )
    assert r.status_code == 202

    # The refresh runs in the background, so wait for it.
    redis = FakeAsyncRedis(server=redis_server)
    for _ in range(100):
        if await redis.exists("egroup:G1", "egroup:G3") == 2:
            break
        await asyncio.sleep(0.01)
    assert await redis.smembers("egroup:G1") == {b"alice"}
    assert not await redis.exists("egroup:G2")
    assert await redis.smembers("egroup:G3") == {b"bob", b"carol"}

    r = await client.post("/api/v1/update/usergroups", json={"users": []})
    assert r.status_code == 202
    await redis.aclose()


@pytest.mark.asyncio
async def test_update_invalid(client: AsyncClient) -> None:
    r = await client.post("/api/v1/update/usersingroups", json={})
    assert r.status_code == 422
    r = await client.post(
        "/api/v1/update/usergroups", json={"users": "alice"}
    )
    assert r.status_code == 422


@pytest.mark.asyncio
async def test_auth(app: FastAPI, mock_ldap: MockLDAP) -> None:
    mock_ldap.add_group("G1", ["alice"])
    transport = ASGITransport(app=app)
    base_url = f"https://{TEST_HOSTNAME}"
    url = "/api/v1/membership/usersingroup/G1"

    async with AsyncClient(base_url=base_url, transport=transport) as client:
        r = await client.get(url)
        assert r.status_code == 401
        assert r.headers["WWW-Authenticate"].startswith("Bearer")

        for header in (
            "Bearer wrong-secret",
            "Basic c29tZS1zaGFyZWQtc2VjcmV0Og==",
            "some-shared-secret",
            "Bearer",
        ):
            r = await client.get(url, headers={"Authorization": header})
            assert r.status_code == 401, header

        r = await client.post(
            "/api/v1/update/usergroups",
            json={"users": ["alice"]},
            headers={"Authorization": "Bearer wrong-secret"},
        )
        assert r.status_code == 401

        # The scheme is case-insensitive.
        r = await client.get(
            url, headers={"Authorization": "bearer some-shared-secret"}
        )
        assert r.status_code == 200
        assert r.json() == ["alice"]

        # Internal routes do not require authentication.
        r = await client.get("/health")
        assert r.status_code == 200

    # Only the authenticated request reached the directory.
    assert len(mock_ldap.searches) == 1


@pytest.mark.asyncio
async def test_ldap_error(app: FastAPI, mock_ldap: MockLDAP) -> None:
    mock_ldap.error = bonsai.LDAPError("Server down")
    transport = ASGITransport(app=app, raise_app_exceptions=False)

    async with AsyncClient(
        base_url=f"https://{TEST_HOSTNAME}",
        headers={"Authorization": "Bearer some-shared-secret"},
        transport=transport,
    ) as client:
        r = await client.get("/api/v1/membership/usersingroup/G1")
        assert r.status_code == 500
        r = await client.get("/api/v1/search/alice")
        assert r.status_code == 500

        # A user missing from the directory is an error, not an empty result.
        mock_ldap.error = None
        r = await client.get("/api/v1/membership/usergroups/nobody")
        assert r.status_code == 500


@pytest.mark.asyncio
async def test_no_cache(
    client: AsyncClient,
    mock_ldap: MockLDAP,
    redis_server: FakeServer,
) -> None:
    await reconfigure("nocache")
    mock_ldap.add_group("G1", ["alice"])

    for _ in range(2):
        r = await client.get("/api/v1/membership/usersingroup/G1")
        assert r.status_code == 200
        assert r.json() == ["alice"]
    assert len(mock_ldap.searches) == 2

    r = await client.get("/api/v1/membership/usersingroupttl/G1")
    assert r.status_code == 200
    assert r.json() == {"gid": "G1", "ttl": -1}

    redis = FakeAsyncRedis(server=redis_server)
    assert await redis.keys() == []
    await redis.aclose()
