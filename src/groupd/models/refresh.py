"""Models for bulk cache refresh requests."""

from __future__ import annotations

from typing import Annotated

from pydantic import BaseModel, Field

__all__ = [
    "GroupRefreshRequest",
    "UserRefreshRequest",
]


class GroupRefreshRequest(BaseModel):
    """Request to refresh the cached members of some groups."""

    groups: Annotated[
        list[str],
        Field(
            title="Groups",
            description="Names of groups whose members should be refreshed",
            examples=[["cernbox-admins", "it-dep"]],
        ),
    ]


class UserRefreshRequest(BaseModel):
    """Request to refresh the cached group memberships of some users."""

    users: Annotated[
        list[str],
        Field(
            title="Users",
            description="Usernames whose groups should be refreshed",
            examples=[["alice", "bob"]],
        ),
    ]
