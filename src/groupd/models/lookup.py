"""Models for group membership lookups."""

from __future__ import annotations

from enum import Enum
from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field

__all__ = [
    "AccountType",
    "CacheNamespace",
    "GroupTTL",
    "SearchEntry",
    "UserTTL",
]


class AccountType(str, Enum):
    """Kind of directory object represented by a search result."""

    primary = "primary"
    secondary = "secondary"
    service = "service"
    egroup = "egroup"
    unixgroup = "unixgroup"
    undefined = "undefined"

    @classmethod
    def from_ldap(cls, value: str | None) -> AccountType:
        """Convert the directory account type attribute to an account type.

        Parameters
        ----------
        value
            Value of the account type attribute of a user entry, if present.

        Returns
        -------
        AccountType
            Corresponding account type, or ``undefined`` for unknown values.
        """
        match value:
            case "Primary":
                return cls.primary
            case "Secondary":
                return cls.secondary
            case "Service":
                return cls.service
            case _:
                return cls.undefined


class CacheNamespace(Enum):
    """The four relations that can be looked up and cached.

    The value of each member is the prefix of its cache keys.
    """

    users_in_group = "egroup"
    users_in_computing_group = "unixgroup"
    user_groups = "u"
    user_computing_groups = "unixuser"

    def key(self, identifier: str) -> str:
        """Build the cache key for an identifier in this namespace.

        Parameters
        ----------
        identifier
            Group name for the ``users_in_*`` namespaces, username otherwise.

        Returns
        -------
        str
            Cache key.
        """
        return f"{self.value}:{identifier}"


class SearchEntry(BaseModel):
    """A user or group found by a directory search."""

    model_config = ConfigDict(populate_by_name=True)

    dn: Annotated[str, Field(title="Distinguished name")]

    cn: Annotated[str | None, Field(title="Common name")] = None

    display_name: Annotated[
        str | None,
        Field(title="Display name", serialization_alias="displayName"),
    ] = None

    mail: Annotated[str | None, Field(title="Email address")] = None

    account_type: Annotated[
        AccountType,
        Field(title="Account type", serialization_alias="accountType"),
    ] = AccountType.undefined


class GroupTTL(BaseModel):
    """Remaining cache lifetime of the members of a group."""

    gid: Annotated[str, Field(title="Group name")]

    ttl: Annotated[
        float,
        Field(
            title="Remaining lifetime",
            description="Seconds until expiry, or -1 if not cached",
        ),
    ]


class UserTTL(BaseModel):
    """Remaining cache lifetime of the groups of a user."""

    uid: Annotated[str, Field(title="Username")]

    ttl: Annotated[
        float,
        Field(
            title="Remaining lifetime",
            description="Seconds until expiry, or -1 if not cached",
        ),
    ]
