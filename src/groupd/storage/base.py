"""Interface shared by all group membership lookup implementations."""

from __future__ import annotations

from abc import ABCMeta, abstractmethod
from datetime import timedelta

from ..models.lookup import CacheNamespace, SearchEntry

__all__ = ["GroupLookup"]


class GroupLookup(metaclass=ABCMeta):
    """Resolve group memberships.

    There are two implementations: one that queries LDAP directly and one
    that wraps any other implementation with a Redis cache. Callers should
    not need to know which one they are holding.

    All enumeration methods take a ``use_cache`` flag. It is a hint: an
    implementation without a cache ignores it, and a caching implementation
    bypasses its cache and refreshes it if it is `False`.
    """

    @abstractmethod
    async def get_users_in_group(
        self, group: str, *, use_cache: bool = True
    ) -> list[str]:
        """Get the users who are members of an organizational group.

        Membership is transitive: members of nested groups are included.

        Parameters
        ----------
        group
            Name of the group.
        use_cache
            Whether a cached answer is acceptable.

        Returns
        -------
        list of str
            Usernames of the members, without duplicates.

        Raises
        ------
        NotFoundError
            Raised if the group has no members.
        """

    @abstractmethod
    async def get_users_in_computing_group(
        self, group: str, *, use_cache: bool = True
    ) -> list[str]:
        """Get the users who are members of a computing group.

        Parameters
        ----------
        group
            Name of the computing group.
        use_cache
            Whether a cached answer is acceptable.

        Returns
        -------
        list of str
            Usernames of the members, without duplicates.

        Raises
        ------
        NotFoundError
            Raised if the group has no members.
        """

    @abstractmethod
    async def get_user_groups(
        self, username: str, *, use_cache: bool = True
    ) -> list[str]:
        """Get the organizational groups a user belongs to.

        Parameters
        ----------
        username
            Username of the user.
        use_cache
            Whether a cached answer is acceptable.

        Returns
        -------
        list of str
            Names of the groups, without duplicates.

        Raises
        ------
        NotFoundError
            Raised if the user is not a member of any group.
        """

    @abstractmethod
    async def get_user_computing_groups(
        self, username: str, *, use_cache: bool = True
    ) -> list[str]:
        """Get the computing groups a user belongs to.

        Parameters
        ----------
        username
            Username of the user.
        use_cache
            Whether a cached answer is acceptable.

        Returns
        -------
        list of str
            Names of the computing groups, without duplicates.

        Raises
        ------
        NotFoundError
            Raised if the user is not a member of any computing group.
        """

    @abstractmethod
    async def get_ttl(self, namespace: CacheNamespace, key: str) -> timedelta:
        """Get the remaining cache lifetime of an answer.

        Parameters
        ----------
        namespace
            Which relation to check.
        key
            Group name or username, depending on the namespace.

        Returns
        -------
        datetime.timedelta
            Remaining lifetime, or `~groupd.constants.NO_TTL` if the answer
            is not cached.
        """

    @abstractmethod
    async def search(
        self, query: str, *, use_cache: bool = True
    ) -> list[SearchEntry]:
        """Search the directory for users and groups.

        Parameters
        ----------
        query
            Substring to search for, optionally prefixed with ``a:`` to
            search accounts of every type or ``g:`` to search only computing
            groups.
        use_cache
            Whether a cached answer is acceptable.

        Returns
        -------
        list of SearchEntry
            Matching entries. May be empty.
        """

    async def resolve(
        self,
        namespace: CacheNamespace,
        identifier: str,
        *,
        use_cache: bool = True,
    ) -> list[str]:
        """Run the enumeration corresponding to a namespace.

        Parameters
        ----------
        namespace
            Which relation to resolve.
        identifier
            Group name or username, depending on the namespace.
        use_cache
            Whether a cached answer is acceptable.

        Returns
        -------
        list of str
            Members of the relation.

        Raises
        ------
        NotFoundError
            Raised if the relation is empty.
        """
        match namespace:
            case CacheNamespace.users_in_group:
                method = self.get_users_in_group
            case CacheNamespace.users_in_computing_group:
                method = self.get_users_in_computing_group
            case CacheNamespace.user_groups:
                method = self.get_user_groups
            case CacheNamespace.user_computing_groups:
                method = self.get_user_computing_groups
        return await method(identifier, use_cache=use_cache)
