"""LDAP storage layer for groupd."""

from __future__ import annotations

import asyncio
from datetime import timedelta

import bonsai
from bonsai import LDAPClient, LDAPEntry, LDAPSearchScope
from bonsai.utils import escape_attribute_value, escape_filter_exp
from structlog.stdlib import BoundLogger

from ..config import LDAPConfig
from ..constants import LDAP_TIMEOUT, NO_TTL, TRANSITIVE_MEMBER_OF_RULE
from ..exceptions import LDAPError, NotConfiguredError, NotFoundError
from ..models.lookup import AccountType, CacheNamespace, SearchEntry
from ..util import decode_sid, unique
from .base import GroupLookup

__all__ = ["LDAPGroupLookup"]


class LDAPGroupLookup(GroupLookup):
    """Resolve group memberships by querying LDAP.

    Every operation opens its own connection and closes it when done, so
    instances are cheap and safe to share between tasks. There is no cache,
    so ``use_cache`` is ignored.

    Parameters
    ----------
    config
        Configuration for LDAP searches.
    client
        Client used to open connections to the LDAP server. It must have
        ``tokenGroups`` configured as a raw attribute.
    logger
        Logger for debug messages.
    computing_groups
        Whether to answer lookups in the computing group taxonomy.
    """

    def __init__(
        self,
        config: LDAPConfig,
        client: LDAPClient,
        logger: BoundLogger,
        *,
        computing_groups: bool = False,
    ) -> None:
        self._config = config
        self._client = client
        self._logger = logger.bind(ldap_url=str(config.url))
        self._computing_groups = computing_groups

    async def get_users_in_group(
        self, group: str, *, use_cache: bool = True
    ) -> list[str]:
        # This follows nested groups on the server side and can be very
        # expensive for large groups.
        return await self._get_users(group, self._config.group_base_dn)

    async def get_users_in_computing_group(
        self, group: str, *, use_cache: bool = True
    ) -> list[str]:
        self._check_computing_groups()
        base_dn = self._config.computing_group_base_dn
        return await self._get_users(group, base_dn)

    async def get_user_groups(
        self, username: str, *, use_cache: bool = True
    ) -> list[str]:
        """Get the organizational groups a user belongs to.

        Active Directory only exposes transitive group membership as the
        ``tokenGroups`` attribute of the user, which holds the binary SIDs of
        every group. Those are decoded and then resolved to group names with
        a second search against the organizational group tree.

        Parameters
        ----------
        username
            Username of the user.
        use_cache
            Ignored.

        Returns
        -------
        list of str
            Names of the groups, without duplicates.

        Raises
        ------
        InvalidSIDError
            Raised if one of the SIDs in ``tokenGroups`` is malformed.
        LDAPError
            Raised if either LDAP search failed, including when the user
            does not exist.
        NotFoundError
            Raised if the user has no groups.
        """
        user_dn = self._build_dn(username, self._config.user_base_dn)
        async with self._connect() as conn:
            results = await self._search(
                conn,
                user_dn,
                LDAPSearchScope.BASE,
                "(objectClass=user)",
                ["tokenGroups"],
            )
            sids = []
            for result in results:
                for value in self._values(result, "tokenGroups"):
                    raw = value if isinstance(value, bytes) else value.encode()
                    sids.append(decode_sid(raw))
            if not sids:
                return self._require_members([], username)

            # A user can be in thousands of groups, so page the results.
            sid_filter = "".join(
                f"(objectSid={escape_filter_exp(s)})" for s in unique(sids)
            )
            results = await self._paged_search(
                conn,
                self._config.group_base_dn,
                LDAPSearchScope.ONELEVEL,
                f"(&(objectClass=group)(|{sid_filter}))",
                ["cn"],
            )

        groups = []
        for result in results:
            groups.extend(str(v) for v in self._values(result, "cn"))
        return self._require_members(groups, username)

    async def get_user_computing_groups(
        self, username: str, *, use_cache: bool = True
    ) -> list[str]:
        """Get the computing groups a user belongs to.

        Computing groups are not nested, so the direct ``memberOf`` attribute
        of the user is sufficient. It lists groups from every taxonomy, so
        only the links pointing directly into the computing group tree are
        kept.

        Parameters
        ----------
        username
            Username of the user.
        use_cache
            Ignored.

        Returns
        -------
        list of str
            Names of the computing groups, without duplicates.

        Raises
        ------
        LDAPError
            Raised if the LDAP search failed.
        NotConfiguredError
            Raised if computing groups are not enabled.
        NotFoundError
            Raised if the user is not in any computing group.
        """
        self._check_computing_groups()
        search = f"(cn={escape_filter_exp(username)})"
        async with self._connect() as conn:
            results = await self._search(
                conn,
                self._config.user_base_dn,
                LDAPSearchScope.ONELEVEL,
                search,
                ["memberOf"],
            )

        # Links look like CN=<name>,OU=unix,OU=Workgroups,DC=cern,DC=ch.
        base_parts = self._config.computing_group_base_dn.split(",")
        branch = base_parts[0].strip().lower()
        groups = []
        for result in results:
            for link in self._values(result, "memberOf"):
                parts = str(link).split(",")
                if len(parts) != len(base_parts) + 1:
                    continue
                if parts[1].strip().lower() != branch:
                    continue
                attr, _, name = parts[0].partition("=")
                if attr.strip().upper() == "CN" and name:
                    groups.append(name)
        return self._require_members(groups, username)

    async def get_ttl(self, namespace: CacheNamespace, key: str) -> timedelta:
        return NO_TTL

    async def search(
        self, query: str, *, use_cache: bool = True
    ) -> list[SearchEntry]:
        """Search the directory for users and groups.

        Without a prefix, primary accounts and organizational groups are
        searched. With ``a:``, accounts of every type and organizational
        groups are searched. With ``g:``, only computing groups are searched.
        A prefix with nothing after it matches nothing.

        Parameters
        ----------
        query
            Substring to search for, possibly with a prefix.
        use_cache
            Ignored.

        Returns
        -------
        list of SearchEntry
            Matching accounts, then organizational groups, then computing
            groups.

        Raises
        ------
        LDAPError
            Raised if any of the LDAP searches failed.
        """
        prefix, term = "", query
        if query[:2] in ("a:", "g:"):
            prefix, term = query[0], query[2:]
        if not term:
            return []
        term = escape_filter_exp(term)

        entries: list[SearchEntry] = []
        async with self._connect() as conn:
            if prefix in ("", "a"):
                entries.extend(await self._search_accounts(conn, term, prefix))
                entries.extend(
                    await self._search_groups(
                        conn,
                        term,
                        self._config.group_base_dn,
                        AccountType.egroup,
                    )
                )
            if prefix == "g" and self._computing_groups:
                entries.extend(
                    await self._search_groups(
                        conn,
                        term,
                        self._config.computing_group_base_dn,
                        AccountType.unixgroup,
                    )
                )
        return entries

    async def _get_users(self, group: str, base_dn: str) -> list[str]:
        """Get the transitive members of a group in either taxonomy.

        Parameters
        ----------
        group
            Name of the group.
        base_dn
            Base DN of the taxonomy holding the group.

        Returns
        -------
        list of str
            Usernames of the members.
        """
        group_dn = self._build_dn(group, base_dn)
        rule = TRANSITIVE_MEMBER_OF_RULE
        search = f"(memberOf:{rule}:={escape_filter_exp(group_dn)})"
        async with self._connect() as conn:
            results = await self._paged_search(
                conn,
                self._config.user_base_dn,
                LDAPSearchScope.SUBTREE,
                search,
                ["sAMAccountName"],
            )
        users = []
        for result in results:
            values = self._values(result, "sAMAccountName")
            if values and values[0]:
                users.append(str(values[0]))
        return self._require_members(users, group)

    async def _search_accounts(
        self, conn: bonsai.LDAPConnection, term: str, prefix: str
    ) -> list[SearchEntry]:
        """Search user accounts by display name or account name."""
        type_attr = self._config.account_type_attr
        match = f"(|(displayName=*{term}*)(sAMAccountName=*{term}*))"
        if prefix == "a":
            search = f"(&(objectClass=user){match})"
        else:
            search = f"(&(objectClass=user)({type_attr}=Primary){match})"
        results = await self._paged_search(
            conn,
            self._config.user_base_dn,
            LDAPSearchScope.ONELEVEL,
            search,
            ["cn", "displayName", "mail", type_attr],
        )
        entries = []
        for result in results:
            entry = self._to_search_entry(result, AccountType.undefined)
            account_type = self._first(result, type_attr)
            entry.account_type = AccountType.from_ldap(account_type)
            entries.append(entry)
        return entries

    async def _search_groups(
        self,
        conn: bonsai.LDAPConnection,
        term: str,
        base_dn: str,
        account_type: AccountType,
    ) -> list[SearchEntry]:
        """Search one of the group trees by name."""
        search = f"(&(objectClass=group)(objectClass=top)(cn=*{term}*))"
        results = await self._paged_search(
            conn,
            base_dn,
            LDAPSearchScope.ONELEVEL,
            search,
            ["cn", "displayName", "mail"],
        )
        return [self._to_search_entry(r, account_type) for r in results]

    def _to_search_entry(
        self, result: LDAPEntry, account_type: AccountType
    ) -> SearchEntry:
        return SearchEntry(
            dn=str(result.dn),
            cn=self._first(result, "cn"),
            display_name=self._first(result, "displayName"),
            mail=self._first(result, "mail"),
            account_type=account_type,
        )

    def _build_dn(self, name: str, base_dn: str) -> str:
        return f"CN={escape_attribute_value(name)},{base_dn}"

    def _check_computing_groups(self) -> None:
        if not self._computing_groups:
            raise NotConfiguredError("Computing groups are not enabled")

    def _connect(self) -> bonsai.LDAPConnection:
        """Open a new connection to the LDAP server.

        The return value must be used as an async context manager, which
        closes the connection on exit.
        """
        return self._client.connect(is_async=True, timeout=LDAP_TIMEOUT)

    def _first(self, result: LDAPEntry, attr: str) -> str | None:
        values = self._values(result, attr)
        return str(values[0]) if values else None

    def _require_members(
        self, members: list[str], identifier: str
    ) -> list[str]:
        """Convert an empty lookup result into `NotFoundError`.

        The directory cannot tell an empty group from one that does not
        exist, so both are reported as not found. This is the only place
        that makes that decision.
        """
        members = unique(members)
        if not members:
            raise NotFoundError(identifier)
        return members

    def _values(self, result: LDAPEntry, attr: str) -> list[str | bytes]:
        try:
            return list(result[attr])
        except KeyError:
            return []

    async def _paged_search(
        self,
        conn: bonsai.LDAPConnection,
        base: str,
        scope: LDAPSearchScope,
        filter_exp: str,
        attrlist: list[str],
    ) -> list[LDAPEntry]:
        """Perform a paged LDAP search, returning all pages at once.

        Parameters
        ----------
        conn
            Open LDAP connection.
        base
            Base DN of the search.
        scope
            Scope of the search.
        filter_exp
            Search filter.
        attrlist
            List of attributes to retrieve.

        Returns
        -------
        list of bonsai.LDAPEntry
            Entries from every page of the results.

        Raises
        ------
        LDAPError
            Raised if failed to run the search or retrieve any of the pages.
        """
        logger = self._logger.bind(
            ldap_attrs=attrlist, ldap_base=base, ldap_search=filter_exp
        )
        page_size = self._config.page_size
        try:
            logger.debug("Querying LDAP with paging", page_size=page_size)
            search_iter = await conn.paged_search(
                base=base,
                scope=scope,
                filter_exp=filter_exp,
                attrlist=attrlist,
                timeout=LDAP_TIMEOUT,
                page_size=page_size,
            )
            results = [entry async for entry in search_iter]
        except bonsai.LDAPError as e:
            raise LDAPError(f"Error querying LDAP: {e!s}") from e
        except asyncio.TimeoutError as e:
            msg = f"LDAP query timed out after {LDAP_TIMEOUT}s"
            raise LDAPError(msg) from e
        logger.debug("LDAP entries found", count=len(results))
        return results

    async def _search(
        self,
        conn: bonsai.LDAPConnection,
        base: str,
        scope: LDAPSearchScope,
        filter_exp: str,
        attrlist: list[str],
    ) -> list[LDAPEntry]:
        """Perform an LDAP search without paging.

        Parameters
        ----------
        conn
            Open LDAP connection.
        base
            Base DN of the search.
        scope
            Scope of the search.
        filter_exp
            Search filter.
        attrlist
            List of attributes to retrieve.

        Returns
        -------
        list of bonsai.LDAPEntry
            Result entries.

        Raises
        ------
        LDAPError
            Raised if failed to run the search.
        """
        logger = self._logger.bind(
            ldap_attrs=attrlist, ldap_base=base, ldap_search=filter_exp
        )
        try:
            logger.debug("Querying LDAP")
            results = await conn.search(
                base=base,
                scope=scope,
                filter_exp=filter_exp,
                attrlist=attrlist,
                timeout=LDAP_TIMEOUT,
            )
        except bonsai.LDAPError as e:
            raise LDAPError(f"Error querying LDAP: {e!s}") from e
        except asyncio.TimeoutError as e:
            msg = f"LDAP query timed out after {LDAP_TIMEOUT}s"
            raise LDAPError(msg) from e
        logger.debug("LDAP entries found", count=len(results))
        return results
