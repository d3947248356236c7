"""Constants for groupd."""

from datetime import timedelta

__all__ = [
    "CACHE_LIFETIME",
    "COMPUTING_GROUP_BASE_DN",
    "CONFIG_PATH",
    "GROUP_BASE_DN",
    "IDENTIFIER_REGEX",
    "LDAP_PAGE_SIZE",
    "LDAP_TIMEOUT",
    "NO_TTL",
    "REDIS_BACKOFF_MAX",
    "REDIS_BACKOFF_START",
    "REDIS_RETRIES",
    "REFRESH_CONCURRENCY",
    "TRANSITIVE_MEMBER_OF_RULE",
    "USER_BASE_DN",
]

CACHE_LIFETIME = timedelta(hours=12)
"""Default lifetime of cached membership sets."""

CONFIG_PATH = "/etc/groupd/groupd.yaml"
"""Default configuration path."""

LDAP_PAGE_SIZE = 1000
"""Default page size for paged LDAP searches."""

LDAP_TIMEOUT = 5.0
"""Timeout (in seconds) for LDAP connections and queries."""

NO_TTL = timedelta(seconds=-1)
"""Remaining lifetime reported when no cache entry applies.

Returned by lookups without a cache and by the cache for keys that are not
cached. Callers should treat it as "not cached", not as an error.
"""

REDIS_BACKOFF_START = 0.2
"""How long (in seconds) to initially wait after a Redis failure.

Exponential backoff will be used for subsequent retries, up to
`REDIS_BACKOFF_MAX` total delay.
"""

REDIS_BACKOFF_MAX = 1.0
"""Maximum delay (in seconds) to wait after a Redis failure."""

REDIS_RETRIES = 10
"""How many times to try to connect to Redis before giving up."""

REFRESH_CONCURRENCY = 10
"""Default maximum number of concurrent LDAP lookups in a bulk refresh."""

# The following constants describe the default directory layout. All of them
# can be overridden in the LDAP configuration.

USER_BASE_DN = "OU=Users,OU=Organic Units,DC=cern,DC=ch"
"""Base DN under which user accounts live."""

GROUP_BASE_DN = "OU=e-groups,OU=Workgroups,DC=cern,DC=ch"
"""Base DN of the organizational group (e-group) taxonomy."""

COMPUTING_GROUP_BASE_DN = "OU=unix,OU=Workgroups,DC=cern,DC=ch"
"""Base DN of the computing group (unix group) taxonomy."""

TRANSITIVE_MEMBER_OF_RULE = "1.2.840.113556.1.4.1941"
"""Active Directory matching rule that follows nested group membership.

Also known as ``LDAP_MATCHING_RULE_IN_CHAIN``.
"""

# The following constants are used for input validation.

IDENTIFIER_REGEX = r"^[a-zA-Z0-9_.\-:\s]+$"
"""Regex matching valid user names, group names, and search filters."""
