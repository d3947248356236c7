"""Configuration for groupd.

groupd is primarily configured by a YAML file, but secrets and the locations
of the services it talks to are normally injected via environment variables.
Only the settings with explicit ``validation_alias`` settings support
configuration via environment variable, and environment variables take
precedence over the configuration file.
"""

from __future__ import annotations

from datetime import timedelta
from pathlib import Path
from typing import Annotated, Any, Self

from typing_extensions import override

import yaml
from pydantic import (
    AliasChoices,
    Field,
    SecretStr,
    UrlConstraints,
    model_validator,
)
from pydantic.alias_generators import to_camel
from pydantic_core import Url
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)
from safir.logging import LogLevel, configure_logging
from safir.pydantic import EnvRedisDsn, HumanTimedelta

from .constants import (
    CACHE_LIFETIME,
    COMPUTING_GROUP_BASE_DN,
    GROUP_BASE_DN,
    LDAP_PAGE_SIZE,
    REFRESH_CONCURRENCY,
    USER_BASE_DN,
)

LdapDsn = Annotated[
    Url, UrlConstraints(allowed_schemes=["ldap", "ldaps"], host_required=True)
]
"""DSN for connecting to an LDAP server."""

__all__ = [
    "CamelCaseSettings",
    "Config",
    "EnvFirstSettings",
    "LDAPConfig",
    "LdapDsn",
]


class CamelCaseSettings(BaseSettings):
    """Base class for Pydantic settings supporting camel-case.

    This base class also forbids all extra attributes. It should be used as
    the base class (possibly indirectly) for all groupd configuration models
    that support environment variable overrides.
    """

    model_config = SettingsConfigDict(
        alias_generator=to_camel, extra="forbid", populate_by_name=True
    )


class EnvFirstSettings(CamelCaseSettings):
    """Base class for Pydantic settings with environment overrides.

    Classes that inherit from this base class will prioritize environment
    variables over arguments to the class constructor.
    """

    @override
    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Override the sources of settings.

        Deactivate :file:`.env` and secret file support. Allow environment
        variables to override init parameters, since init parameters come
        from the YAML configuration file and we want environment variables to
        take precedent.
        """
        return (env_settings, init_settings)


class LDAPConfig(EnvFirstSettings):
    """Configuration for the LDAP directory.

    The defaults describe the CERN Active Directory layout. Group names are
    always taken from ``cn``, usernames from ``sAMAccountName``, and group
    membership from ``memberOf`` and ``tokenGroups``, so these are not
    configurable.
    """

    url: LdapDsn = Field(
        ...,
        title="LDAP server URL",
        description="URL of LDAP server to query for group memberships",
        validation_alias=AliasChoices("GROUPD_LDAP_URL", "url"),
    )

    user_dn: str | None = Field(
        None,
        title="Simple bind DN for LDAP queries",
        description=(
            "DN of user to bind as with simple bind when querying the LDAP"
            " server. If not set, groupd will do an anonymous bind."
        ),
    )

    password: SecretStr | None = Field(
        None,
        title="Simple bind password",
        description=(
            "Password for simple bind authentication to the LDAP server."
            " Only used if ``user_dn`` is set."
        ),
        validation_alias=AliasChoices("GROUPD_LDAP_PASSWORD", "password"),
    )

    page_size: int = Field(
        LDAP_PAGE_SIZE,
        title="Search page size",
        description=(
            "Number of entries to request per page when retrieving the"
            " members of a group"
        ),
        gt=0,
    )

    user_base_dn: str = Field(
        USER_BASE_DN,
        title="Base DN for users",
        description="Base DN under which all user accounts are found",
    )

    group_base_dn: str = Field(
        GROUP_BASE_DN,
        title="Base DN for organizational groups",
        description="Base DN of the organizational group (e-group) tree",
    )

    computing_group_base_dn: str = Field(
        COMPUTING_GROUP_BASE_DN,
        title="Base DN for computing groups",
        description="Base DN of the computing group (unix group) tree",
    )

    account_type_attr: str = Field(
        "cernAccountType",
        title="Account type attribute",
        description=(
            "Attribute of user entries holding the kind of account:"
            " ``Primary``, ``Secondary``, or ``Service``"
        ),
    )

    @model_validator(mode="after")
    def _validate_password(self) -> Self:
        if self.user_dn and not self.password:
            raise ValueError("password required if userDn is set")
        return self


class Config(EnvFirstSettings):
    """Configuration for groupd."""

    log_level: LogLevel = Field(
        LogLevel.INFO,
        title="Logging level",
        description="Python logging level",
        validation_alias=AliasChoices("GROUPD_LOG_LEVEL", "logLevel"),
    )

    shared_secret: SecretStr = Field(
        ...,
        title="Shared secret",
        description=(
            "Secret that clients must present as a bearer token in the"
            " ``Authorization`` header of every API request"
        ),
        validation_alias=AliasChoices(
            "GROUPD_SHARED_SECRET", "sharedSecret"
        ),
    )

    ldap: LDAPConfig = Field(..., title="LDAP configuration")

    redis_url: EnvRedisDsn = Field(
        ...,
        title="Redis DSN",
        description=(
            "DSN for the Redis server that holds the cache. The path selects"
            " the logical database, such as ``redis://localhost:6379/0``."
        ),
        validation_alias=AliasChoices("GROUPD_REDIS_URL", "redisUrl"),
    )

    redis_password: SecretStr | None = Field(
        None,
        title="Redis password",
        description="Password for the Redis server",
        validation_alias=AliasChoices(
            "GROUPD_REDIS_PASSWORD", "redisPassword"
        ),
    )

    cache_enabled: bool = Field(
        True,
        title="Enable cache",
        description=(
            "Whether to cache lookup results in Redis. If disabled, every"
            " request is answered directly from LDAP and Redis is not used."
        ),
    )

    cache_lifetime: HumanTimedelta = Field(
        CACHE_LIFETIME,
        title="Cache lifetime",
        description="How long a looked-up membership set stays cached",
    )

    refresh_concurrency: int = Field(
        REFRESH_CONCURRENCY,
        title="Bulk refresh concurrency",
        description=(
            "Maximum number of LDAP lookups a bulk cache refresh may run at"
            " the same time"
        ),
        ge=1,
    )

    computing_groups: bool = Field(
        False,
        title="Expose computing groups",
        description=(
            "Whether to answer lookups and searches for the computing group"
            " (unix group) taxonomy"
        ),
    )

    slack_alerts: bool = Field(
        False,
        title="Enable Slack alerts",
        description=(
            "Whether to enable Slack alerts for uncaught exceptions. If true,"
            " ``slackWebhook`` must also be set."
        ),
    )

    slack_webhook: SecretStr | None = Field(
        None,
        title="Slack webhook for alerts",
        description="Slack incoming webhook to which to post alerts",
        validation_alias=AliasChoices(
            "GROUPD_SLACK_WEBHOOK", "slackWebhook"
        ),
    )

    @model_validator(mode="after")
    def _validate_cache_lifetime(self) -> Self:
        if self.cache_lifetime <= timedelta(seconds=0):
            raise ValueError("cacheLifetime must be positive")
        return self

    @model_validator(mode="after")
    def _validate_slack(self) -> Self:
        if self.slack_alerts and not self.slack_webhook:
            raise ValueError("slackWebhook required if slackAlerts is set")
        return self

    @classmethod
    def from_file(cls, path: Path) -> Self:
        """Construct a Config object from a configuration file.

        Parameters
        ----------
        path
            Path to the configuration file in YAML.

        Returns
        -------
        Config
            The corresponding `Config` object.
        """
        with path.open("r") as f:
            data: dict[str, Any] = yaml.safe_load(f) or {}
        return cls.model_validate(data)

    def configure_logging(self) -> None:
        """Configure logging based on the groupd configuration."""
        configure_logging(name="groupd", log_level=self.log_level)
