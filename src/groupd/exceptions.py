"""Exceptions for groupd."""

from __future__ import annotations

from enum import StrEnum
from typing import ClassVar

from fastapi import status
from safir.fastapi import ClientRequestError
from safir.models import ErrorLocation
from safir.slack.blockkit import SlackException

__all__ = [
    "ExternalServiceError",
    "GroupLookupError",
    "InputValidationError",
    "InvalidIdentifierError",
    "InvalidSIDError",
    "LDAPError",
    "LookupErrorKind",
    "NotConfiguredError",
    "NotFoundError",
    "NotSupportedError",
    "UnknownGroupError",
    "UnknownUserError",
]


class LookupErrorKind(StrEnum):
    """Kinds of lookup failure that are not infrastructure errors."""

    not_found = "not_found"
    invalid_sid = "invalid_sid"
    not_configured = "not_configured"


class GroupLookupError(Exception):
    """Base class for lookup failures that say something about the data.

    Each subclass sets `kind`, so callers may either catch the specific
    subclass or inspect `kind` on the base class. Infrastructure failures are
    never represented by this class.

    Parameters
    ----------
    detail
        The identifier (or other input) that produced the failure.
    """

    kind: ClassVar[LookupErrorKind]
    """Tag identifying the kind of failure."""

    def __init__(self, detail: str) -> None:
        super().__init__(f"{self.kind.value}: {detail}")
        self.detail = detail


class NotFoundError(GroupLookupError):
    """The lookup resolved to no members.

    The directory does not distinguish an empty group from one that does not
    exist, so both are reported this way.
    """

    kind = LookupErrorKind.not_found


class InvalidSIDError(GroupLookupError):
    """A binary security identifier could not be decoded."""

    kind = LookupErrorKind.invalid_sid


class NotConfiguredError(GroupLookupError):
    """The lookup asked for a group taxonomy that is not enabled."""

    kind = LookupErrorKind.not_configured


class ExternalServiceError(SlackException):
    """Base class for failures talking to an external service.

    These are always reported to the caller unchanged and should be treated as
    retryable infrastructure failures.
    """


class LDAPError(ExternalServiceError):
    """Querying the LDAP server failed or timed out."""


class InputValidationError(ClientRequestError):
    """Represents an input validation error in a request."""


class InvalidIdentifierError(InputValidationError):
    """A user name, group name, or search filter was syntactically invalid."""

    error = "invalid_identifier"
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(
        self,
        message: str,
        field: str,
        location: ErrorLocation = ErrorLocation.path,
    ) -> None:
        super().__init__(message, location, [field])


class NotSupportedError(InputValidationError):
    """The requested group taxonomy is not served by this deployment."""

    error = "not_supported"
    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, message: str, field: str) -> None:
        super().__init__(message, ErrorLocation.path, [field])


class UnknownGroupError(InputValidationError):
    """The group does not exist or has no members."""

    error = "unknown_group"
    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, message: str) -> None:
        super().__init__(message, ErrorLocation.path, ["gid"])


class UnknownUserError(InputValidationError):
    """The user does not exist or is not a member of any group."""

    error = "unknown_user"
    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, message: str) -> None:
        super().__init__(message, ErrorLocation.path, ["uid"])
