"""General utility functions."""

from __future__ import annotations

import re

from .constants import IDENTIFIER_REGEX
from .exceptions import InvalidSIDError

__all__ = [
    "decode_sid",
    "is_valid_identifier",
    "unique",
]

_SID_HEADER_LENGTH = 8
"""Length of the fixed part of a binary SID (revision, count, authority)."""


def decode_sid(data: bytes) -> str:
    """Convert a binary security identifier to its string form.

    Parameters
    ----------
    data
        Binary SID as stored in Active Directory attributes such as
        ``objectSid`` or ``tokenGroups``.

    Returns
    -------
    str
        The canonical form, such as ``S-1-5-21-1004336348-1177238915-500``.

    Raises
    ------
    InvalidSIDError
        Raised if the data is too short to hold the header or the number of
        sub-authorities it declares, or if it has trailing data.

    Notes
    -----
    A binary SID is one byte of revision, one byte holding the count of
    sub-authorities, a six-byte big-endian identifier authority, and then
    that many four-byte little-endian sub-authorities.
    """
    if len(data) < _SID_HEADER_LENGTH:
        raise InvalidSIDError(f"SID too short ({len(data)} bytes)")
    revision = data[0]
    count = data[1]
    expected = _SID_HEADER_LENGTH + 4 * count
    if len(data) != expected:
        msg = (
            f"SID with {count} sub-authorities must be {expected} bytes,"
            f" not {len(data)}"
        )
        raise InvalidSIDError(msg)
    authority = int.from_bytes(data[2:8], byteorder="big")
    parts = [f"S-{revision}-{authority}"]
    for i in range(count):
        start = _SID_HEADER_LENGTH + 4 * i
        chunk = data[start : start + 4]
        parts.append(str(int.from_bytes(chunk, byteorder="little")))
    return "-".join(parts)


def is_valid_identifier(identifier: str) -> bool:
    """Return whether a user name, group name, or filter is acceptable.

    Parameters
    ----------
    identifier
        Identifier to check.
    """
    return re.match(IDENTIFIER_REGEX, identifier) is not None


def unique(values: list[str]) -> list[str]:
    """Remove duplicates while preserving the original order.

    Parameters
    ----------
    values
        Values, possibly with duplicates.

    Returns
    -------
    list of str
        The first occurrence of each value, in order.
    """
    return list(dict.fromkeys(values))
