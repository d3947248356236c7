"""Authentication dependency for FastAPI."""

from __future__ import annotations

import secrets
from typing import Annotated

from fastapi import Depends, HTTPException, status

from .context import RequestContext, context_dependency

__all__ = ["verify_shared_secret"]


async def verify_shared_secret(
    context: Annotated[RequestContext, Depends(context_dependency)],
) -> RequestContext:
    """Require the shared secret as a bearer token.

    Parameters
    ----------
    context
        The context of the incoming request.

    Returns
    -------
    RequestContext
        The same context, for handlers that also need it.

    Raises
    ------
    fastapi.HTTPException
        Raised with status 401 if the ``Authorization`` header is missing,
        is not a bearer token, or does not match the shared secret.
    """
    header = context.request.headers.get("Authorization")
    token = None
    if header and " " in header:
        auth_type, auth_blob = header.split(None, 1)
        if auth_type.lower() == "bearer":
            token = auth_blob.strip()

    expected = context.config.shared_secret.get_secret_value()
    if token is None or not secrets.compare_digest(
        token.encode(), expected.encode()
    ):
        if header:
            context.logger.warning("Invalid shared secret")
        else:
            context.logger.warning("No Authorization header")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=[
                {"msg": "Authentication required", "type": "unauthorized"}
            ],
            headers={"WWW-Authenticate": 'Bearer realm="groupd"'},
        )
    return context
