"""Route handlers for the ``/api/v1`` API.

All the route handlers are intentionally defined in a single file to encourage
the implementation to be very short. All the lookup logic lives in the
storage and service objects built by the factory.
"""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Path, status
from safir.models import ErrorLocation, ErrorModel
from safir.slack.webhook import SlackRouteErrorHandler

from ..dependencies.auth import verify_shared_secret
from ..dependencies.context import RequestContext
from ..exceptions import (
    InvalidIdentifierError,
    NotConfiguredError,
    NotFoundError,
    NotSupportedError,
    UnknownGroupError,
    UnknownUserError,
)
from ..models.lookup import CacheNamespace, GroupTTL, SearchEntry, UserTTL
from ..models.refresh import GroupRefreshRequest, UserRefreshRequest
from ..util import is_valid_identifier

__all__ = ["router"]

router = APIRouter(route_class=SlackRouteErrorHandler)

_error_responses = {
    400: {"description": "Invalid identifier", "model": ErrorModel},
    401: {"description": "Authentication required"},
    404: {"description": "Not found", "model": ErrorModel},
}

_gid_path = Path(
    ...,
    title="Group name",
    examples=["cernbox-admins"],
)

_uid_path = Path(
    ...,
    title="Username",
    examples=["alice"],
)


@router.get(
    "/membership/usersingroup/{gid}",
    description=(
        "Return the users who are members of an organizational group,"
        " including members of nested groups"
    ),
    response_model=list[str],
    responses=_error_responses,
    summary="Users in group",
    tags=["membership"],
)
async def get_users_in_group(
    gid: Annotated[str, _gid_path],
    context: Annotated[RequestContext, Depends(verify_shared_secret)],
) -> list[str]:
    return await _resolve(context, CacheNamespace.users_in_group, gid)


@router.get(
    "/membership/usergroups/{uid}",
    description="Return the organizational groups a user is a member of",
    response_model=list[str],
    responses=_error_responses,
    summary="Groups of user",
    tags=["membership"],
)
async def get_user_groups(
    uid: Annotated[str, _uid_path],
    context: Annotated[RequestContext, Depends(verify_shared_secret)],
) -> list[str]:
    return await _resolve(context, CacheNamespace.user_groups, uid)


@router.get(
    "/membership/usersingroupttl/{gid}",
    description=(
        "Return how many seconds the cached members of an organizational"
        " group remain valid, or -1 if they are not cached"
    ),
    response_model=GroupTTL,
    responses=_error_responses,
    summary="Cache lifetime of group",
    tags=["membership"],
)
async def get_users_in_group_ttl(
    gid: Annotated[str, _gid_path],
    context: Annotated[RequestContext, Depends(verify_shared_secret)],
) -> GroupTTL:
    ttl = await _get_ttl(context, CacheNamespace.users_in_group, gid)
    return GroupTTL(gid=gid, ttl=ttl)


@router.get(
    "/membership/usergroupsttl/{uid}",
    description=(
        "Return how many seconds the cached organizational groups of a user"
        " remain valid, or -1 if they are not cached"
    ),
    response_model=UserTTL,
    responses=_error_responses,
    summary="Cache lifetime of user",
    tags=["membership"],
)
async def get_user_groups_ttl(
    uid: Annotated[str, _uid_path],
    context: Annotated[RequestContext, Depends(verify_shared_secret)],
) -> UserTTL:
    ttl = await _get_ttl(context, CacheNamespace.user_groups, uid)
    return UserTTL(uid=uid, ttl=ttl)


@router.get(
    "/unixmembership/usersingroup/{gid}",
    description="Return the users who are members of a computing group",
    response_model=list[str],
    responses=_error_responses,
    summary="Users in computing group",
    tags=["unixmembership"],
)
async def get_users_in_computing_group(
    gid: Annotated[str, _gid_path],
    context: Annotated[RequestContext, Depends(verify_shared_secret)],
) -> list[str]:
    namespace = CacheNamespace.users_in_computing_group
    return await _resolve(context, namespace, gid)


@router.get(
    "/unixmembership/usergroups/{uid}",
    description="Return the computing groups a user is a member of",
    response_model=list[str],
    responses=_error_responses,
    summary="Computing groups of user",
    tags=["unixmembership"],
)
async def get_user_computing_groups(
    uid: Annotated[str, _uid_path],
    context: Annotated[RequestContext, Depends(verify_shared_secret)],
) -> list[str]:
    namespace = CacheNamespace.user_computing_groups
    return await _resolve(context, namespace, uid)


@router.get(
    "/unixmembership/usersingroupttl/{gid}",
    description=(
        "Return how many seconds the cached members of a computing group"
        " remain valid, or -1 if they are not cached"
    ),
    response_model=GroupTTL,
    responses=_error_responses,
    summary="Cache lifetime of computing group",
    tags=["unixmembership"],
)
async def get_users_in_computing_group_ttl(
    gid: Annotated[str, _gid_path],
    context: Annotated[RequestContext, Depends(verify_shared_secret)],
) -> GroupTTL:
    namespace = CacheNamespace.users_in_computing_group
    ttl = await _get_ttl(context, namespace, gid)
    return GroupTTL(gid=gid, ttl=ttl)


@router.get(
    "/unixmembership/usergroupsttl/{uid}",
    description=(
        "Return how many seconds the cached computing groups of a user"
        " remain valid, or -1 if they are not cached"
    ),
    response_model=UserTTL,
    responses=_error_responses,
    summary="Cache lifetime of computing user",
    tags=["unixmembership"],
)
async def get_user_computing_groups_ttl(
    uid: Annotated[str, _uid_path],
    context: Annotated[RequestContext, Depends(verify_shared_secret)],
) -> UserTTL:
    namespace = CacheNamespace.user_computing_groups
    ttl = await _get_ttl(context, namespace, uid)
    return UserTTL(uid=uid, ttl=ttl)


@router.get(
    "/search/{filter}",
    description=(
        "Search for users and groups whose names contain the filter. Prefix"
        " the filter with `a:` to include secondary and service accounts, or"
        " with `g:` to search only computing groups."
    ),
    response_model=list[SearchEntry],
    response_model_by_alias=True,
    responses=_error_responses,
    summary="Search",
    tags=["search"],
)
async def get_search(
    filter: Annotated[str, Path(..., title="Search filter", examples=["ali"])],
    context: Annotated[RequestContext, Depends(verify_shared_secret)],
) -> list[SearchEntry]:
    _validate(filter, "filter")
    lookup = context.factory.create_lookup()
    entries = await lookup.search(filter)
    context.logger.info("Entries found", count=len(entries), filter=filter)
    return entries


@router.post(
    "/update/usersingroups",
    description=(
        "Refresh the cached members of the given organizational groups in"
        " the background"
    ),
    responses=_error_responses,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Refresh groups",
    tags=["update"],
)
async def post_update_users_in_groups(
    request: GroupRefreshRequest,
    context: Annotated[RequestContext, Depends(verify_shared_secret)],
) -> None:
    for group in request.groups:
        _validate(group, "groups", ErrorLocation.body)
    refresh_service = context.factory.refresh_service
    refresh_service.start_refresh(
        CacheNamespace.users_in_group, request.groups
    )
    context.logger.info("Started group refresh", count=len(request.groups))


@router.post(
    "/update/usergroups",
    description=(
        "Refresh the cached organizational groups of the given users in the"
        " background"
    ),
    responses=_error_responses,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Refresh users",
    tags=["update"],
)
async def post_update_user_groups(
    request: UserRefreshRequest,
    context: Annotated[RequestContext, Depends(verify_shared_secret)],
) -> None:
    for user in request.users:
        _validate(user, "users", ErrorLocation.body)
    refresh_service = context.factory.refresh_service
    refresh_service.start_refresh(CacheNamespace.user_groups, request.users)
    context.logger.info("Started user refresh", count=len(request.users))


async def _get_ttl(
    context: RequestContext, namespace: CacheNamespace, identifier: str
) -> float:
    field = _field_for(namespace)
    _validate(identifier, field)
    lookup = context.factory.create_lookup()
    ttl = (await lookup.get_ttl(namespace, identifier)).total_seconds()
    context.logger.info("TTL retrieved", ttl=ttl, **{field: identifier})
    return ttl


async def _resolve(
    context: RequestContext, namespace: CacheNamespace, identifier: str
) -> list[str]:
    """Resolve one relation and translate a miss into an HTTP error.

    Parameters
    ----------
    context
        The context of the incoming request.
    namespace
        Which relation to resolve.
    identifier
        Group name or username from the request path.

    Returns
    -------
    list of str
        Members of the relation.

    Raises
    ------
    InvalidIdentifierError
        Raised if the identifier is syntactically invalid.
    NotSupportedError
        Raised if the relation is in a disabled group taxonomy.
    UnknownGroupError
        Raised if a group has no members.
    UnknownUserError
        Raised if a user is in no groups.
    """
    field = _field_for(namespace)
    _validate(identifier, field)
    context.rebind_logger(**{field: identifier})
    lookup = context.factory.create_lookup()
    try:
        members = await lookup.resolve(namespace, identifier)
    except NotConfiguredError:
        msg = "Computing groups are not enabled"
        raise NotSupportedError(msg, field) from None
    except NotFoundError:
        if field == "gid":
            context.logger.warning("Group not found")
            raise UnknownGroupError(f"Group {identifier} not found") from None
        context.logger.warning("User not found")
        raise UnknownUserError(f"User {identifier} not found") from None
    context.logger.info("Members found", count=len(members))
    return members


def _field_for(namespace: CacheNamespace) -> str:
    match namespace:
        case (
            CacheNamespace.users_in_group
            | CacheNamespace.users_in_computing_group
        ):
            return "gid"
        case _:
            return "uid"


def _validate(
    identifier: str,
    field: str,
    location: ErrorLocation = ErrorLocation.path,
) -> None:
    if not is_valid_identifier(identifier):
        msg = f"Invalid {field}: {identifier!r}"
        raise InvalidIdentifierError(msg, field, location)
