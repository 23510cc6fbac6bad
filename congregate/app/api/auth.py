"""Bearer credential parsing.

Stub implementation that reads the access context from a bearer token of
the form ``<actor_id>:<role>[:<group_id>,<group_id>...]``. Token signature
verification is left to the fronting gateway.
"""

import uuid
from typing import Annotated

from fastapi import Header, HTTPException, status

from congregate.app.db.context import AccessContext, Role


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def parse_bearer_token(token: str) -> AccessContext:
    """Build an access context from a stub bearer token.

    Args:
        token: Token without the "Bearer " prefix

    Returns:
        AccessContext with actor, role and group scope

    Raises:
        ValueError: If any part of the token is malformed
    """
    parts = token.split(":")
    if len(parts) not in (2, 3):
        raise ValueError("expected actor_id:role[:group_ids]")

    actor_id = uuid.UUID(parts[0])
    role = Role(parts[1])
    scope_ids: frozenset[uuid.UUID] = frozenset()
    if len(parts) == 3 and parts[2]:
        scope_ids = frozenset(uuid.UUID(raw) for raw in parts[2].split(","))

    return AccessContext(actor_id=actor_id, role=role, scope_ids=scope_ids)


async def get_current_context(
    authorization: Annotated[str | None, Header()] = None,
) -> AccessContext:
    """Extract the access context from the authorization header.

    Args:
        authorization: Authorization header (e.g., "Bearer <token>")

    Returns:
        AccessContext of the caller

    Raises:
        HTTPException: 401 if the header is missing or invalid
    """
    if not authorization:
        raise _unauthorized("Missing authorization header")

    if not authorization.startswith("Bearer "):
        raise _unauthorized("Invalid authorization header format")

    try:
        return parse_bearer_token(authorization[7:])
    except ValueError as e:
        raise _unauthorized("Invalid token format (expected actor_id:role[:group_ids])") from e
