"""API dependencies for caller identity and the election engine."""

from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from ballot.core.security import decode_access_token
from ballot.services.engine import ElectionEngine
from ballot.services.events import InMemoryEventLog

security = HTTPBearer()


async def get_current_identity(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(security)],
) -> str:
    """
    Dependency to get the calling identity.

    Validates the JWT and returns its ``sub`` claim verbatim.
    """
    payload = decode_access_token(credentials.credentials)

    if payload is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    identity = payload.get("sub")
    if not identity:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return identity


def get_engine(request: Request) -> ElectionEngine:
    return request.app.state.engine


def get_event_log(request: Request) -> InMemoryEventLog:
    return request.app.state.event_log
