"""Request dependencies — bearer-token identity and the caller's session."""

from typing import Optional

from fastapi import Depends, Header, HTTPException, Request

from mediatracker.clients.base import Identity
from mediatracker.errors import IdentityProviderError
from mediatracker.services.session import UserSession


async def current_identity(
    request: Request,
    authorization: Optional[str] = Header(None),
) -> Identity:
    """Resolve ``Authorization: Bearer <idToken>`` through the identity provider."""
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(401, "Missing bearer token")
    token = authorization.split(" ", 1)[1].strip()
    try:
        return await request.app.state.identity_provider.lookup(token)
    except IdentityProviderError as e:
        raise HTTPException(401, f"Invalid token: {e.code}")


async def current_session(
    request: Request,
    identity: Identity = Depends(current_identity),
) -> UserSession:
    return await request.app.state.sessions.session_for(identity)
