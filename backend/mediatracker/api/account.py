"""Authentication and account endpoints — login, profile, password, linked providers, deletion."""

from dataclasses import asdict
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel

from mediatracker.api.deps import current_session
from mediatracker.clients.base import Identity
from mediatracker.errors import IdentityProviderError
from mediatracker.services.session import UserSession

router = APIRouter()


class Credentials(BaseModel):
    email: str
    password: str


class DisplayNameIn(BaseModel):
    display_name: str


class PasswordChange(BaseModel):
    new_password: str
    current_password: Optional[str] = None


class ProviderCredential(BaseModel):
    credential: str


class AccountDeletion(BaseModel):
    current_password: Optional[str] = None


def identity_out(identity: Identity, include_tokens: bool = False) -> dict:
    out = {
        "uid": identity.uid,
        "email": identity.email,
        "display_name": identity.display_name,
        "providers": identity.providers,
    }
    if include_tokens:
        out["id_token"] = identity.id_token
        out["refresh_token"] = identity.refresh_token
    return out


# ── Authentication ───────────────────────────────────────────────

@router.post("/auth/signup", status_code=201)
async def signup(body: Credentials, request: Request):
    try:
        identity = await request.app.state.identity_provider.sign_up(body.email, body.password)
    except IdentityProviderError as e:
        raise HTTPException(400, e.code)
    return identity_out(identity, include_tokens=True)


@router.post("/auth/login")
async def login(body: Credentials, request: Request):
    """Sign in. The provider's sign-in event starts the session (profile upsert + load)."""
    try:
        identity = await request.app.state.identity_provider.sign_in_with_password(body.email, body.password)
    except IdentityProviderError as e:
        raise HTTPException(401, e.code)
    return identity_out(identity, include_tokens=True)


@router.post("/auth/logout")
async def logout(session: UserSession = Depends(current_session)):
    await session.accounts.sign_out(session.identity)
    return {"status": "signed_out"}


# ── Profile ──────────────────────────────────────────────────────

@router.get("/account")
async def get_account(session: UserSession = Depends(current_session)):
    return identity_out(session.identity)


@router.patch("/account/profile")
async def update_profile(body: DisplayNameIn, session: UserSession = Depends(current_session)):
    session.identity = await session.accounts.update_display_name(session.identity, body.display_name)
    return identity_out(session.identity)


@router.post("/account/password")
async def change_password(body: PasswordChange, session: UserSession = Depends(current_session)):
    identity = await session.accounts.change_password(
        session.identity, body.new_password, current_password=body.current_password,
    )
    session.identity = identity
    session.remote.authorize(identity)
    return identity_out(identity, include_tokens=True)


# ── Linked providers ─────────────────────────────────────────────

@router.get("/account/providers")
async def list_providers(session: UserSession = Depends(current_session)):
    return {"providers": await session.accounts.linked_providers(session.identity)}


@router.post("/account/providers/{provider_id}")
async def link_provider(
    provider_id: str,
    body: ProviderCredential,
    session: UserSession = Depends(current_session),
):
    session.identity = await session.accounts.link_provider(session.identity, provider_id, body.credential)
    return identity_out(session.identity)


@router.delete("/account/providers/{provider_id}")
async def unlink_provider(provider_id: str, session: UserSession = Depends(current_session)):
    session.identity = await session.accounts.unlink_provider(session.identity, provider_id)
    return identity_out(session.identity)


# ── Deletion ─────────────────────────────────────────────────────

@router.delete("/account")
async def delete_account(
    body: Optional[AccountDeletion] = None,
    session: UserSession = Depends(current_session),
):
    """Delete profile, every owned media record, then the identity. See CascadeError on failure."""
    progress = await session.accounts.delete_account(
        session.identity,
        current_password=body.current_password if body else None,
        store=session.media,
    )
    return {"status": "deleted", "progress": asdict(progress)}
