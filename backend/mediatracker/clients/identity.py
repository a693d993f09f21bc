"""Firebase Auth client — IIdentityProvider implementation.

Handles: email/password sign-up and sign-in, token lookup, re-verification,
display-name and password updates, federated provider link/unlink, and
identity deletion, all over the Identity Toolkit REST API.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

import httpx

from mediatracker.clients.base import IIdentityProvider, Identity
from mediatracker.errors import IdentityProviderError

logger = logging.getLogger(__name__)


class FirebaseIdentityClient(IIdentityProvider):
    """Identity Toolkit v1 implementation of IIdentityProvider."""

    BASE_URL = "https://identitytoolkit.googleapis.com/v1"

    def __init__(
        self,
        api_key: str,
        request_uri: str = "http://localhost",
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__()
        self.api_key = api_key
        self.request_uri = request_uri
        self.timeout = timeout
        self._transport = transport

    async def _post(self, endpoint: str, body: dict) -> dict:
        """POST to an accounts endpoint. Provider error codes become IdentityProviderError."""
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                resp = await client.post(
                    f"{self.BASE_URL}/accounts:{endpoint}",
                    params={"key": self.api_key},
                    json=body,
                )
        except httpx.HTTPError as e:
            logger.warning(f"Identity provider {endpoint} unreachable: {e}")
            raise IdentityProviderError("NETWORK_REQUEST_FAILED", str(e)) from e

        if resp.status_code >= 400:
            code = _error_code(resp)
            logger.info(f"Identity provider {endpoint} rejected: {code}")
            raise IdentityProviderError(code)
        return resp.json()

    # ── Sign-in ──────────────────────────────────────────────────

    async def sign_up(self, email: str, password: str) -> Identity:
        data = await self._post("signUp", {"email": email, "password": password, "returnSecureToken": True})
        identity = await self.lookup(data["idToken"], refresh_token=data.get("refreshToken"))
        await self._notify("signed_in", identity)
        return identity

    async def sign_in_with_password(self, email: str, password: str) -> Identity:
        data = await self._post(
            "signInWithPassword",
            {"email": email, "password": password, "returnSecureToken": True},
        )
        identity = await self.lookup(data["idToken"], refresh_token=data.get("refreshToken"))
        await self._notify("signed_in", identity)
        return identity

    async def sign_out(self, identity: Identity) -> None:
        """Firebase tokens are stateless; signing out just drops them locally."""
        await self._notify("signed_out", identity)

    async def lookup(self, id_token: str, refresh_token: Optional[str] = None) -> Identity:
        data = await self._post("lookup", {"idToken": id_token})
        users = data.get("users") or []
        if not users:
            raise IdentityProviderError("USER_NOT_FOUND")
        return self._parse_user(users[0], id_token, refresh_token)

    async def reauthenticate(self, identity: Identity, password: str) -> Identity:
        if not identity.email:
            raise IdentityProviderError("MISSING_EMAIL")
        data = await self._post(
            "signInWithPassword",
            {"email": identity.email, "password": password, "returnSecureToken": True},
        )
        if data.get("localId") and data["localId"] != identity.uid:
            raise IdentityProviderError("USER_MISMATCH")
        return await self.lookup(data["idToken"], refresh_token=data.get("refreshToken"))

    # ── Profile maintenance ──────────────────────────────────────

    async def update_display_name(self, identity: Identity, display_name: str) -> Identity:
        data = await self._post(
            "update",
            {"idToken": identity.id_token, "displayName": display_name, "returnSecureToken": True},
        )
        return await self.lookup(data.get("idToken") or identity.id_token, data.get("refreshToken"))

    async def update_password(self, identity: Identity, new_password: str) -> Identity:
        data = await self._post(
            "update",
            {"idToken": identity.id_token, "password": new_password, "returnSecureToken": True},
        )
        # Password changes revoke the old token; a new one comes back
        return await self.lookup(data.get("idToken") or identity.id_token, data.get("refreshToken"))

    # ── Federated providers ──────────────────────────────────────

    async def link_provider(self, identity: Identity, provider_id: str, credential: str) -> Identity:
        data = await self._post(
            "signInWithIdp",
            {
                "idToken": identity.id_token,
                "postBody": f"id_token={credential}&providerId={provider_id}",
                "requestUri": self.request_uri,
                "returnSecureToken": True,
                "returnIdpCredential": True,
            },
        )
        return await self.lookup(data.get("idToken") or identity.id_token, data.get("refreshToken"))

    async def unlink_provider(self, identity: Identity, provider_id: str) -> Identity:
        await self._post("update", {"idToken": identity.id_token, "deleteProvider": [provider_id]})
        return await self.lookup(identity.id_token, identity.refresh_token)

    async def get_providers(self, identity: Identity) -> list[str]:
        current = await self.lookup(identity.id_token)
        return current.providers

    # ── Deletion ─────────────────────────────────────────────────

    async def delete_identity(self, identity: Identity) -> None:
        await self._post("delete", {"idToken": identity.id_token})
        await self._notify("deleted", identity)

    async def test_connection(self) -> bool:
        """A lookup with a bogus token should be rejected, not unreachable."""
        try:
            await self._post("lookup", {"idToken": "probe"})
        except IdentityProviderError as e:
            return e.code != "NETWORK_REQUEST_FAILED"
        return True

    # ── Parsing helpers ──────────────────────────────────────────

    @staticmethod
    def _parse_user(user: dict, id_token: str, refresh_token: Optional[str]) -> Identity:
        last_login = user.get("lastLoginAt")
        return Identity(
            uid=user["localId"],
            email=user.get("email"),
            display_name=user.get("displayName"),
            providers=[p["providerId"] for p in user.get("providerUserInfo", []) if p.get("providerId")],
            last_sign_in_at=(
                datetime.fromtimestamp(int(last_login) / 1000, tz=timezone.utc) if last_login else None
            ),
            id_token=id_token,
            refresh_token=refresh_token,
        )


def _error_code(resp: httpx.Response) -> str:
    """Extract the Firebase error code, e.g. "CREDENTIAL_TOO_OLD_LOGIN_AGAIN".

    Some messages carry a detail suffix ("WEAK_PASSWORD : Password should be...").
    """
    try:
        message = resp.json().get("error", {}).get("message", "")
    except ValueError:
        message = ""
    return message.split(" : ")[0].strip() or f"HTTP_{resp.status_code}"
