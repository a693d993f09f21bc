"""Account lifecycle — profile upsert on login, identity maintenance, account deletion.

Account deletion is a saga over three independent remote resources with no
shared transaction. The steps run strictly in order:

1. delete the profile document,
2. delete every media record owned by the user, one at a time,
3. delete the authentication identity.

The identity goes last so the user can still sign in and retry if step 1 or
2 fails part-way. The first failure aborts the saga with a CascadeError whose
progress says exactly what was deleted; nothing is resumed automatically.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from mediatracker.clients.base import IIdentityProvider, IRemoteStore, Identity
from mediatracker.errors import (
    CascadeError, FetchError, IdentityProviderError, MediaTrackerError,
    ReauthenticationRequired, RemoteStoreError, ValidationError, WriteError,
)
from mediatracker.models.records import UserProfile
from mediatracker.services.media_store import MediaRecordStore

logger = logging.getLogger(__name__)

# Provider codes meaning "prove your credentials again"
REAUTH_CODES = {
    "CREDENTIAL_TOO_OLD_LOGIN_AGAIN",
    "TOKEN_EXPIRED",
    "USER_TOKEN_EXPIRED",
    "INVALID_ID_TOKEN",
    "INVALID_PASSWORD",
    "INVALID_LOGIN_CREDENTIALS",
    "USER_MISMATCH",
    "MISSING_EMAIL",
}
INPUT_CODES = {"WEAK_PASSWORD", "INVALID_DISPLAY_NAME", "MISSING_PASSWORD"}


@dataclass
class CascadeProgress:
    """How far an account deletion got. Kept in memory only."""
    uid: str
    profile_deleted: bool = False
    media_total: Optional[int] = None        # None until the owned records were listed
    media_deleted: int = 0
    identity_deleted: bool = False
    failed_step: Optional[str] = None        # "profile" | "media_query" | "media" | "identity"

    @property
    def completed(self) -> bool:
        return self.identity_deleted

    def describe(self) -> str:
        if self.failed_step == "profile":
            return "Account deletion failed deleting the profile; nothing was deleted"
        if self.failed_step == "media_query":
            return "Account deletion failed listing media records; profile deleted, 0 media records deleted"
        if self.failed_step == "media":
            return (
                f"Account deletion aborted: profile deleted, "
                f"{self.media_deleted} of {self.media_total} media records deleted"
            )
        if self.failed_step == "identity":
            return (
                f"Account deletion failed deleting the identity; profile and "
                f"{self.media_deleted} of {self.media_total} media records deleted"
            )
        if self.completed:
            return f"Account deleted: profile, {self.media_deleted} media records and identity"
        return "Account deletion in progress"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _identity_error(e: IdentityProviderError, action: str, reading: bool = False) -> MediaTrackerError:
    """Convert a provider failure into the service taxonomy."""
    if e.code in REAUTH_CODES:
        return ReauthenticationRequired(f"Sign in again to {action} ({e.code})")
    if e.code in INPUT_CODES:
        return ValidationError(f"Could not {action}: {e.code}")
    if reading:
        return FetchError(f"Could not {action}: {e.code}")
    return WriteError(f"Could not {action}: {e.code}")


class AccountLifecycleCoordinator:
    """Profile upsert, identity maintenance and the delete-everything saga for one identity."""

    def __init__(
        self,
        remote: IRemoteStore,
        identity_provider: IIdentityProvider,
        users_collection: str = "users",
        media_collection: str = "media",
        reauth_window: timedelta = timedelta(minutes=5),
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.remote = remote
        self.identity_provider = identity_provider
        self.users_collection = users_collection
        self.media_collection = media_collection
        self.reauth_window = reauth_window
        self.clock = clock
        self.last_cascade: Optional[CascadeProgress] = None

    # ── Login ────────────────────────────────────────────────────

    async def on_authenticated(self, identity: Identity) -> UserProfile:
        """Merge-upsert the profile document. Safe to repeat."""
        profile = UserProfile.from_identity(identity)
        try:
            await self.remote.set(self.users_collection, identity.uid, profile.to_document(), merge=True)
        except RemoteStoreError as e:
            logger.warning(f"Profile upsert for {identity.uid} failed: {e}")
            raise WriteError(f"Could not save profile: {e}") from e
        return profile

    async def sign_out(self, identity: Identity) -> None:
        try:
            await self.identity_provider.sign_out(identity)
        except IdentityProviderError as e:
            raise _identity_error(e, "sign out") from e

    # ── Re-authentication ────────────────────────────────────────

    def needs_reauthentication(self, identity: Identity) -> bool:
        if identity.last_sign_in_at is None:
            return True
        return self.clock() - identity.last_sign_in_at > self.reauth_window

    async def ensure_recent_login(self, identity: Identity, current_password: Optional[str] = None) -> Identity:
        """Return an identity fresh enough for destructive operations.

        Raises ReauthenticationRequired when the sign-in is stale and no
        password was supplied, or the supplied password is rejected.
        """
        if not self.needs_reauthentication(identity):
            return identity
        if not current_password:
            raise ReauthenticationRequired("Enter your current password to continue")
        try:
            return await self.identity_provider.reauthenticate(identity, current_password)
        except IdentityProviderError as e:
            raise _identity_error(e, "verify your password") from e

    # ── Identity maintenance ─────────────────────────────────────

    async def update_display_name(self, identity: Identity, display_name: str) -> Identity:
        name = (display_name or "").strip()
        if not name:
            raise ValidationError("Display name must not be empty")
        try:
            updated = await self.identity_provider.update_display_name(identity, name)
        except IdentityProviderError as e:
            raise _identity_error(e, "update display name") from e
        await self.on_authenticated(updated)
        return updated

    async def change_password(
        self,
        identity: Identity,
        new_password: str,
        current_password: Optional[str] = None,
    ) -> Identity:
        if not new_password:
            raise ValidationError("New password must not be empty")
        identity = await self.ensure_recent_login(identity, current_password)
        try:
            return await self.identity_provider.update_password(identity, new_password)
        except IdentityProviderError as e:
            raise _identity_error(e, "change password") from e

    async def linked_providers(self, identity: Identity) -> list[str]:
        try:
            return await self.identity_provider.get_providers(identity)
        except IdentityProviderError as e:
            raise _identity_error(e, "list linked accounts", reading=True) from e

    async def link_provider(self, identity: Identity, provider_id: str, credential: str) -> Identity:
        if not credential:
            raise ValidationError(f"A {provider_id} credential is required")
        try:
            return await self.identity_provider.link_provider(identity, provider_id, credential)
        except IdentityProviderError as e:
            raise _identity_error(e, f"link {provider_id}") from e

    async def unlink_provider(self, identity: Identity, provider_id: str) -> Identity:
        try:
            return await self.identity_provider.unlink_provider(identity, provider_id)
        except IdentityProviderError as e:
            raise _identity_error(e, f"unlink {provider_id}") from e

    # ── Account deletion ─────────────────────────────────────────

    async def delete_account(
        self,
        identity: Identity,
        current_password: Optional[str] = None,
        store: Optional[MediaRecordStore] = None,
    ) -> CascadeProgress:
        """Run the deletion saga. See the module docstring for ordering.

        Re-authentication is checked before step 1, so a stale sign-in
        deletes nothing. If ``store`` is given, confirmed deletions are
        dropped from its projection as they happen.
        """
        identity = await self.ensure_recent_login(identity, current_password)
        uid = identity.uid
        progress = CascadeProgress(uid=uid)
        self.last_cascade = progress
        logger.info(f"Deleting account {uid}")

        # Step 1: profile
        try:
            await self.remote.delete(self.users_collection, uid)
        except RemoteStoreError as e:
            progress.failed_step = "profile"
            logger.error(f"Account {uid}: {progress.describe()}: {e}")
            raise CascadeError(progress, e) from e
        progress.profile_deleted = True

        # Step 2: owned media, one by one
        try:
            rows = await self.remote.query(self.media_collection, "ownerId", uid)
        except RemoteStoreError as e:
            progress.failed_step = "media_query"
            logger.error(f"Account {uid}: {progress.describe()}: {e}")
            raise CascadeError(progress, e) from e
        progress.media_total = len(rows)

        for doc_id, _ in rows:
            try:
                await self.remote.delete(self.media_collection, doc_id)
            except RemoteStoreError as e:
                progress.failed_step = "media"
                logger.error(f"Account {uid}: {progress.describe()}; stopped at {doc_id}: {e}")
                raise CascadeError(progress, e) from e
            progress.media_deleted += 1
            if store is not None:
                store.forget(doc_id)
        logger.info(f"Account {uid}: {progress.media_deleted} media records deleted")

        # Step 3: identity
        try:
            await self.identity_provider.delete_identity(identity)
        except IdentityProviderError as e:
            progress.failed_step = "identity"
            cause = _identity_error(e, "delete the account")
            logger.error(f"Account {uid}: {progress.describe()}: {e.code}")
            raise CascadeError(progress, cause) from e
        progress.identity_deleted = True

        if store is not None:
            store.reset()
        logger.info(f"Account {uid}: {progress.describe()}")
        return progress
