"""Per-user session wiring.

There is no global "current user". Identity-change notifications from the
provider are turned into explicit session lifecycle: ``signed_in`` builds a
UserSession bound to that identity (upserting the profile and loading the
projection) or rebinds the one the uid already has, ``signed_out`` and
``deleted`` drop it. One uid never has two sessions.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Callable, Optional

from mediatracker.clients.base import IIdentityProvider, IRemoteStore, Identity, IdentityEvent
from mediatracker.services.account import AccountLifecycleCoordinator
from mediatracker.services.annotations import AnnotationManager
from mediatracker.services.filters import FilterEngine
from mediatracker.services.media_store import MediaRecordStore

logger = logging.getLogger(__name__)

StoreFactory = Callable[[Identity], IRemoteStore]


@dataclass
class UserSession:
    """Everything one signed-in user operates on."""
    identity: Identity
    remote: IRemoteStore
    media: MediaRecordStore
    annotations: AnnotationManager
    accounts: AccountLifecycleCoordinator
    filters: FilterEngine = field(default_factory=FilterEngine)

    @property
    def uid(self) -> str:
        return self.identity.uid


class SessionManager:
    """Builds and tracks UserSessions keyed by uid."""

    def __init__(
        self,
        identity_provider: IIdentityProvider,
        store_factory: StoreFactory,
        media_collection: str = "media",
        users_collection: str = "users",
        reauth_window: timedelta = timedelta(minutes=5),
    ):
        self.identity_provider = identity_provider
        self.store_factory = store_factory
        self.media_collection = media_collection
        self.users_collection = users_collection
        self.reauth_window = reauth_window
        self.sessions: dict[str, UserSession] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._unsubscribe: Optional[Callable[[], None]] = None

    def start(self) -> None:
        """Start following the provider's identity-change notifications."""
        if self._unsubscribe is None:
            self._unsubscribe = self.identity_provider.subscribe(self.handle_event)

    def stop(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    async def handle_event(self, event: IdentityEvent) -> None:
        if event.kind == "signed_in":
            await self.activate(event.identity)
        else:
            self.deactivate(event.identity.uid)

    def build(self, identity: Identity) -> UserSession:
        remote = self.store_factory(identity)
        remote.authorize(identity)
        media = MediaRecordStore(remote, collection=self.media_collection)
        return UserSession(
            identity=identity,
            remote=remote,
            media=media,
            annotations=AnnotationManager(media),
            accounts=AccountLifecycleCoordinator(
                remote,
                self.identity_provider,
                users_collection=self.users_collection,
                media_collection=self.media_collection,
                reauth_window=self.reauth_window,
            ),
        )

    def _lock_for(self, uid: str) -> asyncio.Lock:
        return self._locks.setdefault(uid, asyncio.Lock())

    async def _open(self, identity: Identity) -> UserSession:
        session = self.build(identity)
        await session.accounts.on_authenticated(identity)
        await session.media.load(identity.uid)
        self.sessions[identity.uid] = session
        logger.info(f"Session started for {identity.uid} ({len(session.media)} media records)")
        return session

    @staticmethod
    def _rebind(session: UserSession, identity: Identity) -> None:
        session.identity = identity
        session.remote.authorize(identity)

    async def activate(self, identity: Identity) -> UserSession:
        """Bind ``identity`` to its session: upsert profile, then load media.

        A uid that already has a session keeps it, so its pending writes stay
        guarded; the projection is only reloaded when none are in flight.
        Raises WriteError / FetchError from those steps; a new session is not
        registered in that case.
        """
        async with self._lock_for(identity.uid):
            session = self.sessions.get(identity.uid)
            if session is None:
                return await self._open(identity)
            self._rebind(session, identity)
            await session.accounts.on_authenticated(identity)
            if session.media.has_pending_writes:
                logger.info(f"Signed in again as {identity.uid}; reload skipped while writes are pending")
            else:
                await session.media.load(identity.uid)
            return session

    def deactivate(self, uid: str) -> None:
        lock = self._locks.get(uid)
        if lock is not None and not lock.locked():
            del self._locks[uid]
        if self.sessions.pop(uid, None) is not None:
            logger.info(f"Session ended for {uid}")

    async def session_for(self, identity: Identity) -> UserSession:
        """Existing session for the identity (token refreshed), or a new one.

        Concurrent first requests for one uid share a single activation.
        """
        session = self.sessions.get(identity.uid)
        if session is None:
            async with self._lock_for(identity.uid):
                session = self.sessions.get(identity.uid)
                if session is None:
                    return await self._open(identity)
        self._rebind(session, identity)
        return session
