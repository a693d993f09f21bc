"""Abstract interfaces for the document store and identity provider.

These define the contracts the core services are written against. Firestore
and Firebase Auth are the hosted implementations; the SQL document store is
the self-hosted one.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional


# ── Data Transfer Objects ────────────────────────────────────────

@dataclass
class Identity:
    """An authenticated user as reported by the identity provider."""
    uid: str
    email: Optional[str] = None
    display_name: Optional[str] = None
    providers: list[str] = field(default_factory=list)   # "password" | "google.com" | ...
    last_sign_in_at: Optional[datetime] = None
    id_token: Optional[str] = None
    refresh_token: Optional[str] = None


@dataclass
class IdentityEvent:
    """Identity-change notification delivered to subscribers."""
    kind: str              # "signed_in" | "signed_out" | "deleted"
    identity: Identity


IdentityListener = Callable[[IdentityEvent], Awaitable[None]]


# ── Abstract Interfaces ──────────────────────────────────────────

class IRemoteStore(ABC):
    """Interface for document store backends (Firestore, SQL).

    Every method raises ``RemoteStoreError`` on failure.
    """

    @abstractmethod
    async def get(self, collection: str, doc_id: str) -> Optional[dict]:
        """Fetch one document's fields, or None if it does not exist."""
        ...

    @abstractmethod
    async def query(self, collection: str, field_name: str, value: Any) -> list[tuple[str, dict]]:
        """All documents whose ``field_name`` equals ``value``, as (id, fields) pairs."""
        ...

    @abstractmethod
    async def create(self, collection: str, data: dict) -> str:
        """Create a document with a generated id. Returns the id."""
        ...

    @abstractmethod
    async def set(self, collection: str, doc_id: str, data: dict, merge: bool = False) -> None:
        """Write a document at a known id. With ``merge``, unlisted fields survive."""
        ...

    @abstractmethod
    async def update(self, collection: str, doc_id: str, fields: dict) -> None:
        """Overwrite the listed fields of an existing document."""
        ...

    @abstractmethod
    async def append_to_array(self, collection: str, doc_id: str, field_name: str, value: Any) -> None:
        """Append ``value`` to an array field unless an equal element is already present."""
        ...

    @abstractmethod
    async def delete(self, collection: str, doc_id: str) -> None:
        """Delete a document. Deleting a missing document is not an error."""
        ...

    def authorize(self, identity: "Identity") -> None:
        """Bind the store to a signed-in identity. Backends without per-user auth ignore it."""

    async def test_connection(self) -> bool:
        """Test if the store is reachable."""
        return True


class IIdentityProvider(ABC):
    """Interface for authentication backends (Firebase Auth).

    Every method raises ``IdentityProviderError`` on failure. Subscribers are
    notified after sign-in, sign-out and identity deletion.
    """

    def __init__(self):
        self._listeners: list[IdentityListener] = []

    def subscribe(self, listener: IdentityListener) -> Callable[[], None]:
        """Register an identity-change listener. Returns the unsubscribe function."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def _notify(self, kind: str, identity: Identity) -> None:
        event = IdentityEvent(kind=kind, identity=identity)
        for listener in list(self._listeners):
            await listener(event)

    @abstractmethod
    async def sign_up(self, email: str, password: str) -> Identity:
        """Create a password identity and sign it in."""
        ...

    @abstractmethod
    async def sign_in_with_password(self, email: str, password: str) -> Identity:
        """Sign in with email + password."""
        ...

    @abstractmethod
    async def sign_out(self, identity: Identity) -> None:
        """End the identity's session."""
        ...

    @abstractmethod
    async def lookup(self, id_token: str) -> Identity:
        """Resolve an id token to the current identity."""
        ...

    @abstractmethod
    async def reauthenticate(self, identity: Identity, password: str) -> Identity:
        """Prove the current password again. Returns a freshly signed-in identity."""
        ...

    @abstractmethod
    async def update_display_name(self, identity: Identity, display_name: str) -> Identity:
        """Change the identity's display name."""
        ...

    @abstractmethod
    async def update_password(self, identity: Identity, new_password: str) -> Identity:
        """Change the identity's password."""
        ...

    @abstractmethod
    async def link_provider(self, identity: Identity, provider_id: str, credential: str) -> Identity:
        """Link a federated credential (e.g. a Google id token) to the identity."""
        ...

    @abstractmethod
    async def unlink_provider(self, identity: Identity, provider_id: str) -> Identity:
        """Unlink a federated provider from the identity."""
        ...

    @abstractmethod
    async def get_providers(self, identity: Identity) -> list[str]:
        """Provider ids currently linked to the identity."""
        ...

    @abstractmethod
    async def delete_identity(self, identity: Identity) -> None:
        """Delete the identity itself."""
        ...

    async def test_connection(self) -> bool:
        """Test if the provider is reachable."""
        return True
