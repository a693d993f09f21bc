"""Shared fixtures — in-memory document store and identity provider fakes."""

import asyncio
import copy
import itertools
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import pytest
import pytest_asyncio

from mediatracker.clients.base import IIdentityProvider, IRemoteStore, Identity
from mediatracker.errors import IdentityProviderError, RemoteStoreError
from mediatracker.services.media_store import MediaRecordStore

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


class InMemoryRemoteStore(IRemoteStore):
    """Dict-backed IRemoteStore with failure injection.

    ``fail_on`` maps an operation name to either an exception (every call
    fails) or a set of doc ids (only calls on those ids fail). ``gate``
    holds operations until it is set, to observe in-flight state.
    """

    def __init__(self):
        self.docs: dict[str, dict[str, dict]] = {}
        self.calls: list[tuple] = []
        self.fail_on: dict[str, Any] = {}
        self.gate: Optional[asyncio.Event] = None
        self.authorized: Optional[Identity] = None
        self._ids = itertools.count(1)

    def seed(self, collection: str, doc_id: str, data: dict) -> None:
        self.docs.setdefault(collection, {})[doc_id] = copy.deepcopy(data)

    def doc(self, collection: str, doc_id: str) -> Optional[dict]:
        return self.docs.get(collection, {}).get(doc_id)

    async def _enter(self, op: str, doc_id: Optional[str] = None, *args) -> None:
        self.calls.append((op, doc_id, *args))
        if self.gate is not None:
            await self.gate.wait()
        failure = self.fail_on.get(op)
        if failure is None:
            return
        if isinstance(failure, Exception):
            raise failure
        if doc_id in failure:
            raise RemoteStoreError(f"{op} {doc_id} rejected", status_code=503)

    def authorize(self, identity: Identity) -> None:
        self.authorized = identity

    async def get(self, collection, doc_id):
        await self._enter("get", doc_id)
        data = self.doc(collection, doc_id)
        return copy.deepcopy(data) if data is not None else None

    async def query(self, collection, field_name, value):
        await self._enter("query", None, field_name, value)
        return [
            (doc_id, copy.deepcopy(data))
            for doc_id, data in self.docs.get(collection, {}).items()
            if data.get(field_name) == value
        ]

    async def create(self, collection, data):
        doc_id = f"doc{next(self._ids)}"
        await self._enter("create", doc_id)
        self.seed(collection, doc_id, data)
        return doc_id

    async def set(self, collection, doc_id, data, merge=False):
        await self._enter("set", doc_id, merge)
        existing = self.doc(collection, doc_id) if merge else None
        self.seed(collection, doc_id, {**(existing or {}), **data})

    async def update(self, collection, doc_id, fields):
        await self._enter("update", doc_id, dict(fields))
        if self.doc(collection, doc_id) is None:
            raise RemoteStoreError("not found", status_code=404)
        self.docs[collection][doc_id].update(copy.deepcopy(fields))

    async def append_to_array(self, collection, doc_id, field_name, value):
        await self._enter("append", doc_id, field_name)
        data = self.doc(collection, doc_id)
        if data is None:
            raise RemoteStoreError("not found", status_code=404)
        items = data.setdefault(field_name, [])
        if value not in items:
            items.append(copy.deepcopy(value))

    async def delete(self, collection, doc_id):
        await self._enter("delete", doc_id)
        self.docs.get(collection, {}).pop(doc_id, None)


class FakeIdentityProvider(IIdentityProvider):
    """Scriptable IIdentityProvider. ``errors`` maps method name → provider code."""

    def __init__(self, *identities: Identity, password: str = "secret"):
        super().__init__()
        self.identities = {i.uid: i for i in identities}
        self.password = password
        self.errors: dict[str, str] = {}
        self.calls: list[str] = []
        self.deleted: list[str] = []

    def _check(self, method: str) -> None:
        self.calls.append(method)
        if method in self.errors:
            raise IdentityProviderError(self.errors[method])

    def _by_email(self, email: str) -> Identity:
        for identity in self.identities.values():
            if identity.email == email:
                return identity
        raise IdentityProviderError("EMAIL_NOT_FOUND")

    async def sign_up(self, email, password):
        self._check("sign_up")
        identity = make_identity(f"uid-{len(self.identities) + 1}", email=email)
        self.identities[identity.uid] = identity
        await self._notify("signed_in", identity)
        return identity

    async def sign_in_with_password(self, email, password):
        self._check("sign_in_with_password")
        if password != self.password:
            raise IdentityProviderError("INVALID_LOGIN_CREDENTIALS")
        identity = self._by_email(email)
        await self._notify("signed_in", identity)
        return identity

    async def sign_out(self, identity):
        self._check("sign_out")
        await self._notify("signed_out", identity)

    async def lookup(self, id_token):
        self._check("lookup")
        for identity in self.identities.values():
            if identity.id_token == id_token:
                return identity
        raise IdentityProviderError("INVALID_ID_TOKEN")

    async def reauthenticate(self, identity, password):
        self._check("reauthenticate")
        if password != self.password:
            raise IdentityProviderError("INVALID_PASSWORD")
        fresh = replace(identity, last_sign_in_at=NOW)
        self.identities[fresh.uid] = fresh
        return fresh

    async def update_display_name(self, identity, display_name):
        self._check("update_display_name")
        identity.display_name = display_name
        return identity

    async def update_password(self, identity, new_password):
        self._check("update_password")
        self.password = new_password
        return identity

    async def link_provider(self, identity, provider_id, credential):
        self._check("link_provider")
        identity.providers = [*identity.providers, provider_id]
        return identity

    async def unlink_provider(self, identity, provider_id):
        self._check("unlink_provider")
        identity.providers = [p for p in identity.providers if p != provider_id]
        return identity

    async def get_providers(self, identity):
        self._check("get_providers")
        return list(identity.providers)

    async def delete_identity(self, identity):
        self._check("delete_identity")
        self.deleted.append(identity.uid)
        self.identities.pop(identity.uid, None)
        await self._notify("deleted", identity)


def make_identity(uid: str = "user-1", email: Optional[str] = None, minutes_ago: int = 1) -> Identity:
    return Identity(
        uid=uid,
        email=email or f"{uid}@example.com",
        display_name=uid.title(),
        providers=["password"],
        last_sign_in_at=NOW - timedelta(minutes=minutes_ago),
        id_token=f"token-{uid}",
        refresh_token=f"refresh-{uid}",
    )


def media_doc(owner_id: str = "user-1", title: str = "Dune", **overrides) -> dict:
    doc = {
        "ownerId": owner_id,
        "title": title,
        "description": f"About {title}",
        "imageUrl": f"https://img.example/{title.lower().replace(' ', '-')}.jpg",
        "mediaKind": "movie",
        "tags": [],
        "rating": None,
        "status": "planned",
        "watchedDate": None,
        "favorite": False,
        "comments": [],
        "createdAt": "2024-01-01T00:00:00+00:00",
    }
    doc.update(overrides)
    return doc


@pytest.fixture
def remote():
    return InMemoryRemoteStore()


@pytest.fixture
def identity():
    return make_identity()


@pytest.fixture
def provider(identity):
    return FakeIdentityProvider(identity)


@pytest_asyncio.fixture
async def loaded_store(remote):
    """A MediaRecordStore for user-1 holding three records (m1..m3)."""
    remote.seed("media", "m1", media_doc(title="Dune", rating=8, status="completed"))
    remote.seed("media", "m2", media_doc(title="Portal 2", mediaKind="game", rating=10, status="watching"))
    remote.seed("media", "m3", media_doc(title="Solaris", mediaKind="book"))
    remote.seed("media", "other", media_doc(owner_id="user-2", title="Not mine"))
    store = MediaRecordStore(remote)
    await store.load("user-1")
    remote.calls.clear()
    return store
