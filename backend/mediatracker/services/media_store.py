"""Media record store — local projection of one user's collection.

Every write is "write, then reflect": the remote call must succeed before the
projection changes, and only the fields the write touched are changed. The
store never diffs or merges concurrent remote writes; the last full ``load``
is trusted for everything else.

At most one mutation per record may be in flight. A second one is rejected
with ConcurrentMutationError rather than queued, so callers disable the
triggering control while ``is_saving(record_id)`` is true.
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional

from mediatracker.clients.base import IRemoteStore
from mediatracker.errors import (
    ConcurrentMutationError, FetchError, RecordNotFoundError, RemoteStoreError, WriteError,
)
from mediatracker.models.records import (
    EDITABLE_FIELDS, MediaDraft, MediaRecord, normalize_field, remote_value, utcnow_iso,
)

logger = logging.getLogger(__name__)


class MediaRecordStore:
    """Holds and mutates the projection of the ``media`` collection for one owner."""

    def __init__(self, remote: IRemoteStore, collection: str = "media"):
        self.remote = remote
        self.collection = collection
        self.owner_id: Optional[str] = None
        self._records: dict[str, MediaRecord] = {}    # load order preserved
        self._in_flight: set[str] = set()

    # ── Projection access ────────────────────────────────────────

    @property
    def records(self) -> list[MediaRecord]:
        return list(self._records.values())

    def record(self, record_id: str) -> MediaRecord:
        try:
            return self._records[record_id]
        except KeyError:
            raise RecordNotFoundError(record_id) from None

    def __contains__(self, record_id: str) -> bool:
        return record_id in self._records

    def __len__(self) -> int:
        return len(self._records)

    def is_saving(self, record_id: str) -> bool:
        return record_id in self._in_flight

    @property
    def has_pending_writes(self) -> bool:
        return bool(self._in_flight)

    # ── Mutation guard ───────────────────────────────────────────

    @asynccontextmanager
    async def mutating(self, record_id: str) -> AsyncIterator[MediaRecord]:
        """Claim the record's single mutation slot for the duration of the block."""
        record = self.record(record_id)
        if record_id in self._in_flight:
            raise ConcurrentMutationError(record_id)
        self._in_flight.add(record_id)
        try:
            yield record
        finally:
            self._in_flight.discard(record_id)

    def apply_local(self, record_id: str, **changes: Any) -> Optional[MediaRecord]:
        """Reflect a confirmed remote write. A record dropped by a concurrent load is ignored."""
        record = self._records.get(record_id)
        if record is None:
            return None
        for attr, value in changes.items():
            setattr(record, attr, value)
        return record

    def forget(self, record_id: str) -> None:
        """Drop a record confirmed deleted elsewhere (e.g. by the account cascade)."""
        self._records.pop(record_id, None)

    def reset(self) -> None:
        self._records = {}
        self.owner_id = None

    # ── Operations ───────────────────────────────────────────────

    async def load(self, owner_id: str) -> list[MediaRecord]:
        """Replace the projection with every record owned by ``owner_id``.

        On failure the previous projection is kept intact.
        """
        try:
            rows = await self.remote.query(self.collection, "ownerId", owner_id)
        except RemoteStoreError as e:
            logger.warning(f"Loading media for {owner_id} failed: {e}")
            raise FetchError(f"Could not load media records: {e}") from e

        fresh: dict[str, MediaRecord] = {}
        for doc_id, data in rows:
            try:
                fresh[doc_id] = MediaRecord.from_document(doc_id, data)
            except (KeyError, TypeError, ValueError) as e:
                logger.error(f"Malformed media document {doc_id}: {e}")
                raise FetchError(f"Media record {doc_id} is malformed: {e}") from e

        self._records = fresh
        self.owner_id = owner_id
        logger.debug(f"Loaded {len(fresh)} media records for {owner_id}")
        return self.records

    async def create(self, owner_id: str, draft: MediaDraft) -> MediaRecord:
        """Validate, create remotely, then reload to pick up the canonical record."""
        clean = draft.validated()
        data = clean.to_document(owner_id, created_at=utcnow_iso())
        try:
            new_id = await self.remote.create(self.collection, data)
        except RemoteStoreError as e:
            logger.warning(f"Creating media '{clean.title}' failed: {e}")
            raise WriteError(f"Could not add '{clean.title}': {e}") from e

        try:
            await self.load(owner_id)
        except FetchError as e:
            # The document exists remotely; a retry would duplicate it
            logger.warning(f"Reload after creating {new_id} failed, projecting the written record: {e}")
        else:
            if new_id in self._records:
                return self._records[new_id]
        # Store did not return the new document yet; project what was written
        record = MediaRecord.from_document(new_id, data)
        self._records[new_id] = record
        return record

    async def update_field(self, record_id: str, field: str, value: Any) -> MediaRecord:
        """Single-field partial update."""
        return await self.update_fields(record_id, {field: value})

    async def update_fields(self, record_id: str, changes: dict[str, Any]) -> MediaRecord:
        """Composite partial update: several fields, one remote write."""
        if not changes:
            return self.record(record_id)
        normalized = dict(normalize_field(name, value) for name, value in changes.items())
        payload = {EDITABLE_FIELDS[attr]: remote_value(value) for attr, value in normalized.items()}

        async with self.mutating(record_id) as record:
            try:
                await self.remote.update(self.collection, record_id, payload)
            except RemoteStoreError as e:
                logger.warning(f"Updating {sorted(payload)} on {record_id} failed: {e}")
                raise WriteError(f"Could not save {', '.join(sorted(payload))}: {e}") from e
            return self.apply_local(record_id, **normalized) or record

    async def remove(self, record_id: str) -> None:
        """Delete remotely; drop locally only after confirmation."""
        async with self.mutating(record_id):
            try:
                await self.remote.delete(self.collection, record_id)
            except RemoteStoreError as e:
                logger.warning(f"Deleting media {record_id} failed: {e}")
                raise WriteError(f"Could not delete media record: {e}") from e
            self._records.pop(record_id, None)
