"""SQL document store — IRemoteStore implementation on SQLAlchemy.

Self-hosted alternative to Firestore: every document is a JSON payload in the
``documents`` table. Equality queries compare one top-level JSON key in SQL
(``->>`` on Postgres JSONB, ``JSON_EXTRACT`` on SQLite).
"""

import logging
import uuid
from typing import Any, Optional

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from mediatracker.clients.base import IRemoteStore
from mediatracker.errors import RemoteStoreError
from mediatracker.models.tables import Document

logger = logging.getLogger(__name__)


class SqlDocumentStore(IRemoteStore):
    """Document store backed by the application database."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def _load(self, db: AsyncSession, collection: str, doc_id: str) -> Optional[Document]:
        result = await db.execute(
            select(Document).where(Document.collection == collection, Document.doc_id == doc_id)
        )
        return result.scalar_one_or_none()

    # ── IRemoteStore implementation ──────────────────────────────

    async def get(self, collection: str, doc_id: str) -> Optional[dict]:
        try:
            async with self.session_factory() as db:
                doc = await self._load(db, collection, doc_id)
                return dict(doc.data) if doc else None
        except SQLAlchemyError as e:
            raise _store_error("get", collection, e) from e

    async def query(self, collection: str, field_name: str, value: Any) -> list[tuple[str, dict]]:
        try:
            async with self.session_factory() as db:
                result = await db.execute(
                    select(Document)
                    .where(Document.collection == collection, _json_equals(field_name, value))
                    .order_by(Document.created_at, Document.doc_id)
                )
                return [(doc.doc_id, dict(doc.data)) for doc in result.scalars()]
        except SQLAlchemyError as e:
            raise _store_error("query", collection, e) from e

    async def create(self, collection: str, data: dict) -> str:
        doc_id = uuid.uuid4().hex
        try:
            async with self.session_factory() as db:
                db.add(Document(collection=collection, doc_id=doc_id, data=dict(data)))
                await db.commit()
        except SQLAlchemyError as e:
            raise _store_error("create", collection, e) from e
        return doc_id

    async def set(self, collection: str, doc_id: str, data: dict, merge: bool = False) -> None:
        try:
            async with self.session_factory() as db:
                doc = await self._load(db, collection, doc_id)
                if doc is None:
                    db.add(Document(collection=collection, doc_id=doc_id, data=dict(data)))
                elif merge:
                    # Reassign so the JSON column registers the change
                    doc.data = {**doc.data, **data}
                else:
                    doc.data = dict(data)
                await db.commit()
        except SQLAlchemyError as e:
            raise _store_error("set", collection, e) from e

    async def update(self, collection: str, doc_id: str, fields: dict) -> None:
        try:
            async with self.session_factory() as db:
                doc = await self._load(db, collection, doc_id)
                if doc is None:
                    raise RemoteStoreError(f"{collection}/{doc_id} does not exist", status_code=404)
                doc.data = {**doc.data, **fields}
                await db.commit()
        except SQLAlchemyError as e:
            raise _store_error("update", collection, e) from e

    async def append_to_array(self, collection: str, doc_id: str, field_name: str, value: Any) -> None:
        try:
            async with self.session_factory() as db:
                doc = await self._load(db, collection, doc_id)
                if doc is None:
                    raise RemoteStoreError(f"{collection}/{doc_id} does not exist", status_code=404)
                items = list(doc.data.get(field_name) or [])
                if value not in items:
                    items.append(value)
                doc.data = {**doc.data, field_name: items}
                await db.commit()
        except SQLAlchemyError as e:
            raise _store_error("append", collection, e) from e

    async def delete(self, collection: str, doc_id: str) -> None:
        try:
            async with self.session_factory() as db:
                await db.execute(
                    delete(Document).where(Document.collection == collection, Document.doc_id == doc_id)
                )
                await db.commit()
        except SQLAlchemyError as e:
            raise _store_error("delete", collection, e) from e

    async def test_connection(self) -> bool:
        try:
            async with self.session_factory() as db:
                await db.execute(select(Document.doc_id).limit(1))
            return True
        except SQLAlchemyError:
            return False


def _store_error(op: str, collection: str, e: Exception) -> RemoteStoreError:
    logger.error(f"SQL document store {op} on {collection} failed: {e}")
    return RemoteStoreError(f"{op} on {collection} failed: {e}")


def _json_equals(field_name: str, value: Any):
    """SQL predicate: top-level ``field_name`` of the payload equals ``value``."""
    element = Document.data[field_name]
    if isinstance(value, bool):
        return element.as_boolean() == value
    if isinstance(value, int):
        return element.as_integer() == value
    if isinstance(value, float):
        return element.as_float() == value
    if isinstance(value, str):
        return element.as_string() == value
    raise TypeError(f"Cannot query on {type(value).__name__} values")
