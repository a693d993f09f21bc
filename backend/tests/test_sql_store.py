"""Tests for SqlDocumentStore against in-memory SQLite."""

import pytest
import pytest_asyncio
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from conftest import media_doc
from mediatracker.clients.sql_store import SqlDocumentStore
from mediatracker.database import build_engine, init_db
from mediatracker.errors import RemoteStoreError
from mediatracker.models.records import MediaDraft
from mediatracker.services.annotations import AnnotationManager
from mediatracker.services.media_store import MediaRecordStore


@pytest_asyncio.fixture
async def sql_store():
    engine = build_engine("sqlite+aiosqlite://")
    await init_db(bind=engine)
    yield SqlDocumentStore(async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False))
    await engine.dispose()


class TestDocuments:
    @pytest.mark.asyncio
    async def test_create_get_and_query(self, sql_store):
        first = await sql_store.create("media", media_doc(title="Dune"))
        second = await sql_store.create("media", media_doc(title="Solaris"))
        await sql_store.create("media", media_doc(owner_id="user-2"))

        assert (await sql_store.get("media", first))["title"] == "Dune"
        rows = await sql_store.query("media", "ownerId", "user-1")
        assert [doc_id for doc_id, _ in rows] == [first, second]

    @pytest.mark.asyncio
    async def test_query_filters_owner_in_sql(self):
        engine = build_engine("sqlite+aiosqlite://")
        await init_db(bind=engine)
        store = SqlDocumentStore(async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False))
        for n in range(20):
            await store.create("media", media_doc(owner_id=f"user-{n + 2}", title=f"Foreign {n}"))
        mine = await store.create("media", media_doc(title="Mine"))
        await store.set("users", "user-1", {"ownerId": "user-1"})

        statements = []
        event.listen(engine.sync_engine, "before_cursor_execute",
                     lambda conn, cursor, statement, *args: statements.append(statement))
        rows = await store.query("media", "ownerId", "user-1")
        await engine.dispose()

        assert rows == [(mine, media_doc(title="Mine"))]
        selects = [s.lower() for s in statements if s.lstrip().upper().startswith("SELECT")]
        assert selects and "json_extract" in selects[-1]

    @pytest.mark.asyncio
    async def test_query_on_boolean_field(self, sql_store):
        await sql_store.create("media", media_doc(title="Loved", favorite=True))
        await sql_store.create("media", media_doc(title="Meh"))
        rows = await sql_store.query("media", "favorite", True)
        assert [data["title"] for _, data in rows] == ["Loved"]

    @pytest.mark.asyncio
    async def test_get_missing(self, sql_store):
        assert await sql_store.get("media", "nope") is None

    @pytest.mark.asyncio
    async def test_set_with_and_without_merge(self, sql_store):
        await sql_store.set("users", "u1", {"uid": "u1", "theme": "dark"})
        await sql_store.set("users", "u1", {"email": "a@b.c"}, merge=True)
        assert await sql_store.get("users", "u1") == {"uid": "u1", "theme": "dark", "email": "a@b.c"}

        await sql_store.set("users", "u1", {"uid": "u1"})
        assert await sql_store.get("users", "u1") == {"uid": "u1"}

    @pytest.mark.asyncio
    async def test_update_requires_existing_document(self, sql_store):
        with pytest.raises(RemoteStoreError) as exc:
            await sql_store.update("media", "nope", {"rating": 1})
        assert exc.value.status_code == 404

    @pytest.mark.asyncio
    async def test_append_skips_equal_elements(self, sql_store):
        doc_id = await sql_store.create("media", media_doc())
        await sql_store.append_to_array("media", doc_id, "comments", {"id": "c1", "text": "hi"})
        await sql_store.append_to_array("media", doc_id, "comments", {"id": "c1", "text": "hi"})
        await sql_store.append_to_array("media", doc_id, "comments", {"id": "c2", "text": "again"})

        comments = (await sql_store.get("media", doc_id))["comments"]
        assert [c["id"] for c in comments] == ["c1", "c2"]

    @pytest.mark.asyncio
    async def test_delete_is_idempotent(self, sql_store):
        doc_id = await sql_store.create("media", media_doc())
        await sql_store.delete("media", doc_id)
        await sql_store.delete("media", doc_id)
        assert await sql_store.get("media", doc_id) is None

    @pytest.mark.asyncio
    async def test_connection(self, sql_store):
        assert await sql_store.test_connection()


class TestServicesOnSql:
    @pytest.mark.asyncio
    async def test_record_lifecycle(self, sql_store):
        store = MediaRecordStore(sql_store)
        annotations = AnnotationManager(store)

        record = await store.create("user-1", MediaDraft(title="Dune", description="Spice", image_url="https://img/d.jpg"))
        await store.update_fields(record.id, {"rating": 9, "status": "completed"})
        await annotations.append(record.id, "great")
        await annotations.append(record.id, "rewatch")
        await annotations.edit_at(record.id, 0, "GREAT")
        await annotations.delete_at(record.id, 1)

        await store.load("user-1")
        reloaded = store.record(record.id)
        assert (reloaded.rating, reloaded.status.value) == (9, "completed")
        assert [c.text for c in reloaded.comments] == ["GREAT"]

        await store.remove(record.id)
        assert await sql_store.get("media", record.id) is None
