"""Tests for the Firestore REST client — value codec and request shapes."""

import json

import httpx
import pytest

from mediatracker.clients.base import Identity
from mediatracker.clients.firestore import (
    FirestoreClient, decode_fields, decode_value, encode_fields, encode_value, field_path,
)
from mediatracker.errors import RemoteStoreError

ROOT = "/v1/projects/demo/databases/(default)/documents"


class Recorder:
    """httpx.MockTransport handler that records requests and replays canned responses."""

    def __init__(self, *responses: httpx.Response):
        self.requests: list[httpx.Request] = []
        self.responses = list(responses)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.responses:
            return self.responses.pop(0)
        return httpx.Response(200, json={})

    @property
    def last(self) -> httpx.Request:
        return self.requests[-1]

    def body(self, index: int = -1) -> dict:
        return json.loads(self.requests[index].content)


def client_with(recorder: Recorder, **kwargs) -> FirestoreClient:
    return FirestoreClient("demo", transport=httpx.MockTransport(recorder), **kwargs)


class TestValueCodec:
    def test_scalars(self):
        assert encode_value(None) == {"nullValue": None}
        assert encode_value(True) == {"booleanValue": True}
        assert encode_value(7) == {"integerValue": "7"}
        assert encode_value(1.5) == {"doubleValue": 1.5}
        assert encode_value("x") == {"stringValue": "x"}

    def test_nested_structures(self):
        doc = {"tags": ["a", "b"], "comments": [{"text": "hi", "createdAt": "2024-01-01"}], "rating": None}
        assert decode_fields(encode_fields(doc)) == doc

    def test_decodes_integer_strings_and_timestamps(self):
        assert decode_value({"integerValue": "42"}) == 42
        assert decode_value({"timestampValue": "2024-01-01T00:00:00Z"}) == "2024-01-01T00:00:00Z"
        assert decode_value({"arrayValue": {}}) == []

    def test_unsupported_type(self):
        with pytest.raises(TypeError):
            encode_value(object())

    def test_field_path_quoting(self):
        assert field_path("ownerId") == "ownerId"
        assert field_path("my-field") == "`my-field`"


class TestRequests:
    @pytest.mark.asyncio
    async def test_get_decodes_fields_and_sends_token(self):
        recorder = Recorder(httpx.Response(200, json={
            "name": "projects/demo/databases/(default)/documents/media/m1",
            "fields": {"title": {"stringValue": "Dune"}, "rating": {"integerValue": "8"}},
        }))
        client = client_with(recorder, id_token="tok")

        assert await client.get("media", "m1") == {"title": "Dune", "rating": 8}
        assert recorder.last.url.path == f"{ROOT}/media/m1"
        assert recorder.last.headers["Authorization"] == "Bearer tok"

    @pytest.mark.asyncio
    async def test_get_missing_document(self):
        client = client_with(Recorder(httpx.Response(404, json={"error": {}})))
        assert await client.get("media", "nope") is None

    @pytest.mark.asyncio
    async def test_authorize_uses_identity_token(self):
        recorder = Recorder()
        client = client_with(recorder, api_key="k")
        client.authorize(Identity(uid="u1", id_token="fresh"))

        await client.delete("media", "m1")
        assert recorder.last.method == "DELETE"
        assert recorder.last.headers["Authorization"] == "Bearer fresh"
        assert recorder.last.url.params["key"] == "k"

    @pytest.mark.asyncio
    async def test_query_builds_equality_filter(self):
        recorder = Recorder(httpx.Response(200, json=[
            {"document": {
                "name": "projects/demo/databases/(default)/documents/media/m1",
                "fields": {"ownerId": {"stringValue": "u1"}},
            }},
            {"readTime": "2024-01-01T00:00:00Z"},
        ]))
        client = client_with(recorder)

        rows = await client.query("media", "ownerId", "u1")
        assert rows == [("m1", {"ownerId": "u1"})]
        assert recorder.last.url.path == f"{ROOT}:runQuery"
        where = recorder.body()["structuredQuery"]["where"]["fieldFilter"]
        assert where == {"field": {"fieldPath": "ownerId"}, "op": "EQUAL", "value": {"stringValue": "u1"}}

    @pytest.mark.asyncio
    async def test_create_returns_generated_id(self):
        recorder = Recorder(httpx.Response(200, json={"name": "projects/demo/databases/(default)/documents/media/abc"}))
        client = client_with(recorder)

        assert await client.create("media", {"title": "Dune"}) == "abc"
        assert recorder.last.method == "POST"
        assert recorder.body() == {"fields": {"title": {"stringValue": "Dune"}}}

    @pytest.mark.asyncio
    async def test_update_masks_fields_and_requires_existing_document(self):
        recorder = Recorder()
        client = client_with(recorder)

        await client.update("media", "m1", {"rating": 5, "favorite": True})
        params = recorder.last.url.params
        assert recorder.last.method == "PATCH"
        assert params.get_list("updateMask.fieldPaths") == ["rating", "favorite"]
        assert params["currentDocument.exists"] == "true"

    @pytest.mark.asyncio
    async def test_merge_set_masks_fields_without_precondition(self):
        recorder = Recorder()
        client = client_with(recorder)

        await client.set("users", "u1", {"uid": "u1", "email": "a@b.c"}, merge=True)
        params = recorder.last.url.params
        assert params.get_list("updateMask.fieldPaths") == ["uid", "email"]
        assert "currentDocument.exists" not in params

    @pytest.mark.asyncio
    async def test_append_uses_append_missing_elements(self):
        recorder = Recorder()
        client = client_with(recorder)

        await client.append_to_array("media", "m1", "comments", {"text": "hi"})
        write = recorder.body()["writes"][0]
        assert recorder.last.url.path == f"{ROOT}:commit"
        assert write["transform"]["document"] == "projects/demo/databases/(default)/documents/media/m1"
        transform = write["transform"]["fieldTransforms"][0]
        assert transform["fieldPath"] == "comments"
        assert transform["appendMissingElements"]["values"] == [
            {"mapValue": {"fields": {"text": {"stringValue": "hi"}}}}
        ]
        assert write["currentDocument"] == {"exists": True}

    @pytest.mark.asyncio
    async def test_http_error_becomes_remote_store_error(self):
        client = client_with(Recorder(httpx.Response(403, json={"error": {"status": "PERMISSION_DENIED"}})))
        with pytest.raises(RemoteStoreError) as exc:
            await client.update("media", "m1", {"rating": 1})
        assert exc.value.status_code == 403

    @pytest.mark.asyncio
    async def test_transport_error_becomes_remote_store_error(self):
        def refuse(request):
            raise httpx.ConnectError("refused", request=request)

        client = FirestoreClient("demo", transport=httpx.MockTransport(refuse))
        with pytest.raises(RemoteStoreError) as exc:
            await client.get("media", "m1")
        assert exc.value.status_code is None
