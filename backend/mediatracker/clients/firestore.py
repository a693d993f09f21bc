"""Firestore client — IRemoteStore implementation over the REST v1 API.

Handles: typed-value encoding, document get/create/patch/delete, equality
queries via runQuery, and array appends via a commit field transform.
Requests are authorized with the signed-in user's Firebase id token so
Firestore security rules see the owner.
"""

import logging
import re
from datetime import datetime, timezone
from typing import Any, Optional

import httpx

from mediatracker.clients.base import IRemoteStore
from mediatracker.errors import RemoteStoreError

logger = logging.getLogger(__name__)

_SIMPLE_FIELD = re.compile(r"^[A-Za-z_][A-Za-z_0-9]*$")


# ── Typed value codec ────────────────────────────────────────────

def encode_value(value: Any) -> dict:
    """Python value → Firestore Value."""
    if value is None:
        return {"nullValue": None}
    if isinstance(value, bool):          # before int: bool is an int subclass
        return {"booleanValue": value}
    if isinstance(value, int):
        return {"integerValue": str(value)}
    if isinstance(value, float):
        return {"doubleValue": value}
    if isinstance(value, str):
        return {"stringValue": value}
    if isinstance(value, datetime):
        ts = value if value.tzinfo else value.replace(tzinfo=timezone.utc)
        return {"timestampValue": ts.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")}
    if isinstance(value, (list, tuple)):
        return {"arrayValue": {"values": [encode_value(v) for v in value]}}
    if isinstance(value, dict):
        return {"mapValue": {"fields": encode_fields(value)}}
    raise TypeError(f"Cannot encode {type(value).__name__} as a Firestore value")


def decode_value(value: dict) -> Any:
    """Firestore Value → Python value. Timestamps stay ISO strings."""
    if "nullValue" in value:
        return None
    if "booleanValue" in value:
        return value["booleanValue"]
    if "integerValue" in value:
        return int(value["integerValue"])
    if "doubleValue" in value:
        return float(value["doubleValue"])
    if "stringValue" in value:
        return value["stringValue"]
    if "timestampValue" in value:
        return value["timestampValue"]
    if "arrayValue" in value:
        return [decode_value(v) for v in value["arrayValue"].get("values", [])]
    if "mapValue" in value:
        return decode_fields(value["mapValue"].get("fields", {}))
    if "referenceValue" in value:
        return value["referenceValue"]
    raise ValueError(f"Unsupported Firestore value: {sorted(value)}")


def encode_fields(data: dict) -> dict:
    return {key: encode_value(v) for key, v in data.items()}


def decode_fields(fields: dict) -> dict:
    return {key: decode_value(v) for key, v in fields.items()}


def field_path(name: str) -> str:
    """Quote a field name for updateMask / fieldPath use when it is not a plain identifier."""
    if _SIMPLE_FIELD.match(name):
        return name
    escaped = name.replace("\\", "\\\\").replace("`", "\\`")
    return f"`{escaped}`"


class FirestoreClient(IRemoteStore):
    """Firestore REST v1 implementation of IRemoteStore."""

    BASE_URL = "https://firestore.googleapis.com/v1"

    def __init__(
        self,
        project_id: str,
        id_token: Optional[str] = None,
        api_key: Optional[str] = None,
        database: str = "(default)",
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.project_id = project_id
        self.id_token = id_token
        self.api_key = api_key
        self.timeout = timeout
        self._transport = transport
        self.database_path = f"projects/{project_id}/databases/{database}/documents"

    @property
    def _headers(self) -> dict:
        if self.id_token:
            return {"Authorization": f"Bearer {self.id_token}"}
        return {}

    def _doc_name(self, collection: str, doc_id: str) -> str:
        return f"{self.database_path}/{collection}/{doc_id}"

    async def _request(
        self,
        method: str,
        path: str,
        params: Any = None,
        json: Any = None,
        allow_missing: bool = False,
    ) -> Any:
        """Make an authorized request relative to the documents root.

        Transport and HTTP failures become RemoteStoreError. With
        ``allow_missing``, a 404 returns None instead.
        """
        url = f"{self.BASE_URL}/{self.database_path}{path}"
        if self.api_key:
            params = [*(_as_pairs(params)), ("key", self.api_key)]
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                resp = await client.request(method, url, params=params, json=json, headers=self._headers)
                if allow_missing and resp.status_code == 404:
                    return None
                resp.raise_for_status()
                return resp.json() if resp.content else {}
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            logger.warning(f"Firestore {method} {path} failed with {status}")
            raise RemoteStoreError(f"Firestore {method} {path} failed: {status}", status_code=status) from e
        except httpx.HTTPError as e:
            logger.warning(f"Firestore {method} {path} unreachable: {e}")
            raise RemoteStoreError(f"Firestore {method} {path} failed: {e}") from e

    # ── IRemoteStore implementation ──────────────────────────────

    def authorize(self, identity) -> None:
        self.id_token = identity.id_token

    async def get(self, collection: str, doc_id: str) -> Optional[dict]:
        data = await self._request("GET", f"/{collection}/{doc_id}", allow_missing=True)
        if data is None:
            return None
        return decode_fields(data.get("fields", {}))

    async def query(self, collection: str, field_name: str, value: Any) -> list[tuple[str, dict]]:
        """Equality query through runQuery. Rows without a document are skipped."""
        body = {
            "structuredQuery": {
                "from": [{"collectionId": collection}],
                "where": {
                    "fieldFilter": {
                        "field": {"fieldPath": field_path(field_name)},
                        "op": "EQUAL",
                        "value": encode_value(value),
                    },
                },
            },
        }
        rows = await self._request("POST", ":runQuery", json=body)
        results = []
        for row in rows or []:
            doc = row.get("document")
            if not doc:
                continue
            doc_id = doc["name"].rsplit("/", 1)[-1]
            results.append((doc_id, decode_fields(doc.get("fields", {}))))
        return results

    async def create(self, collection: str, data: dict) -> str:
        doc = await self._request("POST", f"/{collection}", json={"fields": encode_fields(data)})
        return doc["name"].rsplit("/", 1)[-1]

    async def set(self, collection: str, doc_id: str, data: dict, merge: bool = False) -> None:
        # Without a mask, PATCH replaces the whole document (creating it if needed)
        params = [("updateMask.fieldPaths", field_path(k)) for k in data] if merge else None
        await self._request("PATCH", f"/{collection}/{doc_id}", params=params, json={"fields": encode_fields(data)})

    async def update(self, collection: str, doc_id: str, fields: dict) -> None:
        params = [("updateMask.fieldPaths", field_path(k)) for k in fields]
        params.append(("currentDocument.exists", "true"))
        await self._request("PATCH", f"/{collection}/{doc_id}", params=params, json={"fields": encode_fields(fields)})

    async def append_to_array(self, collection: str, doc_id: str, field_name: str, value: Any) -> None:
        body = {
            "writes": [{
                "transform": {
                    "document": self._doc_name(collection, doc_id),
                    "fieldTransforms": [{
                        "fieldPath": field_path(field_name),
                        "appendMissingElements": {"values": [encode_value(value)]},
                    }],
                },
                "currentDocument": {"exists": True},
            }],
        }
        await self._request("POST", ":commit", json=body)

    async def delete(self, collection: str, doc_id: str) -> None:
        await self._request("DELETE", f"/{collection}/{doc_id}")

    async def test_connection(self) -> bool:
        """Test Firestore reachability with a cheap collection listing."""
        try:
            await self._request("POST", ":listCollectionIds", json={"pageSize": 1})
            return True
        except RemoteStoreError:
            return False


def _as_pairs(params: Any) -> list[tuple[str, Any]]:
    if not params:
        return []
    if isinstance(params, dict):
        return list(params.items())
    return list(params)
