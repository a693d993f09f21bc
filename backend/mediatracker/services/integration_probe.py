"""Probe all configured integrations on startup and report status."""

import httpx
from mediatracker.config import Settings


async def probe_all(settings: Settings, transport: httpx.AsyncBaseTransport | None = None) -> dict:
    """Check reachability of all configured services. Returns status dict."""
    results = {}

    async with httpx.AsyncClient(timeout=5.0, transport=transport) as client:
        # Firestore
        if settings.uses_sql_store:
            results["firestore"] = {"status": "not_used"}
        elif settings.has_firestore:
            results["firestore"] = await _probe(
                client,
                f"https://firestore.googleapis.com/v1/projects/{settings.firebase_project_id}"
                f"/databases/(default)/documents/{settings.users_collection}",
                params={"pageSize": 1, "key": settings.firebase_api_key} if settings.firebase_api_key else {"pageSize": 1},
                ok_below=500,
            )
        else:
            results["firestore"] = {"status": "not_configured"}

        # Firebase Auth
        if settings.has_firebase_auth:
            results["firebase_auth"] = await _probe(
                client,
                "https://identitytoolkit.googleapis.com/v1/projects",
                params={"key": settings.firebase_api_key},
                # Any HTTP answer means the service is up; 4xx is expected without a token
                ok_below=500,
            )
        else:
            results["firebase_auth"] = {"status": "not_configured"}

        # TMDB
        if settings.has_tmdb:
            results["tmdb"] = await _probe(
                client,
                "https://api.themoviedb.org/3/configuration",
                params={"api_key": settings.tmdb_api_key},
            )
        else:
            results["tmdb"] = {"status": "not_configured"}

    return results


async def _probe(
    client: httpx.AsyncClient,
    url: str,
    params: dict | None = None,
    headers: dict | None = None,
    ok_below: int = 400,
) -> dict:
    """Probe a single endpoint."""
    try:
        resp = await client.get(url, params=params, headers=headers)
        return {
            "status": "ok" if resp.status_code < ok_below else "error",
            "code": resp.status_code,
        }
    except httpx.ConnectError:
        return {"status": "unreachable"}
    except httpx.HTTPError as e:
        return {"status": "error", "detail": str(e)[:200]}
