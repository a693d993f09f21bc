"""Media Tracker — FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager
from dataclasses import asdict
from datetime import timedelta

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from mediatracker.config import settings
from mediatracker.api import account, health, media
from mediatracker.errors import (
    CascadeError, CommentIndexError, ConcurrentMutationError, FetchError, MediaTrackerError,
    ReauthenticationRequired, RecordNotFoundError, ValidationError, WriteError,
)

logger = logging.getLogger(__name__)

# First match wins
ERROR_STATUS = [
    (ValidationError, 422),
    (RecordNotFoundError, 404),
    (CommentIndexError, 404),
    (ConcurrentMutationError, 409),
    (ReauthenticationRequired, 401),
    (FetchError, 502),
    (WriteError, 502),
    (CascadeError, 500),
]


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    # Startup: logging, store backend, identity provider, sessions, probes
    from mediatracker.clients.firestore import FirestoreClient
    from mediatracker.clients.identity import FirebaseIdentityClient
    from mediatracker.clients.tmdb import TmdbClient
    from mediatracker.services.integration_probe import probe_all
    from mediatracker.services.session import SessionManager

    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if not settings.has_firebase_auth:
        logger.warning("FIREBASE_API_KEY is not set; sign-in will fail")

    identity_provider = FirebaseIdentityClient(settings.firebase_api_key or "", request_uri=settings.app_url)

    if settings.uses_sql_store:
        from mediatracker.clients.sql_store import SqlDocumentStore
        from mediatracker.database import async_session, init_db

        await init_db()
        sql_store = SqlDocumentStore(async_session)

        def store_factory(identity):
            return sql_store
    else:
        if not settings.has_firestore:
            logger.warning("FIREBASE_PROJECT_ID is not set; Firestore calls will fail")

        def store_factory(identity):
            return FirestoreClient(settings.firebase_project_id or "", api_key=settings.firebase_api_key)

    sessions = SessionManager(
        identity_provider,
        store_factory,
        media_collection=settings.media_collection,
        users_collection=settings.users_collection,
        reauth_window=timedelta(seconds=settings.reauth_window_seconds),
    )
    sessions.start()

    app.state.identity_provider = identity_provider
    app.state.sessions = sessions
    app.state.tmdb = TmdbClient(settings.tmdb_api_key, settings.tmdb_language) if settings.has_tmdb else None
    app.state.integrations = await probe_all(settings)
    yield
    # Shutdown: stop following identity changes
    sessions.stop()


app = FastAPI(
    title=settings.app_name,
    version="0.1.0",
    description="Personal media tracker — movies, games and books",
    lifespan=lifespan,
    docs_url="/api/docs" if settings.debug else None,
    redoc_url="/api/redoc" if settings.debug else None,
)

# CORS — allow frontend dev server + production URL
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:3000",     # React dev server
        settings.app_url,
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(MediaTrackerError)
async def media_tracker_error_handler(request: Request, exc: MediaTrackerError):
    """Map the service error taxonomy onto HTTP status codes."""
    status = next((code for kind, code in ERROR_STATUS if isinstance(exc, kind)), 500)
    body = {"detail": str(exc), "error": type(exc).__name__}
    if isinstance(exc, CascadeError):
        body["progress"] = asdict(exc.progress)
        body["reauthentication_required"] = exc.reauthentication_required
    return JSONResponse(status_code=status, content=body)


# ── Mount routers ────────────────────────────────────────────────
app.include_router(health.router,   prefix="/api/v1", tags=["system"])
app.include_router(media.router,    prefix="/api/v1", tags=["media"])
app.include_router(account.router,  prefix="/api/v1", tags=["account"])


def run() -> None:
    """Serve the app with uvicorn on the configured host and port."""
    import uvicorn

    uvicorn.run("mediatracker.main:app", host=settings.host, port=settings.port, log_level=settings.log_level)
