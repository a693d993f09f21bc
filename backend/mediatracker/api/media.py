"""Media collection endpoints — browse, filter, create, edit, delete, comment."""

from typing import Any, Optional

import httpx
from fastapi import APIRouter, Body, Depends, HTTPException, Query, Request
from pydantic import BaseModel, Field

from mediatracker.api.deps import current_identity, current_session
from mediatracker.models.records import Comment, MediaDraft, MediaRecord
from mediatracker.services.filters import FilterCriteria
from mediatracker.services.session import UserSession

router = APIRouter()


class DraftIn(BaseModel):
    title: str = ""
    description: str = ""
    image_url: str = ""
    media_kind: str = "movie"
    tags: list[str] = Field(default_factory=list)
    rating: Optional[int] = None


class CommentIn(BaseModel):
    text: str


def media_out(record: MediaRecord, saving: bool = False) -> dict:
    return {"id": record.id, **record.to_document(), "saving": saving}


def comment_out(comment: Comment) -> dict:
    return comment.to_document()


@router.get("/media")
async def list_media(
    search: Optional[str] = None,
    status: Optional[str] = None,
    min_rating: Optional[int] = Query(None, ge=0, le=10),
    refresh: bool = False,
    session: UserSession = Depends(current_session),
):
    """The caller's collection, filtered. ``refresh`` reloads from the store first."""
    if refresh:
        await session.media.load(session.uid)
    criteria = FilterCriteria.build(search_text=search, status=status, min_rating=min_rating)
    visible = session.filters.apply(session.media.records, criteria)
    return {
        "media": [media_out(r, session.media.is_saving(r.id)) for r in visible],
        "meta": {"total": len(session.media), "count": len(visible)},
    }


@router.get("/media/{record_id}")
async def get_media(record_id: str, session: UserSession = Depends(current_session)):
    record = session.media.record(record_id)
    return media_out(record, session.media.is_saving(record_id))


@router.post("/media", status_code=201)
async def create_media(draft: DraftIn, session: UserSession = Depends(current_session)):
    record = await session.media.create(session.uid, MediaDraft(**draft.model_dump()))
    return media_out(record)


@router.patch("/media/{record_id}")
async def update_media(
    record_id: str,
    changes: dict[str, Any] = Body(...),
    session: UserSession = Depends(current_session),
):
    """Partial update. Keys are field names (``rating``, ``status``, ``favorite``, ...)."""
    record = await session.media.update_fields(record_id, changes)
    return media_out(record)


@router.delete("/media/{record_id}")
async def delete_media(record_id: str, session: UserSession = Depends(current_session)):
    await session.media.remove(record_id)
    return {"status": "deleted", "id": record_id}


# ── Comments ─────────────────────────────────────────────────────

@router.post("/media/{record_id}/comments", status_code=201)
async def add_comment(record_id: str, body: CommentIn, session: UserSession = Depends(current_session)):
    comment = await session.annotations.append(record_id, body.text)
    return comment_out(comment)


@router.patch("/media/{record_id}/comments/{index}")
async def edit_comment(
    record_id: str,
    index: int,
    body: CommentIn,
    session: UserSession = Depends(current_session),
):
    comment = await session.annotations.edit_at(record_id, index, body.text)
    return comment_out(comment)


@router.delete("/media/{record_id}/comments/{index}")
async def delete_comment(record_id: str, index: int, session: UserSession = Depends(current_session)):
    await session.annotations.delete_at(record_id, index)
    return {"comments": [comment_out(c) for c in session.annotations.comments(record_id)]}


# ── Metadata search ──────────────────────────────────────────────

@router.get("/search", dependencies=[Depends(current_identity)])
async def search_metadata(request: Request, q: str = Query(..., min_length=1)):
    """TMDB search, returned as drafts for the add form."""
    tmdb = getattr(request.app.state, "tmdb", None)
    if tmdb is None:
        raise HTTPException(503, "TMDB is not configured")
    try:
        drafts = await tmdb.search_drafts(q)
    except httpx.HTTPError as e:
        raise HTTPException(502, f"TMDB search failed: {e}")
    return {
        "results": [
            {
                "title": d.title,
                "description": d.description,
                "image_url": d.image_url,
                "media_kind": d.media_kind.value,
            }
            for d in drafts
        ],
    }
