"""Domain records — media items, comments, drafts and user profiles.

Remote documents use camelCase keys, Python objects use snake_case. The
``to_document`` / ``from_document`` pairs are the only place that mapping
lives. Documents written by older clients (``userId``, ``type``, comment
``created``) are still readable.
"""

import uuid
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Optional

from mediatracker.errors import ValidationError


class MediaKind(str, Enum):
    MOVIE = "movie"
    GAME = "game"
    BOOK = "book"


class MediaStatus(str, Enum):
    PLANNED = "planned"
    WATCHING = "watching"
    COMPLETED = "completed"
    DROPPED = "dropped"


RATING_MIN = 0
RATING_MAX = 10


def utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def new_comment_id() -> str:
    return uuid.uuid4().hex


# ── Comments ─────────────────────────────────────────────────────

@dataclass
class Comment:
    """One entry of a record's append-only comment log."""
    text: str
    created_at: str
    id: Optional[str] = None       # None only for entries written by older clients

    def to_document(self) -> dict:
        doc = {"text": self.text, "createdAt": self.created_at}
        if self.id:
            doc["id"] = self.id
        return doc

    @classmethod
    def from_document(cls, data: dict) -> "Comment":
        return cls(
            text=data.get("text", ""),
            created_at=data.get("createdAt") or data.get("created") or "",
            id=data.get("id"),
        )

    def same_entry(self, other: "Comment") -> bool:
        """Identity check across snapshots: by id, or by content for legacy entries."""
        if self.id or other.id:
            return self.id == other.id
        return (self.text, self.created_at) == (other.text, other.created_at)


# ── Media records ────────────────────────────────────────────────

@dataclass
class MediaRecord:
    """A tracked movie, game or book as held in the local projection."""
    id: str
    owner_id: str
    title: str
    description: str = ""
    image_url: str = ""
    media_kind: MediaKind = MediaKind.MOVIE
    tags: list[str] = field(default_factory=list)
    rating: Optional[int] = None
    status: MediaStatus = MediaStatus.PLANNED
    watched_date: Optional[str] = None
    favorite: bool = False
    comments: list[Comment] = field(default_factory=list)
    created_at: Optional[str] = None

    @classmethod
    def from_document(cls, doc_id: str, data: dict) -> "MediaRecord":
        """Build a record from a remote document. Raises ValueError on malformed data."""
        owner_id = data.get("ownerId") or data.get("userId")
        if not owner_id:
            raise ValueError(f"media document {doc_id} has no owner")
        rating = data.get("rating")
        return cls(
            id=doc_id,
            owner_id=owner_id,
            title=data.get("title", ""),
            description=data.get("description", ""),
            image_url=data.get("imageUrl", ""),
            media_kind=MediaKind(data.get("mediaKind") or data.get("type") or MediaKind.MOVIE.value),
            tags=list(data.get("tags") or []),
            rating=int(rating) if rating is not None else None,
            status=MediaStatus(data.get("status") or MediaStatus.PLANNED.value),
            watched_date=data.get("watchedDate") or None,
            favorite=bool(data.get("favorite", False)),
            comments=[Comment.from_document(c) for c in data.get("comments") or []],
            created_at=data.get("createdAt"),
        )

    def to_document(self) -> dict:
        return {
            "ownerId": self.owner_id,
            "title": self.title,
            "description": self.description,
            "imageUrl": self.image_url,
            "mediaKind": self.media_kind.value,
            "tags": list(self.tags),
            "rating": self.rating,
            "status": self.status.value,
            "watchedDate": self.watched_date,
            "favorite": self.favorite,
            "comments": [c.to_document() for c in self.comments],
            "createdAt": self.created_at,
        }


# Python attribute → remote document key, for fields a user may edit
EDITABLE_FIELDS = {
    "title": "title",
    "description": "description",
    "image_url": "imageUrl",
    "media_kind": "mediaKind",
    "tags": "tags",
    "rating": "rating",
    "status": "status",
    "watched_date": "watchedDate",
    "favorite": "favorite",
}
_ATTR_BY_KEY = {key: attr for attr, key in EDITABLE_FIELDS.items()}


def _required_text(name: str):
    def check(value: Any) -> str:
        if not isinstance(value, str) or not value.strip():
            raise ValidationError(f"{name} must not be empty")
        return value.strip()
    return check


def _media_kind(value: Any) -> MediaKind:
    try:
        return MediaKind(value)
    except ValueError:
        raise ValidationError(f"Unknown media kind: {value!r}") from None


def _status(value: Any) -> MediaStatus:
    try:
        return MediaStatus(value)
    except ValueError:
        raise ValidationError(f"Unknown status: {value!r}") from None


def _rating(value: Any) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"Rating must be an integer, got {value!r}")
    if not RATING_MIN <= value <= RATING_MAX:
        raise ValidationError(f"Rating must be between {RATING_MIN} and {RATING_MAX}")
    return value


def _tags(value: Any) -> list[str]:
    if isinstance(value, str) or not isinstance(value, (list, tuple, set)):
        raise ValidationError("Tags must be a list of strings")
    tags: list[str] = []
    for tag in value:
        if not isinstance(tag, str):
            raise ValidationError(f"Tag must be a string, got {tag!r}")
        tag = tag.strip()
        if tag and tag not in tags:
            tags.append(tag)
    return tags


def _watched_date(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    try:
        return date.fromisoformat(value).isoformat()
    except (TypeError, ValueError):
        raise ValidationError(f"Watched date must be YYYY-MM-DD, got {value!r}") from None


def _favorite(value: Any) -> bool:
    if not isinstance(value, bool):
        raise ValidationError(f"Favorite must be true or false, got {value!r}")
    return value


_VALIDATORS = {
    "title": _required_text("Title"),
    "description": _required_text("Description"),
    "image_url": _required_text("Image URL"),
    "media_kind": _media_kind,
    "tags": _tags,
    "rating": _rating,
    "status": _status,
    "watched_date": _watched_date,
    "favorite": _favorite,
}


def normalize_field(name: str, value: Any) -> tuple[str, Any]:
    """Validate one user-editable field.

    ``name`` may be the Python attribute or the remote key. Returns the
    attribute name and the normalised value; raises ValidationError otherwise.
    """
    attr = name if name in EDITABLE_FIELDS else _ATTR_BY_KEY.get(name)
    if attr is None:
        raise ValidationError(f"Field '{name}' cannot be updated")
    return attr, _VALIDATORS[attr](value)


def remote_value(value: Any) -> Any:
    """Plain value for the wire: enums become their string value."""
    if isinstance(value, Enum):
        return value.value
    return value


# ── Drafts ───────────────────────────────────────────────────────

@dataclass
class MediaDraft:
    """User input for a new record, possibly pre-filled from a metadata search."""
    title: str = ""
    description: str = ""
    image_url: str = ""
    media_kind: MediaKind = MediaKind.MOVIE
    tags: list[str] = field(default_factory=list)
    rating: Optional[int] = None

    def validated(self) -> "MediaDraft":
        """Return a normalised copy, or raise ValidationError naming every bad field."""
        missing = [
            label for label, value in (
                ("title", self.title),
                ("description", self.description),
                ("imageUrl", self.image_url),
            )
            if not isinstance(value, str) or not value.strip()
        ]
        if missing:
            raise ValidationError(f"Required fields are empty: {', '.join(missing)}")
        return replace(
            self,
            title=self.title.strip(),
            description=self.description.strip(),
            image_url=self.image_url.strip(),
            media_kind=_media_kind(self.media_kind),
            tags=_tags(self.tags),
            rating=_rating(self.rating),
        )

    def to_document(self, owner_id: str, created_at: str) -> dict:
        return {
            "ownerId": owner_id,
            "title": self.title,
            "description": self.description,
            "imageUrl": self.image_url,
            "mediaKind": remote_value(self.media_kind),
            "tags": list(self.tags),
            "rating": self.rating,
            "status": MediaStatus.PLANNED.value,
            "watchedDate": None,
            "favorite": False,
            "comments": [],
            "createdAt": created_at,
        }


# ── Profiles ─────────────────────────────────────────────────────

@dataclass
class UserProfile:
    """Mirror of the identity kept in the ``users`` collection."""
    uid: str
    email: str = ""
    display_name: str = ""

    @classmethod
    def from_identity(cls, identity) -> "UserProfile":
        return cls(
            uid=identity.uid,
            email=identity.email or "",
            display_name=identity.display_name or "",
        )

    def to_document(self) -> dict:
        return {"uid": self.uid, "email": self.email, "displayName": self.display_name}
