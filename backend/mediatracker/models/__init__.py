"""Re-export domain records and SQLAlchemy models for import convenience."""

from mediatracker.models.records import (  # noqa: F401
    Comment, MediaDraft, MediaKind, MediaRecord, MediaStatus, UserProfile,
    EDITABLE_FIELDS, normalize_field,
)
from mediatracker.models.tables import Document  # noqa: F401
