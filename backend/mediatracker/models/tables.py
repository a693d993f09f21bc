"""SQLAlchemy ORM models — the self-hosted document store."""

from datetime import datetime, timezone

from sqlalchemy import JSON, DateTime, Index, String
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from mediatracker.database import Base


# ── Documents ────────────────────────────────────────────────────

class Document(Base):
    """One schemaless document, addressed by (collection, doc_id)."""
    __tablename__ = "documents"
    __table_args__ = (
        Index("idx_documents_collection", "collection"),
    )

    collection: Mapped[str] = mapped_column(String(100), primary_key=True)
    doc_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    data: Mapped[dict] = mapped_column(JSON().with_variant(JSONB, "postgresql"), nullable=False, default=dict)
    # Client-side default keeps microsecond ordering on SQLite
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(),
    )
