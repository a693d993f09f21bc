"""Comment log on a single media record.

Appends use the store's append-to-array primitive with the exact value that
is then appended locally. The store has no positional edit, so edits and
deletes rewrite the whole ``comments`` field:

1. the index is resolved against the local snapshot to a comment id,
2. a fresh copy of the record is fetched right before the write,
3. the change is applied by id to the fresh sequence, which is written back.

This narrows, but does not close, the window in which another session's
append can be overwritten; closing it would need a compare-and-swap.
"""

import logging
from typing import Callable, Optional

from mediatracker.errors import (
    CommentIndexError, FetchError, RemoteStoreError, ValidationError, WriteError,
)
from mediatracker.models.records import Comment, new_comment_id, utcnow_iso
from mediatracker.services.media_store import MediaRecordStore

logger = logging.getLogger(__name__)

COMMENTS_FIELD = "comments"


class AnnotationManager:
    """Append / edit-by-index / delete-by-index over a record's comments."""

    def __init__(self, store: MediaRecordStore):
        self.store = store

    def comments(self, record_id: str) -> list[Comment]:
        return list(self.store.record(record_id).comments)

    async def append(self, record_id: str, text: str) -> Comment:
        text = _clean_text(text)
        comment = Comment(text=text, created_at=utcnow_iso(), id=new_comment_id())

        async with self.store.mutating(record_id) as record:
            try:
                await self.store.remote.append_to_array(
                    self.store.collection, record_id, COMMENTS_FIELD, comment.to_document(),
                )
            except RemoteStoreError as e:
                logger.warning(f"Appending comment to {record_id} failed: {e}")
                raise WriteError(f"Could not add comment: {e}") from e
            self.store.apply_local(record_id, comments=[*record.comments, comment])
        return comment

    async def edit_at(self, record_id: str, index: int, new_text: str) -> Comment:
        new_text = _clean_text(new_text)
        target = self._at(record_id, index)
        edited = Comment(text=new_text, created_at=target.created_at, id=target.id)

        def replace(fresh: list[Comment], position: int) -> list[Comment]:
            return [*fresh[:position], edited, *fresh[position + 1:]]

        await self._rewrite(record_id, target, replace)
        return edited

    async def delete_at(self, record_id: str, index: int) -> Comment:
        target = self._at(record_id, index)

        def remove(fresh: list[Comment], position: int) -> list[Comment]:
            return [*fresh[:position], *fresh[position + 1:]]

        await self._rewrite(record_id, target, remove)
        return target

    # ── Internals ────────────────────────────────────────────────

    def _at(self, record_id: str, index: int) -> Comment:
        """Comment at ``index`` of the local snapshot. Negative indexes are out of range."""
        comments = self.store.record(record_id).comments
        if isinstance(index, bool) or not isinstance(index, int) or not 0 <= index < len(comments):
            raise CommentIndexError(
                f"Comment index {index} is out of range ({len(comments)} comments)"
            )
        return comments[index]

    async def _fetch_comments(self, record_id: str) -> list[Comment]:
        try:
            data = await self.store.remote.get(self.store.collection, record_id)
        except RemoteStoreError as e:
            logger.warning(f"Refreshing comments of {record_id} failed: {e}")
            raise FetchError(f"Could not refresh comments: {e}") from e
        if data is None:
            raise FetchError(f"Media record {record_id} no longer exists")
        return [Comment.from_document(c) for c in data.get(COMMENTS_FIELD) or []]

    async def _rewrite(
        self,
        record_id: str,
        target: Comment,
        change: Callable[[list[Comment], int], list[Comment]],
    ) -> list[Comment]:
        async with self.store.mutating(record_id):
            fresh = await self._fetch_comments(record_id)
            position: Optional[int] = next(
                (i for i, c in enumerate(fresh) if c.same_entry(target)), None,
            )
            if position is None:
                raise CommentIndexError("Comment was removed by another session")

            updated = change(fresh, position)
            try:
                await self.store.remote.update(
                    self.store.collection, record_id,
                    {COMMENTS_FIELD: [c.to_document() for c in updated]},
                )
            except RemoteStoreError as e:
                logger.warning(f"Rewriting comments of {record_id} failed: {e}")
                raise WriteError(f"Could not save comments: {e}") from e
            self.store.apply_local(record_id, comments=updated)
        return updated


def _clean_text(text: str) -> str:
    if not isinstance(text, str) or not text.strip():
        raise ValidationError("Comment text must not be empty")
    return text.strip()
