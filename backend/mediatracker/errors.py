"""Error taxonomy.

Two layers:

- Client errors (``RemoteStoreError``, ``IdentityProviderError``) are raised by
  the store/identity backends in place of raw transport exceptions.
- Service errors (everything under ``MediaTrackerError``) are what callers of
  the media store, annotation manager and account coordinator see. Services
  catch client errors at the operation boundary and convert them.
"""

from typing import Optional


# ── Client layer ─────────────────────────────────────────────────

class RemoteStoreError(Exception):
    """A document store call failed (transport, permission, missing document)."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class IdentityProviderError(Exception):
    """An identity provider call failed. ``code`` is the provider's error code."""

    def __init__(self, code: str, message: Optional[str] = None):
        super().__init__(message or code)
        self.code = code


# ── Service layer ────────────────────────────────────────────────

class MediaTrackerError(Exception):
    """Base for every error surfaced by the core services."""


class ValidationError(MediaTrackerError):
    """Bad input. No remote call was made."""


class FetchError(MediaTrackerError):
    """A remote read failed. Local state is unchanged."""


class WriteError(MediaTrackerError):
    """A remote write failed. Local state is unchanged."""


class RecordNotFoundError(MediaTrackerError, LookupError):
    """The record id is not part of the local projection."""

    def __init__(self, record_id: str):
        super().__init__(f"Media record {record_id} is not loaded")
        self.record_id = record_id


class ConcurrentMutationError(MediaTrackerError):
    """A mutation was attempted on a record that already has one in flight."""

    def __init__(self, record_id: str):
        super().__init__(f"Media record {record_id} is already being saved")
        self.record_id = record_id


class CommentIndexError(MediaTrackerError, IndexError):
    """Comment index is out of range of the local snapshot, or the comment is gone."""


class ReauthenticationRequired(MediaTrackerError):
    """The identity must prove its credentials again before this operation."""


class CascadeError(MediaTrackerError):
    """Account deletion aborted part-way. ``progress`` says exactly how far it got."""

    def __init__(self, progress, cause: Optional[BaseException] = None):
        super().__init__(progress.describe())
        self.progress = progress
        self.cause = cause

    @property
    def failed_step(self) -> Optional[str]:
        return self.progress.failed_step

    @property
    def reauthentication_required(self) -> bool:
        return isinstance(self.cause, ReauthenticationRequired)
