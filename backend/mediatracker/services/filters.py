"""Filtering of the local projection for display. Pure, synchronous, no I/O."""

from dataclasses import dataclass
from typing import Iterable, Optional, Sequence

from mediatracker.errors import ValidationError
from mediatracker.models.records import MediaRecord, MediaStatus

ANY_STATUS = "any"


@dataclass(frozen=True)
class FilterCriteria:
    search_text: str = ""
    status: Optional[MediaStatus] = None     # None = any status
    min_rating: Optional[int] = None         # None or 0 = no rating filter

    @classmethod
    def build(
        cls,
        search_text: Optional[str] = None,
        status: Optional[str] = None,
        min_rating: Optional[int] = None,
    ) -> "FilterCriteria":
        """Build criteria from loose UI/query values ("" and "any" mean no status filter)."""
        wanted = None
        if status and status != ANY_STATUS:
            try:
                wanted = MediaStatus(status)
            except ValueError:
                raise ValidationError(f"Unknown status: {status!r}") from None
        return cls(search_text=search_text or "", status=wanted, min_rating=min_rating)

    def matches(self, record: MediaRecord) -> bool:
        if self.search_text and self.search_text.casefold() not in record.title.casefold():
            return False
        if self.status is not None and record.status != self.status:
            return False
        if self.min_rating:
            # Unrated records fail any positive bound
            if record.rating is None or record.rating < self.min_rating:
                return False
        return True


def filter_records(records: Iterable[MediaRecord], criteria: FilterCriteria) -> list[MediaRecord]:
    """Records matching every criterion, in input order."""
    return [r for r in records if criteria.matches(r)]


class FilterEngine:
    """``filter_records`` with a one-entry memo for repeated identical inputs.

    The memo key covers the fields the criteria read, so in-place updates to
    a record's title, status or rating invalidate it.
    """

    def __init__(self):
        self._last_key: Optional[tuple] = None
        self._last_result: list[MediaRecord] = []

    def apply(self, records: Sequence[MediaRecord], criteria: FilterCriteria | dict) -> list[MediaRecord]:
        if isinstance(criteria, dict):
            criteria = FilterCriteria.build(**criteria)
        key = (criteria, tuple((id(r), r.title, r.status, r.rating) for r in records))
        if key != self._last_key:
            self._last_result = filter_records(records, criteria)
            self._last_key = key
        return list(self._last_result)
