"""TMDB client — metadata search used to pre-fill new media drafts.

Only search and draft normalization live here; nothing from TMDB is
persisted beyond the initial field values the user accepts.
"""

from typing import Optional

import httpx

from mediatracker.models.records import MediaDraft, MediaKind

# Search hits the add form can use; people and collections are dropped
DRAFTABLE_TYPES = ("movie", "tv")


class TmdbClient:
    """Search-only client for The Movie Database API v3."""

    API_URL = "https://api.themoviedb.org/3"
    POSTER_URL = "https://image.tmdb.org/t/p"

    def __init__(
        self,
        api_key: str,
        language: str = "en-US",
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.language = language
        self.timeout = timeout
        self._transport = transport
        # v4 read access tokens are JWTs; anything else is a v3 key
        self._uses_token = api_key.startswith("eyJ")

    async def _get(self, path: str, params: dict | None = None) -> dict:
        """GET ``path`` with the key or token attached. Raises httpx.HTTPStatusError on 4xx/5xx."""
        query = {"language": self.language, **(params or {})}
        headers = {}
        if self._uses_token:
            headers["Authorization"] = f"Bearer {self.api_key}"
        else:
            query["api_key"] = self.api_key

        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            resp = await client.get(f"{self.API_URL}{path}", params=query, headers=headers)
            resp.raise_for_status()
            return resp.json()

    async def search_multi(self, query: str, page: int = 1) -> list[dict]:
        """One page of movie + TV hits for ``query``."""
        data = await self._get("/search/multi", {"query": query, "page": page, "include_adult": "false"})
        return [hit for hit in data.get("results", []) if hit.get("media_type") in DRAFTABLE_TYPES]

    async def search_drafts(self, query: str, limit: int = 10) -> list[MediaDraft]:
        """Search and normalize hits into drafts ready for the add form."""
        if not query.strip():
            return []
        hits = await self.search_multi(query.strip())
        return [self.to_draft(hit) for hit in hits[:limit]]

    async def test_connection(self) -> bool:
        """True when the key is accepted."""
        try:
            await self._get("/configuration")
        except httpx.HTTPError:
            return False
        return True

    @classmethod
    def to_draft(cls, hit: dict) -> MediaDraft:
        """Map a movie or TV search hit onto draft fields. Both count as "movie"."""
        return MediaDraft(
            title=hit.get("title") or hit.get("name") or "",
            description=hit.get("overview") or "",
            image_url=cls.poster_url(hit.get("poster_path")) or "",
            media_kind=MediaKind.MOVIE,
        )

    @classmethod
    def poster_url(cls, path: Optional[str], size: str = "w500") -> Optional[str]:
        if not path:
            return None
        return f"{cls.POSTER_URL}/{size}{path}"
