"""Browse operations re-exporting the upstream catalog."""

from __future__ import annotations

from ..errors import NotFound, ValidationError
from ..models import AggregatedPage, CatalogEntry, ContentType
from ..utils import normalize_text
from .aggregator import PageAggregator, normalize_detail_entry
from .tmdb import UPSTREAM_PATHS, TMDBClient

CONTENT_TYPES: tuple[str, ...] = ("movie", "series")


class CatalogBrowser:
    """Serves popular, search, genre and detail listings for movies and series."""

    def __init__(self, client: TMDBClient, aggregator: PageAggregator):
        self._client = client
        self._aggregator = aggregator

    async def popular(self, content_type: ContentType) -> AggregatedPage:
        path = f"/{self._segment(content_type)}/popular"
        return await self._aggregator.aggregate(path, content_type)

    async def search(self, content_type: ContentType, query: str | None) -> AggregatedPage:
        term = (query or "").strip()
        if not term:
            raise ValidationError("A search term is required", field="query")
        path = f"/search/{self._segment(content_type)}"
        return await self._aggregator.aggregate(
            path,
            content_type,
            params={"query": term, "include_adult": "false"},
        )

    async def by_genre(self, content_type: ContentType, genre: str | None) -> AggregatedPage:
        """Return titles for a genre name matched case- and accent-insensitively."""

        wanted = normalize_text(genre or "")
        if not wanted:
            raise ValidationError("A genre name is required", field="genre")

        genres = await self._client.fetch_genres(content_type)
        match = next(
            (
                entry
                for entry in genres
                if normalize_text(str(entry.get("name") or "")) == wanted
            ),
            None,
        )
        if match is None or match.get("id") is None:
            raise NotFound(f"Genre '{genre}' not found")

        path = f"/discover/{self._segment(content_type)}"
        params: dict[str, object] = {"with_genres": match["id"]}
        if content_type == "series":
            params["sort_by"] = "popularity.desc"
        return await self._aggregator.aggregate(path, content_type, params=params)

    async def genres(self, content_type: ContentType) -> list[str]:
        genres = await self._client.fetch_genres(content_type)
        return [str(entry["name"]) for entry in genres if entry.get("name")]

    async def detail(self, content_type: ContentType, upstream_id: int) -> CatalogEntry:
        payload = await self._client.fetch_detail(content_type, upstream_id)
        entry = normalize_detail_entry(payload, content_type)
        if entry is None:
            raise NotFound(f"{content_type} {upstream_id} not found")
        return entry

    @staticmethod
    def _segment(content_type: str) -> str:
        if content_type not in CONTENT_TYPES:
            raise ValidationError(
                "content type must be movie or series", field="content_type"
            )
        return UPSTREAM_PATHS[content_type]
