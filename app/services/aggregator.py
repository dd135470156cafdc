"""Capped aggregation over paginated TMDB listings."""

from __future__ import annotations

import logging
from typing import Any, Callable, Mapping

from ..models import AggregatedPage, CatalogEntry, ContentType
from ..utils import build_image_url, coerce_float, coerce_int
from .tmdb import TMDBClient

logger = logging.getLogger(__name__)

EntryNormalizer = Callable[[Mapping[str, Any], ContentType], CatalogEntry | None]


def normalize_listing_entry(
    raw: Mapping[str, Any], content_type: ContentType
) -> CatalogEntry | None:
    """Map a browse/search/discover result; genres stay as upstream ids."""

    entry_id = coerce_int(raw.get("id"))
    if entry_id is None:
        return None
    genres: list[int] = []
    genre_ids = raw.get("genre_ids")
    if isinstance(genre_ids, list):
        for value in genre_ids:
            genre_id = coerce_int(value)
            if genre_id is not None:
                genres.append(genre_id)
    return _build_entry(raw, content_type, entry_id, genres)


def normalize_detail_entry(
    raw: Mapping[str, Any], content_type: ContentType
) -> CatalogEntry | None:
    """Map a single-item lookup; genre objects are resolved to names."""

    entry_id = coerce_int(raw.get("id"))
    if entry_id is None:
        return None
    genres: list[str] = []
    for genre in raw.get("genres") or []:
        if isinstance(genre, Mapping) and genre.get("name"):
            genres.append(str(genre["name"]))
    return _build_entry(raw, content_type, entry_id, genres)


def _build_entry(
    raw: Mapping[str, Any],
    content_type: ContentType,
    entry_id: int,
    genres: list[int] | list[str],
) -> CatalogEntry:
    if content_type == "movie":
        title = raw.get("title") or raw.get("original_title")
        release_date = raw.get("release_date")
    else:
        title = raw.get("name") or raw.get("original_name")
        release_date = raw.get("first_air_date")
    return CatalogEntry(
        id=entry_id,
        media_type=content_type,
        title=str(title or ""),
        overview=raw.get("overview") or None,
        release_date=release_date or None,
        vote_average=coerce_float(raw.get("vote_average")),
        poster_url=build_image_url(raw.get("poster_path")),
        genres=genres,
    )


class PageAggregator:
    """Walk a paginated listing until ``limit`` results have been gathered."""

    def __init__(self, client: TMDBClient, limit: int):
        if limit < 1:
            raise ValueError("Aggregation limit must be positive")
        self._client = client
        self._limit = limit

    async def aggregate(
        self,
        path: str,
        content_type: ContentType,
        *,
        params: Mapping[str, Any] | None = None,
        normalizer: EntryNormalizer = normalize_listing_entry,
    ) -> AggregatedPage:
        """Collect and normalize up to ``limit`` results from ``path``.

        Pages are requested one after another; an upstream error on any page
        aborts the whole aggregation.
        """

        collected: list[Mapping[str, Any]] = []
        page = 1
        while True:
            batch = await self._client.fetch_page(path, page=page, params=params)
            collected.extend(batch.results)
            if len(collected) >= self._limit:
                break
            if not batch.results or page >= batch.total_pages:
                break
            page += 1

        logger.debug(
            "Aggregated %s results from %s across %s page(s)",
            len(collected),
            path,
            page,
        )
        collected = collected[: self._limit]
        entries = [
            entry
            for entry in (normalizer(raw, content_type) for raw in collected)
            if entry is not None
        ]
        return AggregatedPage(entries=entries, total_available=len(collected))
