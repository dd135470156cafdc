"""Client for The Movie Database (TMDB) v3 API."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Mapping

import httpx

from ..config import Settings
from ..errors import NotFound, UpstreamUnavailable
from ..utils import coerce_int

logger = logging.getLogger(__name__)

# TMDB path segment for each local item type.
UPSTREAM_PATHS: dict[str, str] = {
    "movie": "movie",
    "series": "tv",
    "actor": "person",
}


@dataclass(slots=True)
class UpstreamPage:
    """A single page of a paginated TMDB listing."""

    results: list[dict[str, Any]] = field(default_factory=list)
    page: int = 1
    total_pages: int = 1
    total_results: int = 0


class TMDBClient:
    """Thin wrapper issuing authenticated requests against TMDB."""

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient):
        if not settings.tmdb_access_token:
            logger.warning("TMDB access token missing; upstream calls will be rejected")
        self._settings = settings
        self._client = http_client

    def _headers(self) -> dict[str, str]:
        headers = {
            "accept": "application/json",
            "User-Agent": f"{self._settings.app_name} (flixfinder)",
        }
        if self._settings.tmdb_access_token:
            headers["Authorization"] = f"Bearer {self._settings.tmdb_access_token}"
        return headers

    async def get_json(
        self, path: str, params: Mapping[str, Any] | None = None
    ) -> dict[str, Any]:
        """Issue a GET request and return the decoded JSON object.

        Raises ``NotFound`` for a 404 and ``UpstreamUnavailable`` for any
        other failure, including transport errors and malformed bodies.
        """

        query: dict[str, Any] = {"language": self._settings.tmdb_language}
        if params:
            query.update(params)

        try:
            response = await self._client.get(path, params=query, headers=self._headers())
        except httpx.HTTPError as exc:
            logger.warning("TMDB request to %s failed: %s", path, exc)
            raise UpstreamUnavailable(
                f"Catalog service unreachable ({exc.__class__.__name__})"
            ) from exc

        if response.status_code == 404:
            raise NotFound("Resource not found in the catalog service")
        if response.status_code >= 400:
            logger.warning(
                "TMDB request to %s returned %s: %s",
                path,
                response.status_code,
                response.text,
            )
            raise UpstreamUnavailable(
                "Catalog service rejected the request", status=response.status_code
            )

        try:
            data = response.json()
        except ValueError as exc:
            logger.warning("Unexpected non-JSON TMDB response for %s", path)
            raise UpstreamUnavailable(
                "Catalog service returned an invalid payload",
                status=response.status_code,
            ) from exc
        if not isinstance(data, dict):
            raise UpstreamUnavailable(
                "Catalog service returned an invalid payload",
                status=response.status_code,
            )
        return data

    async def fetch_page(
        self,
        path: str,
        *,
        page: int = 1,
        params: Mapping[str, Any] | None = None,
    ) -> UpstreamPage:
        """Fetch one page of a listing, search or discover endpoint."""

        query = dict(params or {})
        query["page"] = page
        data = await self.get_json(path, query)
        raw_results = data.get("results")
        if not isinstance(raw_results, list):
            raw_results = []
        results = [entry for entry in raw_results if isinstance(entry, dict)]
        return UpstreamPage(
            results=results,
            page=coerce_int(data.get("page"), default=page) or page,
            total_pages=coerce_int(data.get("total_pages"), default=page) or page,
            total_results=coerce_int(data.get("total_results"), default=0) or 0,
        )

    async def fetch_detail(self, item_type: str, upstream_id: int) -> dict[str, Any]:
        """Fetch the full record for a movie, series or person."""

        return await self.get_json(f"/{UPSTREAM_PATHS[item_type]}/{upstream_id}")

    async def fetch_genres(self, content_type: str) -> list[dict[str, Any]]:
        """Return the upstream genre list as ``{"id", "name"}`` objects."""

        data = await self.get_json(f"/genre/{UPSTREAM_PATHS[content_type]}/list")
        genres = data.get("genres")
        if not isinstance(genres, list):
            raise UpstreamUnavailable("Catalog service returned no genre list")
        return [genre for genre in genres if isinstance(genre, dict)]
