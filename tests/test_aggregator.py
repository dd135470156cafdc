"""Capped pagination over upstream listings."""

from __future__ import annotations

from typing import Any

import httpx
import pytest

from app.config import Settings
from app.errors import UpstreamUnavailable
from app.services.aggregator import (
    PageAggregator,
    normalize_detail_entry,
    normalize_listing_entry,
)
from app.services.tmdb import TMDBClient

BASE_URL = "https://api.tmdb.test/3"
PAGE_SIZE = 20


def paged_handler(
    total_results: int, requests: list[int], *, fail_on_page: int | None = None
):
    total_pages = -(-total_results // PAGE_SIZE)

    def handler(request: httpx.Request) -> httpx.Response:
        page = int(request.url.params["page"])
        requests.append(page)
        if page == fail_on_page:
            return httpx.Response(500, json={"status_message": "boom"})
        start = (page - 1) * PAGE_SIZE
        count = max(0, min(PAGE_SIZE, total_results - start))
        results = [
            {
                "id": start + index + 1,
                "title": f"Movie {start + index + 1}",
                "release_date": "2020-01-01",
                "poster_path": f"/p{start + index + 1}.jpg",
                "vote_average": 7.1,
                "genre_ids": [28, 12],
            }
            for index in range(count)
        ]
        return httpx.Response(
            200,
            json={
                "page": page,
                "total_pages": total_pages,
                "total_results": total_results,
                "results": results,
            },
        )

    return handler


async def _aggregate(handler, limit: int = 70, **kwargs: Any):
    transport = httpx.MockTransport(handler)
    async with httpx.AsyncClient(transport=transport, base_url=BASE_URL) as http_client:
        client = TMDBClient(Settings(_env_file=None, TMDB_ACCESS_TOKEN="t"), http_client)
        aggregator = PageAggregator(client, limit)
        return await aggregator.aggregate("/movie/popular", "movie", **kwargs)


@pytest.mark.anyio("asyncio")
async def test_aggregation_stops_once_cap_is_reached() -> None:
    """500 upstream results arrive as 70 entries from the first four pages."""

    requests: list[int] = []
    page = await _aggregate(paged_handler(500, requests))

    assert requests == [1, 2, 3, 4]
    assert len(page.entries) == 70
    assert page.total_available == 70
    assert [entry.id for entry in page.entries[:3]] == [1, 2, 3]
    assert page.entries[-1].id == 70


@pytest.mark.anyio("asyncio")
async def test_aggregation_stops_at_last_page() -> None:
    requests: list[int] = []
    page = await _aggregate(paged_handler(45, requests))

    assert requests == [1, 2, 3]
    assert len(page.entries) == 45
    assert page.total_available == 45


@pytest.mark.anyio("asyncio")
async def test_aggregation_aborts_on_upstream_error() -> None:
    requests: list[int] = []
    with pytest.raises(UpstreamUnavailable):
        await _aggregate(paged_handler(500, requests, fail_on_page=2))

    assert requests == [1, 2]


@pytest.mark.anyio("asyncio")
async def test_aggregation_forwards_query_params() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"page": 1, "total_pages": 1, "results": []})

    page = await _aggregate(handler, params={"query": "matrix"})

    assert page.entries == []
    assert page.total_available == 0
    assert seen[0].url.params["query"] == "matrix"


def test_listing_entries_keep_genre_ids_and_build_poster_urls() -> None:
    entry = normalize_listing_entry(
        {
            "id": 1399,
            "name": "Juego de tronos",
            "first_air_date": "2011-04-17",
            "poster_path": "/got.jpg",
            "genre_ids": [18, "10765"],
        },
        "series",
    )

    assert entry is not None
    assert entry.title == "Juego de tronos"
    assert entry.release_date == "2011-04-17"
    assert entry.poster_url == "https://image.tmdb.org/t/p/w500/got.jpg"
    assert entry.genres == [18, 10765]


def test_detail_entries_resolve_genre_names() -> None:
    entry = normalize_detail_entry(
        {
            "id": 550,
            "title": "El club de la lucha",
            "poster_path": None,
            "genres": [{"id": 18, "name": "Drama"}],
        },
        "movie",
    )

    assert entry is not None
    assert entry.genres == ["Drama"]
    assert entry.poster_url is None


def test_entries_without_an_id_are_dropped() -> None:
    assert normalize_listing_entry({"title": "Nameless"}, "movie") is None
