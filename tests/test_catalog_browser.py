from __future__ import annotations

import httpx
import pytest

from app.config import Settings
from app.errors import NotFound, ValidationError
from app.services.aggregator import PageAggregator
from app.services.catalog import CatalogBrowser
from app.services.tmdb import TMDBClient

GENRES = {
    "genres": [
        {"id": 16, "name": "Animación"},
        {"id": 878, "name": "Ciencia ficción"},
    ]
}


def build_browser(handler) -> tuple[CatalogBrowser, httpx.AsyncClient]:
    http_client = httpx.AsyncClient(
        transport=httpx.MockTransport(handler), base_url="https://api.tmdb.test/3"
    )
    client = TMDBClient(Settings(_env_file=None, TMDB_ACCESS_TOKEN="t"), http_client)
    return CatalogBrowser(client, PageAggregator(client, 70)), http_client


def single_page(results: list[dict]) -> httpx.Response:
    return httpx.Response(
        200,
        json={"page": 1, "total_pages": 1, "total_results": len(results), "results": results},
    )


@pytest.mark.anyio("asyncio")
async def test_genre_lookup_is_accent_insensitive() -> None:
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        if request.url.path.endswith("/genre/tv/list"):
            return httpx.Response(200, json=GENRES)
        return single_page([{"id": 7, "name": "Rick y Morty", "genre_ids": [16]}])

    browser, http_client = build_browser(handler)
    async with http_client:
        page = await browser.by_genre("series", "ANIMACION")

    discover = requests[-1]
    assert discover.url.path == "/3/discover/tv"
    assert discover.url.params["with_genres"] == "16"
    assert discover.url.params["sort_by"] == "popularity.desc"
    assert [entry.title for entry in page.entries] == ["Rick y Morty"]


@pytest.mark.anyio("asyncio")
async def test_unknown_genre_is_not_found() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=GENRES)

    browser, http_client = build_browser(handler)
    async with http_client:
        with pytest.raises(NotFound):
            await browser.by_genre("movie", "Western")


@pytest.mark.anyio("asyncio")
async def test_blank_inputs_are_rejected_before_calling_upstream() -> None:
    calls: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return single_page([])

    browser, http_client = build_browser(handler)
    async with http_client:
        with pytest.raises(ValidationError) as excinfo:
            await browser.search("movie", "   ")
        with pytest.raises(ValidationError):
            await browser.by_genre("movie", "")

    assert excinfo.value.field == "query"
    assert calls == []


@pytest.mark.anyio("asyncio")
async def test_search_passes_term_and_excludes_adult_titles() -> None:
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return single_page([{"id": 603, "title": "Matrix", "genre_ids": [878]}])

    browser, http_client = build_browser(handler)
    async with http_client:
        page = await browser.search("movie", " matrix ")

    assert requests[0].url.path == "/3/search/movie"
    assert requests[0].url.params["query"] == "matrix"
    assert requests[0].url.params["include_adult"] == "false"
    assert page.entries[0].genres == [878]


@pytest.mark.anyio("asyncio")
async def test_detail_and_genre_names() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/genre/movie/list"):
            return httpx.Response(200, json=GENRES)
        return httpx.Response(
            200,
            json={"id": 603, "title": "Matrix", "genres": [{"id": 878, "name": "Ciencia ficción"}]},
        )

    browser, http_client = build_browser(handler)
    async with http_client:
        names = await browser.genres("movie")
        entry = await browser.detail("movie", 603)

    assert names == ["Animación", "Ciencia ficción"]
    assert entry.genres == ["Ciencia ficción"]
    assert entry.media_type == "movie"
