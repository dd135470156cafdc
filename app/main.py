"""Entry point for the FastAPI-powered FlixFinder API."""

from __future__ import annotations

import logging
from contextlib import AsyncExitStack, asynccontextmanager
from typing import Any, Sequence

import httpx
from fastapi import Depends, FastAPI, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .auth import SessionUser, SignedTokenAuthProvider, current_user, require_service_key
from .config import Settings, settings
from .database import Database
from .errors import FlixFinderError
from .models import (
    AggregatedPage,
    ContentType,
    FavoriteRequest,
    ItemSelector,
    Pagination,
    ReviewRequest,
    UserRequest,
)
from .services.aggregator import PageAggregator
from .services.catalog import CatalogBrowser
from .services.catalog_mirror import CatalogMirror
from .services.enrichment import DetailEnricher
from .services.preference_service import PreferenceService
from .services.preferences import UNSET, PreferenceStore
from .services.tmdb import TMDBClient
from .services.users import UserStore

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

API_PREFIX = "/api/v1"

app: FastAPI


def install_services(
    fastapi_app: FastAPI,
    app_settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    tmdb_http_client: httpx.AsyncClient,
) -> None:
    """Construct the service graph and attach it to the application state."""

    tmdb = TMDBClient(app_settings, tmdb_http_client)
    aggregator = PageAggregator(tmdb, app_settings.catalog_result_limit)
    store = PreferenceStore(session_factory)
    enricher = DetailEnricher(
        session_factory, concurrency=app_settings.enrichment_concurrency
    )

    fastapi_app.state.settings = app_settings
    fastapi_app.state.auth_provider = SignedTokenAuthProvider(
        app_settings.auth_secret, ttl_seconds=app_settings.auth_token_ttl_seconds
    )
    fastapi_app.state.catalog_browser = CatalogBrowser(tmdb, aggregator)
    fastapi_app.state.catalog_mirror = CatalogMirror(session_factory, tmdb)
    fastapi_app.state.preference_service = PreferenceService(store, enricher)
    fastapi_app.state.user_store = UserStore(session_factory)


@asynccontextmanager
async def lifespan(fastapi_app: FastAPI):
    exit_stack = AsyncExitStack()
    tmdb_client = await exit_stack.enter_async_context(
        httpx.AsyncClient(
            base_url=str(settings.tmdb_api_url),
            timeout=httpx.Timeout(15.0, connect=5.0),
        )
    )
    database = Database(settings.database_url)
    await database.create_all()

    install_services(fastapi_app, settings, database.session_factory, tmdb_client)
    fastapi_app.state.database = database

    try:
        yield
    finally:  # pragma: no cover - teardown path exercised at runtime
        await database.dispose()
        await exit_stack.aclose()


def create_app() -> FastAPI:
    fastapi_app = FastAPI(
        title=settings.app_name,
        description="Movie, series and actor catalog with per-user favorites and reviews",
        version="1.0.0",
        lifespan=lifespan,
    )

    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=["Content-Length", "X-API-KEY"],
    )

    register_exception_handlers(fastapi_app)
    register_routes(fastapi_app)
    return fastapi_app


def register_exception_handlers(fastapi_app: FastAPI) -> None:
    @fastapi_app.exception_handler(FlixFinderError)
    async def _handle_domain_error(request: Request, exc: FlixFinderError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error(
                "%s %s failed: %s", request.method, request.url.path, exc.detail
            )
        return JSONResponse(exc.to_payload(), status_code=exc.status_code)

    @fastapi_app.exception_handler(RequestValidationError)
    async def _handle_request_validation(
        _: Request, exc: RequestValidationError
    ) -> JSONResponse:
        return JSONResponse(
            {
                "success": False,
                "error": "validation_error",
                "detail": jsonable_encoder(exc.errors()),
            },
            status_code=400,
        )

    @fastapi_app.exception_handler(Exception)
    async def _handle_unexpected(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            {"success": False, "error": "internal_error", "detail": "Unexpected error"},
            status_code=500,
        )


def get_preference_service(fastapi_app: FastAPI) -> PreferenceService:
    service = getattr(fastapi_app.state, "preference_service", None)
    if not isinstance(service, PreferenceService):
        raise RuntimeError("Preference service not initialised")
    return service


def get_catalog_browser(fastapi_app: FastAPI) -> CatalogBrowser:
    browser = getattr(fastapi_app.state, "catalog_browser", None)
    if not isinstance(browser, CatalogBrowser):
        raise RuntimeError("Catalog browser not initialised")
    return browser


def get_catalog_mirror(fastapi_app: FastAPI) -> CatalogMirror:
    mirror = getattr(fastapi_app.state, "catalog_mirror", None)
    if not isinstance(mirror, CatalogMirror):
        raise RuntimeError("Catalog mirror not initialised")
    return mirror


def get_user_store(fastapi_app: FastAPI) -> UserStore:
    store = getattr(fastapi_app.state, "user_store", None)
    if not isinstance(store, UserStore):
        raise RuntimeError("User store not initialised")
    return store


def _dump(value: BaseModel | None) -> dict[str, Any] | None:
    return value.model_dump(mode="json") if value is not None else None


def _dump_all(values: Sequence[BaseModel]) -> list[dict[str, Any]]:
    return [value.model_dump(mode="json") for value in values]


def register_routes(fastapi_app: FastAPI) -> None:
    @fastapi_app.get("/healthz")
    async def healthcheck() -> dict[str, str]:
        return {"status": "ok"}

    _register_favorite_routes(fastapi_app)
    _register_review_routes(fastapi_app)
    for prefix, content_type in (("movies", "movie"), ("series", "series")):
        _register_browse_routes(fastapi_app, prefix, content_type)
    _register_mirror_routes(fastapi_app)
    _register_user_routes(fastapi_app)


def _register_favorite_routes(fastapi_app: FastAPI) -> None:
    base = f"{API_PREFIX}/favorites"

    @fastapi_app.post(base)
    async def add_favorite(
        body: FavoriteRequest, user: SessionUser = Depends(current_user)
    ) -> JSONResponse:
        service = get_preference_service(fastapi_app)
        result = await service.add_favorite(
            user.id, body.item_type, body.item_id, body.upstream_id
        )
        return JSONResponse(
            {
                "success": True,
                "already_exists": result.already_existed,
                "favorite": _dump(result.record),
            },
            status_code=201 if result.created else 200,
        )

    @fastapi_app.post(f"{base}/toggle")
    async def toggle_favorite(
        body: FavoriteRequest, user: SessionUser = Depends(current_user)
    ) -> dict[str, Any]:
        service = get_preference_service(fastapi_app)
        result = await service.toggle_favorite(
            user.id, body.item_type, body.item_id, body.upstream_id
        )
        return {
            "success": True,
            "is_favorite": result.active,
            "favorite": _dump(result.record),
        }

    @fastapi_app.get(base)
    async def list_favorites(
        item_type: str | None = Query(default=None, alias="type"),
        user: SessionUser = Depends(current_user),
    ) -> dict[str, Any]:
        service = get_preference_service(fastapi_app)
        favorites = await service.list_favorites(user.id, item_type)
        return {"success": True, "count": len(favorites), "favorites": _dump_all(favorites)}

    @fastapi_app.get(f"{base}/detailed")
    async def list_favorites_detailed(
        item_type: str | None = Query(default=None, alias="type"),
        user: SessionUser = Depends(current_user),
    ) -> dict[str, Any]:
        service = get_preference_service(fastapi_app)
        favorites = await service.list_favorites_detailed(user.id, item_type)
        return {"success": True, "count": len(favorites), "favorites": _dump_all(favorites)}

    @fastapi_app.get(f"{base}/stats")
    async def favorite_stats(user: SessionUser = Depends(current_user)) -> dict[str, Any]:
        service = get_preference_service(fastapi_app)
        return {"success": True, "stats": await service.favorite_stats(user.id)}

    @fastapi_app.get(f"{base}/check")
    async def check_favorite(
        item_type: str | None = None,
        item_id: str | None = None,
        user: SessionUser = Depends(current_user),
    ) -> dict[str, Any]:
        service = get_preference_service(fastapi_app)
        record = await service.check_favorite(user.id, item_type, item_id)
        return {"success": True, "is_favorite": record is not None, "favorite": _dump(record)}

    @fastapi_app.delete(base)
    async def remove_favorite(
        body: ItemSelector, user: SessionUser = Depends(current_user)
    ) -> dict[str, Any]:
        service = get_preference_service(fastapi_app)
        if body.id is not None:
            await service.delete_favorite(user.id, body.id)
        else:
            await service.remove_favorite(user.id, body.item_type, body.item_id)
        return {"success": True}

    @fastapi_app.delete(f"{base}/{{record_id}}")
    async def delete_favorite(
        record_id: int, user: SessionUser = Depends(current_user)
    ) -> dict[str, Any]:
        service = get_preference_service(fastapi_app)
        await service.delete_favorite(user.id, record_id)
        return {"success": True, "id": record_id}


def _register_review_routes(fastapi_app: FastAPI) -> None:
    base = f"{API_PREFIX}/reviews"

    @fastapi_app.post(base, status_code=201)
    async def save_review(
        body: ReviewRequest, user: SessionUser = Depends(current_user)
    ) -> dict[str, Any]:
        service = get_preference_service(fastapi_app)

        def _field(name: str) -> Any:
            return getattr(body, name) if body.provided(name) else UNSET

        result = await service.save_review(
            user.id,
            body.item_type,
            body.item_id,
            upstream_id=_field("upstream_id"),
            rating=_field("rating"),
            review_text=_field("review_text"),
            is_favorite=_field("is_favorite"),
        )
        return {"success": True, "created": result.created, "data": _dump(result.record)}

    @fastapi_app.get(base)
    async def list_reviews(
        item_type: str | None = Query(default=None, alias="type"),
        user: SessionUser = Depends(current_user),
    ) -> dict[str, Any]:
        service = get_preference_service(fastapi_app)
        reviews = await service.list_reviews(user.id, item_type)
        return {"success": True, "count": len(reviews), "data": _dump_all(reviews)}

    @fastapi_app.get(f"{base}/detailed")
    async def list_reviews_detailed(
        item_type: str | None = Query(default=None, alias="type"),
        user: SessionUser = Depends(current_user),
    ) -> dict[str, Any]:
        service = get_preference_service(fastapi_app)
        reviews = await service.list_reviews_detailed(user.id, item_type)
        return {"success": True, "count": len(reviews), "data": _dump_all(reviews)}

    @fastapi_app.get(f"{base}/single")
    async def get_review(
        item_type: str | None = None,
        item_id: str | None = None,
        user: SessionUser = Depends(current_user),
    ) -> dict[str, Any]:
        service = get_preference_service(fastapi_app)
        review = await service.get_review(user.id, item_type, item_id)
        return {"success": True, "data": _dump(review)}

    @fastapi_app.delete(base)
    async def delete_review(
        body: ItemSelector, user: SessionUser = Depends(current_user)
    ) -> dict[str, Any]:
        service = get_preference_service(fastapi_app)
        await service.delete_review(
            user.id, record_id=body.id, item_type=body.item_type, item_id=body.item_id
        )
        return {"success": True}

    @fastapi_app.get(f"{base}/item")
    async def item_reviews(
        item_type: str | None = None, item_id: str | None = None
    ) -> dict[str, Any]:
        service = get_preference_service(fastapi_app)
        reviews = await service.item_reviews(item_type, item_id)
        return {"success": True, "count": len(reviews), "data": _dump_all(reviews)}


def _register_browse_routes(
    fastapi_app: FastAPI, prefix: str, content_type: ContentType
) -> None:
    base = f"{API_PREFIX}/{prefix}"
    guard = [Depends(require_service_key)]

    def _page_payload(page: AggregatedPage) -> dict[str, Any]:
        return {
            "success": True,
            "data": _dump_all(page.entries),
            "total_results": page.total_available,
        }

    @fastapi_app.get(f"{base}/popular", dependencies=guard, name=f"{prefix}_popular")
    async def popular() -> dict[str, Any]:
        browser = get_catalog_browser(fastapi_app)
        return _page_payload(await browser.popular(content_type))

    @fastapi_app.get(f"{base}/search", dependencies=guard, name=f"{prefix}_search")
    async def search(query: str | None = None) -> dict[str, Any]:
        browser = get_catalog_browser(fastapi_app)
        return _page_payload(await browser.search(content_type, query))

    @fastapi_app.get(f"{base}/genre", dependencies=guard, name=f"{prefix}_by_genre")
    async def by_genre(genre: str | None = None) -> dict[str, Any]:
        browser = get_catalog_browser(fastapi_app)
        return _page_payload(await browser.by_genre(content_type, genre))

    @fastapi_app.get(f"{base}/genres", dependencies=guard, name=f"{prefix}_genres")
    async def genres() -> dict[str, Any]:
        browser = get_catalog_browser(fastapi_app)
        return {"success": True, "data": await browser.genres(content_type)}

    @fastapi_app.get(
        f"{base}/{{upstream_id}}", dependencies=guard, name=f"{prefix}_detail"
    )
    async def detail(upstream_id: int) -> dict[str, Any]:
        browser = get_catalog_browser(fastapi_app)
        entry = await browser.detail(content_type, upstream_id)
        return {"success": True, "data": _dump(entry)}


async def _json_object(request: Request) -> dict[str, Any]:
    try:
        payload = await request.json()
    except ValueError:
        return {}
    return payload if isinstance(payload, dict) else {}


def _pagination(page: int, limit: int, total: int) -> dict[str, int]:
    return Pagination(page=page, limit=limit, total=total).model_dump()


def _register_mirror_routes(fastapi_app: FastAPI) -> None:
    base = f"{API_PREFIX}/catalog"
    guard = [Depends(require_service_key)]

    @fastapi_app.post(f"{base}/{{item_type}}", dependencies=guard, status_code=201)
    async def create_catalog_item(item_type: str, request: Request) -> dict[str, Any]:
        mirror = get_catalog_mirror(fastapi_app)
        item = await mirror.create_item(item_type, await _json_object(request))
        return {"success": True, "data": jsonable_encoder(item)}

    @fastapi_app.get(f"{base}/{{item_type}}", dependencies=guard)
    async def list_catalog_items(
        item_type: str, page: int = 1, limit: int = 20
    ) -> dict[str, Any]:
        mirror = get_catalog_mirror(fastapi_app)
        items, total = await mirror.list_items(item_type, page, limit)
        return {
            "success": True,
            "data": jsonable_encoder(items),
            "pagination": _pagination(page, limit, total),
        }

    @fastapi_app.post(
        f"{base}/{{item_type}}/{{upstream_id}}/import",
        dependencies=guard,
        status_code=201,
    )
    async def import_catalog_item(item_type: str, upstream_id: int) -> dict[str, Any]:
        mirror = get_catalog_mirror(fastapi_app)
        item = await mirror.import_item(item_type, upstream_id)
        return {"success": True, "data": jsonable_encoder(item)}

    @fastapi_app.get(f"{base}/{{item_type}}/{{upstream_id}}", dependencies=guard)
    async def get_catalog_item(item_type: str, upstream_id: int) -> dict[str, Any]:
        mirror = get_catalog_mirror(fastapi_app)
        item = await mirror.get_item(item_type, upstream_id)
        return {"success": True, "data": jsonable_encoder(item)}

    @fastapi_app.put(f"{base}/{{item_type}}/{{upstream_id}}", dependencies=guard)
    async def update_catalog_item(
        item_type: str, upstream_id: int, request: Request
    ) -> dict[str, Any]:
        mirror = get_catalog_mirror(fastapi_app)
        item = await mirror.update_item(
            item_type, upstream_id, await _json_object(request)
        )
        return {"success": True, "data": jsonable_encoder(item)}

    @fastapi_app.delete(f"{base}/{{item_type}}/{{upstream_id}}", dependencies=guard)
    async def delete_catalog_item(item_type: str, upstream_id: int) -> dict[str, Any]:
        mirror = get_catalog_mirror(fastapi_app)
        await mirror.delete_item(item_type, upstream_id)
        return {"success": True, "id": upstream_id}


def _register_user_routes(fastapi_app: FastAPI) -> None:
    base = f"{API_PREFIX}/users"
    guard = [Depends(require_service_key)]

    @fastapi_app.post(base, dependencies=guard, status_code=201)
    async def create_user(body: UserRequest) -> dict[str, Any]:
        user = await get_user_store(fastapi_app).create_user(body.changes())
        return {"success": True, "data": _dump(user)}

    @fastapi_app.get(base, dependencies=guard)
    async def list_users(page: int = 1, limit: int = 20) -> dict[str, Any]:
        users, total = await get_user_store(fastapi_app).list_users(page, limit)
        return {
            "success": True,
            "data": _dump_all(users),
            "pagination": _pagination(page, limit, total),
        }

    @fastapi_app.get(f"{base}/{{user_id}}", dependencies=guard)
    async def get_user(user_id: int) -> dict[str, Any]:
        user = await get_user_store(fastapi_app).get_user(user_id)
        return {"success": True, "data": _dump(user)}

    @fastapi_app.put(f"{base}/{{user_id}}", dependencies=guard)
    async def update_user(user_id: int, body: UserRequest) -> dict[str, Any]:
        user = await get_user_store(fastapi_app).update_user(user_id, body.changes())
        return {"success": True, "data": _dump(user)}

    @fastapi_app.delete(f"{base}/{{user_id}}", dependencies=guard)
    async def delete_user(user_id: int) -> dict[str, Any]:
        await get_user_store(fastapi_app).delete_user(user_id)
        return {"success": True, "id": user_id}


app = create_app()
