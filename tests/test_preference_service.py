"""Validation and orchestration in the preference service."""

from __future__ import annotations

import pytest

from app.database import Database
from app.db_models import Movie, User
from app.errors import InvalidItemType, NotFound, ValidationError
from app.services.enrichment import DetailEnricher
from app.services.preference_service import PreferenceService
from app.services.preferences import PreferenceStore


async def build_service(tmp_path) -> tuple[Database, PreferenceService, int]:
    database = Database(f"sqlite+aiosqlite:///{tmp_path / 'service.db'}")
    await database.create_all()
    async with database.session() as session:
        user = User(first_name="Ana", last_name="Ruiz", email="ana@example.com", password_hash="x")
        session.add(user)
        session.add(Movie(upstream_id=550, title="El club de la lucha"))
        await session.commit()
        user_id = user.id
    service = PreferenceService(
        PreferenceStore(database.session_factory),
        DetailEnricher(database.session_factory),
    )
    return database, service, user_id


@pytest.mark.anyio("asyncio")
async def test_item_keys_are_normalised_and_validated(tmp_path) -> None:
    database, service, user_id = await build_service(tmp_path)
    try:
        result = await service.add_favorite(user_id, " MOVIE ", " 550 ")
        assert result.record.item_type == "movie"
        assert result.record.item_id == "550"

        with pytest.raises(InvalidItemType):
            await service.add_favorite(user_id, "pelicula", "550")
        with pytest.raises(ValidationError) as excinfo:
            await service.add_favorite(user_id, "movie", "  ")
        assert excinfo.value.field == "item_id"
        with pytest.raises(ValidationError) as excinfo:
            await service.toggle_favorite(user_id, None, "550")
        assert excinfo.value.field == "item_type"
    finally:
        await database.dispose()


@pytest.mark.anyio("asyncio")
@pytest.mark.parametrize("rating", [0, 11, "7", 7.5, True])
async def test_rating_must_be_an_integer_between_one_and_ten(tmp_path, rating) -> None:
    database, service, user_id = await build_service(tmp_path)
    try:
        with pytest.raises(ValidationError) as excinfo:
            await service.save_review(user_id, "movie", "550", rating=rating)
        assert excinfo.value.field == "rating"
    finally:
        await database.dispose()


@pytest.mark.anyio("asyncio")
async def test_reviews_are_limited_to_movies_and_series(tmp_path) -> None:
    database, service, user_id = await build_service(tmp_path)
    try:
        with pytest.raises(InvalidItemType):
            await service.save_review(user_id, "actor", "287", rating=8)
        with pytest.raises(InvalidItemType):
            await service.list_reviews(user_id, "actor")
    finally:
        await database.dispose()


@pytest.mark.anyio("asyncio")
async def test_blank_review_text_is_stored_as_null(tmp_path) -> None:
    database, service, user_id = await build_service(tmp_path)
    try:
        await service.save_review(user_id, "movie", "550", rating=6, review_text="  fine  ")
        result = await service.save_review(user_id, "movie", "550", review_text="   ")

        assert result.record.review_text is None
        assert result.record.rating == 6
    finally:
        await database.dispose()


@pytest.mark.anyio("asyncio")
async def test_missing_review_is_not_found(tmp_path) -> None:
    database, service, user_id = await build_service(tmp_path)
    try:
        with pytest.raises(NotFound):
            await service.get_review(user_id, "series", "1399")
        with pytest.raises(NotFound):
            await service.delete_review(user_id, item_type="series", item_id="1399")
        with pytest.raises(ValidationError):
            await service.delete_review(user_id)
    finally:
        await database.dispose()


@pytest.mark.anyio("asyncio")
async def test_favorite_stats_and_detailed_listing(tmp_path) -> None:
    database, service, user_id = await build_service(tmp_path)
    try:
        await service.add_favorite(user_id, "movie", "550")
        await service.add_favorite(user_id, "movie", "551")
        await service.toggle_favorite(user_id, "actor", "287")

        stats = await service.favorite_stats(user_id)
        detailed = await service.list_favorites_detailed(user_id, "movie")

        assert stats == {"total": 3, "movies": 2, "series": 0, "actors": 1}
        assert [record.item_id for record in detailed] == ["551", "550"]
        assert detailed[0].details is None
        assert detailed[1].details is not None
        assert detailed[1].details["title"] == "El club de la lucha"
    finally:
        await database.dispose()


@pytest.mark.anyio("asyncio")
async def test_check_and_remove_favorite(tmp_path) -> None:
    database, service, user_id = await build_service(tmp_path)
    try:
        assert await service.check_favorite(user_id, "series", "1399") is None
        await service.add_favorite(user_id, "series", "1399", upstream_id=1399)
        found = await service.check_favorite(user_id, "series", "1399")
        assert found is not None and found.upstream_id == 1399

        await service.remove_favorite(user_id, "series", "1399")
        assert await service.check_favorite(user_id, "series", "1399") is None
        with pytest.raises(NotFound):
            await service.remove_favorite(user_id, "series", "1399")
    finally:
        await database.dispose()
