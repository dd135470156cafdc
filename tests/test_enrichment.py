from __future__ import annotations

from datetime import datetime

import pytest

from app.database import Database
from app.db_models import Actor, Movie, Series
from app.models import PreferenceView
from app.services.enrichment import DetailEnricher


def make_view(record_id: int, item_type: str, item_id: str, upstream_id: int | None = None) -> PreferenceView:
    return PreferenceView(
        id=record_id,
        user_id=1,
        item_type=item_type,
        item_id=item_id,
        upstream_id=upstream_id,
        created_at=datetime(2024, 1, 1),
    )


async def seeded_database(tmp_path) -> Database:
    database = Database(f"sqlite+aiosqlite:///{tmp_path / 'mirror.db'}")
    await database.create_all()
    async with database.session() as session:
        session.add_all(
            [
                Movie(upstream_id=550, title="El club de la lucha", poster_path="/fc.jpg", release_date="1999-10-15", vote_average=8.4),
                Series(upstream_id=1399, name="Juego de tronos", image_path="/got.jpg", premiere_date="2011-04-17", vote_average=8.5),
                Actor(upstream_id=287, name="Brad Pitt", profile_path="/bp.jpg", known_for_department="Acting"),
            ]
        )
        await session.commit()
    return database


class FlakyEnricher(DetailEnricher):
    """Fails the lookup for a single item to exercise error isolation."""

    async def _lookup(self, record: PreferenceView):  # type: ignore[override]
        if record.item_id == "boom":
            raise RuntimeError("mirror offline")
        return await super()._lookup(record)


@pytest.mark.anyio("asyncio")
async def test_enrichment_preserves_order_and_nulls_missing_details(tmp_path) -> None:
    database = await seeded_database(tmp_path)
    try:
        enricher = DetailEnricher(database.session_factory, concurrency=2)
        records = [
            make_view(1, "movie", "550"),
            make_view(2, "movie", "999"),
            make_view(3, "series", "got", upstream_id=1399),
            make_view(4, "actor", "287"),
            make_view(5, "actor", "not-a-number"),
        ]

        enriched = await enricher.enrich(records)

        assert [record.id for record in enriched] == [1, 2, 3, 4, 5]
        assert enriched[0].details == {
            "title": "El club de la lucha",
            "poster_path": "/fc.jpg",
            "release_date": "1999-10-15",
            "vote_average": 8.4,
        }
        assert enriched[1].details is None
        assert enriched[2].details is not None
        assert enriched[2].details["poster_path"] == "/got.jpg"
        assert enriched[2].details["first_air_date"] == "2011-04-17"
        assert enriched[3].details is not None
        assert enriched[3].details["name"] == "Brad Pitt"
        assert enriched[4].details is None
    finally:
        await database.dispose()


@pytest.mark.anyio("asyncio")
async def test_failed_lookup_only_affects_its_own_record(tmp_path) -> None:
    database = await seeded_database(tmp_path)
    try:
        enricher = FlakyEnricher(database.session_factory)
        enriched = await enricher.enrich(
            [make_view(1, "movie", "boom", upstream_id=550), make_view(2, "movie", "550")]
        )

        assert enriched[0].details is None
        assert enriched[1].details is not None
        assert enriched[1].details["title"] == "El club de la lucha"
    finally:
        await database.dispose()


@pytest.mark.anyio("asyncio")
async def test_empty_input_returns_empty_list(tmp_path) -> None:
    database = await seeded_database(tmp_path)
    try:
        assert await DetailEnricher(database.session_factory).enrich([]) == []
    finally:
        await database.dispose()
