"""Attach mirrored catalog metadata to preference records."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..db_models import Actor, Movie, Series
from ..models import DetailedPreference, PreferenceView

logger = logging.getLogger(__name__)


def _project_movie(movie: Movie) -> dict[str, Any]:
    return {
        "title": movie.title,
        "poster_path": movie.poster_path,
        "release_date": movie.release_date,
        "vote_average": movie.vote_average,
    }


def _project_series(series: Series) -> dict[str, Any]:
    return {
        "name": series.name,
        "poster_path": series.image_path,
        "first_air_date": series.premiere_date,
        "vote_average": series.vote_average,
    }


def _project_actor(actor: Actor) -> dict[str, Any]:
    return {
        "name": actor.name,
        "profile_path": actor.profile_path,
        "known_for_department": actor.known_for_department,
    }


@dataclass(frozen=True, slots=True)
class DetailSource:
    """Mirror table and field projection for one item type."""

    model: type[Movie] | type[Series] | type[Actor]
    project: Callable[[Any], dict[str, Any]]


DETAIL_SOURCES: dict[str, DetailSource] = {
    "movie": DetailSource(Movie, _project_movie),
    "series": DetailSource(Series, _project_series),
    "actor": DetailSource(Actor, _project_actor),
}


class DetailEnricher:
    """Resolves preference records to their mirrored catalog details."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        concurrency: int = 8,
    ):
        self._session_factory = session_factory
        self._concurrency = max(1, concurrency)

    async def enrich(
        self, records: Sequence[PreferenceView]
    ) -> list[DetailedPreference]:
        """Return the records in order, each with ``details`` or ``None``."""

        if not records:
            return []

        semaphore = asyncio.Semaphore(self._concurrency)

        async def _bounded(record: PreferenceView) -> dict[str, Any] | None:
            async with semaphore:
                return await self._lookup(record)

        results = await asyncio.gather(
            *(_bounded(record) for record in records), return_exceptions=True
        )

        enriched: list[DetailedPreference] = []
        for record, result in zip(records, results):
            details: dict[str, Any] | None
            if isinstance(result, Exception):
                logger.warning(
                    "Detail lookup failed for %s %s: %s",
                    record.item_type,
                    record.item_id,
                    result,
                )
                details = None
            else:
                details = result
            enriched.append(
                DetailedPreference(**record.model_dump(), details=details)
            )
        return enriched

    async def _lookup(self, record: PreferenceView) -> dict[str, Any] | None:
        source = DETAIL_SOURCES.get(record.item_type)
        lookup_id = record.lookup_id()
        if source is None or lookup_id is None:
            return None
        async with self._session_factory() as session:
            result = await session.execute(
                select(source.model).where(source.model.upstream_id == lookup_id)
            )
            row = result.scalar_one_or_none()
        if row is None:
            return None
        return source.project(row)
