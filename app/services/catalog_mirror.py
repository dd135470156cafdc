"""Local catalog mirror: import from TMDB, then create, list, edit and remove rows."""

from __future__ import annotations

import logging
from typing import Any, Mapping

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..db_models import Actor, Movie, Series
from ..errors import (
    Conflict,
    InvalidItemType,
    NotFound,
    PersistenceError,
    ValidationError,
)
from ..models import ITEM_TYPES, ActorMirror, MovieMirror, SeriesMirror
from ..utils import page_offset
from .tmdb import TMDBClient

logger = logging.getLogger(__name__)

_MIRRORS: dict[str, tuple[type[BaseModel], type[Movie] | type[Series] | type[Actor]]] = {
    "movie": (MovieMirror, Movie),
    "series": (SeriesMirror, Series),
    "actor": (ActorMirror, Actor),
}


def mirror_fields_from_upstream(item_type: str, payload: Mapping[str, Any]) -> dict[str, Any]:
    """Project a TMDB detail payload onto the mirror columns for ``item_type``."""

    if item_type == "movie":
        return {
            "upstream_id": payload.get("id"),
            "title": payload.get("title") or payload.get("original_title"),
            "overview": payload.get("overview"),
            "release_date": payload.get("release_date") or None,
            "vote_average": payload.get("vote_average"),
            "poster_path": payload.get("poster_path"),
            "genre_ids": [
                genre["id"]
                for genre in payload.get("genres") or []
                if isinstance(genre, Mapping) and genre.get("id") is not None
            ]
            or list(payload.get("genre_ids") or []),
        }
    if item_type == "series":
        return {
            "upstream_id": payload.get("id"),
            "name": payload.get("name") or payload.get("original_name"),
            "overview": payload.get("overview"),
            "premiere_date": payload.get("first_air_date") or None,
            "vote_average": payload.get("vote_average"),
            "image_path": payload.get("poster_path"),
            "genres": [
                str(genre["name"])
                for genre in payload.get("genres") or []
                if isinstance(genre, Mapping) and genre.get("name")
            ],
        }
    return {
        "upstream_id": payload.get("id"),
        "name": payload.get("name"),
        "profile_path": payload.get("profile_path"),
        "known_for_department": payload.get("known_for_department"),
        "popularity": payload.get("popularity"),
        "known_for": [
            entry.get("title") or entry.get("name")
            for entry in payload.get("known_for") or []
            if isinstance(entry, Mapping) and (entry.get("title") or entry.get("name"))
        ],
    }


class CatalogMirror:
    """Writes and reads the locally cached movie, series and actor rows."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        client: TMDBClient,
    ):
        self._session_factory = session_factory
        self._client = client

    async def create_item(self, item_type: str, payload: Mapping[str, Any]) -> dict[str, Any]:
        """Insert a mirror row; an existing ``upstream_id`` is a conflict."""

        schema, model = self._mirror(item_type)
        values = self._validate(schema, payload).model_dump()
        async with self._session_factory() as session:
            row = model(**values)
            session.add(row)
            try:
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                raise Conflict(
                    f"{item_type} {values['upstream_id']} is already in the catalog"
                ) from exc
            except SQLAlchemyError as exc:
                await session.rollback()
                logger.exception("Failed to store %s %s", item_type, values["upstream_id"])
                raise PersistenceError("Unable to store the catalog item") from exc

        logger.info("Stored %s %s in the local catalog", item_type, values["upstream_id"])
        return self._as_dict(item_type, schema, row)

    async def import_item(self, item_type: str, upstream_id: int) -> dict[str, Any]:
        """Fetch an item from TMDB and store it in the mirror."""

        self._mirror(item_type)
        payload = await self._client.fetch_detail(item_type, upstream_id)
        return await self.create_item(
            item_type, mirror_fields_from_upstream(item_type, payload)
        )

    async def get_item(self, item_type: str, upstream_id: int) -> dict[str, Any]:
        schema, model = self._mirror(item_type)
        async with self._session_factory() as session:
            row = await self._select(session, model, upstream_id)
        if row is None:
            raise NotFound(f"{item_type} {upstream_id} is not in the catalog")
        return self._as_dict(item_type, schema, row)

    async def list_items(
        self, item_type: str, page: int = 1, limit: int = 20
    ) -> tuple[list[dict[str, Any]], int]:
        """Return one page of mirrored rows, newest first, and the table size."""

        schema, model = self._mirror(item_type)
        offset = page_offset(page, limit)
        try:
            async with self._session_factory() as session:
                total = await session.scalar(select(func.count(model.id)))
                result = await session.execute(
                    select(model)
                    .order_by(model.created_at.desc(), model.id.desc())
                    .offset(offset)
                    .limit(limit)
                )
                rows = list(result.scalars())
        except SQLAlchemyError as exc:
            logger.exception("Failed to list %s mirror rows", item_type)
            raise PersistenceError("Unable to list the catalog") from exc
        return [self._as_dict(item_type, schema, row) for row in rows], int(total or 0)

    async def update_item(
        self, item_type: str, upstream_id: int, payload: Mapping[str, Any]
    ) -> dict[str, Any]:
        """Change the supplied columns; omitted ones keep their stored value."""

        schema, model = self._mirror(item_type)
        editable = set(schema.model_fields) - {"upstream_id"}
        for name in payload:
            if name not in editable:
                raise ValidationError(f"{name} cannot be changed", field=name)

        async with self._session_factory() as session:
            row = await self._select(session, model, upstream_id)
            if row is None:
                raise NotFound(f"{item_type} {upstream_id} is not in the catalog")
            merged = {name: getattr(row, name) for name in schema.model_fields}
            merged.update(payload)
            data = self._validate(schema, merged)
            for name in payload:
                setattr(row, name, getattr(data, name))
            try:
                await session.commit()
            except SQLAlchemyError as exc:
                await session.rollback()
                logger.exception("Failed to update %s %s", item_type, upstream_id)
                raise PersistenceError("Unable to update the catalog item") from exc

        logger.info("Updated %s %s in the local catalog", item_type, upstream_id)
        return self._as_dict(item_type, schema, row)

    async def delete_item(self, item_type: str, upstream_id: int) -> None:
        _, model = self._mirror(item_type)
        async with self._session_factory() as session:
            result = await session.execute(
                delete(model).where(model.upstream_id == upstream_id)
            )
            if not result.rowcount:
                await session.rollback()
                raise NotFound(f"{item_type} {upstream_id} is not in the catalog")
            await session.commit()
        logger.info("Removed %s %s from the local catalog", item_type, upstream_id)

    @staticmethod
    async def _select(session: AsyncSession, model: Any, upstream_id: int) -> Any:
        result = await session.execute(
            select(model).where(model.upstream_id == upstream_id)
        )
        return result.scalar_one_or_none()

    @staticmethod
    def _validate(schema: type[BaseModel], payload: Mapping[str, Any]) -> BaseModel:
        try:
            return schema.model_validate(dict(payload))
        except PydanticValidationError as exc:
            first = exc.errors()[0] if exc.errors() else {}
            location = ".".join(str(part) for part in first.get("loc", ()))
            raise ValidationError(
                first.get("msg", "Invalid catalog item"), field=location or None
            ) from exc

    @staticmethod
    def _as_dict(item_type: str, schema: type[BaseModel], row: Any) -> dict[str, Any]:
        data = {name: getattr(row, name) for name in schema.model_fields}
        return {"id": row.id, "item_type": item_type, **data}

    @staticmethod
    def _mirror(item_type: str) -> tuple[type[BaseModel], Any]:
        try:
            return _MIRRORS[item_type]
        except KeyError:
            raise InvalidItemType(item_type, ITEM_TYPES) from None
