"""Persistence of per-user favorites and reviews.

Every write is guarded by the ``UNIQUE(user_id, item_type, item_id)``
constraint on the target table instead of a read-then-write existence check.
A constraint violation raised by a concurrent writer is translated into the
outcome the caller would have seen had it lost the race cleanly.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterator, Mapping

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..db_models import FavoriteRecord, PreferenceColumns, ReviewRecord, User
from ..errors import (
    FlixFinderError,
    InvalidItemType,
    NotFound,
    PersistenceError,
    ValidationError,
)
from ..models import (
    ITEM_TYPES,
    REVIEW_ITEM_TYPES,
    ItemReview,
    PreferenceKind,
    PreferenceView,
)

logger = logging.getLogger(__name__)


class _Unset:
    """Marker for arguments the caller did not supply."""

    def __repr__(self) -> str:
        return "UNSET"

    def __bool__(self) -> bool:
        return False


UNSET: Any = _Unset()

_RECORD_MODELS: dict[PreferenceKind, type[PreferenceColumns]] = {
    "favorite": FavoriteRecord,
    "review": ReviewRecord,
}
_MUTABLE_FIELDS = frozenset({"rating", "review_text", "is_favorite"})


@dataclass(slots=True)
class UpsertResult:
    """Outcome of an insert-or-keep / insert-or-merge write."""

    record: PreferenceView
    created: bool

    @property
    def already_existed(self) -> bool:
        return not self.created


@dataclass(slots=True)
class ToggleResult:
    """Outcome of flipping a record on or off."""

    active: bool
    record: PreferenceView | None = None


@contextmanager
def store_errors(action: str) -> Iterator[None]:
    try:
        yield
    except SQLAlchemyError as exc:
        logger.exception("Store failed to %s", action)
        raise PersistenceError(f"Unable to {action}") from exc


class PreferenceStore:
    """Owns the favorite and review tables."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def upsert(
        self,
        user_id: int,
        kind: PreferenceKind,
        item_type: str,
        item_id: str,
        upstream_id: int | None = None,
        fields: Mapping[str, Any] | None = None,
    ) -> UpsertResult:
        """Insert a record, or return the stored one if the key is taken."""

        model = self._model(kind)
        values = self._clean_fields(fields)
        with store_errors("save the preference"):
            async with self._session_factory() as session:
                record = model(
                    user_id=user_id,
                    item_type=item_type,
                    item_id=item_id,
                    upstream_id=upstream_id,
                    **values,
                )
                session.add(record)
                try:
                    await session.commit()
                except IntegrityError:
                    await session.rollback()
                    existing = await self._select_one(
                        session, model, user_id, item_type, item_id
                    )
                    if existing is None:
                        raise await self._unstored_error(session, user_id) from None
                    return UpsertResult(self._view(existing), created=False)
                return UpsertResult(self._view(record), created=True)

    async def toggle(
        self,
        user_id: int,
        kind: PreferenceKind,
        item_type: str,
        item_id: str,
        upstream_id: int | None = None,
    ) -> ToggleResult:
        """Remove the record if present, otherwise create a minimal favorite."""

        model = self._model(kind)
        with store_errors("toggle the preference"):
            async with self._session_factory() as session:
                result = await session.execute(
                    delete(model).where(*self._key(model, user_id, item_type, item_id))
                )
                if result.rowcount:
                    await session.commit()
                    return ToggleResult(active=False)

                record = model(
                    user_id=user_id,
                    item_type=item_type,
                    item_id=item_id,
                    upstream_id=upstream_id,
                    is_favorite=True,
                )
                session.add(record)
                try:
                    await session.commit()
                except IntegrityError:
                    # A concurrent toggle inserted the same key first.
                    await session.rollback()
                    existing = await self._select_one(
                        session, model, user_id, item_type, item_id
                    )
                    if existing is None:
                        raise await self._unstored_error(session, user_id) from None
                    return ToggleResult(active=True, record=self._view(existing))
                return ToggleResult(active=True, record=self._view(record))

    async def get(
        self,
        user_id: int,
        kind: PreferenceKind,
        item_type: str | None = None,
        item_id: str | None = None,
    ) -> list[PreferenceView] | PreferenceView | None:
        """Return a list, or a single record when both key parts are given."""

        if item_id is not None:
            if item_type is None:
                raise ValidationError(
                    "item_type is required when item_id is given", field="item_type"
                )
            return await self.get_record(user_id, kind, item_type, item_id)
        return await self.list_records(user_id, kind, item_type)

    async def get_record(
        self, user_id: int, kind: PreferenceKind, item_type: str, item_id: str
    ) -> PreferenceView | None:
        model = self._model(kind)
        with store_errors("load the preference"):
            async with self._session_factory() as session:
                record = await self._select_one(
                    session, model, user_id, item_type, item_id
                )
                return self._view(record) if record is not None else None

    async def list_records(
        self, user_id: int, kind: PreferenceKind, item_type: str | None = None
    ) -> list[PreferenceView]:
        model = self._model(kind)
        # Favorites list by creation, reviews by their latest edit.
        order_column = model.created_at if kind == "favorite" else model.updated_at
        stmt = select(model).where(model.user_id == user_id)
        if item_type is not None:
            stmt = stmt.where(model.item_type == item_type)
        stmt = stmt.order_by(order_column.desc(), model.id.desc())
        with store_errors("list preferences"):
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                return [self._view(record) for record in result.scalars()]

    async def delete(
        self,
        user_id: int,
        kind: PreferenceKind,
        *,
        record_id: int | None = None,
        item_type: str | None = None,
        item_id: str | None = None,
    ) -> None:
        """Delete one of the user's records by id or by item key."""

        model = self._model(kind)
        if record_id is not None:
            conditions = [model.id == record_id, model.user_id == user_id]
        elif item_type and item_id:
            conditions = self._key(model, user_id, item_type, item_id)
        else:
            raise ValidationError("Provide id or item_type and item_id")

        with store_errors("delete the preference"):
            async with self._session_factory() as session:
                result = await session.execute(delete(model).where(*conditions))
                if not result.rowcount:
                    await session.rollback()
                    raise NotFound(f"{kind.capitalize()} not found")
                await session.commit()

    async def merge_rating_or_review(
        self,
        user_id: int,
        item_type: str,
        item_id: str,
        *,
        upstream_id: Any = UNSET,
        rating: Any = UNSET,
        review_text: Any = UNSET,
        is_favorite: Any = UNSET,
    ) -> UpsertResult:
        """Create or update a review, touching only the supplied fields.

        ``UNSET`` leaves the stored value alone; ``None`` clears it.
        """

        if item_type not in REVIEW_ITEM_TYPES:
            raise InvalidItemType(item_type, REVIEW_ITEM_TYPES)

        changes: dict[str, Any] = {
            name: value
            for name, value in (
                ("upstream_id", upstream_id),
                ("rating", rating),
                ("review_text", review_text),
                ("is_favorite", is_favorite),
            )
            if value is not UNSET
        }
        if "is_favorite" in changes and changes["is_favorite"] is None:
            changes["is_favorite"] = False

        model = ReviewRecord
        with store_errors("save the review"):
            async with self._session_factory() as session:
                if await self._update_existing(
                    session, model, user_id, item_type, item_id, changes
                ):
                    return await self._commit_merged(
                        session, model, user_id, item_type, item_id
                    )

                record = model(
                    user_id=user_id, item_type=item_type, item_id=item_id, **changes
                )
                session.add(record)
                try:
                    await session.commit()
                except IntegrityError:
                    # Lost the insert race; fold our fields into the winner's row.
                    await session.rollback()
                    if not await self._update_existing(
                        session, model, user_id, item_type, item_id, changes
                    ):
                        raise await self._unstored_error(session, user_id) from None
                    return await self._commit_merged(
                        session, model, user_id, item_type, item_id
                    )
                return UpsertResult(self._view(record), created=True)

    async def count_by_type(self, user_id: int, kind: PreferenceKind) -> dict[str, int]:
        """Return per-type record counts for the user."""

        model = self._model(kind)
        stmt = (
            select(model.item_type, func.count(model.id))
            .where(model.user_id == user_id)
            .group_by(model.item_type)
        )
        counts = {item_type: 0 for item_type in ITEM_TYPES}
        with store_errors("count preferences"):
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                for item_type, count in result.all():
                    counts[item_type] = int(count)
        return counts

    async def list_for_item(self, item_type: str, item_id: str) -> list[ItemReview]:
        """Return every user's review of an item, newest first."""

        stmt = (
            select(ReviewRecord, User.first_name, User.last_name)
            .join(User, ReviewRecord.user_id == User.id)
            .where(
                ReviewRecord.item_type == item_type,
                ReviewRecord.item_id == item_id,
            )
            .order_by(ReviewRecord.created_at.desc(), ReviewRecord.id.desc())
        )
        with store_errors("list item reviews"):
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                return [
                    ItemReview(
                        id=review.id,
                        item_type=review.item_type,
                        item_id=review.item_id,
                        rating=review.rating,
                        review_text=review.review_text,
                        is_favorite=review.is_favorite,
                        first_name=first_name,
                        last_name=last_name,
                        created_at=review.created_at,
                        updated_at=review.updated_at,
                    )
                    for review, first_name, last_name in result.all()
                ]

    async def _update_existing(
        self,
        session: AsyncSession,
        model: type[PreferenceColumns],
        user_id: int,
        item_type: str,
        item_id: str,
        changes: Mapping[str, Any],
    ) -> bool:
        result = await session.execute(
            update(model)
            .where(*self._key(model, user_id, item_type, item_id))
            .values(**changes, updated_at=datetime.utcnow())
        )
        return bool(result.rowcount)

    async def _commit_merged(
        self,
        session: AsyncSession,
        model: type[PreferenceColumns],
        user_id: int,
        item_type: str,
        item_id: str,
    ) -> UpsertResult:
        record = await self._select_one(session, model, user_id, item_type, item_id)
        await session.commit()
        if record is None:
            raise PersistenceError("Review disappeared while saving")
        return UpsertResult(self._view(record), created=False)

    @staticmethod
    async def _unstored_error(
        session: AsyncSession, user_id: int
    ) -> FlixFinderError:
        """Explain an insert that hit a constraint but left no row to return."""

        if await session.get(User, user_id) is None:
            return NotFound(f"User {user_id} not found")
        return PersistenceError("Preference could not be stored for this user")

    async def _select_one(
        self,
        session: AsyncSession,
        model: type[PreferenceColumns],
        user_id: int,
        item_type: str,
        item_id: str,
    ) -> PreferenceColumns | None:
        result = await session.execute(
            select(model)
            .where(*self._key(model, user_id, item_type, item_id))
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    @staticmethod
    def _key(
        model: type[PreferenceColumns], user_id: int, item_type: str, item_id: str
    ) -> list[Any]:
        return [
            model.user_id == user_id,
            model.item_type == item_type,
            model.item_id == item_id,
        ]

    @staticmethod
    def _model(kind: PreferenceKind) -> type[PreferenceColumns]:
        try:
            return _RECORD_MODELS[kind]
        except KeyError:
            raise ValueError(f"Unknown preference kind: {kind}") from None

    @staticmethod
    def _clean_fields(fields: Mapping[str, Any] | None) -> dict[str, Any]:
        values = dict(fields or {})
        unknown = set(values) - _MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"Unsupported preference fields: {sorted(unknown)}")
        if values.get("is_favorite") is None:
            values.pop("is_favorite", None)
        return values

    @staticmethod
    def _view(record: PreferenceColumns) -> PreferenceView:
        return PreferenceView.model_validate(record)
