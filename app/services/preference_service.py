"""Entry point for favorite and review operations."""

from __future__ import annotations

import logging
from typing import Any

from ..errors import InvalidItemType, NotFound, ValidationError
from ..models import (
    ITEM_TYPES,
    REVIEW_ITEM_TYPES,
    DetailedPreference,
    ItemReview,
    PreferenceView,
)
from .enrichment import DetailEnricher
from .preferences import UNSET, PreferenceStore, ToggleResult, UpsertResult

logger = logging.getLogger(__name__)


class PreferenceService:
    """Validates requests and coordinates the store with detail enrichment."""

    def __init__(self, store: PreferenceStore, enricher: DetailEnricher):
        self._store = store
        self._enricher = enricher

    # Favorites

    async def add_favorite(
        self,
        user_id: int,
        item_type: str | None,
        item_id: str | None,
        upstream_id: int | None = None,
    ) -> UpsertResult:
        item_type, item_id = self._validate_key(item_type, item_id, ITEM_TYPES)
        result = await self._store.upsert(
            user_id,
            "favorite",
            item_type,
            item_id,
            upstream_id,
            {"is_favorite": True},
        )
        if result.created:
            logger.info("Favorite added: user %s - %s %s", user_id, item_type, item_id)
        return result

    async def toggle_favorite(
        self,
        user_id: int,
        item_type: str | None,
        item_id: str | None,
        upstream_id: int | None = None,
    ) -> ToggleResult:
        item_type, item_id = self._validate_key(item_type, item_id, ITEM_TYPES)
        result = await self._store.toggle(
            user_id, "favorite", item_type, item_id, upstream_id
        )
        logger.info(
            "Favorite %s (toggle): user %s - %s %s",
            "added" if result.active else "removed",
            user_id,
            item_type,
            item_id,
        )
        return result

    async def list_favorites(
        self, user_id: int, item_type: str | None = None
    ) -> list[PreferenceView]:
        return await self._store.list_records(
            user_id, "favorite", self._optional_type(item_type, ITEM_TYPES)
        )

    async def list_favorites_detailed(
        self, user_id: int, item_type: str | None = None
    ) -> list[DetailedPreference]:
        records = await self.list_favorites(user_id, item_type)
        return await self._enricher.enrich(records)

    async def check_favorite(
        self, user_id: int, item_type: str | None, item_id: str | None
    ) -> PreferenceView | None:
        item_type, item_id = self._validate_key(item_type, item_id, ITEM_TYPES)
        return await self._store.get_record(user_id, "favorite", item_type, item_id)

    async def favorite_stats(self, user_id: int) -> dict[str, int]:
        counts = await self._store.count_by_type(user_id, "favorite")
        return {
            "total": sum(counts.values()),
            "movies": counts.get("movie", 0),
            "series": counts.get("series", 0),
            "actors": counts.get("actor", 0),
        }

    async def remove_favorite(
        self, user_id: int, item_type: str | None, item_id: str | None
    ) -> None:
        item_type, item_id = self._validate_key(item_type, item_id, ITEM_TYPES)
        await self._store.delete(
            user_id, "favorite", item_type=item_type, item_id=item_id
        )
        logger.info("Favorite removed: user %s - %s %s", user_id, item_type, item_id)

    async def delete_favorite(self, user_id: int, record_id: int) -> None:
        await self._store.delete(user_id, "favorite", record_id=record_id)
        logger.info("Favorite %s removed by user %s", record_id, user_id)

    # Reviews

    async def save_review(
        self,
        user_id: int,
        item_type: str | None,
        item_id: str | None,
        *,
        upstream_id: Any = UNSET,
        rating: Any = UNSET,
        review_text: Any = UNSET,
        is_favorite: Any = UNSET,
    ) -> UpsertResult:
        """Merge a rating and/or review; omitted fields keep their stored value."""

        item_type, item_id = self._validate_key(item_type, item_id, REVIEW_ITEM_TYPES)
        if rating is not UNSET and rating is not None:
            self._validate_rating(rating)
        if review_text is not UNSET and review_text is not None:
            review_text = str(review_text).strip() or None
        return await self._store.merge_rating_or_review(
            user_id,
            item_type,
            item_id,
            upstream_id=upstream_id,
            rating=rating,
            review_text=review_text,
            is_favorite=is_favorite,
        )

    async def list_reviews(
        self, user_id: int, item_type: str | None = None
    ) -> list[PreferenceView]:
        return await self._store.list_records(
            user_id, "review", self._optional_type(item_type, REVIEW_ITEM_TYPES)
        )

    async def list_reviews_detailed(
        self, user_id: int, item_type: str | None = None
    ) -> list[DetailedPreference]:
        records = await self.list_reviews(user_id, item_type)
        return await self._enricher.enrich(records)

    async def get_review(
        self, user_id: int, item_type: str | None, item_id: str | None
    ) -> PreferenceView:
        item_type, item_id = self._validate_key(item_type, item_id, REVIEW_ITEM_TYPES)
        record = await self._store.get_record(user_id, "review", item_type, item_id)
        if record is None:
            raise NotFound("Review not found")
        return record

    async def delete_review(
        self,
        user_id: int,
        *,
        record_id: int | None = None,
        item_type: str | None = None,
        item_id: str | None = None,
    ) -> None:
        if record_id is not None:
            await self._store.delete(user_id, "review", record_id=record_id)
            return
        if not (item_type and item_id):
            raise ValidationError("Provide id or item_type and item_id")
        item_type, item_id = self._validate_key(item_type, item_id, REVIEW_ITEM_TYPES)
        await self._store.delete(
            user_id, "review", item_type=item_type, item_id=item_id
        )

    async def item_reviews(
        self, item_type: str | None, item_id: str | None
    ) -> list[ItemReview]:
        item_type, item_id = self._validate_key(item_type, item_id, REVIEW_ITEM_TYPES)
        return await self._store.list_for_item(item_type, item_id)

    # Validation

    @staticmethod
    def _validate_key(
        item_type: str | None, item_id: str | None, allowed: tuple[str, ...]
    ) -> tuple[str, str]:
        cleaned_type = (item_type or "").strip().lower()
        cleaned_id = str(item_id).strip() if item_id is not None else ""
        if not cleaned_type or not cleaned_id:
            missing = "item_type" if not cleaned_type else "item_id"
            raise ValidationError(
                "item_type and item_id are required", field=missing
            )
        if cleaned_type not in allowed:
            raise InvalidItemType(cleaned_type, allowed)
        return cleaned_type, cleaned_id

    @staticmethod
    def _optional_type(item_type: str | None, allowed: tuple[str, ...]) -> str | None:
        cleaned = (item_type or "").strip().lower()
        if not cleaned:
            return None
        if cleaned not in allowed:
            raise InvalidItemType(cleaned, allowed)
        return cleaned

    @staticmethod
    def _validate_rating(rating: Any) -> None:
        if isinstance(rating, bool) or not isinstance(rating, int):
            raise ValidationError("rating must be an integer", field="rating")
        if not 1 <= rating <= 10:
            raise ValidationError("rating must be between 1 and 10", field="rating")
