"""Pydantic models describing API payloads and catalog entries."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

ContentType = Literal["movie", "series"]
PreferenceKind = Literal["favorite", "review"]

ITEM_TYPES: tuple[str, ...] = ("movie", "series", "actor")
REVIEW_ITEM_TYPES: tuple[str, ...] = ("movie", "series")


class PreferenceView(BaseModel):
    """Read-only projection of a stored favorite or review."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    item_type: str
    item_id: str
    upstream_id: int | None = None
    rating: int | None = None
    review_text: str | None = None
    is_favorite: bool = False
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def lookup_id(self) -> int | None:
        """Return the upstream identifier used to find mirrored metadata."""

        if self.upstream_id is not None:
            return self.upstream_id
        try:
            return int(self.item_id)
        except (TypeError, ValueError):
            return None


class DetailedPreference(PreferenceView):
    """A preference record joined with its catalog metadata."""

    details: dict[str, Any] | None = None


class ItemReview(BaseModel):
    """Public view of a review shown on an item's page."""

    id: int
    item_type: str
    item_id: str
    rating: int | None = None
    review_text: str | None = None
    is_favorite: bool = False
    first_name: str
    last_name: str
    created_at: datetime | None = None
    updated_at: datetime | None = None


class UserView(BaseModel):
    """Account fields exposed by the user registry."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    first_name: str
    last_name: str
    display_name: str
    email: str
    phone: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class UserRequest(BaseModel):
    """Body accepted when creating or editing a user.

    On edits, fields left out of the payload keep their stored value.
    """

    first_name: str | None = None
    last_name: str | None = None
    email: str | None = None
    phone: str | None = None

    def changes(self) -> dict[str, Any]:
        return self.model_dump(include=self.model_fields_set)


class Pagination(BaseModel):
    page: int
    limit: int
    total: int


class CatalogEntry(BaseModel):
    """Normalized catalog listing returned by the browse endpoints."""

    id: int
    media_type: ContentType
    title: str
    overview: str | None = None
    release_date: str | None = None
    vote_average: float | None = None
    poster_url: str | None = None
    # Genre ids for listings, genre names for single-item lookups.
    genres: list[int] | list[str] = Field(default_factory=list)


class AggregatedPage(BaseModel):
    """Capped, normalized result of walking an upstream listing."""

    entries: list[CatalogEntry] = Field(default_factory=list)
    total_available: int = 0


class ItemKeyPayload(BaseModel):
    """Request body fields naming a catalog item."""

    item_type: str | None = None
    item_id: str | None = None

    @field_validator("item_type", mode="before")
    @classmethod
    def _normalise_item_type(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip().lower()
        return value

    @field_validator("item_id", mode="before")
    @classmethod
    def _normalise_item_id(cls, value: object) -> object:
        """Accept numeric identifiers while storing them as strings."""

        if isinstance(value, bool):
            return value
        if isinstance(value, int):
            return str(value)
        if isinstance(value, str):
            return value.strip()
        return value


class FavoriteRequest(ItemKeyPayload):
    """Body accepted by the favorite add/toggle endpoints."""

    upstream_id: int | None = Field(
        default=None, validation_alias=AliasChoices("upstream_id", "tmdb_id")
    )


class ItemSelector(ItemKeyPayload):
    """Body identifying a record by id or by item key."""

    id: int | None = None


class ReviewRequest(ItemKeyPayload):
    """Body accepted by the review upsert endpoint.

    Fields left out of the payload keep their stored value; an explicit
    ``null`` clears it.
    """

    upstream_id: int | None = Field(
        default=None, validation_alias=AliasChoices("upstream_id", "tmdb_id")
    )
    rating: int | None = None
    review_text: str | None = None
    is_favorite: bool | None = None

    def provided(self, name: str) -> bool:
        return name in self.model_fields_set


class MovieMirror(BaseModel):
    """Columns written to the local movie mirror."""

    upstream_id: int = Field(validation_alias=AliasChoices("upstream_id", "tmdb_id", "id"))
    title: str
    overview: str | None = None
    release_date: str | None = None
    vote_average: float | None = None
    poster_path: str | None = None
    genre_ids: list[int] = Field(default_factory=list)


class SeriesMirror(BaseModel):
    """Columns written to the local series mirror."""

    upstream_id: int = Field(validation_alias=AliasChoices("upstream_id", "tmdb_id", "id"))
    name: str
    overview: str | None = None
    premiere_date: str | None = None
    vote_average: float | None = None
    image_path: str | None = None
    genres: list[str] = Field(default_factory=list)


class ActorMirror(BaseModel):
    """Columns written to the local actor mirror."""

    upstream_id: int = Field(validation_alias=AliasChoices("upstream_id", "tmdb_id", "id"))
    name: str
    profile_path: str | None = None
    known_for_department: str | None = None
    popularity: float | None = None
    known_for: list[Any] = Field(default_factory=list)
