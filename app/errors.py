"""Error taxonomy shared by the services and the HTTP layer."""

from __future__ import annotations

from typing import Any


class FlixFinderError(Exception):
    """Base class for errors that map onto a caller-facing response."""

    status_code = 500
    code = "internal_error"

    def __init__(self, detail: str | None = None) -> None:
        self.detail = detail or self.__class__.__doc__ or self.code
        super().__init__(self.detail)

    def to_payload(self) -> dict[str, Any]:
        return {"success": False, "error": self.code, "detail": self.detail}


class ValidationError(FlixFinderError):
    """Request input is missing or malformed."""

    status_code = 400
    code = "validation_error"

    def __init__(self, detail: str, *, field: str | None = None) -> None:
        super().__init__(detail)
        self.field = field

    def to_payload(self) -> dict[str, Any]:
        payload = super().to_payload()
        if self.field:
            payload["field"] = self.field
        return payload


class InvalidItemType(ValidationError):
    """The item type is outside the accepted enumeration."""

    code = "invalid_item_type"

    def __init__(self, item_type: object, allowed: tuple[str, ...]) -> None:
        super().__init__(
            f"item_type must be one of: {', '.join(allowed)}", field="item_type"
        )
        self.item_type = item_type
        self.allowed = allowed


class NotFound(FlixFinderError):
    """The requested resource does not exist."""

    status_code = 404
    code = "not_found"


class Conflict(FlixFinderError):
    """The resource already exists."""

    status_code = 409
    code = "conflict"


class UpstreamUnavailable(FlixFinderError):
    """The upstream catalog service could not satisfy the request."""

    status_code = 502
    code = "upstream_unavailable"

    def __init__(self, detail: str | None = None, *, status: int | None = None) -> None:
        super().__init__(detail)
        self.status = status

    def to_payload(self) -> dict[str, Any]:
        payload = super().to_payload()
        if self.status is not None:
            payload["upstream_status"] = self.status
        return payload


class PersistenceError(FlixFinderError):
    """The preference store failed to complete the operation."""

    status_code = 500
    code = "persistence_error"


class Unauthorized(FlixFinderError):
    """Credentials are missing or invalid."""

    status_code = 401
    code = "unauthorized"


class Forbidden(FlixFinderError):
    """Credentials were presented but are not accepted."""

    status_code = 403
    code = "forbidden"
