"""Session token verification and request guards."""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import json
import secrets
import time
from dataclasses import dataclass
from typing import Any, Protocol

from fastapi import Request

from .config import Settings, settings
from .errors import Forbidden, Unauthorized


@dataclass(frozen=True, slots=True)
class SessionUser:
    """Identity carried by a verified session token."""

    id: int
    email: str
    name: str


class AuthProvider(Protocol):
    """Issues and verifies session tokens."""

    def issue(self, user: SessionUser) -> str:
        ...

    def verify(self, token: str) -> SessionUser:
        ...


def _b64encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def _b64decode(value: str) -> bytes:
    padding = "=" * (-len(value) % 4)
    return base64.urlsafe_b64decode(value + padding)


class SignedTokenAuthProvider:
    """HMAC-SHA256 signed tokens of the form ``<payload>.<signature>``."""

    def __init__(self, secret: str, *, ttl_seconds: int = 7 * 24 * 3_600):
        if not secret:
            raise ValueError("A signing secret is required")
        self._secret = secret.encode("utf-8")
        self._ttl_seconds = ttl_seconds

    def issue(self, user: SessionUser) -> str:
        payload = {
            "id": user.id,
            "email": user.email,
            "name": user.name,
            "exp": int(time.time()) + self._ttl_seconds,
            "nonce": secrets.token_urlsafe(8),
        }
        body = _b64encode(json.dumps(payload, separators=(",", ":")).encode("utf-8"))
        return f"{body}.{self._sign(body)}"

    def verify(self, token: str) -> SessionUser:
        body, _, signature = token.partition(".")
        if not body or not signature:
            raise Unauthorized("Malformed session token")
        expected = self._sign(body).encode("utf-8")
        if not hmac.compare_digest(signature.encode("utf-8"), expected):
            raise Unauthorized("Invalid session token")
        try:
            payload: dict[str, Any] = json.loads(_b64decode(body))
        except (binascii.Error, UnicodeDecodeError, ValueError) as exc:
            raise Unauthorized("Malformed session token") from exc
        if not isinstance(payload, dict):
            raise Unauthorized("Malformed session token")
        expires_at = payload.get("exp")
        if not isinstance(expires_at, int) or expires_at <= time.time():
            raise Unauthorized("Session token expired")
        try:
            return SessionUser(
                id=int(payload["id"]),
                email=str(payload.get("email") or ""),
                name=str(payload.get("name") or ""),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise Unauthorized("Malformed session token") from exc

    def _sign(self, body: str) -> str:
        digest = hmac.new(self._secret, body.encode("utf-8"), hashlib.sha256).digest()
        return _b64encode(digest)


def get_auth_provider(request: Request) -> AuthProvider:
    provider = getattr(request.app.state, "auth_provider", None)
    if provider is None:
        raise RuntimeError("Auth provider not initialised")
    return provider


def _request_settings(request: Request) -> Settings:
    return getattr(request.app.state, "settings", None) or settings


async def current_user(request: Request) -> SessionUser:
    """Resolve the bearer token on the request into a session user."""

    header = request.headers.get("authorization") or ""
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise Unauthorized("A bearer session token is required")
    return get_auth_provider(request).verify(token.strip())


async def require_service_key(request: Request) -> None:
    """Guard catalog routes with the static ``X-API-KEY`` service key."""

    app_settings = _request_settings(request)
    if not app_settings.service_key_required:
        return
    provided = request.headers.get("x-api-key") or request.query_params.get("api_key")
    if not provided:
        raise Unauthorized("API key required in the X-API-KEY header")
    if not hmac.compare_digest(
        provided.encode("utf-8"), (app_settings.api_key or "").encode("utf-8")
    ):
        raise Forbidden("Invalid API key")
