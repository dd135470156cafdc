"""FlixFinder catalog and preferences API."""

from __future__ import annotations

from importlib import import_module
from typing import Any

# Resolved lazily so importing ``app.services`` does not build the FastAPI app.
_LAZY_EXPORTS = {
    "app": "app.main",
    "create_app": "app.main",
    "Settings": "app.config",
    "get_settings": "app.config",
}

__all__ = list(_LAZY_EXPORTS)


def __getattr__(name: str) -> Any:
    try:
        module_name = _LAZY_EXPORTS[name]
    except KeyError:
        raise AttributeError(f"module 'app' has no attribute {name!r}") from None
    return getattr(import_module(module_name), name)
