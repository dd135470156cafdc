"""Run the API with ``python -m app`` or the ``flixfinder`` console script."""

from __future__ import annotations

import uvicorn

from .config import settings


def main() -> None:
    uvicorn.run(
        "app.main:app",
        host=settings.server_host,
        port=settings.server_port,
        reload=settings.environment == "development",
        proxy_headers=settings.environment == "production",
    )


if __name__ == "__main__":  # pragma: no cover - runtime entrypoint
    main()
