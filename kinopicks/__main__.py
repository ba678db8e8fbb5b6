"""Module executed when running ``python -m kinopicks``."""

from __future__ import annotations

import uvicorn

from app.config import get_settings


def main() -> None:
    """Serve the KinoPicks API with uvicorn."""

    config = get_settings()
    uvicorn.run(
        "app.main:app",
        host=config.server_host,
        port=config.server_port,
        reload=config.environment == "development",
        log_level="info",
    )


if __name__ == "__main__":  # pragma: no cover - runtime entrypoint
    main()
