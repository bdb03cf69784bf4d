"""Run the service: ``python -m minimall``."""

from __future__ import annotations

import os

import uvicorn

from minimall.app import create_app
from minimall.config import Settings
from minimall.observability import configure_logging


def main() -> None:
    settings = Settings()
    configure_logging(settings.log_level)
    uvicorn.run(
        create_app(settings),
        host=os.environ.get("HOST", "0.0.0.0"),
        port=int(os.environ.get("PORT", "8000")),
        log_config=None,
    )


if __name__ == "__main__":
    main()
