"""
Entrypoint module.

Run as:

    python -m xray_exporter

or through uvicorn directly:

    uvicorn --factory xray_exporter.main:build_app --port 9100
"""

import logging
import sys

import uvicorn
from fastapi import FastAPI
from pydantic import ValidationError

from xray_exporter import __version__
from xray_exporter.api import create_app
from xray_exporter.config import get_settings
from xray_exporter.stats_client import build_stats_source

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=level, format=LOG_FORMAT, force=True)


def build_app() -> FastAPI:
    """Settings -> upstream source -> app. Raises ValidationError on bad settings."""
    settings = get_settings()
    source = build_stats_source(settings)
    return create_app(settings, source)


def main() -> None:
    configure_logging()
    logger.info("Starting Xray exporter %s...", __version__)

    try:
        settings = get_settings()
    except ValidationError as exc:
        logger.critical("Invalid configuration: %s", exc)
        sys.exit(1)

    configure_logging(settings.log_level)

    # Lazy channel: an unreachable Xray is reported as xray_up 0, not here.
    app = build_app()

    logger.info(
        "Exporter listening on %s:%d/metrics (Xray API %s)",
        settings.listen_host,
        settings.port,
        settings.xray_api,
    )
    uvicorn.run(
        app,
        host=settings.listen_host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
