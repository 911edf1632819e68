from __future__ import annotations

import logging

from booking.core.config import Settings

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(config: Settings) -> None:
    level = getattr(logging, config.log_level.upper(), logging.INFO)
    logging.basicConfig(level=level, format=LOG_FORMAT)
    # SQL echo is controlled by the engine, keep the driver loggers quiet
    logging.getLogger("sqlalchemy.engine").setLevel(max(level, logging.WARNING))
