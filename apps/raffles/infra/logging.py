from __future__ import annotations

import logging
import logging.config


def setup_logging(level: str = "INFO") -> None:
    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "default": {
                    "format": "%(asctime)s | %(levelname)s | %(name)s | %(message)s",
                }
            },
            "handlers": {
                "console": {
                    "class": "logging.StreamHandler",
                    "formatter": "default",
                    "level": level.upper(),
                }
            },
            "loggers": {
                "sqlalchemy.engine": {"level": "WARNING"},
            },
            "root": {
                "handlers": ["console"],
                "level": level.upper(),
            },
        }
    )
