"""
Logging Configuration
Single place where the root logger is set up for the API process
"""

import logging
import logging.config

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(level: str = "INFO") -> None:
    """Configure console logging for the app and quiet noisy libraries."""
    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {"default": {"format": LOG_FORMAT}},
            "handlers": {
                "console": {
                    "class": "logging.StreamHandler",
                    "formatter": "default",
                }
            },
            "root": {"level": level, "handlers": ["console"]},
            "loggers": {
                "pymongo": {"level": "WARNING"},
                "passlib": {"level": "ERROR"},
                "httpx": {"level": "WARNING"},
            },
        }
    )
