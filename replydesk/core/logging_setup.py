"""Logging configuration applied at API and worker startup."""

import logging.config

from replydesk.core.config import get_settings

LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"


def setup_logging(level: str | None = None) -> None:
    """Configure root logging once per process."""
    level = (level or get_settings().log_level).upper()
    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "default": {"format": LOG_FORMAT},
            },
            "handlers": {
                "console": {
                    "class": "logging.StreamHandler",
                    "formatter": "default",
                },
            },
            "root": {"level": level, "handlers": ["console"]},
            "loggers": {
                # LiteLLM and httpx are chatty at INFO
                "LiteLLM": {"level": "WARNING"},
                "httpx": {"level": "WARNING"},
            },
        }
    )
