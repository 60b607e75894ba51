import logging
from logging.config import dictConfig
from typing import Optional

from .config import LOG_LEVEL, APP_NAME


def setup_logging(level: Optional[str] = None):
    """Configure console logging for the app, uvicorn and libvirt callbacks."""
    effective = (level or LOG_LEVEL).upper()
    dictConfig({
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "default": {
                "format": "%(asctime)s %(levelname)s %(name)s - %(message)s"
            },
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": "default",
            },
        },
        "loggers": {
            "": {"handlers": ["console"], "level": effective},
            "uvicorn": {"handlers": ["console"], "level": effective, "propagate": False},
            "uvicorn.error": {"handlers": ["console"], "level": effective, "propagate": False},
            "uvicorn.access": {"handlers": ["console"], "level": effective, "propagate": False},
            # libvirt's own error callback is chatty; its messages are re-raised as exceptions anyway
            "libvirt": {"handlers": ["console"], "level": "WARNING", "propagate": False},
            APP_NAME: {"handlers": ["console"], "level": effective, "propagate": False},
        },
    })
    logging.getLogger(APP_NAME).info("Logging initialized at level %s", effective)
