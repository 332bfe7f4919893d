import logging
import logging.config

from monjapro.config import settings

_CONFIGURED = False


def build_logging_config(level: str) -> dict:
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "default": {
                "format": "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
                "datefmt": "%Y-%m-%d %H:%M:%S",
            },
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": "default",
                "stream": "ext://sys.stdout",
            },
        },
        "loggers": {
            "monjapro": {"level": level, "propagate": True},
            "httpx": {"level": "WARNING", "propagate": True},
        },
        "root": {"handlers": ["console"], "level": level},
    }


def configure_logging(level: str | None = None) -> None:
    """Configure process-wide logging once; later calls are ignored."""
    global _CONFIGURED
    if _CONFIGURED:
        return
    logging.config.dictConfig(build_logging_config((level or settings.log_level).upper()))
    _CONFIGURED = True
