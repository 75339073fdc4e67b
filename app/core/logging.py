import sys
from logging.config import dictConfig
from typing import Any

# Loggers owned by this service: the API app and the retention cron entry point
SERVICE_LOGGERS = ("app", "api")

# Third-party loggers that dump wire data or signing details below WARNING
QUIET_LOGGERS = ("botocore", "boto3", "s3transfer", "urllib3", "httpx", "httpcore")


def build_logging_config(level: str = "INFO") -> dict[str, Any]:
    """Uvicorn-compatible dictConfig with ``level`` applied to the service loggers."""
    level = level.upper()
    loggers: dict[str, Any] = {
        "root": {"handlers": ["default"], "level": "INFO", "propagate": False},
        "uvicorn.error": {"handlers": ["default"], "level": "INFO", "propagate": False},
        "uvicorn.access": {"handlers": ["access"], "level": "INFO", "propagate": False},
    }
    for name in SERVICE_LOGGERS:
        loggers[name] = {"handlers": ["service"], "level": level, "propagate": False}
    for name in QUIET_LOGGERS:
        loggers[name] = {"handlers": ["default"], "level": "WARNING", "propagate": False}

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "default": {
                "()": "uvicorn.logging.DefaultFormatter",
                "fmt": "%(levelprefix)s %(asctime)s [%(name)s] %(message)s",
                "datefmt": "%Y-%m-%d %H:%M:%S",
            },
            "access": {
                "()": "uvicorn.logging.AccessFormatter",
                "fmt": '%(levelprefix)s %(asctime)s [%(name)s] "%(request_line)s" %(status_code)s',
            },
        },
        "handlers": {
            "default": {
                "class": "logging.StreamHandler",
                "formatter": "default",
                "stream": sys.stderr,
                "level": "INFO",
            },
            "access": {
                "class": "logging.StreamHandler",
                "formatter": "access",
                "stream": sys.stdout,
                "level": "INFO",
            },
            "service": {
                "class": "logging.StreamHandler",
                "formatter": "default",
                "stream": sys.stdout,
                "level": "DEBUG",
            },
        },
        "loggers": loggers,
    }


def setup_logging(level: str | None = None) -> None:
    """Configures application-wide logging. ``level`` defaults to ``settings.log_level``."""
    if level is None:
        from app.core.config import settings

        level = settings.log_level
    dictConfig(build_logging_config(level))
