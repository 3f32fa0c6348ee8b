import sys
from logging.config import dictConfig
from typing import Any

from app.core.config import settings

# Third-party loggers that are chatty at INFO during report generation
QUIET_LOGGERS = ("httpx", "openai", "botocore", "boto3", "urllib3", "sqlalchemy.engine")


def build_logging_config(level: str = "INFO") -> dict[str, Any]:
    """Uvicorn-compatible dictConfig; the application loggers log at *level*."""
    level = level.upper()
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
            "default": {"class": "logging.StreamHandler", "formatter": "default", "stream": sys.stderr},
            "access": {"class": "logging.StreamHandler", "formatter": "access", "stream": sys.stdout},
            # Job progress lines go to stdout next to the access log
            "jobs": {"class": "logging.StreamHandler", "formatter": "default", "stream": sys.stdout},
        },
        "loggers": {
            "root": {"handlers": ["default"], "level": "INFO", "propagate": False},
            "uvicorn.error": {"handlers": ["default"], "level": "INFO", "propagate": False},
            "uvicorn.access": {"handlers": ["access"], "level": "INFO", "propagate": False},
            "app": {"handlers": ["default"], "level": level, "propagate": False},
            "app.generation_logic": {"handlers": ["jobs"], "level": level, "propagate": False},
            **{name: {"handlers": ["default"], "level": "WARNING", "propagate": False} for name in QUIET_LOGGERS},
        },
    }


def setup_logging(level: str | None = None) -> None:
    """Configures application-wide logging using dictConfig."""
    dictConfig(build_logging_config(level or settings.log_level))
