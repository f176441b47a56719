"""
Logging configuration for the YogaSwiss studio backend.
"""

import json
import logging
import logging.config
import re
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from ..config import get_settings

APP_LOGGER = "yogaswiss"


def setup_logging(
    log_level: str = "INFO",
    log_file: Optional[str] = None,
    enable_json_logging: bool = False,
) -> None:
    """
    Set up logging through ``logging.config.dictConfig``.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional log file path; enables a rotating file handler
        enable_json_logging: Emit one JSON object per record
    """
    settings = get_settings()

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)

    formatter = "json" if enable_json_logging else "detailed"
    filters = ["request_id", "sensitive_data"]

    config: Dict[str, Any] = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "detailed": {
                "format": (
                    "%(asctime)s [%(levelname)s] %(name)s:%(lineno)d "
                    "[%(request_id)s] %(message)s"
                ),
                "datefmt": "%Y-%m-%d %H:%M:%S"
            },
            "json": {
                "()": "yogaswiss.utils.logging_config.JSONFormatter",
            }
        },
        "filters": {
            "request_id": {
                "()": "yogaswiss.utils.logging_config.RequestIDFilter"
            },
            "sensitive_data": {
                "()": "yogaswiss.utils.logging_config.SensitiveDataFilter"
            }
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "level": log_level,
                "formatter": formatter,
                "stream": sys.stdout,
                "filters": filters
            }
        },
        "loggers": {
            APP_LOGGER: {"level": log_level, "handlers": ["console"], "propagate": False},
            "uvicorn": {"level": "INFO", "handlers": ["console"], "propagate": False},
            "uvicorn.access": {"level": "INFO", "handlers": ["console"], "propagate": False},
            "sqlalchemy.engine": {"level": "WARNING", "handlers": ["console"], "propagate": False},
            "sqlalchemy.pool": {"level": "WARNING", "handlers": ["console"], "propagate": False},
            "redis": {"level": "WARNING", "handlers": ["console"], "propagate": False},
            "celery": {"level": "INFO", "handlers": ["console"], "propagate": False},
            "stripe": {"level": "WARNING", "handlers": ["console"], "propagate": False},
        },
        "root": {
            "level": log_level,
            "handlers": ["console"]
        }
    }

    if log_file:
        config["handlers"]["file"] = {
            "class": "logging.handlers.RotatingFileHandler",
            "level": log_level,
            "formatter": formatter,
            "filename": log_file,
            "maxBytes": 10 * 1024 * 1024,
            "backupCount": 5,
            "filters": filters
        }
        for logger_config in config["loggers"].values():
            logger_config["handlers"].append("file")
        config["root"]["handlers"].append("file")

    if settings.environment == "production":
        error_file = log_file.replace(".log", "_errors.log") if log_file else "logs/errors.log"
        Path(error_file).parent.mkdir(parents=True, exist_ok=True)
        config["handlers"]["error_file"] = {
            "class": "logging.handlers.RotatingFileHandler",
            "level": "ERROR",
            "formatter": formatter,
            "filename": error_file,
            "maxBytes": 10 * 1024 * 1024,
            "backupCount": 10,
            "filters": filters
        }
        config["loggers"][APP_LOGGER]["handlers"].append("error_file")

    logging.config.dictConfig(config)


class RequestIDFilter(logging.Filter):
    """Add the current request id to log records."""

    def filter(self, record):
        if not getattr(record, "request_id", None):
            from ..middleware.logging import request_id_var
            record.request_id = request_id_var.get()
        return True


class SensitiveDataFilter(logging.Filter):
    """Mask secrets, e-mail addresses and IBANs in log records."""

    SENSITIVE_KEYS = {
        "password", "token", "secret", "authorization", "cookie",
        "api_key", "access_token", "refresh_token", "iban", "signature",
    }

    _LONG_TOKEN = re.compile(r"\b[A-Za-z0-9]{32,}\b")
    _EMAIL = re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b")
    _IBAN = re.compile(r"\b(CH|LI)\d{2}[ ]?(?:[0-9A-Z]{4}[ ]?){3}[0-9A-Z]{5}\b")

    def filter(self, record):
        if isinstance(record.msg, str):
            record.msg = self._sanitize_string(record.msg)

        for key, value in list(record.__dict__.items()):
            if isinstance(value, dict):
                setattr(record, key, self._sanitize_data(value))
        return True

    def _sanitize_string(self, text: str) -> str:
        text = self._IBAN.sub(lambda m: m.group(0)[:4] + "***", text)
        text = self._LONG_TOKEN.sub("***MASKED***", text)
        return self._EMAIL.sub("***EMAIL***", text)

    def _sanitize_data(self, data):
        if isinstance(data, dict):
            return {
                key: "***MASKED***" if any(s in str(key).lower() for s in self.SENSITIVE_KEYS)
                else self._sanitize_data(value)
                for key, value in data.items()
            }
        if isinstance(data, str):
            return self._sanitize_string(data)
        if isinstance(data, (list, tuple)):
            return type(data)(self._sanitize_data(item) for item in data)
        return data


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    _STANDARD_ATTRS = {
        "name", "msg", "args", "levelname", "levelno", "pathname",
        "filename", "module", "lineno", "funcName", "created",
        "msecs", "relativeCreated", "thread", "threadName", "taskName",
        "processName", "process", "exc_info", "exc_text", "stack_info", "request_id",
    }

    def format(self, record):
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if hasattr(record, "request_id"):
            log_entry["request_id"] = record.request_id

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        extra_fields = {
            key: value for key, value in record.__dict__.items()
            if key not in self._STANDARD_ATTRS
        }
        if extra_fields:
            log_entry["extra"] = extra_fields

        return json.dumps(log_entry, default=str, ensure_ascii=False)


def log_business_event(event_type: str, details: Dict[str, Any], user_id: Optional[str] = None):
    """Log a money-moving or otherwise auditable event."""
    logger = logging.getLogger(f"{APP_LOGGER}.business")
    logger.info(
        f"Business event: {event_type}",
        extra={
            "event_type": event_type,
            "business_event": True,
            "user_id": user_id,
            "event_details": details,
        }
    )


def log_security_event(event_type: str, details: Dict[str, Any], severity: str = "WARNING"):
    logger = logging.getLogger(f"{APP_LOGGER}.security")
    log_method = getattr(logger, severity.lower(), logger.warning)
    log_method(
        f"Security event: {event_type}",
        extra={
            "event_type": event_type,
            "security_event": True,
            "severity": severity,
            "event_details": details,
        }
    )
