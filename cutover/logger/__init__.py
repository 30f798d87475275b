"""
Structured logging for cutover.

This module provides:
- Structured logging with JSON or console output
- Deployment ID tracking across every event of one attempt
- Exception formatting for failed steps
"""

import contextvars
import logging
import logging.config
import sys
import time
import traceback
import uuid

import structlog
from pythonjsonlogger import jsonlogger

from ..config import LogLevel
from ..exceptions import ConfigurationError

deployment_id_var: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "deployment_id", default=None
)
environment_var: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "environment", default=None
)


class DeploymentContextProcessor:
    """Processor to add the current deployment ID and environment to log records."""

    def __call__(self, logger, method_name, event_dict):
        deployment_id = deployment_id_var.get()
        if deployment_id:
            event_dict["deployment_id"] = deployment_id

        environment = environment_var.get()
        if environment:
            event_dict.setdefault("environment", environment)

        return event_dict


class TimestampProcessor:
    """Processor to add timestamps to log records."""

    def __call__(self, logger, method_name, event_dict):
        event_dict["timestamp"] = time.time()
        return event_dict


class ExceptionProcessor:
    """Processor to format exceptions in log records."""

    def __call__(self, logger, method_name, event_dict):
        exc_info = event_dict.pop("exc_info", None)
        if exc_info:
            if exc_info is True:
                exc_info = sys.exc_info()
            elif isinstance(exc_info, BaseException):
                exc_info = (type(exc_info), exc_info, exc_info.__traceback__)

            if exc_info[0] is not None:
                event_dict["exception"] = {
                    "type": exc_info[0].__name__,
                    "message": str(exc_info[1]),
                    "traceback": "".join(traceback.format_tb(exc_info[2]))
                    if exc_info[2]
                    else "",
                }
        return event_dict


class LogConfig:
    """Configuration class for logging setup."""

    def __init__(
        self,
        level: LogLevel = LogLevel.INFO,
        format_type: str = "console",
        log_file: str | None = None,
        stream=None,
    ):
        self.level = level
        self.format_type = format_type
        self.log_file = log_file
        self.stream = stream


def setup_logging(config: LogConfig) -> None:
    """
    Setup structured logging with the given configuration.

    Args:
        config: LogConfig instance with logging configuration
    """
    processors = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        TimestampProcessor(),
        DeploymentContextProcessor(),
        ExceptionProcessor(),
    ]

    if config.format_type == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        context_class=dict,
        cache_logger_on_first_use=True,
    )

    formatter = "json" if config.format_type == "json" else "standard"
    logging_config = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "json": {
                "()": jsonlogger.JsonFormatter,
                "format": "%(asctime)s %(name)s %(levelname)s %(message)s",
            },
            "standard": {
                "format": "%(message)s",
            },
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "level": config.level.value,
                "formatter": formatter,
                "stream": config.stream or sys.stderr,
            },
        },
        "loggers": {
            "": {
                "handlers": ["console"],
                "level": config.level.value,
                "propagate": False,
            },
            "botocore": {"level": "WARNING"},
            "httpx": {"level": "WARNING"},
        },
    }

    if config.log_file:
        logging_config["handlers"]["file"] = {
            "class": "logging.handlers.RotatingFileHandler",
            "level": config.level.value,
            "formatter": formatter,
            "filename": config.log_file,
            "maxBytes": 10 * 1024 * 1024,  # 10MB
            "backupCount": 5,
        }
        logging_config["loggers"][""]["handlers"].append("file")

    try:
        logging.config.dictConfig(logging_config)
    except (ValueError, TypeError, AttributeError, ImportError) as e:
        raise ConfigurationError(f"Failed to configure logging: {e}")


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """
    Get a structured logger instance.

    Args:
        name: Logger name, typically __name__

    Returns:
        Configured structlog BoundLogger instance
    """
    return structlog.get_logger(name)


def new_deployment_id() -> str:
    return uuid.uuid4().hex[:16]


class deployment_context:
    """Bind a deployment ID and environment to every log event in scope."""

    def __init__(self, environment: str, deployment_id: str | None = None):
        self.environment = environment
        self.deployment_id = deployment_id or new_deployment_id()
        self._tokens: list[tuple[contextvars.ContextVar, contextvars.Token]] = []

    def __enter__(self) -> str:
        self._tokens = [
            (deployment_id_var, deployment_id_var.set(self.deployment_id)),
            (environment_var, environment_var.set(self.environment)),
        ]
        return self.deployment_id

    def __exit__(self, exc_type, exc_val, exc_tb):
        for var, token in reversed(self._tokens):
            var.reset(token)
        self._tokens = []


def get_deployment_id() -> str | None:
    """Get the current deployment ID."""
    return deployment_id_var.get()
