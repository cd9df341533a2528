"""
Structured logging with structlog.

Every log line, ours and third-party, goes through one processor chain and one
renderer: JSON in production, colored console elsewhere. Request-scoped values
(correlation id) are merged from contextvars bound by the access log middleware.
"""

import logging
import logging.config
import time
from typing import Any, Dict, List
import structlog
from structlog.types import EventDict, Processor
from groupchat.config import settings

SERVICE_NAME = "groupchat-api"

REDACTED = "***REDACTED***"
SENSITIVE_KEY_PARTS = ("password", "token", "api_key", "secret", "authorization")

# Libraries that only log at WARNING and above
QUIET_LOGGERS = ("pymongo", "motor", "httpx", "httpcore", "asyncio")


def add_app_context(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    event_dict.setdefault("service", SERVICE_NAME)
    event_dict["version"] = settings.APP_VERSION
    event_dict["environment"] = settings.ENVIRONMENT
    return event_dict


def add_severity_and_trace(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """``severity`` and ``trace_id`` aliases for the log pipeline."""
    if "level" in event_dict:
        event_dict["severity"] = event_dict["level"].upper()

    trace_id = event_dict.get("correlation_id") or event_dict.get("request_id")
    if trace_id:
        event_dict["trace_id"] = trace_id
    return event_dict


def redact_sensitive(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    for key in event_dict:
        if any(part in key.lower() for part in SENSITIVE_KEY_PARTS):
            event_dict[key] = REDACTED
    return event_dict


def _shared_processors() -> List[Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        add_app_context,
        add_severity_and_trace,
        redact_sensitive,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]


def _route(handlers: List[str], level: str) -> Dict[str, Any]:
    return {"handlers": handlers, "level": level, "propagate": False}


def setup_logging() -> None:
    """
    Configure structlog and stdlib logging. Call once at startup.

    INFO and up go to stdout; ERROR and up are duplicated to stderr.
    Uvicorn's access log is muted in favour of AccessLogMiddleware.
    """
    level = settings.LOG_LEVEL.upper()
    production = settings.ENVIRONMENT == "production"
    shared = _shared_processors()

    renderer: Processor = (
        structlog.processors.JSONRenderer() if production
        else structlog.dev.ConsoleRenderer(colors=True)
    )

    structlog.configure(
        processors=shared + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    loggers = {
        "": _route(["stdout", "stderr"], level),
        "groupchat": _route(["stdout", "stderr"], level),
        "uvicorn": _route(["stdout"], level),
        "uvicorn.error": _route(["stdout", "stderr"], level),
        "uvicorn.access": _route([], "CRITICAL"),
    }
    loggers.update({name: _route(["stdout"], "WARNING") for name in QUIET_LOGGERS})

    logging.config.dictConfig({
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "structured": {
                "()": structlog.stdlib.ProcessorFormatter,
                "processors": [
                    structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                    renderer,
                ],
                "foreign_pre_chain": shared,
            },
        },
        "handlers": {
            "stdout": {
                "level": level,
                "class": "logging.StreamHandler",
                "stream": "ext://sys.stdout",
                "formatter": "structured",
            },
            "stderr": {
                "level": "ERROR",
                "class": "logging.StreamHandler",
                "stream": "ext://sys.stderr",
                "formatter": "structured",
            },
        },
        "loggers": loggers,
    })

    get_logger(__name__).info(
        "logging_configured",
        log_level=level,
        format="json" if production else "console",
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """
    Usage:
        logger = get_logger(__name__)
        logger.info("group_created", group_id="...", member_count=3)
    """
    return structlog.get_logger(name)


class PerformanceLogger:
    """
    Log how long a block took; failures are logged at error level and re-raised.

        with PerformanceLogger("user_index_repair", logger, user_id=user_id):
            await service.repair_user_index(user_id)
    """

    def __init__(self, operation: str, logger: structlog.stdlib.BoundLogger, **context):
        self.operation = operation
        self.logger = logger
        self.context = context
        self.start_time = 0.0

    def __enter__(self):
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        duration_ms = round((time.perf_counter() - self.start_time) * 1000, 2)

        if exc_type is None:
            self.logger.debug("operation_completed", operation=self.operation, duration_ms=duration_ms, **self.context)
        else:
            self.logger.error(
                "operation_failed",
                operation=self.operation,
                duration_ms=duration_ms,
                error_type=exc_type.__name__,
                error=str(exc_val),
                **self.context
            )
        return False
