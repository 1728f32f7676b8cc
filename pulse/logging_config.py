"""structlog setup shared by the CLI, the scheduler and the service.

Events go through the stdlib root logger on stderr. Rendering is JSON when
stderr is not a terminal (cron, containers), coloured key/value otherwise;
``PULSE_LOG_FORMAT=json|console`` overrides the guess.
"""

import logging
import os
import sys
from typing import Optional

import structlog

LOG_FORMAT_ENV = "PULSE_LOG_FORMAT"


def configure_logging(level: str = "INFO", json_logs: Optional[bool] = None) -> None:
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=getattr(logging, level.upper(), logging.INFO),
        force=True,
    )
    renderer = (
        structlog.processors.JSONRenderer()
        if (json_logs if json_logs is not None else wants_json())
        else structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())
    )
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def wants_json() -> bool:
    forced = os.environ.get(LOG_FORMAT_ENV, "").strip().lower()
    if forced in ("json", "console"):
        return forced == "json"
    return not sys.stderr.isatty()


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
