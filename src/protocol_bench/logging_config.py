"""
structlog configuration for protocol-bench.

Modules log through ``structlog.get_logger()`` with an event string plus
keyword context. This routes those events through stdlib logging so driver
libraries and protocol-bench share one stream.
"""

import logging
import os
import sys
from typing import Optional

import structlog

LOG_LEVEL_ENV = "PROTOCOL_BENCH_LOG_LEVEL"


def get_log_level(level: Optional[str] = None) -> int:
    """Resolve a level name from the argument, the environment or INFO."""
    name = (level or os.getenv(LOG_LEVEL_ENV, "INFO")).upper()
    resolved = logging.getLevelName(name)
    if not isinstance(resolved, int):
        raise ValueError(f"Unknown log level: {name}")
    return resolved


def configure_logging(level: Optional[str] = None, json_logs: bool = False) -> None:
    """Configure structlog and the stdlib root logger. Logs go to stderr."""
    log_level = get_log_level(level)

    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="%Y-%m-%d %H:%M:%S", utc=False),
    ]

    if json_logs:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())

    structlog.configure(
        processors=shared_processors + [
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        cache_logger_on_first_use=False,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(log_level)

    # Driver libraries are noisy at DEBUG
    for name in ("psycopg", "mysql.connector"):
        logging.getLogger(name).setLevel(max(log_level, logging.WARNING))
