"""
Logging setup for the API server and the CLI.

Both structlog loggers (lifecycle events, HTTP requests) and plain stdlib
loggers end up on one handler with one renderer: JSON lines for the server,
a colored console for the CLI and for DEBUG sessions.
"""

import logging
import sys
from typing import List, Optional, TextIO

import structlog
from structlog.types import Processor

from .config import settings


NOISY_LOGGERS = ("uvicorn.access", "httpcore", "httpx", "stellar_sdk")


def _pre_chain(json_output: bool) -> List[Processor]:
    chain: List[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
    ]
    if json_output:
        chain.append(structlog.processors.format_exc_info)
    return chain


def setup_logging(
    log_level: Optional[str] = None,
    console: Optional[bool] = None,
    stream: Optional[TextIO] = None,
) -> None:
    """
    Install the shared handler on the root logger.

    Args:
        log_level: level name, defaults to ``settings.log_level``
        console: True for the console renderer, False for JSON; None picks
            the console only at DEBUG
        stream: output stream, stderr by default so CLI stdout stays clean
    """
    level = logging.getLevelName((log_level or settings.log_level).upper())
    if not isinstance(level, int):
        level = logging.INFO
    json_output = not (level == logging.DEBUG if console is None else console)

    pre_chain = _pre_chain(json_output)
    renderer: Processor = (
        structlog.processors.JSONRenderer() if json_output else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=pre_chain + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=pre_chain,
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        )
    )

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(level)

    quiet = max(level, logging.WARNING)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(quiet)
