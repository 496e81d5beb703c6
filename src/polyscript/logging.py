from __future__ import annotations

import logging
import sys
from pathlib import Path

import structlog


def setup_logging(
    level: str = "info",
    json_output: bool = False,
    log_file: Path | None = None,
) -> None:
    """Configure structlog over stdlib logging for the whole process.

    Logs go to stderr. A daemon started in the background has its stderr
    redirected to the daemon log file, so the same setup serves both.

    Example:
        ```python
        setup_logging(level="debug", json_output=True)
        ```
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    logging.basicConfig(
        format="%(message)s",
        level=log_level,
        stream=sys.stderr,
        force=True,
    )

    if log_file is not None:
        handler = logging.FileHandler(str(log_file))
        handler.setLevel(log_level)
        logging.getLogger().handlers = [handler]

    if json_output or log_file is not None:
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )
    for handler in logging.getLogger().handlers:
        handler.setFormatter(formatter)


def get_logger(module: str) -> structlog.stdlib.BoundLogger:
    """Return a structlog logger bound to a module name.

    Example:
        ```python
        logger = get_logger("daemon.server")
        logger.info("Listening", socket="/tmp/polyscript_daemon.sock")
        ```
    """
    return structlog.get_logger(module=module)
