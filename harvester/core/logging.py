"""Structured logging setup.

Console output goes through structlog's ConsoleRenderer. Each run also
gets its own JSON-lines log stream so a session can be audited after
the fact.
"""

import logging
import sys
from pathlib import Path

import structlog


_SHARED_PROCESSORS = [
    structlog.contextvars.merge_contextvars,
    structlog.stdlib.add_log_level,
    structlog.stdlib.add_logger_name,
    structlog.processors.TimeStamper(fmt="iso"),
]


def configure_logging(verbose: bool = False, level: str = "INFO") -> None:
    """Route structlog through the stdlib root logger with a console handler.

    Args:
        verbose: Lower the console level to DEBUG, overriding level
        level: Console level name such as "INFO" or "WARNING"; unknown
            names fall back to INFO
    """
    structlog.configure(
        processors=_SHARED_PROCESSORS + [
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )

    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    root.setLevel(logging.DEBUG)

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(logging.DEBUG if verbose else resolve_level(level))
    console.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=_SHARED_PROCESSORS,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                structlog.dev.ConsoleRenderer(),
            ],
        )
    )
    root.addHandler(console)

    # Third-party libraries are chatty at DEBUG
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)


def add_run_log(log_file: Path) -> logging.Handler:
    """Attach a JSON-lines file handler for one run's log stream.

    Args:
        log_file: Path of the per-run log file

    Returns:
        The attached handler, to be passed to remove_run_log() at run end
    """
    log_file.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(log_file, encoding="utf-8")
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=_SHARED_PROCESSORS,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                structlog.processors.format_exc_info,
                structlog.processors.JSONRenderer(ensure_ascii=False),
            ],
        )
    )
    logging.getLogger().addHandler(handler)
    return handler


def remove_run_log(handler: logging.Handler) -> None:
    """Detach and close a handler returned by add_run_log()."""
    logging.getLogger().removeHandler(handler)
    handler.close()


def resolve_level(name: str) -> int:
    """Map a level name to its stdlib number, INFO when the name is unknown."""
    level = logging.getLevelName(str(name).strip().upper())
    return level if isinstance(level, int) else logging.INFO
