import logging
import sys
from contextlib import contextmanager

import structlog

_shared = [
    structlog.contextvars.merge_contextvars,
    structlog.processors.add_log_level,
    structlog.processors.TimeStamper(fmt="%H:%M:%S"),
]


def _renderer(fmt: str):
    if fmt == "json":
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())


def configure_logging(level: str = "INFO", fmt: str = "console"):
    structlog.configure(
        processors=[*_shared, structlog.processors.format_exc_info, _renderer(fmt)],
        wrapper_class=structlog.make_filtering_bound_logger(getattr(logging, level)),
        logger_factory=structlog.WriteLoggerFactory(file=sys.stderr),
    )
    # mcp logs every JSON-RPC frame at INFO
    for name in ("httpx", "mcp", "aiosqlite"):
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str | None = None):
    return structlog.get_logger(name or "workbench")


@contextmanager
def bind_run(request_id: str, kind: str):
    """Tag every log line emitted inside the block with the run it belongs to."""
    with structlog.contextvars.bound_contextvars(request_id=request_id, run=kind):
        yield


def uvicorn_log_config(level: str = "INFO", fmt: str = "console") -> dict:
    formatter = {
        "()": structlog.stdlib.ProcessorFormatter,
        "processor": _renderer(fmt),
        "foreign_pre_chain": _shared,
    }
    handler = {"class": "logging.StreamHandler", "stream": "ext://sys.stderr"}
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {"default": formatter},
        "handlers": {"default": {**handler, "formatter": "default"}},
        "loggers": {
            "uvicorn": {"handlers": ["default"], "level": level, "propagate": False},
            "uvicorn.error": {"level": level},
            "uvicorn.access": {"handlers": ["default"], "level": level, "propagate": False},
        },
    }
