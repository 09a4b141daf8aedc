"""Structured logging setup: structlog events rendered through stdlib ``logging``.

Every module logs with ``structlog.get_logger(__name__)``. ``setup_logging`` routes
those events through one stderr handler that renders JSON lines or plain
``key=value`` console text, and binds the run id to every event of the run.
"""

from __future__ import annotations

import logging
import sys
import uuid
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from typing import IO, Final

import structlog

_DEFAULT_LOGGER_NAME: Final[str] = "monorail"
_HANDLER_NAME: Final[str] = "monorail-structured"

_SHARED_PROCESSORS: Final[tuple[structlog.typing.Processor, ...]] = (
    structlog.contextvars.merge_contextvars,
    structlog.stdlib.add_log_level,
    structlog.stdlib.add_logger_name,
    structlog.processors.TimeStamper(fmt="iso", utc=True),
)


def new_run_id() -> str:
    return uuid.uuid4().hex[:12]


def setup_logging(
    observability_config: Mapping[str, object] | None = None,
    *,
    run_id: str | None = None,
    stream: IO[str] | None = None,
) -> str:
    """Configure structlog and the ``monorail`` stdlib logger; return the bound run id.

    ``observability_config`` is the ``[observability]`` table of ``monorail.toml``.
    Calling this again replaces the previous handler.
    """

    cfg = dict(observability_config or {})
    level = str(cfg.get("log_level", "INFO")).upper()
    log_format = str(cfg.get("log_format", "text"))
    active_run_id = run_id or new_run_id()

    renderer: structlog.typing.Processor
    if log_format == "json":
        renderer = structlog.processors.JSONRenderer(sort_keys=True)
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=False)

    structlog.configure(
        processors=[
            *_SHARED_PROCESSORS,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=list(_SHARED_PROCESSORS),
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.format_exc_info,
            renderer,
        ],
    )

    handler = logging.StreamHandler(stream if stream is not None else sys.stderr)
    handler.set_name(_HANDLER_NAME)
    handler.setFormatter(formatter)

    logger = logging.getLogger(_DEFAULT_LOGGER_NAME)
    for existing in list(logger.handlers):
        if existing.get_name() == _HANDLER_NAME:
            logger.removeHandler(existing)
    logger.addHandler(handler)
    logger.setLevel(level)
    logger.propagate = False

    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(run_id=active_run_id)
    return active_run_id


@contextmanager
def correlation_context(**values: str) -> Iterator[None]:
    """Bind correlation fields (``operation``, ``project``...) for the enclosed block."""

    with structlog.contextvars.bound_contextvars(**values):
        yield


def get_correlation_context() -> dict[str, object]:
    return dict(structlog.contextvars.get_contextvars())


__all__ = [
    "correlation_context",
    "get_correlation_context",
    "new_run_id",
    "setup_logging",
]
