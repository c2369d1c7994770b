"""
Structured logging for the API and the scan workers.

Both ``logging.getLogger`` and structlog loggers go through one
``ProcessorFormatter``, so context bound with :func:`bind_context`
(``request_id`` in the API, ``job_id``/``queue``/``attempt`` in workers)
shows up on every line written while it is bound.
"""

import logging
import sys
from contextlib import contextmanager
from typing import Any, Iterator, Optional

import structlog
from structlog.types import EventDict, Processor

from privacy_advisor import __version__

APP_NAME = 'privacy-advisor'

# Marks the handler installed here so reconfiguring replaces only our own
_HANDLER_NAME = 'privacy_advisor'


def add_app_context(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    event_dict.setdefault('app', APP_NAME)
    event_dict.setdefault('version', __version__)
    return event_dict


def _shared_processors() -> list:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        add_app_context,
        structlog.processors.CallsiteParameterAdder(
            [
                structlog.processors.CallsiteParameter.FILENAME,
                structlog.processors.CallsiteParameter.LINENO,
                structlog.processors.CallsiteParameter.FUNC_NAME,
            ]
        ),
    ]


def build_formatter(json_logs: bool = True, development_mode: bool = False) -> logging.Formatter:
    """
    Formatter rendering stdlib and structlog records alike.

    Args:
        json_logs: Render one JSON object per line
        development_mode: Render human-readable console lines instead
    """
    renderer: Processor
    if development_mode or not json_logs:
        renderer = structlog.dev.ConsoleRenderer()
    else:
        renderer = structlog.processors.JSONRenderer()

    return structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=_shared_processors(),
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.format_exc_info,
            renderer,
        ],
    )


def configure_structlog(
    log_level: str = 'INFO',
    json_logs: bool = True,
    development_mode: bool = False
) -> None:
    """
    Configure logging for the process.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_logs: Whether to output logs in JSON format
        development_mode: Whether to use development-friendly formatting
    """
    numeric_level = getattr(logging, log_level.upper(), logging.INFO)

    handler = logging.StreamHandler(sys.stdout)
    handler.set_name(_HANDLER_NAME)
    handler.setFormatter(build_formatter(json_logs, development_mode))

    root = logging.getLogger()
    for existing in list(root.handlers):
        if existing.get_name() == _HANDLER_NAME:
            root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(numeric_level)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            *_shared_processors(),
            structlog.processors.StackInfoRenderer(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: Optional[str] = None) -> structlog.stdlib.BoundLogger:
    """Structured logger; ``name`` is typically ``__name__``."""
    if name:
        return structlog.get_logger(name)
    return structlog.get_logger()


def bind_context(**kwargs: Any) -> None:
    """Attach fields to every log line written from the current context."""
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_context() -> None:
    structlog.contextvars.clear_contextvars()


@contextmanager
def job_context(job_id: str, queue: str, attempt: int) -> Iterator[None]:
    """
    Bind the fields identifying one job execution.

    Everything bound in the context is cleared on exit; worker tasks run one
    job per context, so nothing outside the job is lost.
    """
    bind_context(job_id=job_id, queue=queue, attempt=attempt)
    try:
        yield
    finally:
        clear_context()
