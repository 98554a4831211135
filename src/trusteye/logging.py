"""Logging setup.

Every record carries the current run id, tenant domain and orchestrator stage so one command can be
followed across modules. The values live in context variables bound by the runner.
"""

from __future__ import annotations

import contextlib
import contextvars
import logging
from collections.abc import Iterator
from typing import Any

from rich.logging import RichHandler

_FORMAT = "run=%(run_id)s tenant=%(tenant)s stage=%(stage)s %(name)s: %(message)s"

# Chatty third-party loggers capped at WARNING unless the app itself runs at DEBUG.
_NOISY = ("httpx", "httpcore", "openai", "sqlalchemy.engine", "uvicorn.access")

_run_id: contextvars.ContextVar[str] = contextvars.ContextVar("trusteye_run_id", default="-")
_tenant: contextvars.ContextVar[str] = contextvars.ContextVar("trusteye_tenant", default="-")
_stage: contextvars.ContextVar[str] = contextvars.ContextVar("trusteye_stage", default="-")


class _RunFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:  # noqa: A003
        record.run_id = _run_id.get()  # type: ignore[attr-defined]
        record.tenant = _tenant.get()  # type: ignore[attr-defined]
        record.stage = _stage.get()  # type: ignore[attr-defined]
        return True


@contextlib.contextmanager
def run_context(*, run_id: str, tenant: str) -> Iterator[None]:
    """Bind run id and tenant for the duration of one command; the stage resets on exit."""

    tokens = (_run_id.set(run_id), _tenant.set(tenant), _stage.set("-"))
    try:
        yield
    finally:
        _stage.reset(tokens[2])
        _tenant.reset(tokens[1])
        _run_id.reset(tokens[0])


def set_stage(stage: str) -> None:
    _stage.set(stage)


def configure_logging(level: str = "INFO") -> None:
    """Install a single rich handler on the root logger.

    Safe to call repeatedly: an existing rich handler is replaced rather than stacked.

    Args:
        level: Logging level name for the application.
    """

    handler = RichHandler(rich_tracebacks=True, show_time=True, show_level=True, show_path=False)
    handler.addFilter(_RunFilter())
    handler.setFormatter(logging.Formatter(fmt=_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))

    root = logging.getLogger()
    for existing in [h for h in root.handlers if isinstance(h, RichHandler)]:
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(level.upper())

    noisy_level = logging.DEBUG if root.level <= logging.DEBUG else logging.WARNING
    for name in _NOISY:
        logging.getLogger(name).setLevel(noisy_level)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def log_exception(logger: logging.Logger, msg: str, **context: Any) -> None:
    """Log the active exception with its traceback and structured context."""

    logger.exception(msg, extra={"context": context} if context else None)
