"""Tests for logging setup and run context."""

from __future__ import annotations

import logging
from collections.abc import Iterator

import pytest
from rich.logging import RichHandler

from trusteye.logging import configure_logging, run_context, set_stage


@pytest.fixture()
def root_handlers() -> Iterator[None]:
    root = logging.getLogger()
    saved, level = list(root.handlers), root.level
    yield
    root.handlers[:] = saved
    root.setLevel(level)


def _rich_handlers() -> list[RichHandler]:
    return [h for h in logging.getLogger().handlers if isinstance(h, RichHandler)]


def test_configure_logging_twice_keeps_one_handler(root_handlers: None) -> None:
    """It should replace the rich handler instead of stacking a second one."""

    configure_logging("INFO")
    configure_logging("DEBUG")

    assert len(_rich_handlers()) == 1
    assert logging.getLogger().level == logging.DEBUG
    assert logging.getLogger("httpx").level == logging.DEBUG


def test_noisy_loggers_are_capped(root_handlers: None) -> None:
    """It should cap third-party loggers at WARNING when the app runs at INFO."""

    configure_logging("info")

    assert logging.getLogger().level == logging.INFO
    assert logging.getLogger("sqlalchemy.engine").level == logging.WARNING


def test_run_context_tags_records(root_handlers: None) -> None:
    """It should stamp run id, tenant and stage on records and reset them afterwards."""

    configure_logging("INFO")
    handler = _rich_handlers()[0]

    def stamped() -> tuple[str, str, str]:
        record = logging.LogRecord("trusteye.test", logging.INFO, __file__, 1, "hello", None, None)
        assert handler.filter(record)
        return record.run_id, record.tenant, record.stage  # type: ignore[attr-defined]

    with run_context(run_id="run-1", tenant="shop.example.com"):
        assert stamped() == ("run-1", "shop.example.com", "-")
        set_stage("knowledge")
        assert stamped() == ("run-1", "shop.example.com", "knowledge")

    assert stamped() == ("-", "-", "-")
