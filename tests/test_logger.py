"""Test the logger module."""

from __future__ import annotations

import io
import logging

import pytest

from instagen_core import logger as logger_module
from instagen_core.logger import LOGGER_NAME, get_logger, resolve_log_level, setup_logger


@pytest.fixture(autouse=True)
def restore_logger():
    yield
    setup_logger(level=logging.INFO)


def test_get_logger_returns_package_logger():
    log = get_logger()
    assert log.name == LOGGER_NAME
    assert hasattr(log, "info")
    assert hasattr(log, "error")


def test_setup_logger_and_get_logger_are_idempotent():
    log = setup_logger(level=logging.DEBUG)
    assert log.level == logging.DEBUG
    assert log.propagate is False
    assert len(log.handlers) == 1

    setup_logger(level=logging.DEBUG)
    assert len(log.handlers) == 1
    assert get_logger() is log
    assert logger_module.logger is log


def test_setup_logger_accepts_level_names_and_formats_output():
    stream = io.StringIO()
    log = setup_logger(level="warning", stream=stream)

    log.info("hidden")
    log.warning("cache warming failed")

    output = stream.getvalue()
    assert "hidden" not in output
    assert "WARNING:instagen_core: cache warming failed" in output


def test_setup_logger_quiets_third_party_loggers():
    setup_logger(level=logging.DEBUG)

    assert logging.getLogger("aiohttp").level == logging.WARNING
    assert logging.getLogger("aiosqlite").level == logging.WARNING


@pytest.mark.parametrize(
    "level, expected",
    [
        ("debug", logging.DEBUG),
        (" ERROR ", logging.ERROR),
        (logging.WARNING, logging.WARNING),
        (None, logging.INFO),
        ("nonsense", logging.INFO),
    ],
)
def test_resolve_log_level(level, expected):
    assert resolve_log_level(level) == expected
