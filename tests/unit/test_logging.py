"""Tests for the structlog setup and stdlib log routing."""

import json
import logging

import pytest

from propquest.config import Settings
from propquest.middleware.logging import HANDLER_NAME, setup_logging


@pytest.fixture
def json_logging():
    setup_logging(Settings(log_format="json", log_level="INFO"))
    yield
    root = logging.getLogger()
    root.handlers = [h for h in root.handlers if h.get_name() != HANDLER_NAME]


def test_stdlib_records_render_as_json(capsys, json_logging):
    logging.getLogger("propquest.gamification.xp_service").info("Level up for user %s", 7)

    line = capsys.readouterr().err.strip().splitlines()[-1]
    record = json.loads(line)
    assert record["event"] == "Level up for user 7"
    assert record["level"] == "info"
    assert record["logger"] == "propquest.gamification.xp_service"
    assert "timestamp" in record


def test_repeated_setup_keeps_one_handler(json_logging):
    setup_logging(Settings(log_format="console"))
    names = [h.get_name() for h in logging.getLogger().handlers]
    assert names.count(HANDLER_NAME) == 1
