import json
import logging

import pytest

from trendstream.logsetup import new_logger, parse_level


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("debug", logging.DEBUG),
        ("  DEBUG ", logging.DEBUG),
        ("warn", logging.WARNING),
        ("WARNING", logging.WARNING),
        (" Error ", logging.ERROR),
        ("info", logging.INFO),
        ("", logging.INFO),
        ("verbose", logging.INFO),
    ],
)
def test_parse_level(raw, expected):
    assert parse_level(raw) == expected


def _lines(capsys):
    return [json.loads(line) for line in capsys.readouterr().out.splitlines() if line]


def test_logger_writes_json_lines_with_extras(capsys):
    logger = new_logger("info")
    logger.info("service started", extra={"shard_count": 32, "kafka_enabled": False})

    (record,) = _lines(capsys)
    assert record["msg"] == "service started"
    assert record["level"] == "INFO"
    assert record["shard_count"] == 32
    assert record["kafka_enabled"] is False


def test_logger_respects_level(capsys):
    logger = new_logger("warn")
    logger.info("hidden")
    logger.debug("hidden too")
    logger.warning("shown")

    records = _lines(capsys)
    assert [record["msg"] for record in records] == ["shown"]
    assert records[0]["level"] == "WARN"


def test_logger_renders_errors_as_text(capsys):
    logger = new_logger("debug")
    logger.error("service stopped with error", extra={"error": ValueError("boom")})

    (record,) = _lines(capsys)
    assert record["error"] == "boom"


def test_new_logger_does_not_duplicate_handlers(capsys):
    new_logger("info")
    logger = new_logger("info")
    logger.info("once")

    assert len(_lines(capsys)) == 1