from __future__ import annotations

import json
import logging
from pathlib import Path

from subsync.utils.logging import JsonFormatter, _json_formatter

EXPECTED_COUNT = 3


def _log_record(msg: str = "hello") -> logging.LogRecord:
    return logging.LogRecord(
        name="test.logger",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg=msg,
        args=(),
        exc_info=None,
    )


def test_json_formatter_promotes_standard_extra_fields() -> None:
    record = _log_record()
    record.count = EXPECTED_COUNT
    record.record_id = "abc"

    payload = json.loads(_json_formatter(record))

    assert payload["level"] == "INFO"
    assert payload["logger"] == "test.logger"
    assert payload["message"] == "hello"
    assert payload["count"] == EXPECTED_COUNT
    assert payload["record_id"] == "abc"


def test_json_formatter_supports_legacy_nested_extra_field() -> None:
    record = _log_record()
    record.extra = {"pending": EXPECTED_COUNT}

    payload = json.loads(_json_formatter(record))

    assert payload["pending"] == EXPECTED_COUNT


def test_json_formatter_serializes_non_json_values() -> None:
    record = _log_record("[SYNC] Merged records")
    record.path = Path("/tmp/snapshot.json")

    payload = json.loads(JsonFormatter().format(record))

    assert payload["message"] == "[SYNC] Merged records"
    assert payload["path"] == "/tmp/snapshot.json"
