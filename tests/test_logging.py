from __future__ import annotations

import json
import logging
import threading

from observability.logger import JsonFormatter, bind_trace_id, clear_trace_id, log_stage, resolve_level


def _record(message: str = "hello", **extra) -> logging.LogRecord:
    record = logging.LogRecord("jam_api.test", logging.INFO, __file__, 1, message, None, None)
    record.__dict__.update(extra)
    return record


def test_formatter_renders_one_json_object_with_extras():
    payload = json.loads(JsonFormatter().format(_record(stage="export", details=None)))

    assert payload["message"] == "hello"
    assert payload["level"] == "INFO"
    assert payload["logger"] == "jam_api.test"
    assert payload["timestamp"].endswith("Z")
    assert payload["stage"] == "export"
    assert "details" not in payload
    assert "thread" not in payload


def test_formatter_tags_worker_thread_and_trace_id():
    rendered = []

    def _worker() -> None:
        bind_trace_id("job-abc")
        try:
            rendered.append(json.loads(JsonFormatter().format(_record())))
        finally:
            clear_trace_id()

    thread = threading.Thread(target=_worker, name="make-jam")
    thread.start()
    thread.join()

    payload = rendered[0]
    assert payload["thread"] == "make-jam"
    assert payload["trace_id"] == "job-abc"


def test_resolve_level_accepts_names_and_numbers():
    assert resolve_level("debug") == logging.DEBUG
    assert resolve_level(logging.WARNING) == logging.WARNING
    assert resolve_level("chatty") == logging.INFO


def test_log_stage_emits_structured_event(caplog):
    logger = logging.getLogger("jam_api.test.stage")
    with caplog.at_level(logging.INFO, logger="jam_api.test.stage"):
        log_stage(logger, stage="manifest", status="written", files=3)

    record = caplog.records[-1]
    assert record.getMessage() == "job_stage"
    assert record.stage == "manifest"
    assert record.stage_status == "written"
    assert record.details == {"files": 3}
