"""Tests — log formatters carry workflow context."""

import json
import logging
from types import SimpleNamespace

from app.middleware.logging_config import JSONFormatter, ReadableFormatter, build_formatter


def _record(msg="Line item completed", **extra):
    record = logging.LogRecord("app.services.workflow_service", logging.INFO, __file__, 10, msg, (), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_readable_formatter_appends_tracker_context():
    line = ReadableFormatter(use_color=False).format(
        _record(project_id=12, tracker_id=3, line_item_id=40, workflow_type="ROOFING"),
    )
    assert line.endswith("Line item completed [project=12 tracker=3 workflow=ROOFING line_item=40]")
    assert "\033[" not in line


def test_readable_formatter_without_context_has_no_suffix():
    line = ReadableFormatter(use_color=False).format(_record("Scheduler ready"))
    assert line.endswith("Scheduler ready")


def test_readable_formatter_shows_job_and_duration():
    line = ReadableFormatter(use_color=False).format(_record(job_name="workflow_healing_sweep", duration_ms=41.6))
    assert line.endswith("[job=workflow_healing_sweep 42ms]")


def test_json_formatter_groups_workflow_fields():
    payload = json.loads(JSONFormatter().format(
        _record(project_id=12, tracker_id=3, method="POST", status=200),
    ))
    assert payload["message"] == "Line item completed"
    assert payload["workflow"] == {"project_id": 12, "tracker_id": 3}
    assert payload["method"] == "POST"
    assert payload["status"] == 200


def test_formatter_choice_follows_environment():
    assert isinstance(build_formatter(SimpleNamespace(config={"DEBUG": True})), ReadableFormatter)
    assert isinstance(build_formatter(SimpleNamespace(config={})), JSONFormatter)
    assert isinstance(build_formatter(SimpleNamespace(config={"LOG_FORMAT": "JSON", "TESTING": True})), JSONFormatter)
