"""
Tests for logging setup and formatters.
"""

import json
import logging

from run_puppet.logging_config import HumanFormatter, JSONFormatter, level_for, setup_logging


def _record(msg="hello", **extra):
    record = logging.LogRecord("run_puppet.runner", logging.INFO, __file__, 1, msg, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_json_formatter_includes_run_fields():
    data = json.loads(JSONFormatter().format(_record(run_id="R-1", step="clone")))

    assert data["level"] == "INFO"
    assert data["logger"] == "run_puppet.runner"
    assert data["message"] == "hello"
    assert data["run_id"] == "R-1"
    assert data["step"] == "clone"


def test_json_formatter_omits_missing_fields():
    data = json.loads(JSONFormatter().format(_record()))

    assert "run_id" not in data
    assert "step" not in data


def test_human_formatter_plain():
    line = HumanFormatter(color=False).format(_record("cloning"))

    assert "INFO" in line
    assert "[runner" in line
    assert line.endswith("cloning")
    assert "\033[" not in line


def test_level_for(monkeypatch):
    monkeypatch.delenv("LOG_LEVEL", raising=False)

    assert level_for() == "INFO"
    assert level_for(verbosity=1) == "DEBUG"
    assert level_for(debug=True) == "DEBUG"

    monkeypatch.setenv("LOG_LEVEL", "WARNING")
    assert level_for() == "WARNING"


def test_setup_logging_configures_root(monkeypatch):
    monkeypatch.delenv("LOG_FORMAT", raising=False)

    setup_logging(level="debug", format_type="json")

    root = logging.getLogger()
    assert root.level == logging.DEBUG
    assert len(root.handlers) == 1
    assert isinstance(root.handlers[0].formatter, JSONFormatter)
    assert logging.getLogger("httpx").level == logging.WARNING
