"""
Tests for logging setup and the command-line entry point.
"""

import json
import logging

import pytest

from ladderstream import __main__ as cli
from ladderstream.config import LoggingConfig, get_config, set_config
from ladderstream.logs import JSONFormatter, configure_logging


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield root
    for handler in list(root.handlers):
        if handler not in handlers:
            handler.close()
        root.removeHandler(handler)
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(level)


def test_json_formatter():
    record = logging.LogRecord("ladderstream.jobs", logging.INFO, __file__, 1, "job %s done", ("a1",), None)

    payload = json.loads(JSONFormatter().format(record))

    assert payload["level"] == "INFO"
    assert payload["logger"] == "ladderstream.jobs"
    assert payload["message"] == "job a1 done"


def test_configure_logging_file(restore_root_logger, tmp_path):
    log_file = tmp_path / "ladderstream.log"

    configure_logging(LoggingConfig(level="debug", format="json", file=str(log_file)))
    logging.getLogger("ladderstream.test").debug("hello")
    for handler in restore_root_logger.handlers:
        handler.flush()

    assert restore_root_logger.level == logging.DEBUG
    assert json.loads(log_file.read_text().splitlines()[-1])["message"] == "hello"


def test_main_runs_uvicorn(monkeypatch, restore_root_logger, tmp_path):
    config_file = tmp_path / "ladderstream.yaml"
    config_file.write_text("ladder:\n  - {width: 640, height: 360, label: 360p}\n")
    calls = []
    monkeypatch.setattr(cli.uvicorn, "run", lambda *args, **kwargs: calls.append((args, kwargs)))

    try:
        cli.main(["-c", str(config_file), "--port", "9100"])

        assert [spec.label for spec in get_config().ladder] == ["360p"]
        assert get_config().server.port == 9100
    finally:
        set_config(None)

    (target,), kwargs = calls[0]
    assert target == "ladderstream.api:create_app"
    assert kwargs["factory"] is True
    assert kwargs["port"] == 9100
