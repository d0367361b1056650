"""Unit tests for logging configuration and node lifecycle logging."""

import json
import logging
import logging.handlers
import sys

import pytest

from actionflow.logging_config import (
    HumanReadableFormatter,
    NodeLogger,
    RunContext,
    StructuredFormatter,
    configure_logging,
    get_node_logger,
    log_flow_completion,
    run_id_var,
)


def make_record(message="hello", level=logging.INFO, **extra):
    record = logging.LogRecord("actionflow.test", level, __file__, 10, message, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


class TestFormatters:
    """Test JSON and human-readable formatting."""

    def test_structured_output(self):
        entry = json.loads(StructuredFormatter().format(make_record(node="fetch", attempt=2)))
        assert entry["message"] == "hello"
        assert entry["level"] == "INFO"
        assert entry["logger"] == "actionflow.test"
        assert entry["node"] == "fetch"
        assert entry["attempt"] == 2
        assert "run_id" not in entry

    def test_structured_output_includes_run_id(self):
        with RunContext("run-42"):
            entry = json.loads(StructuredFormatter().format(make_record()))
        assert entry["run_id"] == "run-42"

    def test_structured_output_without_run_id(self):
        with RunContext("run-42"):
            entry = json.loads(StructuredFormatter(include_run_id=False).format(make_record()))
        assert "run_id" not in entry

    def test_structured_output_stringifies_unknown_values(self):
        entry = json.loads(StructuredFormatter().format(make_record(error=ValueError("bad"))))
        assert entry["error"] == "bad"

    def test_structured_output_includes_exception(self):
        try:
            raise RuntimeError("boom")
        except RuntimeError:
            record = logging.LogRecord("x", logging.ERROR, __file__, 1, "failed", None,
                                       sys.exc_info())
        entry = json.loads(StructuredFormatter().format(record))
        assert "RuntimeError: boom" in entry["exception"]

    def test_human_readable_prefix(self):
        formatter = HumanReadableFormatter()
        assert not formatter.format(make_record()).startswith("[")
        with RunContext("abc"):
            line = formatter.format(make_record())
        assert line.startswith("[abc] ")
        assert line.endswith("actionflow.test - INFO - hello")


class TestRunContext:
    """Test run ID scoping."""

    def test_generates_id(self):
        with RunContext() as ctx:
            assert run_id_var.get() == ctx.run_id
            assert len(ctx.run_id) == 12

    def test_restores_previous_id(self):
        with RunContext("outer"):
            with RunContext("inner"):
                assert run_id_var.get() == "inner"
            assert run_id_var.get() == "outer"
        assert run_id_var.get() is None

    def test_duration(self):
        with RunContext() as ctx:
            assert ctx.get_duration_ms() >= 0


class TestNodeLogger:
    """Test lifecycle events and their levels."""

    def test_logger_name(self):
        assert get_node_logger("fetch").logger.name == "actionflow.node.fetch"

    def test_lifecycle_is_debug(self, caplog):
        log = NodeLogger("fetch")
        with caplog.at_level(logging.DEBUG, logger="actionflow.node.fetch"):
            log.prep_start()
            log.exec_start(0, 3)
            log.post_end("next")
        assert [r.levelno for r in caplog.records] == [logging.DEBUG] * 3
        assert caplog.records[1].getMessage() == "fetch: exec attempt 1/3"
        assert caplog.records[2].action == "next"
        assert all(r.node == "fetch" for r in caplog.records)

    def test_retry_and_fallback_are_warnings(self, caplog):
        log = NodeLogger("fetch")
        with caplog.at_level(logging.WARNING, logger="actionflow.node.fetch"):
            log.exec_retry(0, ValueError("timeout"), 100)
            log.exec_fallback(3, ValueError("timeout"))
        retry, fallback = caplog.records
        assert retry.levelno == logging.WARNING
        assert retry.getMessage() == "fetch: exec attempt 1 failed (timeout); retrying in 100ms"
        assert retry.error_type == "ValueError"
        assert fallback.phase == "fallback"
        assert fallback.attempts == 3

    def test_error(self, caplog):
        with caplog.at_level(logging.ERROR, logger="actionflow.node.fetch"):
            NodeLogger("fetch").error("fallback failed", "fallback", KeyError("k"))
        record = caplog.records[0]
        assert record.levelno == logging.ERROR
        assert record.error_type == "KeyError"


class TestFlowCompletion:
    """Test flow-level completion records."""

    def test_failure_is_error_level(self, caplog):
        with caplog.at_level(logging.INFO, logger="actionflow.flow"):
            log_flow_completion("demo", 1.5, False, error=RuntimeError("x"))
        record = caplog.records[0]
        assert record.levelno == logging.ERROR
        assert record.getMessage() == "Flow failed: demo"
        assert record.duration_ms == 1.5


@pytest.mark.usefixtures("restore_root_logger")
class TestConfigureLogging:
    """Test root logger setup."""

    def test_console_only(self):
        configure_logging(level="DEBUG")
        root = logging.getLogger()
        assert root.level == logging.DEBUG
        assert len(root.handlers) == 1
        assert isinstance(root.handlers[0].formatter, HumanReadableFormatter)

    def test_json_with_rotating_file(self, tmp_path):
        log_file = tmp_path / "engine.log"
        configure_logging(level="INFO", format_type="json", log_file=str(log_file),
                          max_size=1024, backup_count=2)

        root = logging.getLogger()
        file_handlers = [h for h in root.handlers if isinstance(h, logging.handlers.RotatingFileHandler)]
        assert len(file_handlers) == 1
        assert file_handlers[0].maxBytes == 1024
        assert isinstance(file_handlers[0].formatter, StructuredFormatter)

        logging.getLogger("actionflow.test").info("written", extra={"node": "n"})
        file_handlers[0].flush()
        entry = json.loads(log_file.read_text(encoding="utf-8").strip().splitlines()[-1])
        assert entry["message"] == "written"
        assert entry["node"] == "n"

    def test_unknown_level_falls_back_to_info(self):
        configure_logging(level="chatty")
        assert logging.getLogger().level == logging.INFO
