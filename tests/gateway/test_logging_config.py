"""structlog 配置测试"""

import io
import json
import logging

import pytest
import structlog
from taskrelay.gateway.logging_config import SERVICE_NAME, setup_logging


@pytest.fixture
def restore_logging():
    """测试后恢复 structlog 默认配置与 root logger"""
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    aiosqlite_level = logging.getLogger("aiosqlite").level
    yield
    structlog.reset_defaults()
    structlog.contextvars.clear_contextvars()
    root.handlers[:] = handlers
    root.setLevel(level)
    logging.getLogger("aiosqlite").setLevel(aiosqlite_level)


def _last_json(stream: io.StringIO) -> dict:
    return json.loads(stream.getvalue().strip().splitlines()[-1])


class TestSetupLogging:
    """setup_logging"""

    def test_json_format_includes_context(self, restore_logging):
        out = io.StringIO()
        setup_logging(log_format="json", log_level="DEBUG", stream=out)

        with structlog.contextvars.bound_contextvars(task_id="task-123"):
            structlog.get_logger("taskrelay.test").info("task_created", attempt=1)

        payload = _last_json(out)
        assert payload["event"] == "task_created"
        assert payload["task_id"] == "task-123"
        assert payload["attempt"] == 1
        assert payload["level"] == "info"
        assert payload["service"] == SERVICE_NAME
        assert payload["timestamp"].endswith("Z")

    def test_secret_fields_redacted(self, restore_logging):
        out = io.StringIO()
        setup_logging(log_format="json", stream=out)

        structlog.get_logger().warning("authentication_failed", token="abc123", user_id="u1")

        payload = _last_json(out)
        assert payload["token"] == "***"
        assert payload["user_id"] == "u1"
        assert "abc123" not in out.getvalue()

    def test_stdlib_records_share_formatter(self, restore_logging):
        out = io.StringIO()
        setup_logging(log_format="json", stream=out)

        logging.getLogger("third.party").warning("plain stdlib message")

        payload = _last_json(out)
        assert payload["event"] == "plain stdlib message"
        assert payload["service"] == SERVICE_NAME

    def test_level_from_env(self, restore_logging, monkeypatch):
        monkeypatch.setenv("TASKRELAY_LOG_LEVEL", "warning")
        setup_logging(log_format="dev")
        assert logging.getLogger().level == logging.WARNING

    def test_unknown_level_defaults_to_info(self, restore_logging):
        setup_logging(log_format="dev", log_level="chatty")
        assert logging.getLogger().level == logging.INFO

    def test_aiosqlite_quieted_in_debug(self, restore_logging):
        setup_logging(log_format="dev", log_level="DEBUG")
        assert logging.getLogger().level == logging.DEBUG
        assert logging.getLogger("aiosqlite").level == logging.WARNING
