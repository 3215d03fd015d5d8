# ABOUTME: Unit tests for logging utilities
# ABOUTME: Tests correlation IDs, logging configuration and the audit trail

import json
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
import structlog

from argocd_status.utils.logging import (
    AuditLogger,
    add_correlation_id,
    configure_logging,
    correlation_id,
    get_correlation_id,
    set_correlation_id,
)


@pytest.fixture(autouse=True)
def reset_structlog():
    yield
    structlog.reset_defaults()


@pytest.mark.unit
class TestCorrelationId:
    """Tests for correlation ID generation and context management."""

    def test_generates_id_when_empty(self):
        """Test an 8-character hex ID is generated when none is set."""
        correlation_id.set("")

        cid = get_correlation_id()

        assert len(cid) == 8
        int(cid, 16)

    def test_generated_id_is_kept(self):
        """Test later calls in the same context reuse the generated ID."""
        correlation_id.set("")

        assert get_correlation_id() == get_correlation_id()

    def test_set_correlation_id(self):
        """Test an explicit ID is returned as is."""
        set_correlation_id("req-42")

        assert get_correlation_id() == "req-42"

    def test_empty_id_starts_fresh(self):
        """Test setting an empty ID makes the next read generate one."""
        set_correlation_id("old-id")
        set_correlation_id("")

        assert get_correlation_id() != "old-id"


@pytest.mark.unit
class TestAddCorrelationId:
    """Tests for the add_correlation_id processor."""

    def test_adds_id_to_event(self):
        """Test the processor stamps the current ID on each event."""
        set_correlation_id("proc1234")

        result = add_correlation_id(MagicMock(), "info", {"event": "kubectl finished"})

        assert result == {"event": "kubectl finished", "correlation_id": "proc1234"}


@pytest.mark.unit
class TestConfigureLogging:
    """Tests for configure_logging."""

    def test_console_renderer_by_default(self):
        """Test console output is the default."""
        with patch("argocd_status.utils.logging.structlog.configure") as mock_configure:
            configure_logging()

        processors = mock_configure.call_args.kwargs["processors"]
        assert isinstance(processors[-1], structlog.dev.ConsoleRenderer)
        assert add_correlation_id in processors

    def test_json_renderer(self):
        """Test JSON lines output."""
        with patch("argocd_status.utils.logging.structlog.configure") as mock_configure:
            configure_logging(json_output=True)

        processors = mock_configure.call_args.kwargs["processors"]
        assert isinstance(processors[-1], structlog.processors.JSONRenderer)

    def test_logs_go_to_stderr(self, capsys):
        """Test log lines never reach stdout."""
        configure_logging(level="DEBUG", json_output=True)

        structlog.get_logger("test").info("hello", context="prod")

        captured = capsys.readouterr()
        assert captured.out == ""
        entry = json.loads(captured.err.strip())
        assert entry["event"] == "hello"
        assert entry["context"] == "prod"
        assert "correlation_id" in entry

    def test_level_filters_events(self, capsys):
        """Test events below the configured level are dropped."""
        configure_logging(level="WARNING", json_output=True)

        structlog.get_logger("test").info("quiet")

        assert capsys.readouterr().err == ""


@pytest.mark.unit
class TestAuditLogger:
    """Tests for AuditLogger."""

    def test_writes_json_lines_to_file(self, tmp_path: Path):
        """Test entries are appended to the audit file."""
        log_file = tmp_path / "audit.log"
        audit = AuditLogger(log_path=log_file)
        set_correlation_id("file1234")

        audit.log_write("sync_application", "argocd/guestbook@prod", "succeeded", {"revision": "main"})
        audit.log_blocked("hard_refresh_application", "argocd/guestbook@prod", "Server is running in read-only mode")

        entries = [json.loads(line) for line in log_file.read_text().splitlines()]
        assert len(entries) == 2
        assert entries[0]["action"] == "sync_application"
        assert entries[0]["result"] == "succeeded"
        assert entries[0]["details"] == {"revision": "main"}
        assert entries[0]["correlation_id"] == "file1234"
        assert "timestamp" in entries[0]
        assert entries[1]["result"] == "blocked"
        assert entries[1]["details"]["reason"] == "Server is running in read-only mode"

    def test_entry_without_details(self, tmp_path: Path):
        """Test details are omitted when empty."""
        log_file = tmp_path / "audit.log"

        AuditLogger(log_path=log_file).log("refresh_application", "argocd/a@current", "triggered")

        assert "details" not in json.loads(log_file.read_text())

    def test_error_entry(self, tmp_path: Path):
        """Test failures are recorded with the error text."""
        log_file = tmp_path / "audit.log"

        AuditLogger(log_path=log_file).log_error("sync_application", "argocd/a@prod", "Access denied")

        entry = json.loads(log_file.read_text())
        assert entry["result"] == "error"
        assert entry["details"] == {"error": "Access denied"}

    def test_logs_through_structlog_without_file(self):
        """Test entries go to the structlog audit logger when no file is set."""
        audit = AuditLogger()
        audit._logger = MagicMock()

        audit.log_write("refresh_application", "argocd/a@prod", "triggered")

        audit._logger.info.assert_called_once_with(
            "audit",
            action="refresh_application",
            target="argocd/a@prod",
            result="triggered",
            details=None,
        )
