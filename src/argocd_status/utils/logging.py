# ABOUTME: Structured logging with correlation IDs for the ArgoCD status layer
# ABOUTME: Configures structlog and records sync and refresh actions in an audit trail

"""
Structured logging with correlation IDs and audit trails.

=============================================================================
WHAT IS THIS FILE?
=============================================================================

1. STRUCTURED LOGGING: every module logs key/value events through structlog,
   rendered as colored console lines or as JSON lines.

2. CORRELATION IDs: one short ID per request, attached to every event the
   request produces, including the debug lines for each kubectl call.

3. AUDIT LOGGING: a record of every sync and refresh that was attempted,
   blocked or failed.

=============================================================================
WHY CORRELATION IDs HERE?
=============================================================================

A single "list applications" request can run several kubectl commands:

    kubectl get configmap kube9-operator-status ...   (operator report)
    kubectl get crd applications.argoproj.io ...      (fallback detection)
    kubectl get deployments --selector=...            (server discovery)
    kubectl get applications.argoproj.io ...          (the list itself)

Requests for different contexts run concurrently, so their log lines
interleave. The correlation ID (stored in a ContextVar, so each asyncio task
sees its own) ties each line back to the request that caused it:

    [debug] kubectl finished  args="get crd ..."  correlation_id=a3f8c2d1
    [debug] kubectl finished  args="get crd ..."  correlation_id=77b01e9c
"""

from __future__ import annotations

import json
import logging
import sys
import uuid
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

import structlog

if TYPE_CHECKING:
    from collections.abc import MutableMapping
    from pathlib import Path

# =============================================================================
# CORRELATION ID MANAGEMENT
# =============================================================================

correlation_id: ContextVar[str] = ContextVar("correlation_id", default="")


def get_correlation_id() -> str:
    """
    Get current correlation ID or generate new one.

    Code running outside a request (startup, background polling) still gets
    an ID, so its logs are correlatable too.

    Returns:
        8-character correlation ID string.
    """
    cid = correlation_id.get()
    if not cid:
        cid = str(uuid.uuid4())[:8]
        correlation_id.set(cid)
    return cid


def set_correlation_id(cid: str) -> None:
    """
    Set correlation ID for current context.

    Called at the start of each MCP tool and each channel request. An empty
    string makes the next get_correlation_id() generate a fresh ID.
    """
    correlation_id.set(cid)


def add_correlation_id(
    logger: structlog.types.WrappedLogger,  # noqa: ARG001 - Required by structlog Processor API
    method_name: str,  # noqa: ARG001 - Required by structlog Processor API
    event_dict: MutableMapping[str, Any],
) -> MutableMapping[str, Any]:
    """structlog processor that adds the correlation ID to every event."""
    event_dict["correlation_id"] = get_correlation_id()
    return event_dict


# =============================================================================
# LOGGING CONFIGURATION
# =============================================================================


def configure_logging(
    level: str = "INFO",
    json_output: bool = False,
) -> None:
    """
    Configure structured logging.

    Call once at startup. Calling again reconfigures (useful in tests).

    PROCESSOR PIPELINE:
    -------------------
    1. merge_contextvars: values bound with bind_contextvars()
    2. add_log_level: "level" field
    3. TimeStamper: ISO 8601 timestamp
    4. add_correlation_id: request correlation ID
    5. Renderer: JSON lines or colored console output

    Output goes to stderr. When the server runs over stdio, stdout carries the
    MCP protocol and must not receive log lines.

    Args:
        level: "DEBUG", "INFO", "WARNING", "ERROR" or "CRITICAL".
               DEBUG includes one line per kubectl call.
        json_output: JSON lines for log aggregators, else console output.
    """
    processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        add_correlation_id,
    ]

    if json_output:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(getattr(logging, level.upper(), logging.INFO)),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


# =============================================================================
# AUDIT LOGGER
# =============================================================================


class AuditLogger:
    """
    Audit logger for actions that change Applications.

    Every sync and refresh produces one entry, whatever the outcome:

    {"timestamp": "2024-01-15T10:30:00+00:00", "correlation_id": "abc12345",
     "action": "sync_application", "target": "argocd/guestbook@prod",
     "result": "succeeded", "details": {"revision": "main"}}

    {"timestamp": "2024-01-15T10:30:05+00:00", "correlation_id": "def45678",
     "action": "hard_refresh_application", "target": "argocd/guestbook@prod",
     "result": "blocked", "details": {"reason": "Server is running in read-only mode"}}

    Entries are appended as JSON lines to a file, or logged through structlog
    when no file is configured.
    """

    def __init__(self, log_path: Path | None = None) -> None:
        """
        Args:
            log_path: File to append JSON lines to (parent directory must
                      exist), or None to log through structlog.
        """
        self._log_path = log_path
        self._logger = structlog.get_logger("audit")

    def log(
        self,
        action: str,
        target: str,
        result: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        """
        Log an auditable action.

        Args:
            action: e.g. "sync_application", "refresh_application"
            target: "<namespace>/<name>@<context>"
            result: "triggered", "succeeded", "failed", "blocked", "error"
            details: Optional context (revision, error text, reason)
        """
        entry: dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat(),
            "correlation_id": get_correlation_id(),
            "action": action,
            "target": target,
            "result": result,
        }
        if details:
            entry["details"] = details

        if self._log_path:
            with self._log_path.open("a") as f:
                f.write(json.dumps(entry) + "\n")
        else:
            self._logger.info(
                "audit",
                action=action,
                target=target,
                result=result,
                details=details,
            )

    def log_write(
        self,
        action: str,
        target: str,
        result: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Log a sync or refresh that reached the cluster."""
        self.log(action, target, result, details)

    def log_blocked(self, action: str, target: str, reason: str) -> None:
        """Log an action refused by a safety check."""
        self.log(action, target, "blocked", {"reason": reason})

    def log_error(self, action: str, target: str, error: str) -> None:
        """Log an action that failed before reaching a result."""
        self.log(action, target, "error", {"error": error})
