# ABOUTME: Typed exceptions raised across the service boundary
# ABOUTME: Converts classified kubectl failures into permission, not-found and transient errors

"""
Error taxonomy for the status layer.

Services never let a raw CommandError escape. Every kubectl failure is turned
into one of the classes below by classify_command_error, so callers can pick
a reaction from the type alone:

    TransientError          quiet retry, stale data where available
    PermissionDeniedError   banner with the raw diagnostic, never cached
    ToolUnavailableError    banner (kubectl missing)
    NotFoundError           log only; for detection it means "not installed"
    ApplicationNotFoundError  the application was deleted, drop it from views
    MalformedResourceError  log only
"""

from __future__ import annotations

from enum import StrEnum
from typing import Any

from argocd_status.utils.runner import CommandError, CommandErrorKind


class Severity(StrEnum):
    """Suggested handling for an error shown to a user."""

    RETRY = "retry"
    BANNER = "banner"
    LOG = "log"


class ArgocdError(Exception):
    """Base class for errors surfaced by the status services."""

    category = "error"
    severity = Severity.LOG

    def __init__(
        self,
        message: str,
        details: str = "",
        context: str | None = None,
    ) -> None:
        self.message = message
        self.details = details
        self.context = context
        super().__init__(message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message}: {self.details}"
        return self.message

    def to_dict(self) -> dict[str, Any]:
        return {
            "category": self.category,
            "message": self.message,
            "details": self.details,
            "context": self.context,
            "severity": str(self.severity),
        }


class PermissionDeniedError(ArgocdError):
    category = "permission_denied"
    severity = Severity.BANNER


class NotFoundError(ArgocdError):
    category = "not_found"


class ApplicationNotFoundError(NotFoundError):
    """A specific application no longer exists."""

    def __init__(self, name: str, namespace: str, details: str = "", context: str | None = None) -> None:
        self.name = name
        self.namespace = namespace
        super().__init__(
            f"Application '{name}' in namespace '{namespace}' no longer exists",
            details,
            context,
        )


class TransientError(ArgocdError):
    """Timeouts, unreachable clusters and unclassified kubectl failures."""

    category = "transient"
    severity = Severity.RETRY


class ToolUnavailableError(ArgocdError):
    category = "tool_unavailable"
    severity = Severity.BANNER


class MalformedResourceError(ArgocdError):
    category = "malformed"


_BY_KIND: dict[CommandErrorKind, type[ArgocdError]] = {
    CommandErrorKind.PERMISSION_DENIED: PermissionDeniedError,
    CommandErrorKind.NOT_FOUND: NotFoundError,
    CommandErrorKind.TIMEOUT: TransientError,
    CommandErrorKind.CONNECTION_FAILED: TransientError,
    CommandErrorKind.UNKNOWN: TransientError,
    CommandErrorKind.BINARY_NOT_FOUND: ToolUnavailableError,
}


def classify_command_error(error: CommandError) -> ArgocdError:
    """Convert a runner failure into the matching ArgocdError."""
    error_class = _BY_KIND[error.kind]
    return error_class(error.message, error.stderr, error.context)
