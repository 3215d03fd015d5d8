# ABOUTME: Typed request/event channel between an application detail view and the services
# ABOUTME: Handles load, sync, refresh and confirmed hard refresh for one application

"""
Application detail channel.

A detail view sends Requests and receives Events. The channel does not know
how they travel (webview messages, a websocket, a test list); it only needs
an emit callable.

    Requests                         Events emitted
    --------                         --------------
    ReadyRequest                     ApplicationDataEvent
    SyncRequest                      OperationProgressEvent..., ApplicationDataEvent
    RefreshRequest                   ApplicationDataEvent
    HardRefreshRequest(confirmed)    ConfirmationRequiredEvent, or as RefreshRequest

Every failure becomes an ErrorEvent carrying the error category, message,
raw details and a suggested severity.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

import structlog

from argocd_status.core.errors import ArgocdError, Severity
from argocd_status.core.presentation import describe_application
from argocd_status.utils.logging import set_correlation_id
from argocd_status.utils.safety import ConfirmationRequired

if TYPE_CHECKING:
    from collections.abc import Callable

    from argocd_status.core.models import Application, OperationState
    from argocd_status.core.presentation import ApplicationDetails
    from argocd_status.core.resources import ResourceQueryService
    from argocd_status.core.tracker import OperationTracker
    from argocd_status.utils.logging import AuditLogger
    from argocd_status.utils.safety import OperationBlocked, SafetyGuard

logger = structlog.get_logger(__name__)


# =============================================================================
# REQUESTS
# =============================================================================


@dataclass(frozen=True)
class ReadyRequest:
    """The view is ready and wants the application data."""


@dataclass(frozen=True)
class SyncRequest:
    revision: str | None = None


@dataclass(frozen=True)
class RefreshRequest:
    pass


@dataclass(frozen=True)
class HardRefreshRequest:
    confirmed: bool = False


Request = ReadyRequest | SyncRequest | RefreshRequest | HardRefreshRequest


# =============================================================================
# EVENTS
# =============================================================================


@dataclass(frozen=True)
class ApplicationDataEvent:
    application: Application
    details: ApplicationDetails


@dataclass(frozen=True)
class OperationProgressEvent:
    phase: str
    message: str


@dataclass(frozen=True)
class ConfirmationRequiredEvent:
    operation: str
    message: str


@dataclass(frozen=True)
class ErrorEvent:
    category: str
    message: str
    details: str = ""
    severity: Severity = Severity.LOG


Event = ApplicationDataEvent | OperationProgressEvent | ConfirmationRequiredEvent | ErrorEvent


# =============================================================================
# CHANNEL
# =============================================================================


class ApplicationChannel:
    """Serves one application's detail view."""

    def __init__(
        self,
        name: str,
        namespace: str,
        context: str | None,
        queries: ResourceQueryService,
        tracker: OperationTracker,
        emit: Callable[[Event], None],
        guard: SafetyGuard,
        audit: AuditLogger,
    ) -> None:
        self.name = name
        self.namespace = namespace
        self.context = context
        self._queries = queries
        self._tracker = tracker
        self._emit = emit
        self._guard = guard
        self._audit = audit
        self._log = logger.bind(name=name, namespace=namespace, context=context)

    @property
    def target(self) -> str:
        return f"{self.namespace}/{self.name}@{self.context or 'current'}"

    async def handle(self, request: Request) -> None:
        """Process one request. Never raises for service errors; they are emitted."""
        set_correlation_id("")
        if isinstance(request, ReadyRequest):
            await self._load()
        elif isinstance(request, SyncRequest):
            await self._sync(request)
        elif isinstance(request, RefreshRequest):
            await self._refresh(hard=False)
        elif isinstance(request, HardRefreshRequest):
            await self._hard_refresh(request)
        else:
            raise TypeError(f"Unsupported request: {request!r}")

    async def _load(self) -> None:
        blocked = self._guard.check_read_operation("get_application")
        if blocked:
            self._emit_blocked(blocked)
            return
        try:
            application = await self._queries.get_application(self.name, self.namespace, self.context)
        except ArgocdError as e:
            self._log.warning("Loading application failed", category=e.category, error=e.message)
            self._emit_error(e)
            return
        self._emit(ApplicationDataEvent(application=application, details=describe_application(application)))

    async def _sync(self, request: SyncRequest) -> None:
        action = "sync_application"
        blocked = self._guard.check_write_operation(action)
        if blocked:
            self._audit.log_blocked(action, self.target, blocked.reason)
            self._emit_blocked(blocked)
            return

        self._emit(OperationProgressEvent(phase="Running", message="Syncing application..."))
        try:
            result = await self._tracker.sync_and_track(
                self.name,
                self.namespace,
                self.context,
                revision=request.revision,
                on_progress=self._on_progress,
            )
        except ArgocdError as e:
            self._audit.log_error(action, self.target, str(e))
            self._emit_error(e)
            return

        self._audit.log_write(
            action,
            self.target,
            "succeeded" if result.success else "failed",
            {"revision": request.revision, "message": result.message, "timed_out": result.timed_out},
        )
        if not result.success:
            self._emit(
                ErrorEvent(
                    category="timed_out" if result.timed_out else "operation_failed",
                    message=f"Sync failed: {result.message}",
                    severity=Severity.RETRY if result.timed_out else Severity.BANNER,
                )
            )
        await self._load()

    async def _refresh(self, hard: bool) -> None:
        action = "hard_refresh_application" if hard else "refresh_application"
        if not hard:
            blocked = self._guard.check_write_operation(action)
            if blocked:
                self._audit.log_blocked(action, self.target, blocked.reason)
                self._emit_blocked(blocked)
                return
        try:
            await self._queries.refresh_application(self.name, self.namespace, self.context, hard=hard)
        except ArgocdError as e:
            self._audit.log_error(action, self.target, str(e))
            self._emit_error(e)
            return
        self._audit.log_write(action, self.target, "triggered")
        await self._load()

    async def _hard_refresh(self, request: HardRefreshRequest) -> None:
        check = self._guard.check_hard_refresh(self.name, confirmed=request.confirmed)
        if isinstance(check, ConfirmationRequired):
            self._emit(ConfirmationRequiredEvent(operation=check.operation, message=check.format_message()))
            return
        if check is not None:
            self._audit.log_blocked(check.operation, self.target, check.reason)
            self._emit_blocked(check)
            return
        await self._refresh(hard=True)

    def _on_progress(self, operation: OperationState) -> None:
        self._emit(
            OperationProgressEvent(
                phase=str(operation.phase),
                message=operation.message or f"Operation {operation.phase}",
            )
        )

    def _emit_error(self, error: ArgocdError) -> None:
        self._emit(
            ErrorEvent(
                category=error.category,
                message=error.message,
                details=error.details,
                severity=error.severity,
            )
        )

    def _emit_blocked(self, blocked: OperationBlocked) -> None:
        self._emit(
            ErrorEvent(
                category="blocked",
                message=blocked.format_message(),
                details=blocked.reason,
                severity=Severity.BANNER,
            )
        )
