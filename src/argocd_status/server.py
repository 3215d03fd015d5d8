# ABOUTME: FastMCP server and composition root for the ArgoCD status services
# ABOUTME: Builds the services once per server lifetime and exposes them as MCP tools

"""ArgoCD status server - installation detection, application status and tracked syncs."""

from __future__ import annotations

import sys
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import structlog
from mcp.server.fastmcp import Context, FastMCP
from pydantic import BaseModel, Field

from argocd_status.config import Settings, load_settings
from argocd_status.core.cache import TTLCache
from argocd_status.core.detection import DetectionService
from argocd_status.core.errors import ArgocdError
from argocd_status.core.operator import OperatorStatusClient
from argocd_status.core.presentation import describe_application, map_to_icon
from argocd_status.core.resources import ResourceQueryService
from argocd_status.core.tracker import OperationTracker
from argocd_status.utils.logging import AuditLogger, configure_logging, set_correlation_id
from argocd_status.utils.runner import CommandRunner
from argocd_status.utils.safety import ConfirmationRequired, SafetyGuard

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from argocd_status.core.models import Application

MCPContext = Context[Any, Any]

logger = structlog.get_logger(__name__)


# =============================================================================
# COMPOSITION ROOT
# =============================================================================


@dataclass
class CoreServices:
    """Every long-lived object, built once and shared by all tools."""

    settings: Settings
    runner: CommandRunner
    cache: TTLCache
    operator: OperatorStatusClient
    detection: DetectionService
    queries: ResourceQueryService
    tracker: OperationTracker
    guard: SafetyGuard
    audit: AuditLogger


def build_services(settings: Settings, runner: CommandRunner | None = None) -> CoreServices:
    """Wire the services together. Tests pass a fake runner."""
    runner = runner or CommandRunner(settings)
    cache = TTLCache()
    operator = OperatorStatusClient(runner, cache, settings)
    detection = DetectionService(runner, cache, operator, settings)
    queries = ResourceQueryService(runner, cache, detection, settings)
    return CoreServices(
        settings=settings,
        runner=runner,
        cache=cache,
        operator=operator,
        detection=detection,
        queries=queries,
        tracker=OperationTracker(queries, settings),
        guard=SafetyGuard(settings.security),
        audit=AuditLogger(settings.security.audit_log),
    )


@asynccontextmanager
async def lifespan(_server: FastMCP) -> AsyncIterator[dict[str, Any]]:
    """Load configuration and build the services for the server's lifetime."""
    settings = load_settings()
    configure_logging(level=settings.log_level, json_output=settings.json_logs)
    logger.info(
        "Starting ArgoCD status server",
        kubectl=settings.kubectl_path,
        read_only=settings.security.read_only,
    )

    services = build_services(settings)
    yield {"services": services}

    services.cache.clear()
    logger.info("ArgoCD status server stopped")


mcp = FastMCP("argocd-status", lifespan=lifespan)


def get_services(ctx: MCPContext) -> CoreServices:
    """Get the services built by the lifespan."""
    lifespan_context = ctx.request_context.lifespan_context
    services = lifespan_context.get("services") if isinstance(lifespan_context, dict) else None
    if services is None:
        raise RuntimeError("Server not initialized")
    return services


def _begin(ctx: MCPContext) -> None:
    set_correlation_id(str(ctx.request_id) if hasattr(ctx, "request_id") else "")


def _target(name: str, namespace: str, context: str | None) -> str:
    return f"{namespace}/{name}@{context or 'current'}"


async def _resolve_namespace(services: CoreServices, namespace: str | None, context: str | None) -> str:
    """Use the given namespace, else the one ArgoCD was detected in."""
    if namespace:
        return namespace
    status = await services.detection.is_installed(context)
    return status.effective_namespace(services.settings.default_argocd_namespace)


def _format_error(error: ArgocdError) -> str:
    lines = [f"ERROR ({error.category}): {error.message}"]
    if error.details:
        lines.append(f"Details: {error.details}")
    return "\n".join(lines)


def _summary_line(app: Application) -> str:
    icon = map_to_icon(app.sync_status.status, app.health_status.status)
    return (
        f"- {app.namespace}/{app.name} [{app.project}] "
        f"sync={app.sync_status.status} health={app.health_status.status} "
        f"icon={icon.icon_id}"
    )


# =============================================================================
# READ OPERATIONS
# =============================================================================


class InstallationStatusParams(BaseModel):
    """Parameters for argocd_installation_status tool."""

    context: str | None = Field(default=None, description="kube context (default: current context)")
    refresh: bool = Field(default=False, description="Ignore cached detection results")


@mcp.tool()
async def argocd_installation_status(params: InstallationStatusParams, ctx: MCPContext) -> str:
    """
    Check whether ArgoCD is installed in a cluster.

    Uses the in-cluster operator's report when available, otherwise checks
    for the Application CRD and the argocd-server deployment.
    """
    _begin(ctx)
    services = get_services(ctx)

    blocked = services.guard.check_read_operation("installation_status")
    if blocked:
        return blocked.format_message()

    try:
        status = await services.detection.is_installed(params.context, bypass_cache=params.refresh)
    except ArgocdError as e:
        return _format_error(e)

    lines = [
        f"ArgoCD installed: {'yes' if status.installed else 'no'}",
        f"Detected via: {status.detection_method}",
    ]
    if status.installed:
        lines.append(f"Namespace: {status.namespace or 'unknown'}")
        lines.append(f"Version: {status.version or 'unknown'}")
    if status.last_checked:
        lines.append(f"Last checked: {status.last_checked.isoformat()}")
    return "\n".join(lines)


class ListApplicationsParams(BaseModel):
    """Parameters for list_argocd_applications tool."""

    context: str | None = Field(default=None, description="kube context (default: current context)")
    refresh: bool = Field(default=False, description="Ignore the cached application list")
    health_status: str | None = Field(
        default=None,
        description="Filter by health status (Healthy, Degraded, Progressing, Suspended, Missing, Unknown)",
    )
    sync_status: str | None = Field(default=None, description="Filter by sync status (Synced, OutOfSync, Unknown)")


@mcp.tool()
async def list_argocd_applications(params: ListApplicationsParams, ctx: MCPContext) -> str:
    """
    List ArgoCD applications with their sync and health status.

    Results are cached for a short time; set refresh=true for live data.
    """
    _begin(ctx)
    services = get_services(ctx)

    blocked = services.guard.check_read_operation("list_applications")
    if blocked:
        return blocked.format_message()

    try:
        apps = await services.queries.list_applications(params.context, bypass_cache=params.refresh)
    except ArgocdError as e:
        return _format_error(e)

    if params.health_status:
        apps = [a for a in apps if a.health_status.status == params.health_status]
    if params.sync_status:
        apps = [a for a in apps if a.sync_status.status == params.sync_status]

    if not apps:
        return "No applications found."

    lines = [f"Found {len(apps)} application(s):", ""]
    lines.extend(_summary_line(app) for app in apps)
    return "\n".join(lines)


class GetApplicationParams(BaseModel):
    """Parameters for get_argocd_application tool."""

    name: str = Field(description="Application name")
    namespace: str | None = Field(
        default=None,
        description="Namespace of the Application resource (default: where ArgoCD was detected)",
    )
    context: str | None = Field(default=None, description="kube context (default: current context)")


@mcp.tool()
async def get_argocd_application(params: GetApplicationParams, ctx: MCPContext) -> str:
    """
    Get live details for one ArgoCD application.

    Always reads from the cluster; the list cache is not used.
    """
    _begin(ctx)
    services = get_services(ctx)

    blocked = services.guard.check_read_operation("get_application")
    if blocked:
        return blocked.format_message()

    try:
        namespace = await _resolve_namespace(services, params.namespace, params.context)
        app = await services.queries.get_application(params.name, namespace, params.context)
    except ArgocdError as e:
        return _format_error(e)

    details = describe_application(app)
    source = app.sync_status.target
    lines = [
        f"Application: {app.name}",
        f"Project: {app.project}",
        f"Namespace: {app.namespace}",
        "",
        "Source:",
        f"  Repository: {source.repo_url}",
        f"  Path: {source.path}",
        f"  Target Revision: {source.target_revision}",
        "",
        "Destination:",
        f"  Server: {app.destination_server}",
        f"  Namespace: {app.destination_namespace}",
        "",
        "Status:",
        f"  Sync: {app.sync_status.status} (revision {details.short_revision or 'N/A'})",
        f"  Health: {app.health_status.status}",
    ]
    if app.health_status.message:
        lines.append(f"  Health Message: {app.health_status.message}")
    if details.last_sync_relative:
        lines.append(f"  Last Synced: {details.last_sync_relative}")
    if app.last_operation:
        lines.extend(
            [
                "",
                "Last Operation:",
                f"  Phase: {app.last_operation.phase}",
                f"  Message: {app.last_operation.message or 'N/A'}",
            ]
        )
    if details.out_of_sync_resources:
        lines.extend(["", f"Out of sync resources ({len(details.out_of_sync_resources)}):"])
        for res in details.out_of_sync_resources:
            prune = " (requires pruning)" if res.requires_pruning else ""
            lines.append(f"  ~ {res.kind}/{res.name}{prune}")
    return "\n".join(lines)


# =============================================================================
# WRITE OPERATIONS (Blocked in read-only mode)
# =============================================================================


class SyncApplicationParams(BaseModel):
    """Parameters for sync_argocd_application tool."""

    name: str = Field(description="Application name")
    namespace: str | None = Field(
        default=None,
        description="Namespace of the Application resource (default: where ArgoCD was detected)",
    )
    context: str | None = Field(default=None, description="kube context (default: current context)")
    revision: str | None = Field(default=None, description="Git revision to sync to")
    wait: bool = Field(default=True, description="Track the sync until it finishes")
    timeout_seconds: float | None = Field(default=None, gt=0, description="Tracking timeout in seconds")


@mcp.tool()
async def sync_argocd_application(params: SyncApplicationParams, ctx: MCPContext) -> str:
    """
    Sync an application with its Git source.

    With wait=true (default) the sync is tracked until it succeeds, fails
    or the timeout elapses.
    """
    _begin(ctx)
    services = get_services(ctx)
    target = _target(params.name, params.namespace or "-", params.context)

    blocked = services.guard.check_write_operation("sync_application")
    if blocked:
        services.audit.log_blocked("sync_application", target, blocked.reason)
        return blocked.format_message()

    try:
        namespace = await _resolve_namespace(services, params.namespace, params.context)
        target = _target(params.name, namespace, params.context)
        if not params.wait:
            await services.queries.sync_application(params.name, namespace, params.context, revision=params.revision)
            services.audit.log_write("sync_application", target, "triggered", {"revision": params.revision})
            return f"Sync triggered for '{params.name}' (revision: {params.revision or 'target'})"

        await ctx.report_progress(0, 1, f"Syncing {params.name}")
        result = await services.tracker.sync_and_track(
            params.name,
            namespace,
            params.context,
            revision=params.revision,
            timeout_seconds=params.timeout_seconds,
        )
        await ctx.report_progress(1, 1, "Sync finished")
    except ArgocdError as e:
        services.audit.log_error("sync_application", target, str(e))
        return _format_error(e)

    services.audit.log_write(
        "sync_application",
        target,
        "succeeded" if result.success else "failed",
        {"revision": params.revision, "message": result.message, "timed_out": result.timed_out},
    )
    if result.success:
        return f"Sync of '{params.name}' succeeded: {result.message}"
    if result.timed_out:
        return f"Sync of '{params.name}' timed out; it may still be running in ArgoCD"
    return f"Sync of '{params.name}' failed ({result.phase}): {result.message}"


class RefreshApplicationParams(BaseModel):
    """Parameters for refresh_argocd_application tool."""

    name: str = Field(description="Application name")
    namespace: str | None = Field(
        default=None,
        description="Namespace of the Application resource (default: where ArgoCD was detected)",
    )
    context: str | None = Field(default=None, description="kube context (default: current context)")
    hard: bool = Field(default=False, description="Discard ArgoCD's manifest cache (requires confirm)")
    confirm: bool = Field(default=False, description="Confirm a hard refresh")


@mcp.tool()
async def refresh_argocd_application(params: RefreshApplicationParams, ctx: MCPContext) -> str:
    """
    Make ArgoCD re-read an application's source.

    A hard refresh also clears ArgoCD's manifest cache and requires confirm=true.
    """
    _begin(ctx)
    services = get_services(ctx)
    target = _target(params.name, params.namespace or "-", params.context)
    action = "hard_refresh_application" if params.hard else "refresh_application"

    if params.hard:
        check = services.guard.check_hard_refresh(params.name, confirmed=params.confirm)
    else:
        check = services.guard.check_write_operation(action)
    if isinstance(check, ConfirmationRequired):
        return check.format_message()
    if check:
        services.audit.log_blocked(action, target, check.reason)
        return check.format_message()

    try:
        namespace = await _resolve_namespace(services, params.namespace, params.context)
        target = _target(params.name, namespace, params.context)
        await services.queries.refresh_application(params.name, namespace, params.context, hard=params.hard)
    except ArgocdError as e:
        services.audit.log_error(action, target, str(e))
        return _format_error(e)

    services.audit.log_write(action, target, "triggered")
    return f"{'Hard refresh' if params.hard else 'Refresh'} triggered for '{params.name}'"


# =============================================================================
# RESOURCES
# =============================================================================


@mcp.resource("argocd-status://settings")
async def get_settings_resource() -> str:
    """Get the effective configuration."""
    settings = load_settings()
    sec = settings.security
    return (
        "ArgoCD Status Settings:\n"
        f"  kubectl: {settings.kubectl_path}\n"
        f"  Command timeout: {settings.command_timeout}s\n"
        f"  Detection cache: {settings.detection_ttl}s\n"
        f"  Application cache: {settings.applications_ttl}s\n"
        f"  Poll interval: {settings.poll_interval}s\n"
        f"  Operation timeout: {settings.operation_timeout}s\n"
        f"  Read-only mode: {sec.read_only}\n"
        f"  Rate limit: {sec.rate_limit_calls} calls per {sec.rate_limit_window}s"
    )


# =============================================================================
# MAIN ENTRY POINT
# =============================================================================


def main() -> None:
    """Run the ArgoCD status MCP server."""
    configure_logging(level="INFO")
    logger.info("ArgoCD status server starting")

    try:
        mcp.run()
    except KeyboardInterrupt:
        logger.info("Server interrupted")
        sys.exit(0)
    except Exception as e:
        logger.error("Server error", error=str(e))
        sys.exit(1)


if __name__ == "__main__":
    main()
