# ABOUTME: Maps sync and health status to icons, colors and display details
# ABOUTME: Pure functions with no I/O, total over every status combination

"""
Status presentation.

Icon ids and color tokens are VS Code theme names, the vocabulary tree views
and webviews already understand:

    check    testing.iconPassed        green
    error    testing.iconFailed        red
    sync     editorInfo.foreground     blue
    warning  editorWarning.foreground  orange
    warning  charts.yellow             yellow
    question / debug-pause             no color
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from argocd_status.core.models import HealthStatusCode, SyncStatusCode

if TYPE_CHECKING:
    from argocd_status.core.models import Application, ResourceStatus

GREEN = "testing.iconPassed"
RED = "testing.iconFailed"
BLUE = "editorInfo.foreground"
ORANGE = "editorWarning.foreground"
YELLOW = "charts.yellow"


@dataclass(frozen=True)
class IconDescriptor:
    icon_id: str
    color_token: str | None = None


CHECK_GREEN = IconDescriptor("check", GREEN)
ERROR_RED = IconDescriptor("error", RED)
SYNC_BLUE = IconDescriptor("sync", BLUE)
WARNING_ORANGE = IconDescriptor("warning", ORANGE)
WARNING_YELLOW = IconDescriptor("warning", YELLOW)
PAUSED = IconDescriptor("debug-pause")
QUESTION = IconDescriptor("question")


def map_to_icon(sync: SyncStatusCode | str, health: HealthStatusCode | str) -> IconDescriptor:
    """
    Combined icon for an application.

    Health Missing and Suspended win over any sync status. Otherwise the sync
    status picks the icon and health picks its severity. Unrecognized strings
    are treated as Unknown, so every input has an answer.

    Example:
        map_to_icon("OutOfSync", "Healthy")   # warning, yellow
        map_to_icon("OutOfSync", "Degraded")  # warning, orange
    """
    sync = SyncStatusCode.parse(sync)
    health = HealthStatusCode.parse(health)

    if health is HealthStatusCode.MISSING:
        return ERROR_RED
    if health is HealthStatusCode.SUSPENDED:
        return PAUSED

    if sync is SyncStatusCode.UNKNOWN:
        return ERROR_RED if health is HealthStatusCode.DEGRADED else QUESTION

    if sync is SyncStatusCode.SYNCED:
        if health is HealthStatusCode.PROGRESSING:
            return SYNC_BLUE
        if health is HealthStatusCode.DEGRADED:
            return WARNING_ORANGE
        return CHECK_GREEN

    # OutOfSync
    return WARNING_YELLOW if health is HealthStatusCode.HEALTHY else WARNING_ORANGE


_SYNC_BADGES = {
    SyncStatusCode.SYNCED: CHECK_GREEN,
    SyncStatusCode.OUT_OF_SYNC: WARNING_ORANGE,
    SyncStatusCode.UNKNOWN: QUESTION,
}

_HEALTH_BADGES = {
    HealthStatusCode.HEALTHY: IconDescriptor("heart", GREEN),
    HealthStatusCode.DEGRADED: ERROR_RED,
    HealthStatusCode.MISSING: ERROR_RED,
    HealthStatusCode.PROGRESSING: SYNC_BLUE,
    HealthStatusCode.SUSPENDED: PAUSED,
    HealthStatusCode.UNKNOWN: QUESTION,
}


def sync_status_icon(sync: SyncStatusCode | str) -> IconDescriptor:
    """Badge for the sync status alone."""
    return _SYNC_BADGES[SyncStatusCode.parse(sync)]


def health_status_icon(health: HealthStatusCode | str) -> IconDescriptor:
    """Badge for the health status alone."""
    return _HEALTH_BADGES[HealthStatusCode.parse(health)]


def format_relative_time(when: datetime, now: datetime) -> str:
    """
    Format a past time relative to now.

    Example:
        format_relative_time(now - timedelta(hours=2), now)  # "2 hours ago"
    """
    seconds = int((now - when).total_seconds())
    if seconds < 60:
        return "just now"
    for unit, size in (("day", 86400), ("hour", 3600), ("minute", 60)):
        if seconds >= size:
            count = seconds // size
            return f"{count} {unit}{'s' if count != 1 else ''} ago"
    return "just now"


@dataclass(frozen=True)
class ApplicationDetails:
    """Everything a detail view or tooltip shows about an application."""

    icon: IconDescriptor
    sync_icon: IconDescriptor
    health_icon: IconDescriptor
    short_revision: str
    last_sync_relative: str | None
    out_of_sync_resources: tuple[ResourceStatus, ...]
    synced_resources: tuple[ResourceStatus, ...]
    tooltip: str


def describe_application(app: Application, now: datetime | None = None) -> ApplicationDetails:
    now = now or datetime.now(UTC)
    sync = app.sync_status.status
    health = app.health_status.status

    tooltip_lines = [
        f"Application: {app.name}",
        f"Namespace: {app.namespace}",
        f"Sync Status: {sync}",
        f"Health Status: {health}",
        f"Revision: {app.sync_status.revision or 'N/A'}",
    ]
    if app.health_status.message:
        tooltip_lines.append(f"Health Message: {app.health_status.message}")

    return ApplicationDetails(
        icon=map_to_icon(sync, health),
        sync_icon=sync_status_icon(sync),
        health_icon=health_status_icon(health),
        short_revision=app.sync_status.revision[:7],
        last_sync_relative=format_relative_time(app.synced_at, now) if app.synced_at else None,
        out_of_sync_resources=tuple(r for r in app.resources if r.sync_status == SyncStatusCode.OUT_OF_SYNC),
        synced_resources=tuple(r for r in app.resources if r.sync_status == SyncStatusCode.SYNCED),
        tooltip="\n".join(tooltip_lines),
    )
