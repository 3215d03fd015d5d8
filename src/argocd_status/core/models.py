# ABOUTME: Typed models for ArgoCD applications, operations and installation status
# ABOUTME: Includes total parsers that turn kubectl JSON into these models without raising

"""
Data model for the status layer.

=============================================================================
WHAT IS THIS FILE?
=============================================================================

kubectl returns ArgoCD Applications as loosely structured JSON:

    {
        "metadata": {"name": "guestbook", "namespace": "argocd", ...},
        "spec": {
            "project": "default",
            "source": {"repoURL": "...", "path": "...", "targetRevision": "HEAD"},
            "destination": {"server": "https://kubernetes.default.svc", ...}
        },
        "status": {
            "sync": {"status": "Synced", "revision": "4f2c...", ...},
            "health": {"status": "Healthy"},
            "resources": [{"kind": "Deployment", "name": "web", ...}],
            "operationState": {"phase": "Succeeded", "startedAt": "...", ...}
        }
    }

This module defines the typed records the rest of the package works with,
and the parsers that build them.

=============================================================================
TOTAL PARSING
=============================================================================

Every field is read leniently. A missing or mistyped field becomes a
defined default (Unknown, "", None, []), and an enum value ArgoCD adds in a
future release becomes Unknown. Only a record without metadata.name or
metadata.namespace is rejected: parse_application returns None and logs a
warning, and parse_applications skips it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

import structlog

logger = structlog.get_logger(__name__)


# =============================================================================
# STATUS ENUMS
# =============================================================================


class _LenientEnum(StrEnum):
    """StrEnum that maps unrecognized values to its UNKNOWN member."""

    @classmethod
    def parse(cls, value: Any) -> Any:
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            return cls["UNKNOWN"]


class SyncStatusCode(_LenientEnum):
    SYNCED = "Synced"
    OUT_OF_SYNC = "OutOfSync"
    UNKNOWN = "Unknown"


class HealthStatusCode(_LenientEnum):
    HEALTHY = "Healthy"
    DEGRADED = "Degraded"
    PROGRESSING = "Progressing"
    SUSPENDED = "Suspended"
    MISSING = "Missing"
    UNKNOWN = "Unknown"


class OperationPhase(StrEnum):
    RUNNING = "Running"
    TERMINATING = "Terminating"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"
    ERROR = "Error"


TERMINAL_PHASES = frozenset({OperationPhase.SUCCEEDED, OperationPhase.FAILED, OperationPhase.ERROR})


class DetectionMethod(StrEnum):
    """Which source decided an InstallationStatus."""

    PRIMARY_SOURCE = "operator"
    FALLBACK_QUERY = "crd"


# =============================================================================
# APPLICATION RECORDS
# =============================================================================


@dataclass(frozen=True)
class SourceRef:
    """Where an application's manifests come from."""

    repo_url: str = ""
    path: str = ""
    target_revision: str = ""
    chart: str | None = None


@dataclass(frozen=True)
class SyncStatus:
    status: SyncStatusCode = SyncStatusCode.UNKNOWN
    revision: str = ""
    target: SourceRef = field(default_factory=SourceRef)


@dataclass(frozen=True)
class HealthStatus:
    status: HealthStatusCode = HealthStatusCode.UNKNOWN
    message: str | None = None


@dataclass(frozen=True)
class ResourceStatus:
    """Sync and health of one resource managed by an application."""

    kind: str
    name: str
    namespace: str
    sync_status: str
    health_status: HealthStatusCode | None = None
    message: str | None = None
    requires_pruning: bool = False


@dataclass(frozen=True)
class OperationState:
    """
    The application's current or most recent operation.

    Once the phase is terminal, finished_at is always set.
    """

    phase: OperationPhase
    started_at: datetime
    message: str | None = None
    finished_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.phase in TERMINAL_PHASES


@dataclass(frozen=True, eq=False)
class Application:
    """
    Observed state of an ArgoCD Application.

    Applications are refetched on every query and have no identity across
    fetches other than (name, namespace). Equality and hashing use that key,
    so a tree view can diff two fetches without comparing every field.
    """

    name: str
    namespace: str
    project: str = "default"
    sync_status: SyncStatus = field(default_factory=SyncStatus)
    health_status: HealthStatus = field(default_factory=HealthStatus)
    resources: tuple[ResourceStatus, ...] = ()
    last_operation: OperationState | None = None
    destination_server: str = ""
    destination_namespace: str = ""
    created_at: datetime | None = None
    synced_at: datetime | None = None

    @property
    def key(self) -> tuple[str, str]:
        return (self.name, self.namespace)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Application):
            return NotImplemented
        return self.key == other.key

    def __hash__(self) -> int:
        return hash(self.key)


# =============================================================================
# INSTALLATION AND OPERATION RESULTS
# =============================================================================


@dataclass(frozen=True)
class InstallationStatus:
    """
    Whether ArgoCD is installed in a cluster, and where.

    namespace and version may be None even when installed is True: discovery
    of the argocd-server deployment is best effort.
    """

    installed: bool
    detection_method: DetectionMethod
    namespace: str | None = None
    version: str | None = None
    last_checked: datetime | None = None

    def effective_namespace(self, default: str = "argocd") -> str:
        """Namespace to query, falling back to the conventional one."""
        return self.namespace or default


@dataclass(frozen=True)
class OperationResult:
    """Outcome of tracking an operation to completion."""

    success: bool
    message: str
    phase: OperationPhase | None = None
    timed_out: bool = False


# =============================================================================
# PARSING
# =============================================================================


def _mapping(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _string(value: Any, default: str = "") -> str:
    return value if isinstance(value, str) else default


def _optional_string(value: Any) -> str | None:
    return value if isinstance(value, str) and value else None


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an RFC 3339 timestamp such as "2024-01-15T10:30:00Z"; None if unparseable."""
    if not isinstance(value, str) or not value:
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return None
    # Kubernetes timestamps are UTC; a missing offset means UTC
    return parsed if parsed.tzinfo is not None else parsed.replace(tzinfo=UTC)


def _parse_source(raw: Any) -> SourceRef:
    source = _mapping(raw)
    return SourceRef(
        repo_url=_string(source.get("repoURL")),
        path=_string(source.get("path")),
        target_revision=_string(source.get("targetRevision")),
        chart=_optional_string(source.get("chart")),
    )


def _parse_resource(raw: Any) -> ResourceStatus | None:
    if not isinstance(raw, dict):
        return None
    health = raw.get("health")
    health_status = None
    health_message = None
    if isinstance(health, dict):
        health_status = HealthStatusCode.parse(health.get("status"))
        health_message = _optional_string(health.get("message"))
    return ResourceStatus(
        kind=_string(raw.get("kind")),
        name=_string(raw.get("name")),
        namespace=_string(raw.get("namespace")),
        sync_status=_string(raw.get("status"), "Unknown"),
        health_status=health_status,
        message=health_message,
        requires_pruning=raw.get("requiresPruning") is True,
    )


def _parse_operation(raw: Any) -> OperationState | None:
    """
    Parse status.operationState.

    An operation without a recognizable phase or start time carries no usable
    progress information and is treated as absent.
    """
    state = _mapping(raw)
    if not state:
        return None
    try:
        phase = OperationPhase(state.get("phase"))
    except ValueError:
        return None
    started_at = parse_timestamp(state.get("startedAt"))
    if started_at is None:
        return None
    finished_at = parse_timestamp(state.get("finishedAt"))
    if phase in TERMINAL_PHASES and finished_at is None:
        finished_at = started_at
    return OperationState(
        phase=phase,
        started_at=started_at,
        message=_optional_string(state.get("message")),
        finished_at=finished_at,
    )


def parse_application(raw: Any) -> Application | None:
    """
    Build an Application from one kubectl JSON object.

    Never raises. Returns None, with a warning logged, when the record is not
    an object or has no metadata.name / metadata.namespace.
    """
    if not isinstance(raw, dict):
        logger.warning("Skipping malformed application record", reason="not an object")
        return None

    metadata = _mapping(raw.get("metadata"))
    name = _string(metadata.get("name"))
    namespace = _string(metadata.get("namespace"))
    if not name or not namespace:
        logger.warning(
            "Skipping malformed application record",
            reason="missing metadata.name or metadata.namespace",
            name=name or None,
        )
        return None

    spec = _mapping(raw.get("spec"))
    status = _mapping(raw.get("status"))
    sync = _mapping(status.get("sync"))
    health = _mapping(status.get("health"))
    destination = _mapping(spec.get("destination"))

    # comparedTo.source is what ArgoCD compared against; spec.source is the fallback
    compared_to = _mapping(sync.get("comparedTo"))
    target = _parse_source(compared_to.get("source") or spec.get("source"))

    raw_resources = status.get("resources")
    resources = tuple(
        resource
        for resource in (
            _parse_resource(item) for item in (raw_resources if isinstance(raw_resources, list) else [])
        )
        if resource is not None
    )

    last_operation = _parse_operation(status.get("operationState"))
    synced_at = None
    if last_operation is not None and last_operation.phase is OperationPhase.SUCCEEDED:
        synced_at = last_operation.finished_at

    return Application(
        name=name,
        namespace=namespace,
        project=_string(spec.get("project"), "default"),
        sync_status=SyncStatus(
            status=SyncStatusCode.parse(sync.get("status")),
            revision=_string(sync.get("revision")),
            target=target,
        ),
        health_status=HealthStatus(
            status=HealthStatusCode.parse(health.get("status")),
            message=_optional_string(health.get("message")),
        ),
        resources=resources,
        last_operation=last_operation,
        destination_server=_string(destination.get("server")),
        destination_namespace=_string(destination.get("namespace")),
        created_at=parse_timestamp(metadata.get("creationTimestamp")),
        synced_at=synced_at,
    )


def parse_applications(items: Any) -> list[Application]:
    """Parse the items of an ApplicationList, skipping malformed records."""
    if not isinstance(items, list):
        return []
    parsed = (parse_application(item) for item in items)
    return [app for app in parsed if app is not None]
