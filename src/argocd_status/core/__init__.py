# ABOUTME: Core package initialization for the ArgoCD status layer
# ABOUTME: Re-exports the services and models used by callers

"""
ArgoCD Status Core Package

Services are plain classes wired together by the caller (see
server.build_services); nothing in this package holds global state.
"""

from argocd_status.core.cache import TTLCache
from argocd_status.core.channel import (
    ApplicationChannel,
    ApplicationDataEvent,
    ConfirmationRequiredEvent,
    ErrorEvent,
    Event,
    HardRefreshRequest,
    OperationProgressEvent,
    ReadyRequest,
    RefreshRequest,
    Request,
    SyncRequest,
)
from argocd_status.core.detection import DetectionService
from argocd_status.core.errors import (
    ApplicationNotFoundError,
    ArgocdError,
    MalformedResourceError,
    NotFoundError,
    PermissionDeniedError,
    ToolUnavailableError,
    TransientError,
)
from argocd_status.core.models import (
    Application,
    DetectionMethod,
    HealthStatusCode,
    InstallationStatus,
    OperationPhase,
    OperationResult,
    SyncStatusCode,
)
from argocd_status.core.operator import OperatorStatusClient
from argocd_status.core.presentation import IconDescriptor, map_to_icon
from argocd_status.core.resources import ResourceQueryService
from argocd_status.core.tracker import OperationTracker

__all__ = [
    "Application",
    "ApplicationChannel",
    "ApplicationDataEvent",
    "ApplicationNotFoundError",
    "ArgocdError",
    "ConfirmationRequiredEvent",
    "DetectionMethod",
    "DetectionService",
    "ErrorEvent",
    "Event",
    "HardRefreshRequest",
    "HealthStatusCode",
    "IconDescriptor",
    "InstallationStatus",
    "MalformedResourceError",
    "NotFoundError",
    "OperationPhase",
    "OperationProgressEvent",
    "OperationResult",
    "OperationTracker",
    "OperatorStatusClient",
    "PermissionDeniedError",
    "ReadyRequest",
    "RefreshRequest",
    "Request",
    "ResourceQueryService",
    "SyncRequest",
    "SyncStatusCode",
    "TTLCache",
    "ToolUnavailableError",
    "TransientError",
    "map_to_icon",
]
