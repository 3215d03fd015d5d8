# ABOUTME: Detects whether ArgoCD is installed in a kube context
# ABOUTME: Trusts the operator report first, falls back to the Application CRD

"""
ArgoCD installation detection.

=============================================================================
DETECTION ORDER
=============================================================================

1. CACHE: "detection:<context>" for five minutes (unless bypass_cache)

2. OPERATOR REPORT (primary source): if the operator status carries an
   "argocd" object with a boolean "detected", that answer is final, whether
   it says installed or not. The fallback is not consulted.

3. CRD CHECK (fallback): used only when there is no operator report.

       kubectl get crd applications.argoproj.io -o json

   - found      -> installed; then look for the argocd-server deployment
                   to fill in namespace and version (best effort)
   - NotFound   -> not installed, cached like any other result
   - anything else (Forbidden, timeout, unreachable cluster) is raised.
     An outage must never be cached as "ArgoCD is not installed".
"""

from __future__ import annotations

import re
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

import structlog

from argocd_status.core.cache import DETECTION_PREFIX, OPERATOR_PREFIX, detection_key
from argocd_status.core.errors import classify_command_error
from argocd_status.core.models import DetectionMethod, InstallationStatus
from argocd_status.utils.runner import CommandError, CommandErrorKind

if TYPE_CHECKING:
    from collections.abc import Callable

    from argocd_status.config import Settings
    from argocd_status.core.cache import TTLCache
    from argocd_status.core.operator import OperatorStatusClient
    from argocd_status.utils.runner import CommandRunner

logger = structlog.get_logger(__name__)

APPLICATION_CRD = "applications.argoproj.io"
SERVER_SELECTOR = "app.kubernetes.io/name=argocd-server"
VERSION_LABEL = "app.kubernetes.io/version"

_SEMVER = re.compile(r"^\d+\.\d+\.\d+")


def version_from_image(image: str) -> str | None:
    """
    Extract a version from a container image reference.

    Example:
        version_from_image("quay.io/argoproj/argocd:2.9.3")  # "v2.9.3"
        version_from_image("quay.io/argoproj/argocd:v2.9.3") # "v2.9.3"
        version_from_image("argocd")                         # None
    """
    name = image.split("@", 1)[0].rsplit("/", 1)[-1]
    _, sep, tag = name.partition(":")
    if not sep or not tag:
        return None
    if _SEMVER.match(tag):
        return f"v{tag}"
    return tag


def _dig(value: Any, *keys: str) -> Any:
    for key in keys:
        if not isinstance(value, dict):
            return None
        value = value.get(key)
    return value


class DetectionService:
    """Answers "is ArgoCD installed here?" for each kube context."""

    def __init__(
        self,
        runner: CommandRunner,
        cache: TTLCache,
        operator: OperatorStatusClient,
        settings: Settings,
        now: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        self._runner = runner
        self._cache = cache
        self._operator = operator
        self._settings = settings
        self._now = now

    async def is_installed(self, context: str | None, bypass_cache: bool = False) -> InstallationStatus:
        """
        Detect ArgoCD in a kube context.

        Args:
            context: kube context name (None = kubectl's current context)
            bypass_cache: Ignore a cached answer and query the cluster

        Returns:
            InstallationStatus, cached for the detection TTL

        Raises:
            PermissionDeniedError: The CRD check was forbidden
            TransientError: The cluster could not be queried
            ToolUnavailableError: kubectl is not installed
        """
        key = detection_key(context)
        if not bypass_cache:
            cached = self._cache.get(key)
            if cached is not None:
                return cached

        status = await self._from_operator(context, bypass_cache)
        if status is None:
            status = await self._from_crd(context)

        self._cache.set(key, status, self._settings.detection_ttl)
        logger.info(
            "ArgoCD detection complete",
            context=context,
            installed=status.installed,
            method=str(status.detection_method),
            namespace=status.namespace,
        )
        return status

    async def _from_operator(self, context: str | None, force_refresh: bool) -> InstallationStatus | None:
        operator_status = await self._operator.get_status(context, force_refresh=force_refresh)
        if operator_status is None or operator_status.argocd is None:
            return None

        report = operator_status.argocd
        last_checked = report.last_checked or self._now()
        if not report.detected:
            return InstallationStatus(
                installed=False,
                detection_method=DetectionMethod.PRIMARY_SOURCE,
                last_checked=last_checked,
            )
        return InstallationStatus(
            installed=True,
            detection_method=DetectionMethod.PRIMARY_SOURCE,
            namespace=report.namespace,
            version=report.version,
            last_checked=last_checked,
        )

    async def _from_crd(self, context: str | None) -> InstallationStatus:
        try:
            crd = await self._runner.run_json(["get", "crd", APPLICATION_CRD, "-o", "json"], context=context)
        except CommandError as e:
            if e.kind is CommandErrorKind.NOT_FOUND:
                return InstallationStatus(
                    installed=False,
                    detection_method=DetectionMethod.FALLBACK_QUERY,
                    last_checked=self._now(),
                )
            logger.warning("ArgoCD CRD check failed", context=context, kind=str(e.kind))
            raise classify_command_error(e) from e

        metadata = crd.get("metadata")
        if not isinstance(metadata, dict) or metadata.get("name") != APPLICATION_CRD:
            logger.warning("Unexpected CRD returned for ArgoCD check", context=context)
            return InstallationStatus(
                installed=False,
                detection_method=DetectionMethod.FALLBACK_QUERY,
                last_checked=self._now(),
            )

        namespace, version = await self._discover_server(context)
        return InstallationStatus(
            installed=True,
            detection_method=DetectionMethod.FALLBACK_QUERY,
            namespace=namespace,
            version=version,
            last_checked=self._now(),
        )

    async def _discover_server(self, context: str | None) -> tuple[str | None, str | None]:
        """Find the argocd-server deployment. Returns (None, None) on any failure."""
        try:
            response = await self._runner.run_json(
                ["get", "deployments", "--all-namespaces", f"--selector={SERVER_SELECTOR}", "-o", "json"],
                context=context,
            )
        except CommandError as e:
            logger.info("ArgoCD server discovery failed", context=context, kind=str(e.kind))
            return None, None

        items = response.get("items")
        if not isinstance(items, list) or not items or not isinstance(items[0], dict):
            return None, None

        deployment = items[0]
        namespace = _dig(deployment, "metadata", "namespace")
        version = _dig(deployment, "metadata", "labels", VERSION_LABEL)
        if not isinstance(version, str) or not version:
            containers = _dig(deployment, "spec", "template", "spec", "containers")
            image = _dig(containers[0], "image") if isinstance(containers, list) and containers else None
            version = version_from_image(image) if isinstance(image, str) else None

        return (namespace if isinstance(namespace, str) and namespace else None), version

    def clear_cache(self, context: str | None) -> None:
        """Forget the detection result and operator report for one context."""
        self._cache.invalidate(detection_key(context))
        self._operator.clear_cache(context)

    def clear_all_cache(self) -> None:
        self._cache.invalidate_prefix(DETECTION_PREFIX)
        self._cache.invalidate_prefix(OPERATOR_PREFIX)
