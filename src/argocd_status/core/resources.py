# ABOUTME: Lists and fetches ArgoCD Applications through kubectl, with caching
# ABOUTME: Triggers sync and refresh, and falls back to stale data on transient failures

"""
ArgoCD Application queries and actions.

=============================================================================
CACHING RULES
=============================================================================

list_applications   cached under "applications:<context>" for 30 seconds.
                    On a TransientError the last cached list is served even
                    when expired. Permission and not-found errors are raised.
get_application     never cached; detail views always see the latest state.
sync / refresh      invalidate "applications:<context>" on success.

=============================================================================
KUBECTL COMMANDS
=============================================================================

    kubectl get applications.argoproj.io -n <ns> -o json
    kubectl get applications.argoproj.io --all-namespaces -o json
    kubectl get applications.argoproj.io <name> -n <ns> -o json
    kubectl patch applications.argoproj.io <name> -n <ns> --type merge -p <operation>
    kubectl annotate applications.argoproj.io <name> -n <ns> \\
        argocd.argoproj.io/refresh=normal|hard --overwrite

ArgoCD starts a sync when the Application's "operation" field is set, and
re-reads the source (refresh) when the refresh annotation appears. Neither
command returns the outcome; OperationTracker polls for it.

Only refresh uses the annotation form: a refresh annotation leaves no
status.operationState behind, and the patched "operation" field is what makes
ArgoCD record one for the tracker to follow.
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

import structlog

from argocd_status.core.cache import APPLICATIONS_PREFIX, applications_key
from argocd_status.core.errors import (
    ApplicationNotFoundError,
    MalformedResourceError,
    TransientError,
    classify_command_error,
)
from argocd_status.core.models import Application, parse_application, parse_applications
from argocd_status.utils.runner import CommandError, CommandErrorKind

if TYPE_CHECKING:
    from argocd_status.config import Settings
    from argocd_status.core.cache import TTLCache
    from argocd_status.core.detection import DetectionService
    from argocd_status.utils.runner import CommandRunner

logger = structlog.get_logger(__name__)

APPLICATION_RESOURCE = "applications.argoproj.io"
REFRESH_ANNOTATION = "argocd.argoproj.io/refresh"


class ResourceQueryService:
    """Reads ArgoCD Applications and triggers actions on them."""

    def __init__(
        self,
        runner: CommandRunner,
        cache: TTLCache,
        detection: DetectionService,
        settings: Settings,
    ) -> None:
        self._runner = runner
        self._cache = cache
        self._detection = detection
        self._settings = settings

    # -------------------------------------------------------------------------
    # QUERIES
    # -------------------------------------------------------------------------

    async def list_applications(self, context: str | None, bypass_cache: bool = False) -> list[Application]:
        """
        List the Applications in a kube context.

        Returns an empty list, without caching it, when ArgoCD is not installed.

        Raises:
            PermissionDeniedError: Listing was forbidden
            NotFoundError: The Application resource type is gone
            TransientError: The cluster could not be queried and nothing was cached
            ToolUnavailableError: kubectl is not installed
        """
        key = applications_key(context)
        if not bypass_cache:
            cached = self._cache.get(key)
            if cached is not None:
                return list(cached)

        try:
            applications = await self._fetch_applications(context)
        except TransientError as e:
            stale = self._cache.get_stale(key)
            if stale is None:
                raise
            logger.warning(
                "Serving stale application list",
                context=context,
                count=len(stale),
                error=e.message,
            )
            return list(stale)

        if applications is None:
            return []

        self._cache.set(key, tuple(applications), self._settings.applications_ttl)
        return applications

    async def _fetch_applications(self, context: str | None) -> list[Application] | None:
        installation = await self._detection.is_installed(context)
        if not installation.installed:
            logger.debug("ArgoCD not installed, no applications", context=context)
            return None

        scope = ["-n", installation.namespace] if installation.namespace else ["--all-namespaces"]
        try:
            response = await self._runner.run_json(
                ["get", APPLICATION_RESOURCE, *scope, "-o", "json"],
                context=context,
            )
        except CommandError as e:
            raise classify_command_error(e) from e

        items = response.get("items")
        applications = parse_applications(items)
        skipped = (len(items) if isinstance(items, list) else 0) - len(applications)
        logger.debug("Fetched applications", context=context, count=len(applications), skipped=skipped)
        return applications

    async def get_application(
        self,
        name: str,
        namespace: str,
        context: str | None,
        timeout: float | None = None,
    ) -> Application:
        """
        Fetch one Application directly from the cluster.

        Raises:
            ApplicationNotFoundError: The application no longer exists
            MalformedResourceError: kubectl returned something unparseable
            PermissionDeniedError, TransientError, ToolUnavailableError
        """
        try:
            raw = await self._runner.run_json(
                ["get", APPLICATION_RESOURCE, name, "-n", namespace, "-o", "json"],
                context=context,
                timeout=timeout,
            )
        except CommandError as e:
            if e.kind is CommandErrorKind.NOT_FOUND:
                raise ApplicationNotFoundError(name, namespace, e.stderr, context) from e
            raise classify_command_error(e) from e

        application = parse_application(raw)
        if application is None:
            raise MalformedResourceError(
                f"Application '{name}' in namespace '{namespace}' could not be parsed",
                context=context,
            )
        return application

    # -------------------------------------------------------------------------
    # ACTIONS
    # -------------------------------------------------------------------------

    async def sync_application(
        self,
        name: str,
        namespace: str,
        context: str | None,
        revision: str | None = None,
    ) -> None:
        """
        Ask ArgoCD to sync an application.

        Args:
            revision: Git revision to sync to; None syncs the target revision
        """
        sync: dict[str, str] = {"revision": revision} if revision else {}
        operation = {
            "operation": {
                "initiatedBy": {"username": self._settings.sync_initiator},
                "sync": sync,
            }
        }
        await self._act(
            name,
            namespace,
            context,
            ["patch", APPLICATION_RESOURCE, name, "-n", namespace, "--type", "merge", "-p", json.dumps(operation)],
        )
        logger.info("Sync triggered", name=name, namespace=namespace, context=context, revision=revision)

    async def refresh_application(
        self,
        name: str,
        namespace: str,
        context: str | None,
        hard: bool = False,
    ) -> None:
        """
        Ask ArgoCD to re-read the application's source.

        A hard refresh also discards ArgoCD's cached manifests, which is
        expensive for large repositories.
        """
        mode = "hard" if hard else "normal"
        await self._act(
            name,
            namespace,
            context,
            ["annotate", APPLICATION_RESOURCE, name, "-n", namespace, f"{REFRESH_ANNOTATION}={mode}", "--overwrite"],
        )
        logger.info("Refresh triggered", name=name, namespace=namespace, context=context, mode=mode)

    async def _act(self, name: str, namespace: str, context: str | None, args: list[str]) -> None:
        try:
            await self._runner.run(args, context=context)
        except CommandError as e:
            if e.kind is CommandErrorKind.NOT_FOUND:
                raise ApplicationNotFoundError(name, namespace, e.stderr, context) from e
            raise classify_command_error(e) from e
        self.invalidate(context)

    # -------------------------------------------------------------------------
    # INVALIDATION
    # -------------------------------------------------------------------------

    def invalidate(self, context: str | None) -> None:
        """Drop the cached application list for a context."""
        self._cache.invalidate(applications_key(context))

    def invalidate_all(self) -> None:
        self._cache.invalidate_prefix(APPLICATIONS_PREFIX)
