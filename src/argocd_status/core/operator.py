# ABOUTME: Reads the in-cluster operator's status ConfigMap and derives its mode
# ABOUTME: Primary detection source for ArgoCD, cached per kube context

"""
Operator status client.

An optional in-cluster operator publishes its own state, including whether it
has seen ArgoCD, as JSON under the "status" key of a ConfigMap:

    kubectl get configmap kube9-operator-status -n kube9-system -o json

    data.status = {
        "mode": "operated", "tier": "free", "version": "1.4.0",
        "health": "healthy", "lastUpdate": "2024-01-15T10:30:00Z",
        "registered": false,
        "argocd": {"detected": true, "namespace": "argocd", "version": "v2.9.3"}
    }

The operator refreshes lastUpdate continuously. A report older than five
minutes means the operator has stopped and its content is no longer trusted
for the mode (it is still returned, so callers can show what it last said).
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from enum import StrEnum
from typing import TYPE_CHECKING, Any

import structlog

from argocd_status.core.cache import operator_key
from argocd_status.core.models import parse_timestamp
from argocd_status.utils.runner import CommandError, CommandErrorKind

if TYPE_CHECKING:
    from collections.abc import Callable

    from argocd_status.config import Settings
    from argocd_status.core.cache import TTLCache
    from argocd_status.utils.runner import CommandRunner

logger = structlog.get_logger(__name__)

STALE_AFTER = timedelta(minutes=5)

_REQUIRED_FIELDS = ("mode", "tier", "version", "health", "lastUpdate", "registered")


class OperatorStatusMode(StrEnum):
    """How much of the operator's functionality is available."""

    BASIC = "basic"
    OPERATED = "operated"
    ENABLED = "enabled"
    DEGRADED = "degraded"


@dataclass(frozen=True)
class ArgoCDReport:
    """The operator's view of ArgoCD."""

    detected: bool
    namespace: str | None = None
    version: str | None = None
    last_checked: datetime | None = None


@dataclass(frozen=True)
class OperatorStatus:
    mode: str
    tier: str
    version: str
    health: str
    registered: bool
    last_update: datetime | None = None
    error: str | None = None
    cluster_id: str | None = None
    argocd: ArgoCDReport | None = None
    missing_fields: tuple[str, ...] = ()

    @classmethod
    def from_configmap_data(cls, data: dict[str, Any]) -> OperatorStatus:
        """Build a status from the decoded data.status JSON object."""
        missing = tuple(f for f in _REQUIRED_FIELDS if data.get(f) in (None, ""))
        return cls(
            mode=str(data.get("mode") or ""),
            tier=str(data.get("tier") or ""),
            version=str(data.get("version") or ""),
            health=str(data.get("health") or ""),
            registered=data.get("registered") is True,
            last_update=parse_timestamp(data.get("lastUpdate")),
            error=data.get("error") if isinstance(data.get("error"), str) else None,
            cluster_id=data.get("clusterId") if isinstance(data.get("clusterId"), str) else None,
            argocd=_parse_argocd_report(data.get("argocd")),
            missing_fields=missing,
        )

    def determine_mode(self, now: datetime) -> OperatorStatusMode:
        """
        Derive the operator mode.

        Rules, first match wins:
        1. Required fields missing, or report stale / undated -> degraded
        2. health degraded or unhealthy -> degraded
        3. mode "enabled": pro tier, registered and healthy -> enabled
        4. mode "operated": free tier and healthy -> operated
        5. anything else -> degraded
        """
        if self.missing_fields:
            return OperatorStatusMode.DEGRADED
        if self.last_update is None or now - self.last_update > STALE_AFTER:
            return OperatorStatusMode.DEGRADED
        if self.health in ("degraded", "unhealthy"):
            return OperatorStatusMode.DEGRADED
        if self.mode == "enabled":
            if self.tier == "pro" and self.registered and self.health == "healthy":
                return OperatorStatusMode.ENABLED
            return OperatorStatusMode.DEGRADED
        if self.mode == "operated":
            if self.tier == "free" and self.health == "healthy":
                return OperatorStatusMode.OPERATED
            return OperatorStatusMode.DEGRADED
        return OperatorStatusMode.DEGRADED


def _parse_argocd_report(raw: Any) -> ArgoCDReport | None:
    # Without a boolean "detected" the report says nothing definite
    if not isinstance(raw, dict) or not isinstance(raw.get("detected"), bool):
        return None
    namespace = raw.get("namespace")
    version = raw.get("version")
    return ArgoCDReport(
        detected=raw["detected"],
        namespace=namespace if isinstance(namespace, str) and namespace else None,
        version=version if isinstance(version, str) and version else None,
        last_checked=parse_timestamp(raw.get("lastChecked")),
    )


@dataclass(frozen=True)
class OperatorSnapshot:
    """Cached result of one ConfigMap read. status is None when no operator is installed."""

    status: OperatorStatus | None
    mode: OperatorStatusMode


class OperatorStatusClient:
    """
    Reads and caches the operator status for each kube context.

    Absence of the operator is a normal state (basic mode) and is cached.
    Read failures are logged and never raised: the last cached snapshot is
    reused when there is one, otherwise the caller sees no operator.
    """

    def __init__(
        self,
        runner: CommandRunner,
        cache: TTLCache,
        settings: Settings,
        now: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        self._runner = runner
        self._cache = cache
        self._settings = settings
        self._now = now

    async def get_snapshot(self, context: str | None, force_refresh: bool = False) -> OperatorSnapshot:
        key = operator_key(context)
        if not force_refresh:
            cached = self._cache.get(key)
            if cached is not None:
                return cached

        log = logger.bind(
            context=context,
            namespace=self._settings.operator_namespace,
            configmap=self._settings.operator_configmap,
        )
        basic = OperatorSnapshot(status=None, mode=OperatorStatusMode.BASIC)

        try:
            configmap = await self._runner.run_json(
                [
                    "get",
                    "configmap",
                    self._settings.operator_configmap,
                    "-n",
                    self._settings.operator_namespace,
                    "-o",
                    "json",
                ],
                context=context,
            )
        except CommandError as e:
            if e.kind is CommandErrorKind.NOT_FOUND:
                log.debug("Operator status ConfigMap not found, operator not installed")
                self._cache.set(key, basic, self._settings.detection_ttl)
                return basic
            log.warning("Could not read operator status", kind=str(e.kind), error=e.stderr[:200])
            return self._fallback(key, basic)

        data = configmap.get("data")
        raw_status = data.get("status") if isinstance(data, dict) else None
        if not isinstance(raw_status, str) or not raw_status:
            log.debug("Operator status ConfigMap has no status key")
            self._cache.set(key, basic, self._settings.detection_ttl)
            return basic

        try:
            decoded = json.loads(raw_status)
        except json.JSONDecodeError as e:
            log.warning("Operator status is not valid JSON", error=str(e), content=raw_status[:200])
            return self._fallback(key, basic)
        if not isinstance(decoded, dict):
            log.warning("Operator status is not a JSON object", content=raw_status[:200])
            return self._fallback(key, basic)

        status = OperatorStatus.from_configmap_data(decoded)
        if status.missing_fields:
            log.warning("Operator status is missing required fields", fields=list(status.missing_fields))

        snapshot = OperatorSnapshot(status=status, mode=status.determine_mode(self._now()))
        self._cache.set(key, snapshot, self._settings.detection_ttl)
        return snapshot

    async def get_status(self, context: str | None, force_refresh: bool = False) -> OperatorStatus | None:
        """Return the operator status, or None when no usable status is available."""
        snapshot = await self.get_snapshot(context, force_refresh)
        return snapshot.status

    def clear_cache(self, context: str | None) -> None:
        self._cache.invalidate(operator_key(context))

    def _fallback(self, key: str, basic: OperatorSnapshot) -> OperatorSnapshot:
        stale = self._cache.get_stale(key)
        if stale is not None:
            logger.info("Falling back to cached operator status", key=key)
            return stale
        return basic
