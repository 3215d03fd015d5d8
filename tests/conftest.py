# ABOUTME: Pytest fixtures and configuration for the ArgoCD status tests
# ABOUTME: Provides a scripted kubectl runner, a manual clock and wired services

import json
import os
from datetime import UTC, datetime
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from argocd_status.config import SecuritySettings, Settings
from argocd_status.core.cache import TTLCache
from argocd_status.core.detection import DetectionService
from argocd_status.core.operator import OperatorStatusClient
from argocd_status.core.resources import ResourceQueryService
from argocd_status.core.tracker import OperationTracker
from argocd_status.utils.runner import CommandError, CommandErrorKind, CommandOutput
from argocd_status.utils.safety import SafetyGuard

FIXED_NOW = datetime(2024, 1, 15, 10, 30, 0, tzinfo=UTC)


class ManualClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.advance(seconds)


class FakeRunner:
    """
    Scripted stand-in for CommandRunner.

    Register outcomes by argument prefix. An outcome is a dict (returned as
    JSON stdout), a string (raw stdout), or a CommandError (raised). A list of
    outcomes is consumed one per call, the last one repeating.
    """

    def __init__(self) -> None:
        self._scripts: dict[tuple[str, ...], list[Any]] = {}
        self.calls: list[dict[str, Any]] = []

    def on(self, *prefix: str, result: Any) -> None:
        self._scripts[prefix] = list(result) if isinstance(result, list) else [result]

    def calls_matching(self, *prefix: str) -> list[dict[str, Any]]:
        return [c for c in self.calls if c["args"][: len(prefix)] == prefix]

    def _outcome(self, args: tuple[str, ...]) -> Any:
        matches = [p for p in self._scripts if args[: len(p)] == p]
        if not matches:
            raise AssertionError(f"Unexpected kubectl call: {args}")
        outcomes = self._scripts[max(matches, key=len)]
        return outcomes.pop(0) if len(outcomes) > 1 else outcomes[0]

    async def run(self, args, *, context=None, timeout=None) -> CommandOutput:
        args = tuple(args)
        self.calls.append({"args": args, "context": context, "timeout": timeout})
        outcome = self._outcome(args)
        if isinstance(outcome, CommandError):
            raise outcome
        if isinstance(outcome, str):
            return CommandOutput(stdout=outcome)
        return CommandOutput(stdout=json.dumps(outcome))

    async def run_json(self, args, *, context=None, timeout=None) -> dict[str, Any]:
        output = await self.run(args, context=context, timeout=timeout)
        return json.loads(output.stdout)


def command_error(kind: CommandErrorKind, stderr: str = "", context: str | None = "ctx1") -> CommandError:
    return CommandError.for_kind(kind, stderr, context)


def application_json(
    name: str = "guestbook",
    namespace: str = "argocd",
    sync: str = "Synced",
    health: str = "Healthy",
    phase: str | None = None,
    started_at: str = "2024-01-15T10:00:00Z",
    finished_at: str | None = None,
    message: str | None = None,
    resources: list[dict[str, Any]] | None = None,
) -> dict[str, Any]:
    """Build an Application object shaped like `kubectl get -o json` output."""
    app: dict[str, Any] = {
        "apiVersion": "argoproj.io/v1alpha1",
        "kind": "Application",
        "metadata": {"name": name, "namespace": namespace, "creationTimestamp": "2024-01-01T00:00:00Z"},
        "spec": {
            "project": "default",
            "source": {
                "repoURL": "https://github.com/argoproj/argocd-example-apps.git",
                "path": "guestbook",
                "targetRevision": "HEAD",
            },
            "destination": {"server": "https://kubernetes.default.svc", "namespace": "default"},
        },
        "status": {
            "sync": {"status": sync, "revision": "4f2c1a9e8b7d6c5f4e3d2c1b0a9f8e7d6c5b4a3f"},
            "health": {"status": health},
            "resources": resources or [],
        },
    }
    if phase is not None:
        operation: dict[str, Any] = {"phase": phase, "startedAt": started_at}
        if finished_at:
            operation["finishedAt"] = finished_at
        if message:
            operation["message"] = message
        app["status"]["operationState"] = operation
    return app


def operator_configmap(status: dict[str, Any] | None) -> dict[str, Any]:
    data = {"status": json.dumps(status)} if status is not None else {}
    return {"metadata": {"name": "kube9-operator-status", "namespace": "kube9-system"}, "data": data}


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def settings() -> Settings:
    """Settings with retries off so failures surface immediately."""
    return Settings(
        connect_retries=0,
        command_timeout=10.0,
        detection_ttl=300.0,
        applications_ttl=30.0,
        poll_interval=2.0,
        operation_timeout=300.0,
        security=SecuritySettings(read_only=False, audit_log=None, rate_limit_calls=100, rate_limit_window=60),
    )


@pytest.fixture
def runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def cache(clock: ManualClock) -> TTLCache:
    return TTLCache(clock=clock)


@pytest.fixture
def operator_client(runner: FakeRunner, cache: TTLCache, settings: Settings) -> OperatorStatusClient:
    return OperatorStatusClient(runner, cache, settings, now=lambda: FIXED_NOW)


@pytest.fixture
def detection(
    runner: FakeRunner,
    cache: TTLCache,
    operator_client: OperatorStatusClient,
    settings: Settings,
) -> DetectionService:
    return DetectionService(runner, cache, operator_client, settings, now=lambda: FIXED_NOW)


@pytest.fixture
def queries(
    runner: FakeRunner,
    cache: TTLCache,
    detection: DetectionService,
    settings: Settings,
) -> ResourceQueryService:
    return ResourceQueryService(runner, cache, detection, settings)


@pytest.fixture
def tracker(queries: ResourceQueryService, settings: Settings, clock: ManualClock) -> OperationTracker:
    return OperationTracker(queries, settings, clock=clock, sleep=clock.sleep)


@pytest.fixture
def no_operator(runner: FakeRunner) -> None:
    """No operator installed: the status ConfigMap does not exist."""
    runner.on(
        "get",
        "configmap",
        result=command_error(
            CommandErrorKind.NOT_FOUND,
            'Error from server (NotFound): configmaps "kube9-operator-status" not found',
        ),
    )


@pytest.fixture
def argocd_via_operator(runner: FakeRunner) -> None:
    """Operator reports ArgoCD installed in the argocd namespace."""
    runner.on(
        "get",
        "configmap",
        result=operator_configmap(
            {
                "mode": "operated",
                "tier": "free",
                "version": "1.4.0",
                "health": "healthy",
                "lastUpdate": "2024-01-15T10:29:00Z",
                "registered": False,
                "argocd": {"detected": True, "namespace": "argocd", "version": "v2.9.3"},
            }
        ),
    )


@pytest.fixture
def safety_guard(settings: Settings) -> SafetyGuard:
    return SafetyGuard(settings.security)


@pytest.fixture
def read_only_safety_guard() -> SafetyGuard:
    return SafetyGuard(SecuritySettings(read_only=True))


@pytest.fixture
def mock_context() -> MagicMock:
    """Create a mock MCP context."""
    ctx = MagicMock()
    ctx.request_id = "test-request-123"
    ctx.report_progress = AsyncMock()
    return ctx


# Integration test fixtures


@pytest.fixture
def kube_context() -> str | None:
    """kube context for integration tests, from ARGOCD_STATUS_TEST_CONTEXT."""
    return os.environ.get("ARGOCD_STATUS_TEST_CONTEXT")
