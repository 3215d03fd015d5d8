# ABOUTME: kubectl command runner with error classification and retry logic
# ABOUTME: Provides an async interface to the kubectl CLI with structured failures

"""
kubectl command runner with classified errors and retry logic.

=============================================================================
WHAT IS THIS FILE?
=============================================================================

Everything this package knows about a cluster comes from the kubectl CLI.
This module is the only place that starts kubectl. It handles:

1. COMMAND BUILDING: binary path, --kubeconfig and --context flags
2. EXECUTION: running kubectl off the event loop with a per-call timeout
3. ERROR CLASSIFICATION: turning exit codes and stderr into CommandError kinds
4. RETRY LOGIC: retrying calls that could not reach the cluster
5. SINGLE-FLIGHT: sharing one in-flight read between identical callers

=============================================================================
WHY asyncio.to_thread?
=============================================================================

subprocess.run blocks until kubectl exits. Called directly from a coroutine
it would freeze every other coroutine for the duration of the call:

    result = subprocess.run(cmd)                       # whole loop waits
    result = await asyncio.to_thread(subprocess.run, cmd)  # only we wait

The worker thread only runs the subprocess; all state in this package is
still touched from the event loop thread, so no locks are needed.

=============================================================================
ERROR KINDS
=============================================================================

    BinaryNotFound    kubectl is missing from PATH (FileNotFoundError)
    Timeout           the call exceeded its timeout, or stderr says so
    PermissionDenied  RBAC or credential failure ("Forbidden", "Unauthorized")
    NotFound          resource or resource type absent ("NotFound")
    ConnectionFailed  cluster unreachable ("connection refused", "dial tcp")
    Unknown           anything else, including unparseable JSON

The stderr substrings live in ErrorPatterns (config.py), not in this file.
"""

from __future__ import annotations

import asyncio
import json
import subprocess
import time
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Any

import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Sequence

    from argocd_status.config import Settings

logger = structlog.get_logger(__name__)

# Verbs that change cluster state. They are never shared between callers.
MUTATING_VERBS = frozenset(["annotate", "patch", "apply", "create", "delete", "label"])


# =============================================================================
# COMMAND ERROR
# =============================================================================


class CommandErrorKind(StrEnum):
    """Classification of a failed kubectl call."""

    BINARY_NOT_FOUND = "binary_not_found"
    PERMISSION_DENIED = "permission_denied"
    NOT_FOUND = "not_found"
    TIMEOUT = "timeout"
    CONNECTION_FAILED = "connection_failed"
    UNKNOWN = "unknown"


_MESSAGES = {
    CommandErrorKind.BINARY_NOT_FOUND: "kubectl is not installed or not in PATH",
    CommandErrorKind.PERMISSION_DENIED: "Access denied to cluster '{context}'",
    CommandErrorKind.NOT_FOUND: "Resource not found in cluster '{context}'",
    CommandErrorKind.TIMEOUT: "Connection to cluster '{context}' timed out",
    CommandErrorKind.CONNECTION_FAILED: "Cannot connect to cluster '{context}'",
    CommandErrorKind.UNKNOWN: "kubectl command failed for cluster '{context}'",
}


class CommandError(Exception):
    """
    A kubectl call that did not produce usable output.

    Carries the classification, a short message, and the raw stderr so the
    caller can decide what to do and still show the original diagnostic.

    USAGE:
    ------
    try:
        await runner.run(["get", "crd", "applications.argoproj.io"], context="kind")
    except CommandError as e:
        if e.kind is CommandErrorKind.NOT_FOUND:
            ...
    """

    def __init__(
        self,
        kind: CommandErrorKind,
        message: str,
        stderr: str = "",
        context: str | None = None,
    ) -> None:
        self.kind = kind
        self.message = message
        self.stderr = stderr
        self.context = context
        super().__init__(str(self))

    @classmethod
    def for_kind(
        cls,
        kind: CommandErrorKind,
        stderr: str = "",
        context: str | None = None,
    ) -> CommandError:
        """Build an error with the standard message for its kind."""
        return cls(kind, _MESSAGES[kind].format(context=context or "current"), stderr, context)

    def __str__(self) -> str:
        base = f"kubectl error ({self.kind}): {self.message}"
        if self.stderr:
            base += f" - {self.stderr[:200]}"
        return base


def _is_connection_failure(exc: BaseException) -> bool:
    return isinstance(exc, CommandError) and exc.kind is CommandErrorKind.CONNECTION_FAILED


# =============================================================================
# COMMAND OUTPUT
# =============================================================================


@dataclass(frozen=True)
class CommandOutput:
    """Captured output of a successful kubectl call."""

    stdout: str
    stderr: str = ""


# =============================================================================
# COMMAND RUNNER
# =============================================================================


class CommandRunner:
    """
    Async kubectl runner.

    LIFECYCLE:
    ----------
    One runner is created by the composition root and shared by every service.
    It holds no connection; each call starts a fresh kubectl process.

    RETRY LOGIC:
    ------------
    Only ConnectionFailed is retried, with exponential backoff:
    - Attempt 1: Immediate
    - Attempt 2: Wait 0.5 seconds
    - Attempt 3: Wait 1 second
    Timeouts are NOT retried. A timed-out call already used its whole budget
    and retrying would multiply the time a caller waits.

    SINGLE-FLIGHT:
    --------------
    When two coroutines ask for the same read (same context, same arguments)
    while the first is still running, the second awaits the first one's task
    instead of starting another kubectl process.
    """

    def __init__(
        self,
        settings: Settings,
        retry_sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """
        Initialize the runner.

        Args:
            settings: Loaded settings (kubectl path, timeouts, error patterns)
            retry_sleep: Coroutine used to wait between retries.
                         Tests pass a no-op to avoid real delays.
        """
        self._settings = settings
        self._patterns = settings.error_patterns
        self._retry_sleep = retry_sleep
        self._inflight: dict[tuple[str | None, tuple[str, ...]], asyncio.Task[CommandOutput]] = {}

    def build_command(self, args: Sequence[str], context: str | None = None) -> list[str]:
        """
        Build the full kubectl argument vector.

        Example:
            runner.build_command(["get", "crd"], context="prod")
            # ["kubectl", "--context=prod", "get", "crd"]
        """
        cmd = [self._settings.kubectl_path]
        if self._settings.kubeconfig:
            cmd.append(f"--kubeconfig={self._settings.kubeconfig}")
        if context:
            cmd.append(f"--context={context}")
        cmd.extend(args)
        return cmd

    def classify(self, stderr: str, context: str | None = None) -> CommandError:
        """
        Classify a failed call by matching stderr against the configured patterns.

        Groups are checked in a fixed order so that, for example,
        "dial tcp ...: i/o timeout" is a Timeout rather than a ConnectionFailed.
        """
        lowered = stderr.lower()
        groups = (
            (CommandErrorKind.TIMEOUT, self._patterns.timeout),
            (CommandErrorKind.PERMISSION_DENIED, self._patterns.permission_denied),
            (CommandErrorKind.NOT_FOUND, self._patterns.not_found),
            (CommandErrorKind.CONNECTION_FAILED, self._patterns.connection_failed),
        )
        for kind, patterns in groups:
            if any(pattern in lowered for pattern in patterns):
                return CommandError.for_kind(kind, stderr, context)
        return CommandError.for_kind(CommandErrorKind.UNKNOWN, stderr, context)

    def _run_sync(self, cmd: list[str], timeout: float, context: str | None) -> CommandOutput:
        """Run kubectl synchronously (thread-safe wrapper target)."""
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=timeout,
                check=False,
            )
        except FileNotFoundError as e:
            raise CommandError.for_kind(CommandErrorKind.BINARY_NOT_FOUND, str(e), context) from e
        except subprocess.TimeoutExpired as e:
            raise CommandError.for_kind(
                CommandErrorKind.TIMEOUT,
                f"kubectl did not finish within {timeout:g}s",
                context,
            ) from e

        if result.returncode != 0:
            details = (result.stderr or "").strip() or (result.stdout or "").strip()
            raise self.classify(details or f"exit code {result.returncode}", context)

        return CommandOutput(stdout=result.stdout or "", stderr=result.stderr or "")

    async def _run_with_retry(
        self,
        args: tuple[str, ...],
        context: str | None,
        timeout: float,
    ) -> CommandOutput:
        cmd = self.build_command(args, context)
        log = logger.bind(args=" ".join(args), context=context)
        started = time.monotonic()

        retrying = AsyncRetrying(
            sleep=self._retry_sleep,
            retry=retry_if_exception(_is_connection_failure),
            stop=stop_after_attempt(self._settings.connect_retries + 1),
            wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    output = await asyncio.to_thread(self._run_sync, cmd, timeout, context)
        except CommandError as e:
            log.debug("kubectl failed", kind=str(e.kind), stderr=e.stderr[:200])
            raise

        log.debug("kubectl finished", duration_ms=round((time.monotonic() - started) * 1000, 1))
        return output

    async def run(
        self,
        args: Sequence[str],
        *,
        context: str | None = None,
        timeout: float | None = None,
    ) -> CommandOutput:
        """
        Run a kubectl command.

        Args:
            args: kubectl arguments, e.g. ["get", "crd", "applications.argoproj.io", "-o", "json"]
            context: kube context to target (None = kubectl's current context)
            timeout: per-call timeout override in seconds

        Returns:
            CommandOutput with stdout and stderr

        Raises:
            CommandError: On any failure, already classified
        """
        key_args = tuple(args)
        effective_timeout = timeout if timeout is not None else self._settings.command_timeout

        if not self._settings.single_flight or not key_args or key_args[0] in MUTATING_VERBS:
            return await self._run_with_retry(key_args, context, effective_timeout)

        key = (context, key_args)
        existing = self._inflight.get(key)
        if existing is not None:
            return await asyncio.shield(existing)

        # Every caller waits through shield: cancelling one must not cancel the
        # shared read for the others. The entry is dropped when the read ends.
        task = asyncio.create_task(self._run_with_retry(key_args, context, effective_timeout))
        self._inflight[key] = task
        task.add_done_callback(lambda done: self._forget(key, done))
        return await asyncio.shield(task)

    def _forget(self, key: tuple[str | None, tuple[str, ...]], task: asyncio.Task[CommandOutput]) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]
        # Retrieve the outcome so a read nobody waits for anymore does not warn
        if not task.cancelled():
            task.exception()

    async def run_json(
        self,
        args: Sequence[str],
        *,
        context: str | None = None,
        timeout: float | None = None,
    ) -> dict[str, Any]:
        """
        Run a kubectl command and decode its stdout as a JSON object.

        Raises:
            CommandError: On failure, or Unknown when stdout is not a JSON object
        """
        output = await self.run(args, context=context, timeout=timeout)
        try:
            data = json.loads(output.stdout)
        except json.JSONDecodeError as e:
            raise CommandError(
                CommandErrorKind.UNKNOWN,
                "kubectl returned invalid JSON",
                output.stdout[:200],
                context,
            ) from e
        if not isinstance(data, dict):
            raise CommandError(
                CommandErrorKind.UNKNOWN,
                "kubectl returned JSON that is not an object",
                output.stdout[:200],
                context,
            )
        return data
