# ABOUTME: Polls an ArgoCD Application until its operation reaches a terminal phase
# ABOUTME: Owns the operation timeout; clock and sleep are injectable for tests

"""
Operation tracking.

ArgoCD reports progress in status.operationState.phase:

    Running -> Succeeded | Failed | Error        (terminal)
    Running -> Running                           (keep polling)

The tracker adds one state of its own, timed out, when its budget runs out
before the cluster reports a terminal phase. Polling stops on the first
terminal phase it sees.

Each poll is a direct kubectl read with its own timeout, capped at the budget
that is left, so one slow call cannot stretch the overall operation timeout.
"""

from __future__ import annotations

import asyncio
import time
from typing import TYPE_CHECKING

import structlog

from argocd_status.core.errors import ArgocdError, MalformedResourceError, TransientError
from argocd_status.core.models import OperationPhase, OperationResult

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from argocd_status.config import Settings
    from argocd_status.core.models import OperationState
    from argocd_status.core.resources import ResourceQueryService

logger = structlog.get_logger(__name__)

TIMED_OUT_MESSAGE = "timed out"


class OperationTracker:
    """
    Drives a sync or refresh to a final result by polling.

    Callers must not track the same application twice at the same time.
    """

    def __init__(
        self,
        queries: ResourceQueryService,
        settings: Settings,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._queries = queries
        self._settings = settings
        self._clock = clock
        self._sleep = sleep

    async def track_operation(
        self,
        name: str,
        namespace: str,
        context: str | None,
        timeout_seconds: float | None = None,
        *,
        previous: OperationState | None = None,
        on_progress: Callable[[OperationState], None] | None = None,
    ) -> OperationResult:
        """
        Poll an application until its operation finishes or the budget runs out.

        Args:
            name: Application name
            namespace: Namespace of the Application resource
            context: kube context
            timeout_seconds: Tracking budget (default: operation_timeout setting)
            previous: The operation that was current before a new sync. It and
                      anything that started earlier are ignored
            on_progress: Called with each operation state observed

        Returns:
            OperationResult. success is True only for a Succeeded phase.
        """
        budget = timeout_seconds if timeout_seconds is not None else self._settings.operation_timeout
        log = logger.bind(name=name, namespace=namespace, context=context)
        start = self._clock()
        polls = 0
        seen_new = previous is None

        while True:
            remaining = budget - (self._clock() - start)
            if remaining <= 0:
                log.warning("Operation tracking timed out", budget=budget, polls=polls)
                return OperationResult(success=False, message=TIMED_OUT_MESSAGE, timed_out=True)

            polls += 1
            try:
                application = await self._queries.get_application(
                    name,
                    namespace,
                    context,
                    timeout=min(self._settings.command_timeout, remaining),
                )
            except (TransientError, MalformedResourceError) as e:
                log.info("Operation poll failed, retrying", error=e.message)
            except ArgocdError as e:
                log.warning("Operation tracking stopped", category=e.category, error=e.message)
                return OperationResult(success=False, message=e.message)
            else:
                operation = application.last_operation
                if operation is not None and not seen_new:
                    seen_new = _is_new_operation(operation, previous)
                if operation is not None and seen_new:
                    if on_progress is not None:
                        on_progress(operation)
                    if operation.is_terminal:
                        return self._finish(operation, context, log)

            remaining = budget - (self._clock() - start)
            if remaining > 0:
                await self._sleep(min(self._settings.poll_interval, remaining))

    def _finish(self, operation: OperationState, context: str | None, log: structlog.BoundLogger) -> OperationResult:
        log.info("Operation finished", phase=str(operation.phase))
        if operation.phase is OperationPhase.SUCCEEDED:
            self._queries.invalidate(context)
            return OperationResult(
                success=True,
                message=operation.message or "Operation succeeded",
                phase=operation.phase,
            )
        return OperationResult(
            success=False,
            message=operation.message or "operation failed",
            phase=operation.phase,
        )

    async def sync_and_track(
        self,
        name: str,
        namespace: str,
        context: str | None,
        revision: str | None = None,
        timeout_seconds: float | None = None,
        on_progress: Callable[[OperationState], None] | None = None,
    ) -> OperationResult:
        """
        Trigger a sync and track it to completion.

        The operation that was current before the trigger is remembered so
        that its (possibly Succeeded) phase is not mistaken for the new one.
        """
        before = await self._queries.get_application(name, namespace, context)

        await self._queries.sync_application(name, namespace, context, revision=revision)
        return await self.track_operation(
            name,
            namespace,
            context,
            timeout_seconds,
            previous=before.last_operation,
            on_progress=on_progress,
        )


def _is_new_operation(operation: OperationState, previous: OperationState | None) -> bool:
    """
    Tell a new operation from the one that was current before the trigger.

    startedAt has one-second resolution, so an operation started in the same
    second as the previous one only counts as new once its state differs.
    """
    if previous is None or operation.started_at > previous.started_at:
        return True
    return operation.started_at == previous.started_at and operation != previous
