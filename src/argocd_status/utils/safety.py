# ABOUTME: Safety checks for ArgoCD actions triggered through this layer
# ABOUTME: Implements read-only blocking, rate limiting and hard-refresh confirmation

"""Safety checks applied before any kubectl call that changes an Application."""

from __future__ import annotations

import time
from collections import defaultdict
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import structlog

if TYPE_CHECKING:
    from collections.abc import Callable

    from argocd_status.config import SecuritySettings

logger = structlog.get_logger(__name__)

HARD_REFRESH = "hard_refresh_application"


@dataclass
class ConfirmationRequired:
    """Response indicating an operation needs explicit confirmation."""

    operation: str
    target: str
    impact: str
    confirmation_instructions: str
    details: dict[str, Any] = field(default_factory=dict)

    def format_message(self) -> str:
        """Format confirmation request for display."""
        lines = [
            f"CONFIRMATION REQUIRED: {self.operation}",
            "",
            f"Target: {self.target}",
            f"Impact: {self.impact}",
        ]
        if self.details:
            lines.append("")
            lines.append("Details:")
            for key, value in self.details.items():
                lines.append(f"  {key}: {value}")
        lines.extend(["", self.confirmation_instructions])
        return "\n".join(lines)


@dataclass
class OperationBlocked:
    """Response indicating an operation is blocked by security settings."""

    operation: str
    reason: str
    setting: str

    def format_message(self) -> str:
        return (
            f"OPERATION BLOCKED: {self.operation}\n"
            f"Reason: {self.reason}\n"
            f"Setting: {self.setting}\n"
            f"To enable: Set {self.setting}=false in server configuration"
        )


class RateLimiter:
    """Sliding-window call counter per key."""

    def __init__(
        self,
        max_calls: int = 100,
        window_seconds: int = 60,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize rate limiter.

        Args:
            max_calls: Maximum calls allowed in window
            window_seconds: Window size in seconds
            clock: Time source, replaceable in tests
        """
        self._max_calls = max_calls
        self._window = window_seconds
        self._clock = clock
        self._calls: dict[str, list[float]] = defaultdict(list)

    def check(self, key: str) -> bool:
        """Record a call and report whether it is within the limit.

        Args:
            key: Rate limit key (e.g., "write:sync_application")

        Returns:
            True if allowed, False if rate limited
        """
        now = self._clock()
        self._calls[key] = [t for t in self._calls[key] if now - t < self._window]

        if len(self._calls[key]) >= self._max_calls:
            logger.warning("Rate limit exceeded", key=key, calls=len(self._calls[key]))
            return False

        self._calls[key].append(now)
        return True

    def reset(self, key: str | None = None) -> None:
        if key:
            self._calls.pop(key, None)
        else:
            self._calls.clear()


class SafetyGuard:
    """Decides whether a read, sync or refresh may run."""

    def __init__(self, settings: SecuritySettings, clock: Callable[[], float] = time.monotonic) -> None:
        self._settings = settings
        self._rate_limiter = RateLimiter(
            max_calls=settings.rate_limit_calls,
            window_seconds=settings.rate_limit_window,
            clock=clock,
        )

    @property
    def read_only(self) -> bool:
        return self._settings.read_only

    def check_read_operation(self, operation: str) -> OperationBlocked | None:
        """Reads are only ever rate limited."""
        if not self._rate_limiter.check(f"read:{operation}"):
            return OperationBlocked(
                operation=operation,
                reason="Rate limit exceeded",
                setting="MCP_RATE_LIMIT_CALLS",
            )
        return None

    def check_write_operation(self, operation: str) -> OperationBlocked | None:
        """Check whether a sync or refresh may run.

        Returns:
            OperationBlocked if blocked, None if allowed
        """
        if self._settings.read_only:
            return OperationBlocked(
                operation=operation,
                reason="Server is running in read-only mode",
                setting="MCP_READ_ONLY",
            )

        if not self._rate_limiter.check(f"write:{operation}"):
            return OperationBlocked(
                operation=operation,
                reason="Rate limit exceeded",
                setting="MCP_RATE_LIMIT_CALLS",
            )

        return None

    def check_hard_refresh(
        self,
        target: str,
        confirmed: bool = False,
    ) -> OperationBlocked | ConfirmationRequired | None:
        """Check a hard refresh, which discards ArgoCD's manifest cache.

        Args:
            target: Application being refreshed, for the confirmation text
            confirmed: Whether the caller has confirmed

        Returns:
            OperationBlocked if blocked, ConfirmationRequired if not yet
            confirmed, None if allowed
        """
        # In read-only mode there is nothing to confirm
        if not confirmed and not self._settings.read_only:
            return ConfirmationRequired(
                operation=HARD_REFRESH,
                target=target,
                impact=(
                    "Hard refresh will clear the cache and force a full comparison "
                    f'for application "{target}"'
                ),
                confirmation_instructions="To proceed, repeat the request with confirm=true",
            )
        return self.check_write_operation(HARD_REFRESH)
