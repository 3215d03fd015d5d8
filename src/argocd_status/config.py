# ABOUTME: Configuration management for the ArgoCD status layer
# ABOUTME: Handles environment variables, cache lifetimes, kubectl options and error patterns

"""
Configuration management using pydantic-settings.

=============================================================================
WHAT IS THIS FILE?
=============================================================================

This module holds every tunable of the status layer. It:

1. READS environment variables (like ARGOCD_STATUS_KUBECTL_PATH, MCP_READ_ONLY)
2. VALIDATES them (timeouts are positive, log levels are real levels, etc.)
3. PROVIDES typed access to settings for the runner, caches and services

=============================================================================
ARCHITECTURE: FOUR CONFIGURATION CLASSES
=============================================================================

1. ErrorPatterns: stderr substrings used to classify kubectl failures
   - permission_denied, not_found, timeout, connection_failed
   - kept in configuration so new kubectl versions can be handled
     without touching the classification code

2. SecuritySettings: Security-related settings (MCP_* prefix)
   - Read-only mode, audit log, rate limiting

3. Settings: Main configuration container
   - kubectl binary, kubeconfig and per-call timeout
   - cache lifetimes for detection and application data
   - operation polling interval and timeout
   - operator ConfigMap location
   - Contains ErrorPatterns and SecuritySettings as nested objects

=============================================================================
ENVIRONMENT VARIABLE MAPPING
=============================================================================

kubectl:
    ARGOCD_STATUS_KUBECTL_PATH       -> kubectl binary (default: "kubectl")
    ARGOCD_STATUS_KUBECONFIG         -> kubeconfig file (default: kubectl's own)
    ARGOCD_STATUS_COMMAND_TIMEOUT    -> per-call timeout in seconds (default: 10)
    ARGOCD_STATUS_CONNECT_RETRIES    -> retries on connection failures (default: 2)

Caching and polling:
    ARGOCD_STATUS_DETECTION_TTL      -> detection cache lifetime (default: 300)
    ARGOCD_STATUS_APPLICATIONS_TTL   -> application list lifetime (default: 30)
    ARGOCD_STATUS_POLL_INTERVAL      -> operation poll interval (default: 2)
    ARGOCD_STATUS_OPERATION_TIMEOUT  -> operation tracking budget (default: 300)

Error patterns (JSON lists, or nested with "__"):
    ARGOCD_STATUS_ERROR_PATTERNS__PERMISSION_DENIED='["forbidden", "rbac"]'

Security settings (MCP_ prefix):
    MCP_READ_ONLY           -> Block sync/refresh (default: true)
    MCP_AUDIT_LOG           -> Path to audit log file
    MCP_RATE_LIMIT_CALLS    -> Max calls per window (default: 100)
    MCP_RATE_LIMIT_WINDOW   -> Rate limit window in seconds (default: 60)
"""

from __future__ import annotations

import os
from pathlib import Path  # noqa: TC003 - Required at runtime for Pydantic
from typing import Annotated

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# =============================================================================
# ERROR CLASSIFICATION PATTERNS
# =============================================================================


class ErrorPatterns(BaseModel):
    """
    Substrings that classify a failed kubectl call.

    kubectl does not return structured errors. The only signal is the text it
    writes to stderr, for example:

        Error from server (Forbidden): applications.argoproj.io is forbidden: ...
        Error from server (NotFound): customresourcedefinitions ... not found
        Unable to connect to the server: dial tcp 10.0.0.1:6443: i/o timeout

    Matching is case-insensitive (patterns are lower-cased on load and compared
    against lower-cased stderr). The runner checks the groups in this order:
    timeout, permission_denied, not_found, connection_failed. Anything that
    matches no group is classified as Unknown.
    """

    model_config = {"extra": "ignore"}

    timeout: list[str] = Field(
        default_factory=lambda: ["timeout", "timed out", "deadline exceeded"],
        description="Patterns for requests that ran out of time",
    )

    permission_denied: list[str] = Field(
        default_factory=lambda: [
            "forbidden",
            "unauthorized",
            "permission denied",
            "access denied",
            "not authorized",
            "authentication",
        ],
        description="Patterns for RBAC and credential failures",
    )

    not_found: list[str] = Field(
        default_factory=lambda: [
            "(notfound)",
            "not found",
            "doesn't have a resource type",
            "the server could not find the requested resource",
        ],
        description="Patterns for missing resources or resource types",
    )

    connection_failed: list[str] = Field(
        default_factory=lambda: [
            "connection refused",
            "could not resolve",
            "no such host",
            "unreachable",
            "dial tcp",
            "unable to connect",
            "network",
            "tls handshake",
        ],
        description="Patterns for clusters that cannot be reached",
    )

    @field_validator("timeout", "permission_denied", "not_found", "connection_failed")
    @classmethod
    def lower_case(cls, v: list[str]) -> list[str]:
        """Store patterns lower-cased so matching is case-insensitive."""
        return [p.lower() for p in v if p]


# =============================================================================
# SECURITY SETTINGS
# =============================================================================


class SecuritySettings(BaseSettings):
    """
    Security-related configuration.

    Sync and refresh are the only writes this layer performs. They are blocked
    by default and must be enabled with MCP_READ_ONLY=false. Hard refresh
    additionally asks for confirmation at the call site.
    """

    model_config = SettingsConfigDict(env_prefix="MCP_")

    read_only: bool = Field(
        default=True,
        description="Block sync and refresh operations when true",
    )

    audit_log: Path | None = Field(
        default=None,
        description="Path to audit log file",
    )
    # When None, audit entries go to the structlog stream on stderr.

    rate_limit_calls: int = Field(
        default=100,
        description="Maximum calls per window",
    )

    rate_limit_window: int = Field(
        default=60,
        description="Rate limit window in seconds",
    )


# =============================================================================
# MAIN SETTINGS
# =============================================================================


class Settings(BaseSettings):
    """
    Main configuration.

    USAGE:
    ------
        settings = load_settings()
        settings.detection_ttl          # 300
        settings.error_patterns.not_found
        settings.security.read_only
    """

    model_config = SettingsConfigDict(
        env_prefix="ARGOCD_STATUS_",
        env_nested_delimiter="__",
        extra="ignore",
        populate_by_name=True,
    )

    # -------------------------------------------------------------------------
    # KUBECTL
    # -------------------------------------------------------------------------

    kubectl_path: str = Field(default="kubectl", description="kubectl binary")

    kubeconfig: Path | None = Field(
        default=None,
        description="Explicit kubeconfig file, kubectl default when unset",
    )

    command_timeout: float = Field(
        default=10.0,
        gt=0,
        description="Timeout for a single kubectl call in seconds",
    )
    # Each kubectl call has its own timeout. The operation tracker has a
    # separate, larger budget and shrinks this value as its budget runs out.

    connect_retries: int = Field(
        default=2,
        ge=0,
        description="Extra attempts for calls that fail to reach the cluster",
    )

    single_flight: bool = Field(
        default=True,
        description="Share one in-flight kubectl read between identical concurrent callers",
    )

    # -------------------------------------------------------------------------
    # CACHE LIFETIMES (seconds)
    # -------------------------------------------------------------------------

    detection_ttl: float = Field(default=300.0, gt=0, description="Detection cache lifetime")

    applications_ttl: float = Field(default=30.0, gt=0, description="Application list lifetime")

    # -------------------------------------------------------------------------
    # OPERATION TRACKING
    # -------------------------------------------------------------------------

    poll_interval: float = Field(default=2.0, gt=0, description="Seconds between status polls")

    operation_timeout: float = Field(
        default=300.0,
        gt=0,
        description="Seconds before an operation is reported as timed out",
    )

    sync_initiator: str = Field(
        default="argocd-status",
        description="Username recorded as the initiator of triggered syncs",
    )

    # -------------------------------------------------------------------------
    # CLUSTER LAYOUT
    # -------------------------------------------------------------------------

    operator_namespace: str = Field(
        default="kube9-system",
        description="Namespace of the operator status ConfigMap",
    )

    operator_configmap: str = Field(
        default="kube9-operator-status",
        description="Name of the operator status ConfigMap",
    )

    default_argocd_namespace: str = Field(
        default="argocd",
        description="Namespace assumed when ArgoCD's own namespace is not detected",
    )

    # -------------------------------------------------------------------------
    # LOGGING
    # -------------------------------------------------------------------------

    log_level: Annotated[str, Field(pattern=r"^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$")] = Field(
        default="INFO",
        description="Logging level",
    )

    json_logs: bool = Field(default=False, description="Render logs as JSON lines")

    # -------------------------------------------------------------------------
    # NESTED SETTINGS
    # -------------------------------------------------------------------------

    error_patterns: ErrorPatterns = Field(default_factory=ErrorPatterns)

    security: SecuritySettings = Field(default_factory=SecuritySettings)


# =============================================================================
# SETTINGS LOADER
# =============================================================================


def load_settings() -> Settings:
    """
    Load settings from environment with validation.

    If ARGOCD_STATUS_ENV_FILE is set, additional variables are read from that
    file. Useful for local development:

        ARGOCD_STATUS_KUBECONFIG=~/.kube/kind-config
        ARGOCD_STATUS_COMMAND_TIMEOUT=20
        MCP_READ_ONLY=false

    Raises:
        pydantic.ValidationError: If configuration is invalid.
    """
    return Settings(
        _env_file=os.environ.get("ARGOCD_STATUS_ENV_FILE"),
    )
