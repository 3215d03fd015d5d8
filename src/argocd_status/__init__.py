# ABOUTME: ArgoCD status package initialization
# ABOUTME: Exposes version information and the package layout

"""
ArgoCD status - installation detection, cached application status and tracked syncs.

=============================================================================
WHAT IS THIS PACKAGE?
=============================================================================

A layer between a user interface (a tree view, a detail panel, an MCP
client) and kubectl. It answers three questions about a kube context:

1. IS ArgoCD installed, and where?              -> core.detection
2. WHAT applications exist, in which state?     -> core.resources
3. DID the sync I just started succeed?         -> core.tracker

kubectl is slow and clusters are sometimes unreachable, so answers are cached
per context (core.cache), failures are classified (core.errors), and a
stale answer is preferred over an empty one when the cluster hiccups.

=============================================================================
PACKAGE STRUCTURE OVERVIEW
=============================================================================

argocd_status/
├── __init__.py          <- YOU ARE HERE: Package entry point
├── config.py            <- Settings (env vars, TTLs, error patterns)
├── server.py            <- Composition root and MCP tools
├── core/
│   ├── models.py        <- Typed records and total JSON parsing
│   ├── errors.py        <- Error taxonomy
│   ├── cache.py         <- TTL cache
│   ├── operator.py      <- Operator status ConfigMap reader
│   ├── detection.py     <- Is ArgoCD installed?
│   ├── resources.py     <- Application list/get, sync, refresh
│   ├── tracker.py       <- Operation polling
│   ├── presentation.py  <- Status icons and display details
│   └── channel.py       <- Typed request/event channel for detail views
└── utils/
    ├── runner.py        <- kubectl execution and error classification
    ├── logging.py       <- Structured logging with audit trails
    └── safety.py        <- Read-only mode, rate limiting, confirmation
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
