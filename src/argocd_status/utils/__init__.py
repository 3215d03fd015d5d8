# ABOUTME: Utilities package initialization for the ArgoCD status layer
# ABOUTME: Contains kubectl execution, safety checks and logging

"""
ArgoCD Status Utilities Package

Shared utilities:
    - runner.py: kubectl runner with error classification and retry logic
    - safety.py: Read-only mode, rate limiting and hard-refresh confirmation
    - logging.py: Structured logging with correlation IDs and audit trail
"""
