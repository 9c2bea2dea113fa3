# ABOUTME: Utilities package initialization for ArgoCD tasks
# ABOUTME: Contains command building, output extraction, runners, and logging

"""
ArgoCD Tasks Utilities Package

Shared utilities:
    - commands.py: argocd command-line construction
    - extract.py: JSON extraction and status field mapping
    - runner.py: Shell and Docker process runners
    - logging.py: Structured logging with correlation IDs
    - masking.py: Secret masking for log output
"""
