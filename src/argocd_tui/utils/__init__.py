# ABOUTME: Utilities package initialization for the Argo CD session engine
# ABOUTME: Contains backend clients, safety guards and logging

"""
argocd-tui Utilities Package

Shared utilities:
    - backend.py: BackendClient protocol implemented by both clients
    - client.py: Argo CD API client wrapper with retry logic
    - mock.py: Deterministic in-memory backend with failure injection
    - safety.py: Read-only guard and type-to-confirm helpers
    - logging.py: Structured logging with correlation IDs
"""
