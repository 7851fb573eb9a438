"""Lab "logger" host provisioner (Python-first, state-driven).

Core design goals:
- Strictly sequential, idempotent stages
- Dynamic artifact resolution with pinned fallbacks
- Bounded readiness polls
- Collaborators (commands, packages, services, HTTP) injected for testing
- Centralized logging
"""

__all__ = []
