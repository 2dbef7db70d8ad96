"""Top-level package for idea_recommender.

Submodules are imported lazily: ``infrastructure.db`` builds its engine at import time and needs a
DSN, so nothing here touches it.
"""

__all__ = ["config", "models", "ml", "tasks", "analytics", "api"]
