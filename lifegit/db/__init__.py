"""Storage backends for LifeGit."""

from lifegit.db.memory import InMemoryStore
from lifegit.db.store import Store

__all__ = ["InMemoryStore", "Store"]
