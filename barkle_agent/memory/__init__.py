from .dedup import Deduplicator
from .engine import MemoryEngine
from .store import MemoryStore

__all__ = ["Deduplicator", "MemoryEngine", "MemoryStore"]
