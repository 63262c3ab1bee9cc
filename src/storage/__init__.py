"""Storage — store contract, in-memory implementation, write-ahead journal."""

from src.storage.base import Store
from src.storage.journal import Journal
from src.storage.memory import MemoryStore

__all__ = [
    "Journal",
    "MemoryStore",
    "Store",
]
