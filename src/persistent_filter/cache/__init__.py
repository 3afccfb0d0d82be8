"""Cache strategies and the on-disk backend."""

from .backend import CacheEntry, DiskCache
from .processor import Processor
from .strategies import CacheStrategy, DefaultStrategy, PersistentStrategy

__all__ = [
    "CacheEntry",
    "CacheStrategy",
    "DefaultStrategy",
    "DiskCache",
    "PersistentStrategy",
    "Processor",
]
