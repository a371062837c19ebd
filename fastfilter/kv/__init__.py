"""Session state backends."""

from .base import KVStore
from .disk import Disk
from .memory import Memory

__all__ = ["Disk", "KVStore", "Memory"]
