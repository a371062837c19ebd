"""Abstract KV store interface for session state."""

from abc import ABC, abstractmethod
from typing import Iterable


class KVStore(ABC):
    """Key-value store operating on bytes only.

    The mark table and the graph rewriter keep one record per mark
    here. Records are pickled by those layers; the store never
    interprets values, and records are never removed during a session.
    """

    @abstractmethod
    def get(self, key: str) -> bytes | None:
        """Get bytes value for key, or None if not found."""

    @abstractmethod
    def set(self, key: str, value: bytes) -> None:
        """Set bytes value for key."""

    @abstractmethod
    def keys(self) -> Iterable[str]:
        """Iterate over all keys."""

    @abstractmethod
    def __contains__(self, key: str) -> bool:
        """Check if key exists in store."""

    def close(self) -> None:
        """Release any resources held by the backend."""
