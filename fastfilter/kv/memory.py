"""In-memory KV store."""

from typing import Iterable

from .base import KVStore


class Memory(KVStore):
    """A dict-backed KV store, the default for a filter session."""

    def __init__(self) -> None:
        self.memory: dict[str, bytes] = {}

    def get(self, key: str) -> bytes | None:
        return self.memory.get(key)

    def set(self, key: str, value: bytes) -> None:
        if not isinstance(value, bytes):
            raise TypeError(f"Expected bytes, got {type(value).__name__}")
        self.memory[key] = value

    def keys(self) -> Iterable[str]:
        return self.memory.keys()

    def __contains__(self, key: str) -> bool:
        return key in self.memory
