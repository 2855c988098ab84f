"""Deterministic string hashing with a bounded LRU cache in front of it."""

from __future__ import annotations

from collections import OrderedDict
from typing import Generic, Hashable, TypeVar

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")

DEFAULT_CACHE_SIZE = 10_000


def rolling_hash(text: str) -> str:
    """32-bit rolling hash (``h * 31 + c``) rendered as 8+ hex digits.

    Iterates UTF-16 code units so identifiers match ones produced by the
    host chat application for the same text.
    """
    if not text:
        return "0"
    value = 0
    units = text.encode("utf-16-le")
    for i in range(0, len(units), 2):
        unit = units[i] | (units[i + 1] << 8)
        value = ((value << 5) - value + unit) & 0xFFFFFFFF
    if value & 0x80000000:
        value -= 0x100000000
    return format(abs(value), "x").zfill(8)


class LRUCache(Generic[K, V]):
    """Least-recently-used mapping with a fixed capacity."""

    def __init__(self, max_size: int = DEFAULT_CACHE_SIZE) -> None:
        self.max_size = max(1, int(max_size))
        self._data: OrderedDict[K, V] = OrderedDict()

    def get(self, key: K) -> V | None:
        if key not in self._data:
            return None
        self._data.move_to_end(key)
        return self._data[key]

    def set(self, key: K, value: V) -> None:
        if key in self._data:
            self._data.move_to_end(key)
        elif len(self._data) >= self.max_size:
            self._data.popitem(last=False)
        self._data[key] = value

    def delete(self, key: K) -> bool:
        return self._data.pop(key, None) is not None

    def clear(self) -> None:
        self._data.clear()

    def __contains__(self, key: object) -> bool:
        return key in self._data

    def __len__(self) -> int:
        return len(self._data)


class HashCache:
    """Memoized ``rolling_hash``; hashes are stable for the process lifetime."""

    def __init__(self, max_size: int = DEFAULT_CACHE_SIZE) -> None:
        self._cache: LRUCache[str, str] = LRUCache(max_size)

    def hash(self, text: str) -> str:
        cached = self._cache.get(text)
        if cached is not None:
            return cached
        value = rolling_hash(text)
        self._cache.set(text, value)
        return value

    def clear(self) -> None:
        self._cache.clear()

    @property
    def size(self) -> int:
        return len(self._cache)
