"""Bounded membership cache of recently processed signatures."""

from collections import OrderedDict
from typing import Iterable


class SeenSignatureCache:
    """LRU set of signatures used to short-circuit duplicate delivery.

    Eviction policy: when full, the least recently added or touched signature
    is dropped. This is an optimisation only; the store's unique key is what
    guarantees no duplicate rows.

    Example:
        seen = SeenSignatureCache(max_size=10_000)
        if not seen.contains(sig):
            process(sig)
            seen.add(sig)
    """

    def __init__(self, max_size: int = 10_000):
        if max_size < 1:
            raise ValueError("max_size must be positive")
        self._max_size = max_size
        self._entries: OrderedDict[str, None] = OrderedDict()
        self._evictions = 0

    def add(self, signature: str) -> None:
        """Mark signature as seen, evicting the oldest entry when over capacity."""
        if signature in self._entries:
            self._entries.move_to_end(signature)
            return
        self._entries[signature] = None
        while len(self._entries) > self._max_size:
            self._entries.popitem(last=False)
            self._evictions += 1

    def update(self, signatures: Iterable[str]) -> None:
        for signature in signatures:
            self.add(signature)

    def contains(self, signature: str) -> bool:
        """Membership test; a hit refreshes the entry's recency."""
        if signature in self._entries:
            self._entries.move_to_end(signature)
            return True
        return False

    def __contains__(self, signature: str) -> bool:
        return signature in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def clear(self) -> None:
        self._entries.clear()

    @property
    def max_size(self) -> int:
        return self._max_size

    @property
    def evictions(self) -> int:
        return self._evictions
