from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Dict, FrozenSet, Iterator, List

from parts_pricing.engine.catalog.models import Category
from parts_pricing.util.errors import ConflictError

GLOBAL_KEY = "*"
STRATEGIES = ("global", "category")


class LotLocks:
    """Write locks serializing apply and revert over overlapping item sets.

    ``global`` holds one lock for every mutation. ``category`` holds one lock
    per category, always taken in sorted order; a lot without a category
    filter takes all of them.
    """

    def __init__(self, *, strategy: str = "global", timeout_seconds: float = 30.0) -> None:
        if strategy not in STRATEGIES:
            raise ValueError(f"unsupported lock strategy: {strategy}")
        self.strategy = strategy
        self.timeout_seconds = timeout_seconds
        keys = [GLOBAL_KEY] if strategy == "global" else [category.value for category in Category]
        self._locks: Dict[str, threading.Lock] = {key: threading.Lock() for key in keys}

    def keys_for(self, categories: FrozenSet[Category]) -> List[str]:
        if self.strategy == "global":
            return [GLOBAL_KEY]
        selected = categories or frozenset(Category)
        return sorted(category.value for category in selected)

    @contextmanager
    def hold(self, categories: FrozenSet[Category]) -> Iterator[None]:
        acquired: List[threading.Lock] = []
        try:
            for key in self.keys_for(categories):
                lock = self._locks[key]
                if not lock.acquire(timeout=self.timeout_seconds):
                    raise ConflictError(f"another lot is updating {key}; retry later")
                acquired.append(lock)
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()
