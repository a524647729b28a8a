"""Small in-memory caches shared by the similarity, URL and options layers."""
import time
from collections import OrderedDict
from typing import Any, Callable, Dict, Hashable, Optional, Tuple

_MISSING = object()


class LRUCache:
    """Bounded mapping that evicts the least recently used entry."""

    def __init__(self, max_size: int):
        if max_size <= 0:
            raise ValueError(f"max_size must be positive, got {max_size}")
        self.max_size = max_size
        self._data: "OrderedDict[Hashable, Any]" = OrderedDict()

    def get(self, key: Hashable, default: Any = None) -> Any:
        """Return the cached value and mark it as most recently used."""
        value = self._data.get(key, _MISSING)
        if value is _MISSING:
            return default
        self._data.move_to_end(key)
        return value

    def put(self, key: Hashable, value: Any) -> None:
        """Insert or refresh an entry, evicting the oldest if over capacity."""
        self._data[key] = value
        self._data.move_to_end(key)
        while len(self._data) > self.max_size:
            self._data.popitem(last=False)

    def clear(self) -> None:
        self._data.clear()

    def __contains__(self, key: Hashable) -> bool:
        return key in self._data

    def __len__(self) -> int:
        return len(self._data)


class TTLCache:
    """Mapping whose entries expire ``ttl`` seconds after insertion."""

    def __init__(self, ttl: float, clock: Callable[[], float] = time.monotonic):
        self.ttl = ttl
        self._clock = clock
        self._data: Dict[Hashable, Tuple[Any, float]] = {}

    def get(self, key: Hashable, default: Any = None) -> Any:
        entry = self._data.get(key)
        if entry is None:
            return default
        value, stored_at = entry
        if self._clock() - stored_at >= self.ttl:
            del self._data[key]
            return default
        return value

    def lookup(self, key: Hashable) -> Tuple[bool, Optional[Any]]:
        """Return ``(hit, value)`` so cached falsy values are distinguishable."""
        value = self.get(key, _MISSING)
        if value is _MISSING:
            return False, None
        return True, value

    def put(self, key: Hashable, value: Any) -> None:
        self._data[key] = (value, self._clock())

    def invalidate(self, key: Optional[Hashable] = None) -> None:
        """Drop one entry, or every entry when ``key`` is None."""
        if key is None:
            self._data.clear()
        else:
            self._data.pop(key, None)

    def __len__(self) -> int:
        return len(self._data)
