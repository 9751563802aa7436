"""Per-instance memo of resolved remote Items.

The cache is filled whenever a remote search runs and consulted before a
single-key remote lookup. It starts empty with each :class:`~cacher.cacher.Cacher`
and is never expired during a run; the remote index drops a key only when it
writes to that key itself.
"""

from collections import OrderedDict
from typing import Optional

from cacher.models import Item, ItemSet


class KeyCache:
    """Bounded map of cache key -> :class:`Item`.

    When full, the least recently stored key is evicted.

    Examples:
        >>> cache = KeyCache(maxsize=2)
        >>> cache.get("team:asset") is None
        True
    """

    def __init__(self, maxsize: int = 1024):
        if maxsize < 1:
            raise ValueError(f"KeyCache maxsize must be positive, got {maxsize}")
        self.maxsize = maxsize
        self._map: "OrderedDict[str, Item]" = OrderedDict()

    def add(self, item_set: ItemSet) -> None:
        """Remember every Item in ``item_set``."""
        for item in item_set:
            self._map[item.key] = item
            self._map.move_to_end(item.key)
        while len(self._map) > self.maxsize:
            self._map.popitem(last=False)

    def get(self, key: str) -> Optional[Item]:
        return self._map.get(key)

    def discard(self, key: str) -> None:
        self._map.pop(key, None)

    def clear(self) -> None:
        self._map.clear()

    def __contains__(self, key: str) -> bool:
        return key in self._map

    def __len__(self) -> int:
        return len(self._map)
