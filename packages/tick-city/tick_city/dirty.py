"""Dirty-tracking queue bounding recomputation to affected buildings."""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Iterable

from tick_city.types import Building

if TYPE_CHECKING:
    from tick_city.store import Store

logger = logging.getLogger(__name__)


class DirtyQueue:
    """Marks and drains buildings whose profit/value must be recomputed.

    Adjacency effects are symmetric, so a change at one tile dirties every
    non-collapsed building within ``radius`` of it, the building on the
    tile included.
    """

    def __init__(self, store: Store) -> None:
        self._store = store

    def mark_dirty(self, map_id: str, coords: Iterable[tuple[int, int]], radius: int) -> int:
        """Flag buildings around each coordinate. Returns rows touched."""
        marked = 0
        seen: set[tuple[int, int]] = set()
        with self._store.transaction():
            for x, y in coords:
                if (x, y) in seen:
                    continue
                seen.add((x, y))
                marked += self._store.mark_dirty(map_id, x, y, radius)
        if marked:
            logger.debug("Marked %d building flags dirty on map %s", marked, map_id)
        return marked

    def drain(self, map_id: str) -> list[Building]:
        """Atomically claim and clear every dirty building on a map.

        Draining an empty queue returns an empty list and writes nothing.
        """
        return self._store.claim_dirty(map_id)

    def pending(self, map_id: str) -> set[str]:
        return self._store.dirty_ids(map_id)
