"""Player-facing map mutations that feed the dirty-tracking queue."""
from __future__ import annotations

import logging
import uuid
from typing import TYPE_CHECKING

from tick_city.dirty import DirtyQueue
from tick_city.fire import ignite as _ignite
from tick_city.types import Building, Terrain

if TYPE_CHECKING:
    from tick_city.settings import TickSettings
    from tick_city.store import Store

logger = logging.getLogger(__name__)


class MapActions:
    """Placement, demolition, terrain edits and fire starts.

    Each mutation and its dirty marking share one transaction, so a tick
    never observes one without the other.
    """

    def __init__(self, store: Store, settings: TickSettings) -> None:
        self._store = store
        self._settings = settings
        self._dirty = DirtyQueue(store)

    def _mark(self, map_id: str, x: int, y: int) -> int:
        return self._dirty.mark_dirty(map_id, [(x, y)], self._settings.adjacency_range)

    def place_building(
        self,
        map_id: str,
        x: int,
        y: int,
        building_type_id: str,
        company_id: str | None,
        variant: str | None = None,
        building_id: str | None = None,
    ) -> Building:
        with self._store.transaction():
            tile = self._store.tile_at(map_id, x, y)
            if tile is None:
                raise ValueError(f"No tile at ({x}, {y}) on map {map_id}")
            occupant = self._store.building_on_tile(tile.id)
            if occupant is not None:
                raise ValueError(f"Tile ({x}, {y}) already holds building {occupant.id}")
            if self._store.get_building_type(building_type_id) is None:
                raise KeyError(f"Unknown building type: {building_type_id}")
            building = Building(
                id=building_id or str(uuid.uuid4()),
                building_type_id=building_type_id,
                map_id=map_id,
                tile_id=tile.id,
                x=x,
                y=y,
                company_id=company_id,
                variant=variant,
            )
            self._store.insert_building(building)
            self._mark(map_id, x, y)
            if company_id is not None:
                self._store.reset_idle(company_id)
        logger.info("Placed %s at (%d, %d) on map %s", building_type_id, x, y, map_id)
        return building

    def demolish_building(self, building_id: str) -> None:
        with self._store.transaction():
            building = self._store.get_building(building_id)
            if building is None:
                raise KeyError(f"Building not found: {building_id}")
            self._store.delete_building(building_id)
            self._mark(building.map_id, building.x, building.y)
            if building.company_id is not None:
                self._store.reset_idle(building.company_id)
        logger.info("Demolished building %s", building_id)

    def set_terrain(self, map_id: str, x: int, y: int, terrain: Terrain) -> None:
        with self._store.transaction():
            tile = self._store.tile_at(map_id, x, y)
            if tile is None:
                raise ValueError(f"No tile at ({x}, {y}) on map {map_id}")
            if tile.terrain is terrain:
                return
            self._store.set_terrain(tile.id, terrain)
            self._mark(map_id, x, y)

    def ignite(self, building_id: str) -> bool:
        with self._store.transaction():
            building = self._store.get_building(building_id)
            if building is None:
                raise KeyError(f"Building not found: {building_id}")
            if not _ignite(building):
                return False
            self._store.save_fire_state([building])
        logger.info("Building %s set on fire", building_id)
        return True

    def install_sprinklers(self, building_id: str) -> None:
        with self._store.transaction():
            building = self._store.get_building(building_id)
            if building is None:
                raise KeyError(f"Building not found: {building_id}")
            building.has_sprinklers = True
            self._store.save_fire_state([building])

    def record_action(self, company_id: str) -> None:
        """Reset a company's idle counter so it earns again."""
        self._store.reset_idle(company_id)
