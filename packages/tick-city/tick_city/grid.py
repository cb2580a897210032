"""MapIndex - coordinate-keyed tile and building lookup with Chebyshev scans."""
from __future__ import annotations

from typing import Iterable

from tick_city.types import Building, Tile

_ORTHOGONAL = ((-1, 0), (1, 0), (0, -1), (0, 1))


def chebyshev(a: tuple[int, int], b: tuple[int, int]) -> int:
    return max(abs(a[0] - b[0]), abs(a[1] - b[1]))


def square_offsets(radius: int) -> list[tuple[int, int]]:
    """All (dx, dy) with max(|dx|, |dy|) <= radius, excluding (0, 0)."""
    return [
        (dx, dy)
        for dx in range(-radius, radius + 1)
        for dy in range(-radius, radius + 1)
        if dx or dy
    ]


class MapIndex:
    """Lookup structure for one map, built once per map per tick.

    Tiles and buildings are keyed by (x, y) so neighbor scans cost
    O(radius^2) regardless of map size. Collapsed buildings stay in the
    index; callers decide whether they count.
    """

    def __init__(self, tiles: Iterable[Tile], buildings: Iterable[Building] = ()) -> None:
        self._tiles: dict[tuple[int, int], Tile] = {}
        self._tiles_by_id: dict[str, Tile] = {}
        self._buildings: dict[tuple[int, int], Building] = {}
        self._buildings_by_id: dict[str, Building] = {}
        for tile in tiles:
            self._tiles[(tile.x, tile.y)] = tile
            self._tiles_by_id[tile.id] = tile
        for building in buildings:
            self.place(building)

    # --- Mutation ---

    def place(self, building: Building) -> None:
        pos = (building.x, building.y)
        if pos not in self._tiles:
            raise ValueError(f"No tile at ({building.x}, {building.y})")
        existing = self._buildings.get(pos)
        if existing is not None and existing.id != building.id:
            raise ValueError(
                f"Tile ({building.x}, {building.y}) already holds building {existing.id}"
            )
        self.remove(building.id)
        self._buildings[pos] = building
        self._buildings_by_id[building.id] = building

    def remove(self, building_id: str) -> None:
        building = self._buildings_by_id.pop(building_id, None)
        if building is not None:
            self._buildings.pop((building.x, building.y), None)

    def set_tile(self, tile: Tile) -> None:
        self._tiles[(tile.x, tile.y)] = tile
        self._tiles_by_id[tile.id] = tile

    # --- Single lookups ---

    def tile_at(self, x: int, y: int) -> Tile | None:
        return self._tiles.get((x, y))

    def tile(self, tile_id: str) -> Tile | None:
        return self._tiles_by_id.get(tile_id)

    def building_at(self, x: int, y: int) -> Building | None:
        return self._buildings.get((x, y))

    def building_on(self, tile: Tile) -> Building | None:
        return self._buildings.get((tile.x, tile.y))

    def building(self, building_id: str) -> Building | None:
        return self._buildings_by_id.get(building_id)

    def buildings(self) -> list[Building]:
        return list(self._buildings_by_id.values())

    def tiles(self) -> list[Tile]:
        return list(self._tiles.values())

    # --- Neighborhood queries ---

    def neighbors(self, x: int, y: int, radius: int) -> list[Tile]:
        """Tiles within Chebyshev radius of (x, y), excluding the center."""
        result: list[Tile] = []
        for dx, dy in square_offsets(radius):
            tile = self._tiles.get((x + dx, y + dy))
            if tile is not None:
                result.append(tile)
        return result

    def neighbor_buildings(self, x: int, y: int, radius: int) -> list[Building]:
        """Buildings (collapsed included) within radius, excluding the center."""
        result: list[Building] = []
        for dx, dy in square_offsets(radius):
            building = self._buildings.get((x + dx, y + dy))
            if building is not None:
                result.append(building)
        return result

    def orthogonal(self, x: int, y: int) -> list[tuple[int, int]]:
        """The four edge-adjacent coordinates that exist on the map."""
        result: list[tuple[int, int]] = []
        for dx, dy in _ORTHOGONAL:
            pos = (x + dx, y + dy)
            if pos in self._tiles:
                result.append(pos)
        return result

    def __len__(self) -> int:
        return len(self._tiles)
