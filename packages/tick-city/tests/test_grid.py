"""Tests for MapIndex neighborhood scans."""

import pytest

from tick_city.grid import MapIndex, chebyshev, square_offsets
from tick_city.types import Building, Terrain, Tile


def _tiles(size):
    return [Tile(id=f"m:{x},{y}", map_id="m", x=x, y=y) for x in range(size) for y in range(size)]


def _building(bid, x, y, **kw):
    return Building(id=bid, building_type_id="shop", map_id="m", tile_id=f"m:{x},{y}", x=x, y=y, **kw)


def test_chebyshev():
    assert chebyshev((0, 0), (2, 1)) == 2
    assert chebyshev((3, 3), (3, 3)) == 0
    assert chebyshev((0, 0), (-4, 2)) == 4


def test_square_offsets_excludes_center():
    offsets = square_offsets(1)
    assert len(offsets) == 8
    assert (0, 0) not in offsets
    assert len(square_offsets(2)) == 24


class TestNeighbors:
    def test_interior_radius_two(self) -> None:
        index = MapIndex(_tiles(5))
        tiles = index.neighbors(2, 2, 2)
        assert len(tiles) == 24
        assert all((t.x, t.y) != (2, 2) for t in tiles)

    def test_corner_clipped_to_map(self) -> None:
        index = MapIndex(_tiles(5))
        assert len(index.neighbors(0, 0, 1)) == 3
        assert len(index.neighbors(0, 0, 2)) == 8

    def test_all_within_radius(self) -> None:
        index = MapIndex(_tiles(9))
        for tile in index.neighbors(4, 4, 3):
            assert chebyshev((tile.x, tile.y), (4, 4)) <= 3

    def test_neighbor_buildings_include_collapsed(self) -> None:
        index = MapIndex(_tiles(5), [
            _building("a", 1, 1),
            _building("b", 2, 2),
            _building("c", 3, 3, is_collapsed=True),
            _building("far", 4, 4),
        ])
        found = {b.id for b in index.neighbor_buildings(2, 2, 1)}
        assert found == {"a", "c"}

    def test_orthogonal(self) -> None:
        index = MapIndex(_tiles(3))
        assert sorted(index.orthogonal(1, 1)) == [(0, 1), (1, 0), (1, 2), (2, 1)]
        assert sorted(index.orthogonal(0, 0)) == [(0, 1), (1, 0)]


class TestPlacement:
    def test_place_and_lookup(self) -> None:
        index = MapIndex(_tiles(3))
        b = _building("a", 1, 2)
        index.place(b)
        assert index.building_at(1, 2) is b
        assert index.building("a") is b
        assert index.building_on(index.tile_at(1, 2)) is b

    def test_place_off_map_rejected(self) -> None:
        index = MapIndex(_tiles(3))
        with pytest.raises(ValueError):
            index.place(_building("a", 5, 5))

    def test_place_on_occupied_tile_rejected(self) -> None:
        index = MapIndex(_tiles(3), [_building("a", 1, 1)])
        with pytest.raises(ValueError):
            index.place(_building("b", 1, 1))

    def test_remove(self) -> None:
        index = MapIndex(_tiles(3), [_building("a", 1, 1)])
        index.remove("a")
        assert index.building_at(1, 1) is None
        assert index.buildings() == []

    def test_set_tile_replaces_terrain(self) -> None:
        index = MapIndex(_tiles(3))
        index.set_tile(Tile(id="m:1,1", map_id="m", x=1, y=1, terrain=Terrain.WATER))
        assert index.tile_at(1, 1).terrain is Terrain.WATER
        assert index.tile("m:1,1").terrain is Terrain.WATER
        assert len(index) == 9
