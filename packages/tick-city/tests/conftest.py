"""Shared fixtures: in-memory stores and small hand-built maps."""
from __future__ import annotations

import pytest

from tick_city.store import Store
from tick_city.types import Building, BuildingType, Company, GameMap, LocationTier, Terrain, Tile


def make_tiles(map_id: str, size: int, terrain: dict[tuple[int, int], Terrain] | None = None) -> list[Tile]:
    terrain = terrain or {}
    return [
        Tile(id=f"{map_id}:{x},{y}", map_id=map_id, x=x, y=y,
             terrain=terrain.get((x, y), Terrain.FREE_LAND))
        for x in range(size)
        for y in range(size)
    ]


SHOP = BuildingType(id="shop", name="Shop", base_profit=100, cost=1000)


class World:
    """Builds maps, companies and buildings in a store."""

    def __init__(self, store: Store) -> None:
        self.store = store
        self.store.add_building_type(SHOP)

    def add_map(
        self,
        map_id: str = "m1",
        size: int = 7,
        tier: LocationTier = LocationTier.TOWN,
        terrain: dict[tuple[int, int], Terrain] | None = None,
    ) -> GameMap:
        game_map = GameMap(id=map_id, name=map_id, location_tier=tier, width=size, height=size)
        self.store.add_map(game_map)
        self.store.add_tiles(make_tiles(map_id, size, terrain))
        return game_map

    def add_company(self, company_id: str = "acme", cash: int = 0, idle: int = 0) -> Company:
        company = Company(id=company_id, name=company_id, cash=cash, ticks_since_action=idle)
        self.store.add_company(company)
        return company

    def add_building(
        self,
        building_id: str,
        x: int,
        y: int,
        map_id: str = "m1",
        company_id: str | None = "acme",
        building_type_id: str = "shop",
        **fields,
    ) -> Building:
        building = Building(
            id=building_id,
            building_type_id=building_type_id,
            map_id=map_id,
            tile_id=f"{map_id}:{x},{y}",
            x=x,
            y=y,
            company_id=company_id,
            **fields,
        )
        self.store.insert_building(building)
        return building


@pytest.fixture
def store():
    s = Store()
    s.create_schema()
    yield s
    s.close()


@pytest.fixture
def world(store):
    return World(store)
