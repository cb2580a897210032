"""Building catalog and demo map generation."""
from __future__ import annotations

import random
from typing import TYPE_CHECKING

from tick_city.types import BuildingType, Company, GameMap, LocationTier, Terrain, Tile

if TYPE_CHECKING:
    from tick_city.store import Store


def _bt(id: str, name: str, cost: int, base_profit: int, bonuses: dict, penalties: dict) -> BuildingType:
    return BuildingType.from_row(id, name, base_profit, cost, bonuses, penalties)


BUILDING_TYPES: list[BuildingType] = [
    _bt("market_stall", "Market Stall", 1000, 100, {"road": 0.15, "trees": 0.05}, {"water": -0.1}),
    _bt("hot_dog_stand", "Hot Dog Stand", 1500, 150, {"road": 0.2}, {"water": -0.1}),
    _bt("campsite", "Campsite", 3000, 300,
        {"water": 0.25, "trees": 0.15}, {"road": -0.1, "dirt_track": -0.05}),
    _bt("shop", "Shop", 4000, 400, {"road": 0.15, "commercial": 0.1}, {}),
    _bt("burger_bar", "Burger Bar", 8000, 800, {"road": 0.2, "commercial": 0.1}, {"water": -0.05}),
    _bt("motel", "Motel", 12000, 1200, {"road": 0.15, "water": 0.1}, {}),
    _bt("high_street_store", "High Street Store", 20000, 2000,
        {"road": 0.25, "commercial": 0.15}, {"dirt_track": -0.1}),
    _bt("restaurant", "Restaurant", 40000, 4000,
        {"road": 0.2, "water": 0.15, "commercial": 0.1}, {}),
    # Only the bonus map sets commercial synergy; the Manor's penalty entry is inert.
    _bt("manor", "Manor", 60000, 6000, {"water": 0.2, "trees": 0.2}, {"road": -0.1, "commercial": -0.15}),
    _bt("casino", "Casino", 80000, 8000, {"road": 0.3, "commercial": 0.2}, {"trees": -0.1}),
]

BUILDING_TYPE_IDS = [bt.id for bt in BUILDING_TYPES]


def generate_tiles(map_id: str, width: int, height: int, seed: int = 42) -> list[Tile]:
    """Grid-plan town: a road every fourth row/column, a river, scattered trees."""
    rng = random.Random(seed)
    river_x = rng.randrange(width)
    tiles: list[Tile] = []
    for x in range(width):
        for y in range(height):
            if x == river_x:
                terrain = Terrain.WATER
            elif x % 4 == 0 or y % 4 == 0:
                terrain = Terrain.ROAD
            else:
                roll = rng.random()
                if roll < 0.15:
                    terrain = Terrain.TREES
                elif roll < 0.25:
                    terrain = Terrain.DIRT_TRACK
                else:
                    terrain = Terrain.FREE_LAND
            tiles.append(Tile(id=f"{map_id}:{x},{y}", map_id=map_id, x=x, y=y, terrain=terrain))
    return tiles


def seed_demo(
    store: Store,
    map_id: str = "demo",
    size: int = 16,
    tier: LocationTier = LocationTier.TOWN,
    seed: int = 42,
) -> GameMap:
    """Create the catalog, one map and two companies in an empty store."""
    with store.transaction():
        existing = store.load_building_types()
        for bt in BUILDING_TYPES:
            if bt.id not in existing:
                store.add_building_type(bt)
        game_map = GameMap(id=map_id, name=map_id.title(), location_tier=tier, width=size, height=size)
        store.add_map(game_map)
        store.add_tiles(generate_tiles(map_id, size, size, seed))
        for company_id in ("acme", "globex"):
            if store.get_company(company_id) is None:
                store.add_company(Company(id=company_id, name=company_id.title(), cash=10_000))
    return game_map
