"""Tests for the data model: building types, terrain maps, damage clamping."""

import pytest

from tick_city import modifiers
from tick_city.modifiers import ModifierEntry, ModifierSource
from tick_city.types import (
    Building,
    BuildingType,
    MapProcessingError,
    Terrain,
    TickCityError,
    TickNotFoundError,
    TickRecord,
    UnknownTerrainError,
    clamp_damage,
    parse_terrain_map,
)


class TestTerrainMaps:
    def test_parse_from_json_text(self) -> None:
        parsed = parse_terrain_map('{"road": 0.15, "trees": 0.05}')
        assert parsed == {Terrain.ROAD: 0.15, Terrain.TREES: 0.05}

    def test_parse_empty(self) -> None:
        assert parse_terrain_map(None) == {}
        assert parse_terrain_map("") == {}

    def test_unknown_terrain_rejected(self) -> None:
        with pytest.raises(UnknownTerrainError) as info:
            parse_terrain_map({"lava": 0.5})
        assert info.value.name == "lava"
        assert isinstance(info.value, ValueError)


class TestBuildingType:
    def test_from_row_folds_commercial_bonus(self) -> None:
        bt = BuildingType.from_row("shop", "Shop", 400, 4000, {"road": 0.15, "commercial": 0.1}, {})
        assert bt.adjacency_bonuses == {Terrain.ROAD: 0.15}
        assert bt.commercial_synergy == 0.1

    def test_from_row_ignores_commercial_penalty(self) -> None:
        bt = BuildingType.from_row("manor", "Manor", 6000, 60000, {"water": 0.2}, {"commercial": -0.15})
        assert bt.adjacency_penalties == {}
        assert bt.commercial_synergy == 0.0

    def test_explicit_synergy_wins(self) -> None:
        bt = BuildingType.from_row("shop", "Shop", 1, 1, {"commercial": 0.1}, None, commercial_synergy=0.3)
        assert bt.commercial_synergy == 0.3

    def test_string_keys_rejected_on_direct_construction(self) -> None:
        with pytest.raises(UnknownTerrainError):
            BuildingType(id="x", name="X", base_profit=1, cost=1, adjacency_bonuses={"road": 0.1})

    def test_negative_cost_rejected(self) -> None:
        with pytest.raises(ValueError):
            BuildingType(id="x", name="X", base_profit=1, cost=-1)


class TestBuilding:
    def test_damage_clamped_on_construction(self) -> None:
        b = Building(id="b", building_type_id="shop", map_id="m", tile_id="t", x=0, y=0,
                     damage_percent=150)
        assert b.damage_percent == 100

    def test_clamp_damage(self) -> None:
        assert clamp_damage(-5) == 0
        assert clamp_damage(42) == 42
        assert clamp_damage(105) == 100

    def test_effective_damage_of_collapsed_is_full(self) -> None:
        b = Building(id="b", building_type_id="shop", map_id="m", tile_id="t", x=0, y=0,
                     damage_percent=60, is_collapsed=True)
        assert b.effective_damage == 100


class TestErrors:
    def test_hierarchy(self) -> None:
        assert issubclass(MapProcessingError, TickCityError)
        assert issubclass(TickNotFoundError, KeyError)

    def test_map_processing_message(self) -> None:
        err = MapProcessingError("m1", "RuntimeError: boom")
        assert err.map_id == "m1"
        assert str(err) == "Map m1: RuntimeError: boom"


class TestTickRecord:
    def test_failed_follows_errors(self) -> None:
        record = TickRecord(id="t", processed_at="2026-01-01T00:00:00+00:00")
        assert not record.failed
        record.errors.append({"map_id": "m1", "message": "boom"})
        assert record.failed
        assert record.to_dict()["errors"] == [{"map_id": "m1", "message": "boom"}]


class TestModifierEntries:
    def test_serialization_is_stable(self) -> None:
        entries = [
            ModifierEntry(ModifierSource.TERRAIN_BONUS, 0.1, terrain="road"),
            ModifierEntry(ModifierSource.DAMAGED_NEIGHBOR, -0.05, damage=50),
        ]
        text = modifiers.dumps(entries)
        assert text == modifiers.dumps(entries)
        assert modifiers.loads(text) == entries

    def test_loads_empty(self) -> None:
        assert modifiers.loads(None) == []
        assert modifiers.loads("") == []

    def test_labels(self) -> None:
        assert ModifierEntry(ModifierSource.TERRAIN_BONUS, 0.1, terrain="road", count=2).label() == "Adjacent road (2)"
        assert ModifierEntry(ModifierSource.COLLAPSED_NEIGHBOR, -0.1).label() == "Collapsed building nearby"

    def test_total(self) -> None:
        entries = [
            ModifierEntry(ModifierSource.TERRAIN_BONUS, 0.25),
            ModifierEntry(ModifierSource.COMPETITION, -0.08),
        ]
        assert modifiers.total(entries) == pytest.approx(0.17)
