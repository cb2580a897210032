"""Tests for player-facing map mutations."""

import pytest

from tick_city.actions import MapActions
from tick_city.dirty import DirtyQueue
from tick_city.settings import TickSettings
from tick_city.types import Terrain


class TestMapActions:
    def _setup(self, world):
        world.add_map(size=7)
        world.add_company(idle=4)
        world.add_building("near", 1, 1)
        world.add_building("far", 6, 6)
        queue = DirtyQueue(world.store)
        queue.drain("m1")
        return MapActions(world.store, TickSettings()), queue

    def test_place_marks_neighborhood(self, world) -> None:
        actions, queue = self._setup(world)
        building = actions.place_building("m1", 2, 2, "shop", "acme", building_id="new")
        assert building.tile_id == "m1:2,2"
        assert queue.pending("m1") == {"new", "near"}
        assert world.store.get_company("acme").ticks_since_action == 0

    def test_place_generates_id(self, world) -> None:
        actions, _ = self._setup(world)
        building = actions.place_building("m1", 3, 3, "shop", None)
        assert world.store.get_building(building.id) is not None

    def test_place_on_occupied_tile(self, world) -> None:
        actions, queue = self._setup(world)
        with pytest.raises(ValueError):
            actions.place_building("m1", 1, 1, "shop", "acme")
        assert queue.pending("m1") == set()

    def test_place_off_map(self, world) -> None:
        actions, _ = self._setup(world)
        with pytest.raises(ValueError):
            actions.place_building("m1", 10, 10, "shop", "acme")

    def test_place_unknown_type(self, world) -> None:
        actions, _ = self._setup(world)
        with pytest.raises(KeyError):
            actions.place_building("m1", 3, 3, "spaceport", "acme")

    def test_demolish_marks_neighbors(self, world) -> None:
        actions, queue = self._setup(world)
        world.add_building("victim", 5, 5, needs_recalc=False)
        actions.demolish_building("victim")
        assert world.store.get_building("victim") is None
        assert queue.pending("m1") == {"far"}

    def test_demolish_unknown(self, world) -> None:
        actions, _ = self._setup(world)
        with pytest.raises(KeyError):
            actions.demolish_building("nope")

    def test_set_terrain(self, world) -> None:
        actions, queue = self._setup(world)
        actions.set_terrain("m1", 0, 0, Terrain.WATER)
        assert world.store.tile_at("m1", 0, 0).terrain is Terrain.WATER
        assert queue.pending("m1") == {"near"}

    def test_set_same_terrain_is_noop(self, world) -> None:
        actions, queue = self._setup(world)
        actions.set_terrain("m1", 0, 0, Terrain.FREE_LAND)
        assert queue.pending("m1") == set()

    def test_ignite(self, world) -> None:
        actions, _ = self._setup(world)
        assert actions.ignite("near")
        assert world.store.get_building("near").is_on_fire
        assert not actions.ignite("near")

    def test_install_sprinklers(self, world) -> None:
        actions, _ = self._setup(world)
        actions.install_sprinklers("far")
        assert world.store.get_building("far").has_sprinklers

    def test_record_action(self, world) -> None:
        actions, _ = self._setup(world)
        actions.record_action("acme")
        assert world.store.get_company("acme").ticks_since_action == 0
