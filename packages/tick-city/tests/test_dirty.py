"""Tests for the dirty-tracking queue."""

from tick_city.dirty import DirtyQueue


class TestDirtyQueue:
    def _setup(self, world):
        world.add_map(size=7)
        world.add_company()
        for bid, (x, y) in {"near": (1, 1), "edge": (5, 5), "far": (6, 6)}.items():
            world.add_building(bid, x, y)
        queue = DirtyQueue(world.store)
        queue.drain("m1")
        return queue

    def test_new_buildings_start_dirty(self, world) -> None:
        world.add_map()
        world.add_company()
        world.add_building("a", 0, 0)
        assert DirtyQueue(world.store).pending("m1") == {"a"}

    def test_mark_within_radius(self, world) -> None:
        queue = self._setup(world)
        assert queue.pending("m1") == set()
        marked = queue.mark_dirty("m1", [(3, 3)], radius=2)
        assert marked == 2
        assert queue.pending("m1") == {"near", "edge"}

    def test_mark_includes_building_on_tile(self, world) -> None:
        queue = self._setup(world)
        queue.mark_dirty("m1", [(6, 6)], radius=0)
        assert queue.pending("m1") == {"far"}

    def test_duplicate_coords_marked_once(self, world) -> None:
        queue = self._setup(world)
        assert queue.mark_dirty("m1", [(1, 1), (1, 1)], radius=0) == 1

    def test_collapsed_not_marked(self, world) -> None:
        queue = self._setup(world)
        world.add_building("ruin", 2, 2, is_collapsed=True, needs_recalc=False)
        queue.mark_dirty("m1", [(2, 2)], radius=1)
        assert queue.pending("m1") == {"near"}

    def test_drain_clears(self, world) -> None:
        queue = self._setup(world)
        queue.mark_dirty("m1", [(3, 3)], radius=3)
        drained = queue.drain("m1")
        assert [b.id for b in drained] == ["edge", "far", "near"]
        assert queue.pending("m1") == set()
        assert queue.drain("m1") == []

    def test_drain_empty_is_noop(self, world) -> None:
        queue = self._setup(world)
        assert queue.drain("m1") == []
        assert queue.pending("m1") == set()

    def test_drain_is_per_map(self, world) -> None:
        queue = self._setup(world)
        world.add_map("m2", size=3)
        world.add_building("other", 0, 0, map_id="m2")
        assert [b.id for b in queue.drain("m1")] == []
        assert [b.id for b in queue.drain("m2")] == ["other"]

    def test_drain_skips_collapsed(self, world) -> None:
        queue = self._setup(world)
        world.add_building("ruin", 2, 2, is_collapsed=True)
        assert queue.drain("m1") == []
