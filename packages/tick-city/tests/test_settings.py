"""Tests for TickSettings validation, the provider fallback, and the admin service."""

import logging
import threading
import time

import pytest

from tick_city.settings import SettingsProvider, SettingsService, TickSettings
from tick_city.types import LocationTier, SettingsValidationError, Terrain


class TestTickSettings:
    def test_defaults(self) -> None:
        s = TickSettings()
        assert s.fire_damage_base == 10
        assert s.fire_damage_with_sprinklers == 5
        assert s.fire_spread_chance == 0.20
        assert s.fire_spread_chance_trees == 0.35
        assert s.collapse_threshold == 100
        assert s.adjacency_range == 2
        assert s.diminishing_returns_divisor == 2.0
        assert s.damaged_neighbor_penalty == -0.10

    def test_every_default_within_its_range(self) -> None:
        s = TickSettings()
        for name, (lo, hi) in TickSettings.valid_ranges().items():
            assert lo <= getattr(s, name) <= hi, name

    def test_out_of_range_rejected(self) -> None:
        with pytest.raises(SettingsValidationError) as info:
            TickSettings(fire_spread_chance=1.5)
        [error] = info.value.errors
        assert error.field == "fire_spread_chance"
        assert error.value == 1.5
        assert error.valid_range == (0.0, 1.0)

    def test_integer_field_rejects_float(self) -> None:
        errors = TickSettings.validate({"adjacency_range": 2.5})
        assert [e.field for e in errors] == ["adjacency_range"]

    def test_bool_is_not_a_number(self) -> None:
        errors = TickSettings.validate({"fire_spread_chance": True})
        assert [e.field for e in errors] == ["fire_spread_chance"]

    def test_unknown_key_rejected(self) -> None:
        errors = TickSettings.validate({"gravity": 9.8})
        assert errors[0].field == "gravity"
        assert errors[0].valid_range is None

    def test_float_field_accepts_int(self) -> None:
        assert TickSettings.validate({"fire_spread_chance": 1}) == []

    def test_replace_is_all_or_nothing(self) -> None:
        base = TickSettings()
        with pytest.raises(SettingsValidationError) as info:
            base.replace({"fire_spread_chance": 0.5, "adjacency_range": 9})
        assert [e.field for e in info.value.errors] == ["adjacency_range"]
        assert base.fire_spread_chance == 0.20

    def test_from_mapping_fills_defaults(self) -> None:
        s = TickSettings.from_mapping({"tax_rate_city": 0.25})
        assert s.tax_rate_city == 0.25
        assert s.tax_rate_town == 0.10

    def test_lookups(self) -> None:
        s = TickSettings()
        assert s.tax_rate(LocationTier.TOWN) == 0.10
        assert s.tax_rate(LocationTier.CITY) == 0.15
        assert s.tax_rate(LocationTier.CAPITAL) == 0.20
        assert s.location_multiplier(LocationTier.CAPITAL) == 20.0
        assert s.land_multiplier(Terrain.TREES) == 1.2
        assert s.land_multiplier(Terrain.ROAD) == 0.0
        assert s.land_multiplier(Terrain.WATER) == 0.0


class _BrokenStore:
    def load_settings(self):
        raise RuntimeError("database is locked")


class TestSettingsProvider:
    def test_no_store_gives_defaults(self, caplog) -> None:
        with caplog.at_level(logging.WARNING):
            snap = SettingsProvider(None).get_settings()
        assert snap.settings == TickSettings()
        assert snap.version == "defaults"
        assert "using defaults" in caplog.text

    def test_missing_row_gives_defaults(self, store) -> None:
        snap = SettingsProvider(store).get_settings()
        assert snap.settings == TickSettings()
        assert snap.version == "defaults"

    def test_read_failure_gives_defaults(self, caplog) -> None:
        with caplog.at_level(logging.WARNING):
            snap = SettingsProvider(_BrokenStore()).get_settings()
        assert snap.settings == TickSettings()
        assert "Failed to read tick settings" in caplog.text

    def test_invalid_row_gives_defaults(self, store, caplog) -> None:
        store.save_settings(
            {"fire_spread_chance": 7}, actor="raw", timestamp="2026-01-01T00:00:00+00:00",
            fields=["fire_spread_chance"], old_values={}, new_values={},
        )
        with caplog.at_level(logging.WARNING):
            snap = SettingsProvider(store).get_settings()
        assert snap.settings.fire_spread_chance == 0.20
        assert snap.version == "defaults"
        assert "invalid" in caplog.text

    def test_stored_row_used(self, store) -> None:
        store.save_settings(
            {"fire_spread_chance": 0.4}, actor="ops", timestamp="2026-01-01T00:00:00+00:00",
            fields=["fire_spread_chance"], old_values={}, new_values={},
        )
        snap = SettingsProvider(store).get_settings()
        assert snap.settings.fire_spread_chance == 0.4
        assert snap.version == "2026-01-01T00:00:00+00:00"
        assert snap.updated_by == "ops"


class TestSettingsService:
    def test_get_shape(self, store) -> None:
        data = SettingsService(store).get()
        assert data["values"]["adjacency_range"] == 2
        assert data["valid_ranges"]["adjacency_range"] == [1, 5]
        assert data["descriptions"]["adjacency_range"]
        assert data["last_updated"] == {"version": "defaults", "updated_by": None}

    def test_update_applies_and_logs(self, store) -> None:
        service = SettingsService(store)
        accepted = service.update({"fire_spread_chance": 0.5}, actor="admin")
        assert accepted == {"fire_spread_chance": 0.5}

        data = service.get()
        assert data["values"]["fire_spread_chance"] == 0.5
        assert data["last_updated"]["updated_by"] == "admin"

        [entry] = service.change_log()
        assert entry["actor"] == "admin"
        assert entry["fields"] == ["fire_spread_chance"]
        assert entry["old_values"] == {"fire_spread_chance": 0.2}
        assert entry["new_values"] == {"fire_spread_chance": 0.5}

    def test_update_keeps_earlier_changes(self, store) -> None:
        service = SettingsService(store)
        service.update({"fire_spread_chance": 0.5}, actor="admin")
        service.update({"tax_rate_town": 0.12}, actor="admin")
        values = service.get()["values"]
        assert values["fire_spread_chance"] == 0.5
        assert values["tax_rate_town"] == 0.12

    def test_invalid_update_writes_nothing(self, store) -> None:
        service = SettingsService(store)
        with pytest.raises(SettingsValidationError) as info:
            service.update(
                {"fire_spread_chance": 0.5, "collapse_threshold": 0, "adjacency_range": 12},
                actor="admin",
            )
        assert {e.field for e in info.value.errors} == {"collapse_threshold", "adjacency_range"}
        assert store.load_settings() is None
        assert service.change_log() == []

    def test_empty_update_is_noop(self, store) -> None:
        assert SettingsService(store).update({}, actor="admin") == {}
        assert store.load_settings() is None

    def test_reset(self, store) -> None:
        service = SettingsService(store)
        service.update({"fire_spread_chance": 0.5, "adjacency_range": 3}, actor="admin")
        values = service.reset(actor="ops")
        assert values == TickSettings().to_dict()
        assert service.get()["values"] == TickSettings().to_dict()

        newest, oldest = service.change_log()
        assert newest["actor"] == "ops"
        assert newest["fields"] == ["adjacency_range", "fire_spread_chance"]
        assert newest["new_values"] == {"adjacency_range": 2, "fire_spread_chance": 0.2}
        assert oldest["actor"] == "admin"

    def test_change_log_limit(self, store) -> None:
        service = SettingsService(store)
        for rate in (0.11, 0.12, 0.13):
            service.update({"tax_rate_town": rate}, actor="admin")
        log = service.change_log(limit=2)
        assert [e["new_values"]["tax_rate_town"] for e in log] == [0.13, 0.12]

    def test_concurrent_updates_do_not_lose_fields(self, store, monkeypatch) -> None:
        service = SettingsService(store)
        original = store.load_settings

        def slow_load():
            row = original()
            time.sleep(0.01)
            return row

        monkeypatch.setattr(store, "load_settings", slow_load)
        fields = ["tax_rate_town", "tax_rate_city", "tax_rate_capital"]
        threads = [
            threading.Thread(target=service.update, args=({name: 0.3},), kwargs={"actor": name})
            for name in fields
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        values = service.get()["values"]
        assert [values[name] for name in fields] == [0.3, 0.3, 0.3]
        assert len(service.change_log()) == 3
