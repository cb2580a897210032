"""Tunable tick parameters, validation, and the settings read/write surface."""
from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Mapping

from tick_city.types import FieldError, LocationTier, SettingsValidationError, Terrain

if TYPE_CHECKING:
    from tick_city.store import Store

logger = logging.getLogger(__name__)

DEFAULT_VERSION = "defaults"


def _param(default: Any, lo: float, hi: float, description: str) -> Any:
    return field(default=default, metadata={"range": (lo, hi), "description": description})


@dataclass(frozen=True)
class TickSettings:
    """Immutable parameter set used for one tick.

    Every field carries its valid range in ``metadata["range"]``. A tick
    fetches this object once and passes it to every sub-computation.
    """

    # Fire
    fire_damage_base: int = _param(10, 0, 100, "Damage per tick without sprinklers")
    fire_damage_with_sprinklers: int = _param(5, 0, 100, "Damage per tick with sprinklers")
    fire_spread_chance: float = _param(0.20, 0.0, 1.0, "Chance to ignite an adjacent building")
    fire_spread_chance_trees: float = _param(0.35, 0.0, 1.0, "Chance to ignite a building across trees")
    sprinkler_extinguish_chance: float = _param(0.60, 0.0, 1.0, "Chance sprinklers put a fire out")
    collapse_threshold: int = _param(100, 1, 100, "Damage percent at which a building collapses")

    # Adjacency and profit
    adjacency_range: int = _param(2, 1, 5, "Chebyshev radius of adjacency effects")
    diminishing_returns_divisor: float = _param(2.0, 1.0, 10.0, "Divisor of ln(count) for terrain bonuses")
    commercial_synergy_factor: float = _param(0.5, 0.0, 2.0, "Scale of the per-building commercial bonus")
    damaged_neighbor_penalty: float = _param(-0.10, -1.0, 0.0, "Profit penalty for a fully damaged neighbor")
    competition_penalty: float = _param(-0.08, -1.0, 0.0, "Penalty per same-type neighbor")

    # Value
    value_collapsed_neighbor: float = _param(-0.15, -1.0, 0.0, "Value penalty per collapsed neighbor")
    value_damaged_neighbor_max: float = _param(-0.08, -1.0, 0.0, "Value penalty for a fully damaged neighbor")
    value_commercial_synergy: float = _param(0.03, 0.0, 1.0, "Value bonus per healthy neighbor")
    value_premium_trees: float = _param(0.05, 0.0, 1.0, "Value bonus for adjacent trees")
    value_premium_water: float = _param(0.08, 0.0, 1.0, "Value bonus for adjacent water")
    value_penalty_dirt_track: float = _param(-0.02, -1.0, 0.0, "Value penalty per adjacent dirt track")
    value_diminishing_divisor: float = _param(3.0, 1.0, 10.0, "Divisor of ln(count) for premium terrain")
    min_value_floor: float = _param(0.5, 0.0, 1.0, "Minimum value as a fraction of base cost")

    # Market
    sale_to_state_fraction: float = _param(0.5, 0.0, 1.0, "Share of value paid when selling to the state")
    min_listing_fraction: float = _param(0.8, 0.0, 2.0, "Minimum listing price as a fraction of value")
    health_damage_factor: float = _param(1.176, 0.0, 2.0, "Health lost per damage percent")
    land_base_cost: int = _param(500, 0, 1_000_000, "Base land price")
    land_multiplier_free_land: float = _param(1.0, 0.0, 10.0, "Land price multiplier for free land")
    land_multiplier_dirt_track: float = _param(0.8, 0.0, 10.0, "Land price multiplier for dirt tracks")
    land_multiplier_trees: float = _param(1.2, 0.0, 10.0, "Land price multiplier for trees")
    location_multiplier_town: float = _param(1.0, 0.0, 100.0, "Land price multiplier in towns")
    location_multiplier_city: float = _param(5.0, 0.0, 100.0, "Land price multiplier in cities")
    location_multiplier_capital: float = _param(20.0, 0.0, 100.0, "Land price multiplier in capitals")

    # Tax and income
    tax_rate_town: float = _param(0.10, 0.0, 1.0, "Tax rate in towns")
    tax_rate_city: float = _param(0.15, 0.0, 1.0, "Tax rate in cities")
    tax_rate_capital: float = _param(0.20, 0.0, 1.0, "Tax rate in capitals")
    earning_threshold_ticks: int = _param(6, 1, 10_000, "Idle ticks after which a company stops earning")

    def __post_init__(self) -> None:
        errors = _check(dataclasses.asdict(self))
        if errors:
            raise SettingsValidationError(errors)

    # --- Lookups ---

    def tax_rate(self, tier: LocationTier) -> float:
        return {
            LocationTier.TOWN: self.tax_rate_town,
            LocationTier.CITY: self.tax_rate_city,
            LocationTier.CAPITAL: self.tax_rate_capital,
        }[tier]

    def location_multiplier(self, tier: LocationTier) -> float:
        return {
            LocationTier.TOWN: self.location_multiplier_town,
            LocationTier.CITY: self.location_multiplier_city,
            LocationTier.CAPITAL: self.location_multiplier_capital,
        }[tier]

    def land_multiplier(self, terrain: Terrain) -> float:
        """Land price multiplier; 0 means the terrain cannot be bought."""
        return {
            Terrain.FREE_LAND: self.land_multiplier_free_land,
            Terrain.DIRT_TRACK: self.land_multiplier_dirt_track,
            Terrain.TREES: self.land_multiplier_trees,
        }.get(terrain, 0.0)

    def premium_terrain(self) -> dict[Terrain, float]:
        return {Terrain.TREES: self.value_premium_trees, Terrain.WATER: self.value_premium_water}

    def penalty_terrain(self) -> dict[Terrain, float]:
        return {Terrain.DIRT_TRACK: self.value_penalty_dirt_track}

    # --- Construction ---

    @classmethod
    def valid_ranges(cls) -> dict[str, tuple[float, float]]:
        return {f.name: f.metadata["range"] for f in dataclasses.fields(cls)}

    @classmethod
    def validate(cls, values: Mapping[str, Any]) -> list[FieldError]:
        """Field errors for a partial mapping; empty when it is acceptable."""
        return _check(values)

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any]) -> TickSettings:
        """Build settings from stored values, unknown keys rejected.

        Missing keys take their defaults.
        """
        errors = cls.validate(values)
        if errors:
            raise SettingsValidationError(errors)
        return cls(**dict(values))

    def replace(self, changes: Mapping[str, Any]) -> TickSettings:
        errors = _check(changes)
        if errors:
            raise SettingsValidationError(errors)
        return dataclasses.replace(self, **dict(changes))

    def to_dict(self) -> dict[str, Any]:
        return dataclasses.asdict(self)


_FIELDS = {f.name: f for f in dataclasses.fields(TickSettings)}


def _check(values: Mapping[str, Any]) -> list[FieldError]:
    errors: list[FieldError] = []
    for name, value in values.items():
        f = _FIELDS.get(name)
        if f is None:
            errors.append(FieldError(name, value, None, f"Unknown setting {name!r}"))
            continue
        lo, hi = f.metadata["range"]
        # Annotations are strings under postponed evaluation.
        wants_int = f.type in ("int", int)
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            errors.append(FieldError(
                name, value, (lo, hi), f"{name} must be a number, got {value!r}"
            ))
        elif wants_int and not isinstance(value, int):
            errors.append(FieldError(
                name, value, (lo, hi), f"{name} must be an integer, got {value!r}"
            ))
        elif not (lo <= value <= hi):
            errors.append(FieldError(
                name, value, (lo, hi), f"{name} must be between {lo} and {hi}, got {value!r}"
            ))
    return errors


def _now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


@dataclass(frozen=True)
class SettingsSnapshot:
    """Settings as fetched for one tick, with the version they came from."""

    settings: TickSettings
    version: str = DEFAULT_VERSION
    updated_by: str | None = None


class SettingsProvider:
    """Reads the current settings row, falling back to defaults.

    A tick calls ``get_settings()`` exactly once. Read failures, missing
    rows, and rows that fail validation all produce the built-in
    defaults and a warning; they never fail the tick.
    """

    def __init__(self, store: Store | None) -> None:
        self._store = store

    def get_settings(self) -> SettingsSnapshot:
        if self._store is None:
            logger.warning("No settings store configured; using defaults")
            return SettingsSnapshot(TickSettings())
        try:
            row = self._store.load_settings()
        except Exception:
            logger.warning("Failed to read tick settings; using defaults", exc_info=True)
            return SettingsSnapshot(TickSettings())
        if row is None:
            logger.warning("No tick settings row found; using defaults")
            return SettingsSnapshot(TickSettings())
        values, updated_at, updated_by = row
        try:
            settings = TickSettings.from_mapping(values)
        except (SettingsValidationError, TypeError) as exc:
            logger.warning("Stored tick settings are invalid (%s); using defaults", exc)
            return SettingsSnapshot(TickSettings())
        return SettingsSnapshot(settings, version=updated_at, updated_by=updated_by)


class SettingsService:
    """Admin-facing get / update / reset operations on tick settings."""

    def __init__(self, store: Store) -> None:
        self._store = store
        self._provider = SettingsProvider(store)

    def get(self) -> dict[str, Any]:
        snap = self._provider.get_settings()
        ranges = TickSettings.valid_ranges()
        return {
            "values": snap.settings.to_dict(),
            "valid_ranges": {k: list(v) for k, v in ranges.items()},
            "descriptions": {
                f.name: f.metadata["description"] for f in dataclasses.fields(TickSettings)
            },
            "last_updated": {"version": snap.version, "updated_by": snap.updated_by},
        }

    def update(self, changes: Mapping[str, Any], actor: str) -> dict[str, Any]:
        """Apply a partial update, all-or-nothing.

        Raises SettingsValidationError naming every offending field;
        in that case neither the settings row nor the change log is touched.
        """
        if not changes:
            return {}
        with self._store.transaction():
            current = self._provider.get_settings().settings
            updated = current.replace(changes)
            old_values = {k: getattr(current, k) for k in changes}
            new_values = {k: getattr(updated, k) for k in changes}
            self._store.save_settings(
                updated.to_dict(),
                actor=actor,
                timestamp=_now(),
                fields=sorted(changes),
                old_values=old_values,
                new_values=new_values,
            )
        logger.info("Tick settings updated by %s: %s", actor, sorted(changes))
        return new_values

    def reset(self, actor: str) -> dict[str, Any]:
        new = TickSettings().to_dict()
        with self._store.transaction():
            old = self._provider.get_settings().settings.to_dict()
            changed = sorted(k for k in new if old[k] != new[k])
            self._store.save_settings(
                new,
                actor=actor,
                timestamp=_now(),
                fields=changed,
                old_values={k: old[k] for k in changed},
                new_values={k: new[k] for k in changed},
            )
        logger.info("Tick settings reset to defaults by %s", actor)
        return new

    def change_log(self, limit: int = 50) -> list[dict[str, Any]]:
        return self._store.settings_log(limit)
