"""Shared data model and error types for tick-city."""
from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping

from tick_city.modifiers import ModifierEntry

DAMAGE_MIN = 0
DAMAGE_MAX = 100


class Terrain(str, Enum):
    FREE_LAND = "free_land"
    ROAD = "road"
    WATER = "water"
    DIRT_TRACK = "dirt_track"
    TREES = "trees"


class LocationTier(str, Enum):
    TOWN = "town"
    CITY = "city"
    CAPITAL = "capital"


class TickCityError(Exception):
    """Base class for all tick-city errors."""


class UnknownTerrainError(TickCityError, ValueError):
    """Raised when a bonus or penalty map names a terrain outside Terrain."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Unknown terrain type: {name!r}")


@dataclass(frozen=True)
class FieldError:
    field: str
    value: Any
    valid_range: tuple[float, float] | None
    message: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "field": self.field,
            "value": self.value,
            "valid_range": list(self.valid_range) if self.valid_range else None,
            "message": self.message,
        }


class SettingsValidationError(TickCityError, ValueError):
    """Raised when a settings update contains invalid fields.

    Carries one FieldError per offending field. Nothing is written when
    this is raised.
    """

    def __init__(self, errors: list[FieldError]) -> None:
        self.errors = errors
        super().__init__("; ".join(e.message for e in errors))


class MapProcessingError(TickCityError):
    """Raised when one map fails during a tick."""

    def __init__(self, map_id: str, message: str) -> None:
        self.map_id = map_id
        super().__init__(f"Map {map_id}: {message}")


class TickNotFoundError(TickCityError, KeyError):
    """Raised when a tick id has no history record."""

    def __init__(self, tick_id: str) -> None:
        self.tick_id = tick_id
        super().__init__(f"Tick {tick_id!r} not found")


def clamp_damage(value: float) -> int:
    """Clamp a damage figure into [0, 100]."""
    return int(max(DAMAGE_MIN, min(DAMAGE_MAX, value)))


def _load_mapping(raw: Mapping[Any, Any] | str | None) -> dict[Any, Any]:
    if raw is None:
        return {}
    if isinstance(raw, str):
        return json.loads(raw) if raw.strip() else {}
    return dict(raw)


def parse_terrain_map(raw: Mapping[Any, Any] | str | None) -> dict[Terrain, float]:
    """Turn a loosely-typed terrain -> amount mapping into a typed one.

    Accepts a dict or its JSON text. Raises UnknownTerrainError on keys
    outside the Terrain enum.
    """
    result: dict[Terrain, float] = {}
    for key, amount in _load_mapping(raw).items():
        try:
            terrain = key if isinstance(key, Terrain) else Terrain(key)
        except ValueError:
            raise UnknownTerrainError(str(key)) from None
        result[terrain] = float(amount)
    return result


@dataclass(frozen=True)
class GameMap:
    id: str
    name: str
    location_tier: LocationTier = LocationTier.TOWN
    width: int = 0
    height: int = 0
    is_active: bool = True


@dataclass(frozen=True)
class Tile:
    id: str
    map_id: str
    x: int
    y: int
    terrain: Terrain = Terrain.FREE_LAND


@dataclass(frozen=True)
class BuildingType:
    """Catalog entry for a kind of building.

    Attributes:
        id: Unique identifier.
        name: Display name.
        base_profit: Profit per tick before modifiers.
        cost: Acquisition cost, also the base for resale value.
        adjacency_bonuses: Terrain -> bonus fraction per neighbor terrain.
        adjacency_penalties: Terrain -> penalty fraction per neighbor tile.
        commercial_synergy: Bonus fraction per occupied neighbor tile.
    """

    id: str
    name: str
    base_profit: int
    cost: int
    adjacency_bonuses: dict[Terrain, float] = field(default_factory=dict)
    adjacency_penalties: dict[Terrain, float] = field(default_factory=dict)
    commercial_synergy: float = 0.0

    def __post_init__(self) -> None:
        if self.base_profit < 0:
            raise ValueError(f"base_profit must be >= 0, got {self.base_profit}")
        if self.cost < 0:
            raise ValueError(f"cost must be >= 0, got {self.cost}")
        for mapping in (self.adjacency_bonuses, self.adjacency_penalties):
            for key in mapping:
                if not isinstance(key, Terrain):
                    raise UnknownTerrainError(str(key))

    @classmethod
    def from_row(
        cls,
        id: str,
        name: str,
        base_profit: int,
        cost: int,
        adjacency_bonuses: Mapping[str, Any] | str | None = None,
        adjacency_penalties: Mapping[str, Any] | str | None = None,
        commercial_synergy: float | None = None,
    ) -> BuildingType:
        """Build from stored form.

        A 'commercial' key in the bonus map is not a terrain; it becomes
        ``commercial_synergy`` unless that is given explicitly. The same key
        in the penalty map is ignored.
        """
        bonuses = _load_mapping(adjacency_bonuses)
        penalties = _load_mapping(adjacency_penalties)
        commercial = float(bonuses.pop("commercial", 0.0))
        penalties.pop("commercial", None)
        if commercial_synergy is None:
            commercial_synergy = commercial
        return cls(
            id=id,
            name=name,
            base_profit=int(base_profit),
            cost=int(cost),
            adjacency_bonuses=parse_terrain_map(bonuses),
            adjacency_penalties=parse_terrain_map(penalties),
            commercial_synergy=float(commercial_synergy),
        )


@dataclass
class Building:
    """A building instance occupying one tile."""

    id: str
    building_type_id: str
    map_id: str
    tile_id: str
    x: int
    y: int
    company_id: str | None = None
    variant: str | None = None
    damage_percent: int = 0
    is_on_fire: bool = False
    is_collapsed: bool = False
    has_sprinklers: bool = False
    calculated_profit: int = 0
    calculated_value: int = 0
    needs_recalc: bool = True
    profit_breakdown: list[ModifierEntry] = field(default_factory=list)
    value_breakdown: list[ModifierEntry] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.damage_percent = clamp_damage(self.damage_percent)

    @property
    def effective_damage(self) -> int:
        """Damage used for neighbor penalties; collapsed counts as 100."""
        return DAMAGE_MAX if self.is_collapsed else self.damage_percent


@dataclass
class Company:
    id: str
    name: str
    cash: int = 0
    ticks_since_action: int = 0


@dataclass(frozen=True)
class CompanyStatistics:
    tick_id: str
    company_id: str
    map_id: str
    building_count: int = 0
    collapsed_count: int = 0
    buildings_on_fire: int = 0
    base_profit: int = 0
    gross_profit: int = 0
    tax_rate: float = 0.0
    tax_amount: int = 0
    net_profit: int = 0
    total_building_value: int = 0
    total_damage_percent: int = 0
    average_damage_percent: float = 0.0
    ticks_since_action: int = 0
    is_earning: bool = True


@dataclass
class TickRecord:
    """One executed tick across all active maps."""

    id: str
    processed_at: str
    status: str = "running"
    execution_time_ms: int = 0
    settings_version: str | None = None
    maps_processed: int = 0
    companies_updated: int = 0
    buildings_recalculated: int = 0
    gross_profit: int = 0
    tax_amount: int = 0
    net_profit: int = 0
    fires_started: int = 0
    fires_extinguished: int = 0
    buildings_damaged: int = 0
    buildings_collapsed: int = 0
    errors: list[dict[str, str]] = field(default_factory=list)

    @property
    def failed(self) -> bool:
        return bool(self.errors)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "processed_at": self.processed_at,
            "status": self.status,
            "execution_time_ms": self.execution_time_ms,
            "settings_version": self.settings_version,
            "maps_processed": self.maps_processed,
            "companies_updated": self.companies_updated,
            "buildings_recalculated": self.buildings_recalculated,
            "gross_profit": self.gross_profit,
            "tax_amount": self.tax_amount,
            "net_profit": self.net_profit,
            "fires_started": self.fires_started,
            "fires_extinguished": self.fires_extinguished,
            "buildings_damaged": self.buildings_damaged,
            "buildings_collapsed": self.buildings_collapsed,
            "errors": list(self.errors),
        }
