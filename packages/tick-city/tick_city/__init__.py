"""tick-city - City economy tick engine: adjacency profits, fire, and taxation."""
from __future__ import annotations

from tick_city.actions import MapActions
from tick_city.clock import Clock, TickContext
from tick_city.dirty import DirtyQueue
from tick_city.fire import FireOutcome, FireState, FireStats, fire_state, resolve_fires
from tick_city.grid import MapIndex
from tick_city.history import TickHistory
from tick_city.modifiers import ModifierEntry, ModifierSource
from tick_city.orchestrator import MapTickResult, TickOrchestrator
from tick_city.profit import (
    CalcResult,
    buy_from_player_price,
    compute_profit,
    compute_value,
    health_multiplier,
    land_cost,
    min_listing_price,
    recompute,
    sale_to_state_value,
)
from tick_city.scheduler import Scheduler
from tick_city.settings import SettingsProvider, SettingsService, SettingsSnapshot, TickSettings
from tick_city.store import MapState, Store
from tick_city.types import (
    Building,
    BuildingType,
    Company,
    CompanyStatistics,
    FieldError,
    GameMap,
    LocationTier,
    MapProcessingError,
    SettingsValidationError,
    Terrain,
    TickCityError,
    TickNotFoundError,
    TickRecord,
    Tile,
    UnknownTerrainError,
)

__all__ = [
    # Data model
    "Terrain",
    "LocationTier",
    "GameMap",
    "Tile",
    "BuildingType",
    "Building",
    "Company",
    "CompanyStatistics",
    "TickRecord",
    # Errors
    "TickCityError",
    "FieldError",
    "SettingsValidationError",
    "MapProcessingError",
    "TickNotFoundError",
    "UnknownTerrainError",
    # Settings
    "TickSettings",
    "SettingsSnapshot",
    "SettingsProvider",
    "SettingsService",
    # Engine
    "MapIndex",
    "ModifierEntry",
    "ModifierSource",
    "CalcResult",
    "compute_profit",
    "compute_value",
    "recompute",
    "health_multiplier",
    "land_cost",
    "sale_to_state_value",
    "min_listing_price",
    "buy_from_player_price",
    "FireState",
    "FireStats",
    "FireOutcome",
    "fire_state",
    "resolve_fires",
    "DirtyQueue",
    "TickOrchestrator",
    "MapTickResult",
    "Clock",
    "TickContext",
    "Scheduler",
    # Persistence and reporting
    "Store",
    "MapState",
    "TickHistory",
    "MapActions",
]
