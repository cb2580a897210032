"""Profit and value calculators plus market pricing helpers.

All functions here are pure: they read buildings, tiles and settings and
return results. Writing results back is the orchestrator's job.
"""
from __future__ import annotations

import math
from collections import Counter
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Iterable, Mapping

from tick_city.modifiers import ModifierEntry, ModifierSource, total
from tick_city.types import Building, BuildingType, LocationTier, Terrain, Tile

if TYPE_CHECKING:
    from tick_city.grid import MapIndex
    from tick_city.settings import TickSettings


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def diminishing(amount: float, count: int, divisor: float) -> float:
    """Scale ``amount`` for ``count`` identical neighbors: amount * (1 + ln(count)/divisor)."""
    if count <= 0:
        return 0.0
    return amount * (1 + math.log(count) / divisor)


@dataclass(frozen=True)
class CalcResult:
    amount: int
    modifier_total: float
    breakdown: list[ModifierEntry] = field(default_factory=list)


def _terrain_counts(tiles: Iterable[Tile]) -> Counter[Terrain]:
    return Counter(t.terrain for t in tiles)


def _competitors(building: Building, neighbors: Iterable[Building]) -> int:
    count = 0
    for other in neighbors:
        if other.is_collapsed or other.building_type_id != building.building_type_id:
            continue
        if building.variant is not None and other.variant != building.variant:
            continue
        count += 1
    return count


def compute_profit(
    building: Building,
    building_type: BuildingType,
    neighbor_tiles: Iterable[Tile],
    neighbor_buildings: Iterable[Building],
    settings: TickSettings,
) -> CalcResult:
    """Profit per tick from terrain, neighbor synergy, competition and damage.

    ``final = max(0, round(base_profit * (1 + sum(modifiers))))``
    """
    neighbor_buildings = list(neighbor_buildings)
    breakdown: list[ModifierEntry] = []

    counts = _terrain_counts(neighbor_tiles)
    for terrain in sorted(counts, key=lambda t: t.value):
        count = counts[terrain]
        bonus = building_type.adjacency_bonuses.get(terrain)
        if bonus:
            breakdown.append(ModifierEntry(
                ModifierSource.TERRAIN_BONUS,
                diminishing(bonus, count, settings.diminishing_returns_divisor),
                terrain=terrain.value,
                count=count,
            ))
        penalty = building_type.adjacency_penalties.get(terrain)
        if penalty:
            # Congestion scales linearly.
            breakdown.append(ModifierEntry(
                ModifierSource.TERRAIN_PENALTY, penalty * count, terrain=terrain.value, count=count,
            ))

    if building_type.commercial_synergy:
        occupied = sum(1 for b in neighbor_buildings if not b.is_collapsed)
        if occupied:
            breakdown.append(ModifierEntry(
                ModifierSource.COMMERCIAL_SYNERGY,
                building_type.commercial_synergy * occupied * settings.commercial_synergy_factor,
                count=occupied,
            ))

    for other in neighbor_buildings:
        damage = other.effective_damage
        if damage > 0:
            source = (
                ModifierSource.COLLAPSED_NEIGHBOR if other.is_collapsed
                else ModifierSource.DAMAGED_NEIGHBOR
            )
            breakdown.append(ModifierEntry(
                source, settings.damaged_neighbor_penalty * (damage / 100), damage=damage,
            ))

    competitors = _competitors(building, neighbor_buildings)
    if competitors:
        breakdown.append(ModifierEntry(
            ModifierSource.COMPETITION, settings.competition_penalty * competitors, count=competitors,
        ))

    modifier_total = total(breakdown)
    profit = max(0, round_half_up(building_type.base_profit * (1 + modifier_total)))
    return CalcResult(profit, modifier_total, breakdown)


def value_floor(building_type: BuildingType, settings: TickSettings) -> int:
    return math.ceil(building_type.cost * settings.min_value_floor)


def compute_value(
    building: Building,
    building_type: BuildingType,
    neighbor_tiles: Iterable[Tile],
    neighbor_buildings: Iterable[Building],
    settings: TickSettings,
) -> CalcResult:
    """Resale value from premium terrain, healthy neighbors, damage and competition.

    Never below ``ceil(cost * min_value_floor)``.
    """
    neighbor_buildings = list(neighbor_buildings)
    breakdown: list[ModifierEntry] = []

    counts = _terrain_counts(neighbor_tiles)
    premium = settings.premium_terrain()
    penalties = settings.penalty_terrain()
    for terrain in sorted(counts, key=lambda t: t.value):
        count = counts[terrain]
        if premium.get(terrain):
            breakdown.append(ModifierEntry(
                ModifierSource.PREMIUM_TERRAIN,
                diminishing(premium[terrain], count, settings.value_diminishing_divisor),
                terrain=terrain.value,
                count=count,
            ))
        if penalties.get(terrain):
            breakdown.append(ModifierEntry(
                ModifierSource.TERRAIN_PENALTY,
                penalties[terrain] * count,
                terrain=terrain.value,
                count=count,
            ))

    healthy = 0
    for other in neighbor_buildings:
        if other.is_collapsed:
            breakdown.append(ModifierEntry(
                ModifierSource.COLLAPSED_NEIGHBOR,
                settings.value_collapsed_neighbor,
                damage=other.effective_damage,
            ))
            continue
        healthy += 1
        if other.damage_percent > 0:
            breakdown.append(ModifierEntry(
                ModifierSource.DAMAGED_NEIGHBOR,
                settings.value_damaged_neighbor_max * (other.damage_percent / 100),
                damage=other.damage_percent,
            ))
    if healthy:
        breakdown.append(ModifierEntry(
            ModifierSource.COMMERCIAL_SYNERGY, settings.value_commercial_synergy * healthy, count=healthy,
        ))

    competitors = _competitors(building, neighbor_buildings)
    if competitors:
        breakdown.append(ModifierEntry(
            ModifierSource.COMPETITION, settings.competition_penalty * competitors, count=competitors,
        ))

    modifier_total = total(breakdown)
    value = max(
        value_floor(building_type, settings),
        round_half_up(building_type.cost * (1 + modifier_total)),
    )
    return CalcResult(value, modifier_total, breakdown)


def recompute(
    building: Building,
    index: MapIndex,
    building_types: Mapping[str, BuildingType],
    settings: TickSettings,
) -> tuple[CalcResult, CalcResult]:
    """Profit and value for one building using a prebuilt map index."""
    building_type = building_types[building.building_type_id]
    radius = settings.adjacency_range
    tiles = index.neighbors(building.x, building.y, radius)
    neighbors = index.neighbor_buildings(building.x, building.y, radius)
    profit = compute_profit(building, building_type, tiles, neighbors, settings)
    value = compute_value(building, building_type, tiles, neighbors, settings)
    return profit, value


# --- Market pricing ---


def health_multiplier(damage_percent: float, settings: TickSettings) -> float:
    """Fraction of income/value a damaged building keeps, floored at 0."""
    return max(0.0, (100 - damage_percent * settings.health_damage_factor) / 100)


def tick_income(building: Building, settings: TickSettings) -> float:
    if building.is_collapsed:
        return 0.0
    return building.calculated_profit * health_multiplier(building.damage_percent, settings)


def land_cost(tile: Tile, tier: LocationTier, settings: TickSettings) -> int:
    """Land purchase price. Raises ValueError for unpurchasable terrain."""
    multiplier = settings.land_multiplier(tile.terrain)
    if multiplier == 0:
        raise ValueError(f"Cannot purchase {tile.terrain.value} tiles")
    return round_half_up(settings.land_base_cost * multiplier * settings.location_multiplier(tier))


def _base_value(building: Building, building_type: BuildingType) -> int:
    return building.calculated_value or building_type.cost


def sale_to_state_value(
    building: Building,
    building_type: BuildingType,
    tile: Tile,
    tier: LocationTier,
    settings: TickSettings,
) -> int:
    building_value = round_half_up(
        _base_value(building, building_type) * settings.sale_to_state_fraction
    )
    adjusted = round_half_up(building_value * health_multiplier(building.damage_percent, settings))
    return adjusted + land_cost(tile, tier, settings)


def min_listing_price(building: Building, building_type: BuildingType, settings: TickSettings) -> int:
    return round_half_up(_base_value(building, building_type) * settings.min_listing_fraction)


def buy_from_player_price(
    building: Building,
    building_type: BuildingType,
    tile: Tile,
    tier: LocationTier,
    settings: TickSettings,
) -> int:
    """Price to buy an unlisted building: 2x value + land + 10 ticks of profit."""
    return round_half_up(
        _base_value(building, building_type) * 2
        + land_cost(tile, tier, settings)
        + building.calculated_profit * 10
    )
