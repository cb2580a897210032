"""Fire state machine: damage, extinguishing, collapse, and spread."""
from __future__ import annotations

import logging
import random
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

from tick_city.types import Building, Terrain, clamp_damage

if TYPE_CHECKING:
    from tick_city.grid import MapIndex
    from tick_city.settings import TickSettings

logger = logging.getLogger(__name__)


class FireState(str, Enum):
    NORMAL = "normal"
    ON_FIRE = "on_fire"
    COLLAPSED = "collapsed"


def fire_state(building: Building) -> FireState:
    if building.is_collapsed:
        return FireState.COLLAPSED
    if building.is_on_fire:
        return FireState.ON_FIRE
    return FireState.NORMAL


@dataclass
class FireStats:
    fires_started: int = 0
    fires_extinguished: int = 0
    buildings_damaged: int = 0
    buildings_collapsed: int = 0


@dataclass
class FireOutcome:
    """Result of one fire pass over a map.

    Attributes:
        stats: Counters for the tick record.
        changed: Buildings whose damage, fire or collapse flags changed.
        damaged_at: Coordinates whose neighbors need recalculation.
    """

    stats: FireStats = field(default_factory=FireStats)
    changed: list[Building] = field(default_factory=list)
    damaged_at: list[tuple[int, int]] = field(default_factory=list)


def _can_ignite(building: Building | None, pending: set[str]) -> bool:
    return (
        building is not None
        and not building.is_on_fire
        and not building.is_collapsed
        and not building.has_sprinklers
        and building.id not in pending
    )


def resolve_fires(index: MapIndex, settings: TickSettings, rng: random.Random) -> FireOutcome:
    """Advance every burning building on the map by one tick.

    Runs in two passes. The resolution pass damages each building that
    was burning at the start of the tick, rolls sprinkler extinguishing
    and checks collapse. The spread pass then lets every building still
    burning ignite its edge neighbors (and, across a trees tile, the
    building one step further). Buildings ignited by spread are only
    resolved on the next tick.
    """
    outcome = FireOutcome()
    stats = outcome.stats
    burning = [b for b in index.buildings() if b.is_on_fire and not b.is_collapsed]
    burning.sort(key=lambda b: b.id)

    # Resolution pass.
    for building in burning:
        damage = (
            settings.fire_damage_with_sprinklers if building.has_sprinklers
            else settings.fire_damage_base
        )
        old_damage = building.damage_percent
        building.damage_percent = clamp_damage(old_damage + damage)
        stats.buildings_damaged += 1

        if building.has_sprinklers and rng.random() < settings.sprinkler_extinguish_chance:
            building.is_on_fire = False
            stats.fires_extinguished += 1
            logger.debug("Sprinklers extinguished building %s", building.id)

        if building.damage_percent >= settings.collapse_threshold:
            building.is_collapsed = True
            building.is_on_fire = False
            stats.buildings_collapsed += 1
            logger.debug("Building %s collapsed at %d%%", building.id, building.damage_percent)

        outcome.changed.append(building)
        if building.damage_percent != old_damage or building.is_collapsed:
            outcome.damaged_at.append((building.x, building.y))

    # Spread pass.
    pending: set[str] = set()
    ignited: list[Building] = []
    for building in burning:
        if not building.is_on_fire:
            continue
        for nx, ny in index.orthogonal(building.x, building.y):
            target = index.building_at(nx, ny)
            if _can_ignite(target, pending) and rng.random() < settings.fire_spread_chance:
                pending.add(target.id)
                ignited.append(target)

            tile = index.tile_at(nx, ny)
            if tile is not None and tile.terrain is Terrain.TREES:
                beyond = index.building_at(nx + (nx - building.x), ny + (ny - building.y))
                if _can_ignite(beyond, pending) and rng.random() < settings.fire_spread_chance_trees:
                    pending.add(beyond.id)
                    ignited.append(beyond)

    for target in ignited:
        target.is_on_fire = True
        stats.fires_started += 1
        outcome.changed.append(target)
        logger.debug("Fire spread to building %s", target.id)

    return outcome


def ignite(building: Building) -> bool:
    """Set a building on fire. Returns False if it cannot burn."""
    if building.is_collapsed or building.is_on_fire:
        return False
    building.is_on_fire = True
    return True
