"""TickOrchestrator - runs one tick across every active map.

Per map, in order: fire resolution, dirty marking from fire damage,
drain and recompute of dirty buildings, company rollups with tax, and
persistence. Each map runs inside one store transaction, so a failure
leaves that map exactly as it was last persisted while the remaining
maps carry on.
"""
from __future__ import annotations

import logging
import os
import random
import threading
import time
import uuid
from collections import defaultdict
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterator

from tick_city.dirty import DirtyQueue
from tick_city.fire import FireStats, resolve_fires
from tick_city.grid import MapIndex
from tick_city.profit import recompute, round_half_up, tick_income
from tick_city.settings import SettingsProvider, TickSettings
from tick_city.store import MapState, Store
from tick_city.types import (
    Building,
    CompanyStatistics,
    GameMap,
    MapProcessingError,
    TickRecord,
)

logger = logging.getLogger(__name__)


@dataclass
class MapTickResult:
    map_id: str
    fire: FireStats = field(default_factory=FireStats)
    buildings_recalculated: int = 0
    companies_updated: int = 0
    gross_profit: int = 0
    tax_amount: int = 0
    net_profit: int = 0
    statistics: list[CompanyStatistics] = field(default_factory=list)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


class TickOrchestrator:
    """Drives ticks over all active maps.

    Settings are fetched once per tick and passed by value to every map.
    Ticks for the same map never overlap: each map is processed under its
    own lock. ``max_workers > 1`` processes maps on a thread pool.
    """

    def __init__(
        self,
        store: Store,
        provider: SettingsProvider | None = None,
        seed: int | None = None,
        max_workers: int = 1,
    ) -> None:
        if max_workers < 1:
            raise ValueError("max_workers must be >= 1")
        self._store = store
        self._provider = provider if provider is not None else SettingsProvider(store)
        self._dirty = DirtyQueue(store)
        self._max_workers = max_workers
        if seed is None:
            seed = int.from_bytes(os.urandom(8), "big")
        self._seed = seed
        self._rng = random.Random(seed)
        self._locks_guard = threading.Lock()
        self._map_locks: dict[str, threading.Lock] = {}

    @property
    def seed(self) -> int:
        return self._seed

    @property
    def dirty_queue(self) -> DirtyQueue:
        return self._dirty

    @contextmanager
    def _map_lock(self, map_id: str) -> Iterator[None]:
        with self._locks_guard:
            lock = self._map_locks.setdefault(map_id, threading.Lock())
        with lock:
            yield

    # --- Tick ---

    def run_tick(self) -> TickRecord:
        start = time.monotonic()
        snapshot = self._provider.get_settings()
        settings = snapshot.settings
        record = TickRecord(
            id=str(uuid.uuid4()),
            processed_at=_now(),
            settings_version=snapshot.version,
        )
        self._store.begin_tick(record)
        logger.info("Starting tick %s (settings %s)", record.id, snapshot.version)

        try:
            self._run_maps(record, settings)
            record.status = "completed_with_errors" if record.errors else "completed"
            record.execution_time_ms = int((time.monotonic() - start) * 1000)
            self._store.finish_tick(record)
        except Exception as exc:
            logger.exception("Tick %s failed", record.id)
            record.errors.append({"map_id": "*", "message": f"{type(exc).__name__}: {exc}"})
            record.status = "failed"
            record.execution_time_ms = int((time.monotonic() - start) * 1000)
            try:
                self._store.finish_tick(record)
            except Exception:
                logger.exception("Could not record failure of tick %s", record.id)
            raise

        logger.info(
            "Tick %s %s in %dms: %d maps, %d recalculated, net %d",
            record.id, record.status, record.execution_time_ms,
            record.maps_processed, record.buildings_recalculated, record.net_profit,
        )
        return record

    def _run_maps(self, record: TickRecord, settings: TickSettings) -> None:
        maps = self._store.active_maps()
        # Child generators are drawn up front so results do not depend on
        # worker scheduling.
        jobs = [(m, random.Random(self._rng.getrandbits(64))) for m in maps]

        if self._max_workers > 1 and len(jobs) > 1:
            with ThreadPoolExecutor(max_workers=self._max_workers) as pool:
                futures = [
                    pool.submit(self._run_map, m, settings, record.id, rng) for m, rng in jobs
                ]
                outcomes = [f.result() for f in futures]
        else:
            outcomes = [self._run_map(m, settings, record.id, rng) for m, rng in jobs]

        for game_map, (result, error) in zip(maps, outcomes):
            if error is not None:
                record.errors.append({"map_id": game_map.id, "message": error})
                continue
            record.maps_processed += 1
            record.companies_updated += result.companies_updated
            record.buildings_recalculated += result.buildings_recalculated
            record.gross_profit += result.gross_profit
            record.tax_amount += result.tax_amount
            record.net_profit += result.net_profit
            record.fires_started += result.fire.fires_started
            record.fires_extinguished += result.fire.fires_extinguished
            record.buildings_damaged += result.fire.buildings_damaged
            record.buildings_collapsed += result.fire.buildings_collapsed

        failed_maps = [e["map_id"] for e in record.errors]
        try:
            self._store.increment_idle_counters(skip_maps=failed_maps)
        except Exception as exc:
            logger.exception("Failed to advance company idle counters")
            record.errors.append({"map_id": "*", "message": f"idle counters: {exc}"})

    def _run_map(
        self, game_map: GameMap, settings: TickSettings, tick_id: str, rng: random.Random
    ) -> tuple[MapTickResult | None, str | None]:
        try:
            return self.process_map(game_map.id, settings, tick_id, rng), None
        except MapProcessingError as exc:
            logger.exception("Error processing map %s", game_map.id)
            return None, str(exc)

    def process_map(
        self,
        map_id: str,
        settings: TickSettings,
        tick_id: str,
        rng: random.Random | None = None,
    ) -> MapTickResult:
        """Run one map's tick atomically.

        Raises MapProcessingError after rolling the map back.
        """
        if rng is None:
            rng = self._rng
        try:
            return self._process_map(map_id, settings, tick_id, rng)
        except Exception as exc:
            raise MapProcessingError(map_id, f"{type(exc).__name__}: {exc}") from exc

    def _process_map(
        self, map_id: str, settings: TickSettings, tick_id: str, rng: random.Random
    ) -> MapTickResult:
        with self._map_lock(map_id), self._store.transaction():
            state = self._store.load_map_state(map_id)
            index = MapIndex(state.tiles, state.buildings)
            result = MapTickResult(map_id=map_id)

            outcome = resolve_fires(index, settings, rng)
            result.fire = outcome.stats
            if outcome.changed:
                self._store.save_fire_state(outcome.changed)
            self._dirty.mark_dirty(map_id, outcome.damaged_at, settings.adjacency_range)

            recalculated = self._recalculate(index, state, settings, self._dirty.drain(map_id))
            if recalculated:
                self._store.save_calculations(recalculated)
            result.buildings_recalculated = len(recalculated)

            self._rollup(state, index.buildings(), settings, tick_id, result)
            if result.statistics:
                self._store.insert_company_statistics(result.statistics)
        return result

    def _recalculate(
        self,
        index: MapIndex,
        state: MapState,
        settings: TickSettings,
        drained: list[Building],
    ) -> list[Building]:
        updated: list[Building] = []
        for row in drained:
            building = index.building(row.id)
            if building is None or building.is_collapsed:
                continue
            profit, value = recompute(building, index, state.building_types, settings)
            building.calculated_profit = profit.amount
            building.profit_breakdown = profit.breakdown
            building.calculated_value = value.amount
            building.value_breakdown = value.breakdown
            building.needs_recalc = False
            updated.append(building)
        return updated

    def _rollup(
        self,
        state: MapState,
        buildings: list[Building],
        settings: TickSettings,
        tick_id: str,
        result: MapTickResult,
    ) -> None:
        tax_rate = settings.tax_rate(state.game_map.location_tier)
        owned: dict[str, list[Building]] = defaultdict(list)
        for building in buildings:
            if building.company_id is not None:
                owned[building.company_id].append(building)

        for company_id in sorted(owned):
            company = state.companies.get(company_id)
            if company is None:
                logger.warning("Buildings on map %s reference unknown company %s",
                               state.game_map.id, company_id)
                continue
            group = owned[company_id]
            standing = [b for b in group if not b.is_collapsed]
            is_earning = company.ticks_since_action < settings.earning_threshold_ticks

            gross = round_half_up(sum(tick_income(b, settings) for b in standing))
            if not is_earning:
                gross = 0
            tax = round_half_up(gross * tax_rate)
            net = gross - tax
            if net:
                self._store.credit_company(company_id, net)
            if is_earning:
                result.companies_updated += 1

            total_damage = sum(b.damage_percent for b in group)
            result.gross_profit += gross
            result.tax_amount += tax
            result.net_profit += net
            result.statistics.append(CompanyStatistics(
                tick_id=tick_id,
                company_id=company_id,
                map_id=state.game_map.id,
                building_count=len(group),
                collapsed_count=len(group) - len(standing),
                buildings_on_fire=sum(1 for b in group if b.is_on_fire),
                base_profit=sum(b.calculated_profit for b in standing),
                gross_profit=gross,
                tax_rate=tax_rate,
                tax_amount=tax,
                net_profit=net,
                total_building_value=sum(b.calculated_value for b in standing),
                total_damage_percent=total_damage,
                average_damage_percent=round(total_damage / len(group), 2),
                ticks_since_action=company.ticks_since_action,
                is_earning=is_earning,
            ))
