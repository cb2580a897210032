"""SQLite-backed store for maps, buildings, companies, settings and tick history.

A single connection in autocommit mode; ``transaction()`` opens an
explicit ``BEGIN IMMEDIATE`` block serialized by a re-entrant lock, so
map workers and player actions never interleave inside a transaction.
Nested ``transaction()`` calls join the outer one.
"""
from __future__ import annotations

import json
import sqlite3
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Iterable, Iterator

from tick_city import modifiers
from tick_city.types import (
    Building,
    BuildingType,
    Company,
    CompanyStatistics,
    GameMap,
    LocationTier,
    Terrain,
    TickRecord,
    Tile,
)

SCHEMA_VERSION = 1

_SCHEMA = """
CREATE TABLE IF NOT EXISTS maps (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    location_type TEXT NOT NULL DEFAULT 'town',
    width INTEGER NOT NULL DEFAULT 0,
    height INTEGER NOT NULL DEFAULT 0,
    is_active INTEGER NOT NULL DEFAULT 1
);

CREATE TABLE IF NOT EXISTS tiles (
    id TEXT PRIMARY KEY,
    map_id TEXT NOT NULL REFERENCES maps(id),
    x INTEGER NOT NULL,
    y INTEGER NOT NULL,
    terrain_type TEXT NOT NULL DEFAULT 'free_land',
    UNIQUE (map_id, x, y)
);

CREATE TABLE IF NOT EXISTS building_types (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    base_profit INTEGER NOT NULL,
    cost INTEGER NOT NULL,
    adjacency_bonuses TEXT NOT NULL DEFAULT '{}',
    adjacency_penalties TEXT NOT NULL DEFAULT '{}',
    commercial_synergy REAL NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS companies (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    cash INTEGER NOT NULL DEFAULT 0,
    ticks_since_action INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS building_instances (
    id TEXT PRIMARY KEY,
    building_type_id TEXT NOT NULL REFERENCES building_types(id),
    tile_id TEXT NOT NULL UNIQUE REFERENCES tiles(id),
    company_id TEXT REFERENCES companies(id),
    variant TEXT,
    damage_percent INTEGER NOT NULL DEFAULT 0,
    is_on_fire INTEGER NOT NULL DEFAULT 0,
    is_collapsed INTEGER NOT NULL DEFAULT 0,
    has_sprinklers INTEGER NOT NULL DEFAULT 0,
    calculated_profit INTEGER NOT NULL DEFAULT 0,
    calculated_value INTEGER NOT NULL DEFAULT 0,
    profit_modifiers TEXT NOT NULL DEFAULT '[]',
    value_modifiers TEXT NOT NULL DEFAULT '[]',
    needs_profit_recalc INTEGER NOT NULL DEFAULT 1
);

CREATE INDEX IF NOT EXISTS idx_buildings_recalc
    ON building_instances(needs_profit_recalc);

-- Valid ranges live in TickSettings; storage does not enforce them.
CREATE TABLE IF NOT EXISTS tick_settings (
    id INTEGER PRIMARY KEY CHECK (id = 1),
    settings TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    updated_by TEXT
);

CREATE TABLE IF NOT EXISTS tick_settings_log (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    changed_at TEXT NOT NULL,
    actor TEXT NOT NULL,
    fields TEXT NOT NULL,
    old_values TEXT NOT NULL,
    new_values TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS tick_history (
    id TEXT PRIMARY KEY,
    processed_at TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'running',
    execution_time_ms INTEGER NOT NULL DEFAULT 0,
    settings_version TEXT,
    maps_processed INTEGER NOT NULL DEFAULT 0,
    companies_updated INTEGER NOT NULL DEFAULT 0,
    buildings_recalculated INTEGER NOT NULL DEFAULT 0,
    gross_profit INTEGER NOT NULL DEFAULT 0,
    tax_amount INTEGER NOT NULL DEFAULT 0,
    net_profit INTEGER NOT NULL DEFAULT 0,
    fires_started INTEGER NOT NULL DEFAULT 0,
    fires_extinguished INTEGER NOT NULL DEFAULT 0,
    buildings_damaged INTEGER NOT NULL DEFAULT 0,
    buildings_collapsed INTEGER NOT NULL DEFAULT 0,
    errors TEXT NOT NULL DEFAULT '[]'
);

CREATE INDEX IF NOT EXISTS idx_tick_history_date ON tick_history(processed_at DESC);

CREATE TABLE IF NOT EXISTS company_statistics (
    tick_id TEXT NOT NULL REFERENCES tick_history(id),
    company_id TEXT NOT NULL,
    map_id TEXT NOT NULL,
    building_count INTEGER NOT NULL DEFAULT 0,
    collapsed_count INTEGER NOT NULL DEFAULT 0,
    buildings_on_fire INTEGER NOT NULL DEFAULT 0,
    base_profit INTEGER NOT NULL DEFAULT 0,
    gross_profit INTEGER NOT NULL DEFAULT 0,
    tax_rate REAL NOT NULL DEFAULT 0,
    tax_amount INTEGER NOT NULL DEFAULT 0,
    net_profit INTEGER NOT NULL DEFAULT 0,
    total_building_value INTEGER NOT NULL DEFAULT 0,
    total_damage_percent INTEGER NOT NULL DEFAULT 0,
    average_damage_percent REAL NOT NULL DEFAULT 0,
    ticks_since_action INTEGER NOT NULL DEFAULT 0,
    is_earning INTEGER NOT NULL DEFAULT 1,
    PRIMARY KEY (tick_id, company_id, map_id)
);

CREATE INDEX IF NOT EXISTS idx_company_statistics_company
    ON company_statistics(company_id);
"""

_BUILDING_SELECT = """
    SELECT bi.*, t.x, t.y, t.map_id
    FROM building_instances bi
    JOIN tiles t ON bi.tile_id = t.id
"""

_TICK_COLUMNS = (
    "execution_time_ms", "settings_version", "maps_processed", "companies_updated",
    "buildings_recalculated", "gross_profit", "tax_amount", "net_profit",
    "fires_started", "fires_extinguished", "buildings_damaged", "buildings_collapsed",
)

_STAT_COLUMNS = (
    "tick_id", "company_id", "map_id", "building_count", "collapsed_count",
    "buildings_on_fire", "base_profit", "gross_profit", "tax_rate", "tax_amount",
    "net_profit", "total_building_value", "total_damage_percent",
    "average_damage_percent", "ticks_since_action", "is_earning",
)


def _dumps(data: Any) -> str:
    return json.dumps(data, sort_keys=True)


@dataclass
class MapState:
    """Everything one map's tick needs, loaded in one go."""

    game_map: GameMap
    tiles: list[Tile] = field(default_factory=list)
    buildings: list[Building] = field(default_factory=list)
    building_types: dict[str, BuildingType] = field(default_factory=dict)
    companies: dict[str, Company] = field(default_factory=dict)


class Store:
    def __init__(self, path: str = ":memory:") -> None:
        self._path = path
        self._conn = sqlite3.connect(path, check_same_thread=False, isolation_level=None)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA foreign_keys = ON")
        self._lock = threading.RLock()
        self._depth = 0

    @property
    def path(self) -> str:
        return self._path

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def create_schema(self) -> None:
        with self._lock:
            self._conn.executescript(_SCHEMA)
            self._conn.execute(f"PRAGMA user_version = {SCHEMA_VERSION}")

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Run a block atomically; rolls back on any exception."""
        with self._lock:
            if self._depth:
                self._depth += 1
                try:
                    yield self._conn
                finally:
                    self._depth -= 1
                return
            self._conn.execute("BEGIN IMMEDIATE")
            self._depth = 1
            try:
                yield self._conn
            except BaseException:
                self._depth = 0
                self._conn.execute("ROLLBACK")
                raise
            self._depth = 0
            self._conn.execute("COMMIT")

    def _query(self, sql: str, params: Iterable[Any] = ()) -> list[sqlite3.Row]:
        with self._lock:
            return self._conn.execute(sql, tuple(params)).fetchall()

    def _execute(self, sql: str, params: Iterable[Any] = ()) -> int:
        with self._lock:
            return self._conn.execute(sql, tuple(params)).rowcount

    # --- Row conversion ---

    @staticmethod
    def _map_from_row(row: sqlite3.Row) -> GameMap:
        return GameMap(
            id=row["id"],
            name=row["name"],
            location_tier=LocationTier(row["location_type"]),
            width=row["width"],
            height=row["height"],
            is_active=bool(row["is_active"]),
        )

    @staticmethod
    def _tile_from_row(row: sqlite3.Row) -> Tile:
        return Tile(
            id=row["id"], map_id=row["map_id"], x=row["x"], y=row["y"],
            terrain=Terrain(row["terrain_type"]),
        )

    @staticmethod
    def _building_from_row(row: sqlite3.Row) -> Building:
        return Building(
            id=row["id"],
            building_type_id=row["building_type_id"],
            map_id=row["map_id"],
            tile_id=row["tile_id"],
            x=row["x"],
            y=row["y"],
            company_id=row["company_id"],
            variant=row["variant"],
            damage_percent=row["damage_percent"],
            is_on_fire=bool(row["is_on_fire"]),
            is_collapsed=bool(row["is_collapsed"]),
            has_sprinklers=bool(row["has_sprinklers"]),
            calculated_profit=row["calculated_profit"],
            calculated_value=row["calculated_value"],
            needs_recalc=bool(row["needs_profit_recalc"]),
            profit_breakdown=modifiers.loads(row["profit_modifiers"]),
            value_breakdown=modifiers.loads(row["value_modifiers"]),
        )

    @staticmethod
    def _type_from_row(row: sqlite3.Row) -> BuildingType:
        return BuildingType.from_row(
            id=row["id"],
            name=row["name"],
            base_profit=row["base_profit"],
            cost=row["cost"],
            adjacency_bonuses=row["adjacency_bonuses"],
            adjacency_penalties=row["adjacency_penalties"],
            commercial_synergy=row["commercial_synergy"],
        )

    @staticmethod
    def _company_from_row(row: sqlite3.Row) -> Company:
        return Company(
            id=row["id"], name=row["name"], cash=row["cash"],
            ticks_since_action=row["ticks_since_action"],
        )

    @staticmethod
    def _tick_from_row(row: sqlite3.Row) -> TickRecord:
        return TickRecord(
            id=row["id"],
            processed_at=row["processed_at"],
            status=row["status"],
            errors=json.loads(row["errors"] or "[]"),
            **{c: row[c] for c in _TICK_COLUMNS},
        )

    @staticmethod
    def _stats_from_row(row: sqlite3.Row) -> CompanyStatistics:
        data = {c: row[c] for c in _STAT_COLUMNS}
        data["is_earning"] = bool(data["is_earning"])
        return CompanyStatistics(**data)

    # --- Maps and tiles ---

    def add_map(self, game_map: GameMap) -> None:
        self._execute(
            "INSERT INTO maps (id, name, location_type, width, height, is_active) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            (game_map.id, game_map.name, game_map.location_tier.value,
             game_map.width, game_map.height, int(game_map.is_active)),
        )

    def get_map(self, map_id: str) -> GameMap | None:
        rows = self._query("SELECT * FROM maps WHERE id = ?", (map_id,))
        return self._map_from_row(rows[0]) if rows else None

    def active_maps(self) -> list[GameMap]:
        rows = self._query("SELECT * FROM maps WHERE is_active = 1 ORDER BY id")
        return [self._map_from_row(r) for r in rows]

    def set_map_active(self, map_id: str, active: bool) -> None:
        self._execute("UPDATE maps SET is_active = ? WHERE id = ?", (int(active), map_id))

    def add_tiles(self, tiles: Iterable[Tile]) -> None:
        with self.transaction() as conn:
            conn.executemany(
                "INSERT INTO tiles (id, map_id, x, y, terrain_type) VALUES (?, ?, ?, ?, ?)",
                [(t.id, t.map_id, t.x, t.y, t.terrain.value) for t in tiles],
            )

    def load_tiles(self, map_id: str) -> list[Tile]:
        rows = self._query("SELECT * FROM tiles WHERE map_id = ?", (map_id,))
        return [self._tile_from_row(r) for r in rows]

    def get_tile(self, tile_id: str) -> Tile | None:
        rows = self._query("SELECT * FROM tiles WHERE id = ?", (tile_id,))
        return self._tile_from_row(rows[0]) if rows else None

    def tile_at(self, map_id: str, x: int, y: int) -> Tile | None:
        rows = self._query(
            "SELECT * FROM tiles WHERE map_id = ? AND x = ? AND y = ?", (map_id, x, y)
        )
        return self._tile_from_row(rows[0]) if rows else None

    def set_terrain(self, tile_id: str, terrain: Terrain) -> None:
        self._execute("UPDATE tiles SET terrain_type = ? WHERE id = ?", (terrain.value, tile_id))

    # --- Building types ---

    def add_building_type(self, building_type: BuildingType) -> None:
        self._execute(
            "INSERT INTO building_types (id, name, base_profit, cost, adjacency_bonuses, "
            "adjacency_penalties, commercial_synergy) VALUES (?, ?, ?, ?, ?, ?, ?)",
            (
                building_type.id,
                building_type.name,
                building_type.base_profit,
                building_type.cost,
                _dumps({t.value: v for t, v in building_type.adjacency_bonuses.items()}),
                _dumps({t.value: v for t, v in building_type.adjacency_penalties.items()}),
                building_type.commercial_synergy,
            ),
        )

    def load_building_types(self) -> dict[str, BuildingType]:
        rows = self._query("SELECT * FROM building_types")
        return {r["id"]: self._type_from_row(r) for r in rows}

    def get_building_type(self, type_id: str) -> BuildingType | None:
        rows = self._query("SELECT * FROM building_types WHERE id = ?", (type_id,))
        return self._type_from_row(rows[0]) if rows else None

    # --- Companies ---

    def add_company(self, company: Company) -> None:
        self._execute(
            "INSERT INTO companies (id, name, cash, ticks_since_action) VALUES (?, ?, ?, ?)",
            (company.id, company.name, company.cash, company.ticks_since_action),
        )

    def get_company(self, company_id: str) -> Company | None:
        rows = self._query("SELECT * FROM companies WHERE id = ?", (company_id,))
        return self._company_from_row(rows[0]) if rows else None

    def load_companies(self) -> dict[str, Company]:
        rows = self._query("SELECT * FROM companies")
        return {r["id"]: self._company_from_row(r) for r in rows}

    def credit_company(self, company_id: str, amount: int) -> None:
        self._execute("UPDATE companies SET cash = cash + ? WHERE id = ?", (amount, company_id))

    def reset_idle(self, company_id: str) -> None:
        self._execute("UPDATE companies SET ticks_since_action = 0 WHERE id = ?", (company_id,))

    def increment_idle_counters(self, skip_maps: Iterable[str] = ()) -> int:
        """Advance every company's idle counter.

        Companies owning buildings on any of ``skip_maps`` keep their
        counter, so a rolled-back map is retried with the idle state it
        last committed.
        """
        skip = sorted(set(skip_maps))
        if not skip:
            return self._execute("UPDATE companies SET ticks_since_action = ticks_since_action + 1")
        placeholders = ", ".join("?" for _ in skip)
        return self._execute(
            f"""
            UPDATE companies SET ticks_since_action = ticks_since_action + 1
            WHERE id NOT IN (
                SELECT bi.company_id FROM building_instances bi
                JOIN tiles t ON bi.tile_id = t.id
                WHERE bi.company_id IS NOT NULL AND t.map_id IN ({placeholders})
            )
            """,
            skip,
        )

    # --- Buildings ---

    def insert_building(self, building: Building) -> None:
        self._execute(
            "INSERT INTO building_instances (id, building_type_id, tile_id, company_id, "
            "variant, damage_percent, is_on_fire, is_collapsed, has_sprinklers, "
            "needs_profit_recalc) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                building.id, building.building_type_id, building.tile_id, building.company_id,
                building.variant, building.damage_percent, int(building.is_on_fire),
                int(building.is_collapsed), int(building.has_sprinklers), int(building.needs_recalc),
            ),
        )

    def delete_building(self, building_id: str) -> None:
        self._execute("DELETE FROM building_instances WHERE id = ?", (building_id,))

    def get_building(self, building_id: str) -> Building | None:
        rows = self._query(_BUILDING_SELECT + " WHERE bi.id = ?", (building_id,))
        return self._building_from_row(rows[0]) if rows else None

    def building_on_tile(self, tile_id: str) -> Building | None:
        rows = self._query(_BUILDING_SELECT + " WHERE bi.tile_id = ?", (tile_id,))
        return self._building_from_row(rows[0]) if rows else None

    def load_buildings(self, map_id: str) -> list[Building]:
        rows = self._query(_BUILDING_SELECT + " WHERE t.map_id = ? ORDER BY bi.id", (map_id,))
        return [self._building_from_row(r) for r in rows]

    def save_fire_state(self, buildings: Iterable[Building]) -> None:
        with self.transaction() as conn:
            conn.executemany(
                "UPDATE building_instances SET damage_percent = ?, is_on_fire = ?, "
                "is_collapsed = ?, has_sprinklers = ? WHERE id = ?",
                [
                    (b.damage_percent, int(b.is_on_fire), int(b.is_collapsed),
                     int(b.has_sprinklers), b.id)
                    for b in buildings
                ],
            )

    def save_calculations(self, buildings: Iterable[Building]) -> None:
        with self.transaction() as conn:
            conn.executemany(
                "UPDATE building_instances SET calculated_profit = ?, profit_modifiers = ?, "
                "calculated_value = ?, value_modifiers = ? WHERE id = ?",
                [
                    (b.calculated_profit, modifiers.dumps(b.profit_breakdown),
                     b.calculated_value, modifiers.dumps(b.value_breakdown), b.id)
                    for b in buildings
                ],
            )

    # --- Dirty flags ---

    def mark_dirty(self, map_id: str, x: int, y: int, radius: int) -> int:
        return self._execute(
            """
            UPDATE building_instances SET needs_profit_recalc = 1
            WHERE is_collapsed = 0 AND tile_id IN (
                SELECT id FROM tiles
                WHERE map_id = ? AND ABS(x - ?) <= ? AND ABS(y - ?) <= ?
            )
            """,
            (map_id, x, radius, y, radius),
        )

    def claim_dirty(self, map_id: str) -> list[Building]:
        """Select and clear dirty, non-collapsed buildings in one transaction."""
        with self.transaction() as conn:
            rows = conn.execute(
                _BUILDING_SELECT
                + " WHERE t.map_id = ? AND bi.needs_profit_recalc = 1 AND bi.is_collapsed = 0"
                " ORDER BY bi.id",
                (map_id,),
            ).fetchall()
            if rows:
                conn.executemany(
                    "UPDATE building_instances SET needs_profit_recalc = 0 WHERE id = ?",
                    [(r["id"],) for r in rows],
                )
        return [self._building_from_row(r) for r in rows]

    def dirty_ids(self, map_id: str) -> set[str]:
        rows = self._query(
            "SELECT bi.id FROM building_instances bi JOIN tiles t ON bi.tile_id = t.id "
            "WHERE t.map_id = ? AND bi.needs_profit_recalc = 1",
            (map_id,),
        )
        return {r["id"] for r in rows}

    # --- Aggregate loads ---

    def load_map_state(self, map_id: str) -> MapState:
        game_map = self.get_map(map_id)
        if game_map is None:
            raise KeyError(f"Map not found: {map_id}")
        return MapState(
            game_map=game_map,
            tiles=self.load_tiles(map_id),
            buildings=self.load_buildings(map_id),
            building_types=self.load_building_types(),
            companies=self.load_companies(),
        )

    # --- Settings ---

    def load_settings(self) -> tuple[dict[str, Any], str, str | None] | None:
        rows = self._query("SELECT * FROM tick_settings WHERE id = 1")
        if not rows:
            return None
        row = rows[0]
        return json.loads(row["settings"]), row["updated_at"], row["updated_by"]

    def save_settings(
        self,
        values: dict[str, Any],
        actor: str,
        timestamp: str,
        fields: list[str],
        old_values: dict[str, Any],
        new_values: dict[str, Any],
    ) -> None:
        with self.transaction() as conn:
            conn.execute(
                "INSERT INTO tick_settings (id, settings, updated_at, updated_by) "
                "VALUES (1, ?, ?, ?) ON CONFLICT(id) DO UPDATE SET "
                "settings = excluded.settings, updated_at = excluded.updated_at, "
                "updated_by = excluded.updated_by",
                (_dumps(values), timestamp, actor),
            )
            conn.execute(
                "INSERT INTO tick_settings_log (changed_at, actor, fields, old_values, new_values) "
                "VALUES (?, ?, ?, ?, ?)",
                (timestamp, actor, _dumps(fields), _dumps(old_values), _dumps(new_values)),
            )

    def settings_log(self, limit: int = 50) -> list[dict[str, Any]]:
        rows = self._query(
            "SELECT * FROM tick_settings_log ORDER BY id DESC LIMIT ?", (limit,)
        )
        return [
            {
                "changed_at": r["changed_at"],
                "actor": r["actor"],
                "fields": json.loads(r["fields"]),
                "old_values": json.loads(r["old_values"]),
                "new_values": json.loads(r["new_values"]),
            }
            for r in rows
        ]

    # --- Tick history ---

    def begin_tick(self, record: TickRecord) -> None:
        self._execute(
            "INSERT INTO tick_history (id, processed_at, status, settings_version) "
            "VALUES (?, ?, ?, ?)",
            (record.id, record.processed_at, record.status, record.settings_version),
        )

    def finish_tick(self, record: TickRecord) -> None:
        assignments = ", ".join(f"{c} = ?" for c in _TICK_COLUMNS)
        self._execute(
            f"UPDATE tick_history SET status = ?, errors = ?, {assignments} WHERE id = ?",
            (
                record.status,
                _dumps(record.errors),
                *(getattr(record, c) for c in _TICK_COLUMNS),
                record.id,
            ),
        )

    def get_tick(self, tick_id: str) -> TickRecord | None:
        rows = self._query("SELECT * FROM tick_history WHERE id = ?", (tick_id,))
        return self._tick_from_row(rows[0]) if rows else None

    def list_ticks(self, offset: int, limit: int) -> list[TickRecord]:
        rows = self._query(
            "SELECT * FROM tick_history ORDER BY processed_at DESC, rowid DESC LIMIT ? OFFSET ?",
            (limit, offset),
        )
        return [self._tick_from_row(r) for r in rows]

    def count_ticks(self) -> int:
        return self._query("SELECT COUNT(*) AS n FROM tick_history")[0]["n"]

    def ticks_since(self, since: str | None) -> list[TickRecord]:
        if since is None:
            rows = self._query("SELECT * FROM tick_history ORDER BY processed_at")
        else:
            rows = self._query(
                "SELECT * FROM tick_history WHERE processed_at >= ? ORDER BY processed_at",
                (since,),
            )
        return [self._tick_from_row(r) for r in rows]

    def insert_company_statistics(self, stats: Iterable[CompanyStatistics]) -> None:
        placeholders = ", ".join("?" for _ in _STAT_COLUMNS)
        with self.transaction() as conn:
            conn.executemany(
                f"INSERT INTO company_statistics ({', '.join(_STAT_COLUMNS)}) "
                f"VALUES ({placeholders})",
                [
                    tuple(
                        int(v) if isinstance(v, bool) else v
                        for v in (getattr(s, c) for c in _STAT_COLUMNS)
                    )
                    for s in stats
                ],
            )

    def company_statistics(self, tick_id: str) -> list[CompanyStatistics]:
        rows = self._query(
            "SELECT * FROM company_statistics WHERE tick_id = ? ORDER BY map_id, company_id",
            (tick_id,),
        )
        return [self._stats_from_row(r) for r in rows]
