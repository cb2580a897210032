"""tick-city command line: initialise a store, run ticks, inspect history and settings."""
from __future__ import annotations

import argparse
import json
import logging
import signal
import sys
from dataclasses import asdict
from typing import Any, Sequence

from tick_city.catalog import seed_demo
from tick_city.history import PERIODS, TickHistory
from tick_city.orchestrator import TickOrchestrator
from tick_city.scheduler import DEFAULT_INTERVAL, Scheduler
from tick_city.settings import SettingsService
from tick_city.store import Store
from tick_city.types import LocationTier, SettingsValidationError, TickNotFoundError

logger = logging.getLogger("tick_city")


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(prog="tick-city", description="City economy tick engine")
    p.add_argument("--db", default="tick_city.db", help="SQLite database path (default: tick_city.db)")
    p.add_argument("--log-level", default="INFO",
                   choices=["DEBUG", "INFO", "WARNING", "ERROR"], help="Logging level")
    sub = p.add_subparsers(dest="command", required=True)

    init = sub.add_parser("init", help="Create tables, optionally with a demo map")
    init.add_argument("--demo", action="store_true", help="Seed the catalog and a demo map")
    init.add_argument("--size", type=int, default=16, help="Demo map width/height (default: 16)")
    init.add_argument("--tier", default="town", choices=[t.value for t in LocationTier])
    init.add_argument("--seed", type=int, default=42, help="Demo map seed (default: 42)")

    tick = sub.add_parser("tick", help="Run a single tick now")
    tick.add_argument("--seed", type=int, default=None, help="Random seed")
    tick.add_argument("--workers", type=int, default=1, help="Maps processed in parallel")

    run = sub.add_parser("run", help="Run ticks on a fixed interval")
    run.add_argument("--interval", type=float, default=DEFAULT_INTERVAL,
                     help=f"Seconds between ticks (default: {DEFAULT_INTERVAL:g})")
    run.add_argument("--ticks", type=int, default=None, help="Stop after N ticks (no pacing)")
    run.add_argument("--seed", type=int, default=None, help="Random seed")
    run.add_argument("--workers", type=int, default=1, help="Maps processed in parallel")

    history = sub.add_parser("history", help="List ticks or show one tick")
    history.add_argument("--page", type=int, default=1)
    history.add_argument("--limit", type=int, default=20)
    history.add_argument("--id", dest="tick_id", default=None, help="Show one tick with company stats")

    stats = sub.add_parser("stats", help="Aggregate tick trends")
    stats.add_argument("--period", default="day", choices=sorted(PERIODS))

    settings = sub.add_parser("settings", help="Show, change or reset tick settings")
    settings.add_argument("action", choices=["show", "set", "reset", "log"])
    settings.add_argument("pairs", nargs="*", metavar="KEY=VALUE")
    settings.add_argument("--actor", default="cli", help="Name recorded in the change log")

    return p.parse_args(argv)


def _emit(data: Any) -> None:
    print(json.dumps(data, indent=2, sort_keys=True, default=str))


def _parse_pairs(pairs: Sequence[str]) -> dict[str, Any]:
    changes: dict[str, Any] = {}
    for pair in pairs:
        key, sep, raw = pair.partition("=")
        if not sep:
            raise ValueError(f"Expected KEY=VALUE, got {pair!r}")
        try:
            changes[key] = json.loads(raw)
        except json.JSONDecodeError:
            changes[key] = raw
    return changes


def _cmd_settings(store: Store, args: argparse.Namespace) -> int:
    service = SettingsService(store)
    if args.action == "show":
        _emit(service.get())
    elif args.action == "log":
        _emit(service.change_log())
    elif args.action == "reset":
        _emit(service.reset(args.actor))
    else:
        try:
            accepted = service.update(_parse_pairs(args.pairs), args.actor)
        except SettingsValidationError as exc:
            _emit({"errors": [e.to_dict() for e in exc.errors]})
            return 2
        _emit({"accepted": accepted})
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=args.log_level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    store = Store(args.db)
    try:
        store.create_schema()
        if args.command == "init":
            if args.demo:
                game_map = seed_demo(store, size=args.size, tier=LocationTier(args.tier), seed=args.seed)
                logger.info("Seeded demo map %s (%dx%d)", game_map.id, args.size, args.size)
            return 0

        if args.command == "tick":
            record = TickOrchestrator(store, seed=args.seed, max_workers=args.workers).run_tick()
            _emit(record.to_dict())
            return 1 if record.failed else 0

        if args.command == "run":
            orchestrator = TickOrchestrator(store, seed=args.seed, max_workers=args.workers)
            scheduler = Scheduler(orchestrator, interval=args.interval)
            if args.ticks is not None:
                records = scheduler.run(args.ticks)
                _emit([r.to_dict() for r in records])
                return 0
            signal.signal(signal.SIGINT, lambda *_: scheduler.request_stop())
            signal.signal(signal.SIGTERM, lambda *_: scheduler.request_stop())
            scheduler.run_forever()
            return 0

        if args.command == "history":
            history = TickHistory(store)
            if args.tick_id:
                try:
                    record, stats = history.detail(args.tick_id)
                except TickNotFoundError as exc:
                    print(exc, file=sys.stderr)
                    return 1
                _emit({"tick": record.to_dict(), "company_statistics": [asdict(s) for s in stats]})
            else:
                try:
                    result = history.page(args.page, args.limit)
                except ValueError as exc:
                    print(exc, file=sys.stderr)
                    return 2
                result["ticks"] = [t.to_dict() for t in result["ticks"]]
                _emit(result)
            return 0

        if args.command == "stats":
            _emit(TickHistory(store).stats(args.period))
            return 0

        return _cmd_settings(store, args)
    finally:
        store.close()


if __name__ == "__main__":
    sys.exit(main())
