"""Read-side reporting over tick history and company statistics."""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any

from tick_city.types import CompanyStatistics, TickNotFoundError, TickRecord

if TYPE_CHECKING:
    from tick_city.store import Store

PERIODS: dict[str, timedelta | None] = {
    "hour": timedelta(hours=1),
    "day": timedelta(days=1),
    "week": timedelta(weeks=1),
    "all": None,
}

MAX_PAGE_SIZE = 100


class TickHistory:
    def __init__(self, store: Store) -> None:
        self._store = store

    def page(self, page: int = 1, limit: int = 20) -> dict[str, Any]:
        """Newest-first page of tick records, failed ticks included."""
        if page < 1:
            raise ValueError(f"page must be >= 1, got {page}")
        if not 1 <= limit <= MAX_PAGE_SIZE:
            raise ValueError(f"limit must be between 1 and {MAX_PAGE_SIZE}, got {limit}")
        ticks = self._store.list_ticks(offset=(page - 1) * limit, limit=limit)
        total = self._store.count_ticks()
        return {
            "ticks": ticks,
            "page": page,
            "limit": limit,
            "total": total,
            "pages": (total + limit - 1) // limit,
        }

    def detail(self, tick_id: str) -> tuple[TickRecord, list[CompanyStatistics]]:
        record = self._store.get_tick(tick_id)
        if record is None:
            raise TickNotFoundError(tick_id)
        return record, self._store.company_statistics(tick_id)

    def stats(self, period: str = "day", now: datetime | None = None) -> dict[str, Any]:
        """Aggregate trends over the last hour, day, week, or all time."""
        if period not in PERIODS:
            raise ValueError(f"period must be one of {sorted(PERIODS)}, got {period!r}")
        span = PERIODS[period]
        since = None
        if span is not None:
            now = now or datetime.now(timezone.utc)
            since = (now - span).isoformat(timespec="microseconds")
        ticks = self._store.ticks_since(since)

        n = len(ticks)
        totals = {
            key: sum(getattr(t, key) for t in ticks)
            for key in (
                "gross_profit", "tax_amount", "net_profit", "fires_started",
                "fires_extinguished", "buildings_damaged", "buildings_collapsed",
                "buildings_recalculated",
            )
        }
        return {
            "period": period,
            "since": since,
            "tick_count": n,
            "ticks_with_errors": sum(1 for t in ticks if t.failed),
            "failed_maps": sum(len(t.errors) for t in ticks),
            "totals": totals,
            "averages": {
                "net_profit": totals["net_profit"] / n if n else 0.0,
                "tax_amount": totals["tax_amount"] / n if n else 0.0,
                "execution_time_ms": sum(t.execution_time_ms for t in ticks) / n if n else 0.0,
            },
        }
