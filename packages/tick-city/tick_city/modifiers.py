"""Modifier breakdown entries recorded by the profit and value calculators."""
from __future__ import annotations

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable


class ModifierSource(str, Enum):
    TERRAIN_BONUS = "terrain_bonus"
    TERRAIN_PENALTY = "terrain_penalty"
    PREMIUM_TERRAIN = "premium_terrain"
    COMMERCIAL_SYNERGY = "commercial_synergy"
    DAMAGED_NEIGHBOR = "damaged_neighbor"
    COLLAPSED_NEIGHBOR = "collapsed_neighbor"
    COMPETITION = "competition"


@dataclass(frozen=True)
class ModifierEntry:
    """A single modifier application, tagged by its source.

    Attributes:
        source: What produced the modifier.
        amount: Fraction added to the running modifier total.
        terrain: Terrain name for terrain-driven entries.
        count: Number of contributing neighbors (tiles or buildings).
        damage: Neighbor damage percent for damage-driven entries.
    """

    source: ModifierSource
    amount: float
    terrain: str | None = None
    count: int = 1
    damage: int | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "source": self.source.value,
            "amount": self.amount,
            "count": self.count,
        }
        if self.terrain is not None:
            data["terrain"] = self.terrain
        if self.damage is not None:
            data["damage"] = self.damage
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ModifierEntry:
        return cls(
            source=ModifierSource(data["source"]),
            amount=float(data["amount"]),
            terrain=data.get("terrain"),
            count=int(data.get("count", 1)),
            damage=data.get("damage"),
        )

    def label(self) -> str:
        """Human-readable description for logs and UI."""
        if self.source in (
            ModifierSource.TERRAIN_BONUS,
            ModifierSource.TERRAIN_PENALTY,
            ModifierSource.PREMIUM_TERRAIN,
        ):
            return f"Adjacent {self.terrain} ({self.count})"
        if self.source is ModifierSource.COMMERCIAL_SYNERGY:
            return f"Adjacent buildings ({self.count})"
        if self.source is ModifierSource.DAMAGED_NEIGHBOR:
            return f"Damaged building ({self.damage}%)"
        if self.source is ModifierSource.COLLAPSED_NEIGHBOR:
            return "Collapsed building nearby"
        return f"Competing building ({self.count})"


def total(entries: Iterable[ModifierEntry]) -> float:
    return sum(e.amount for e in entries)


def dumps(entries: Iterable[ModifierEntry]) -> str:
    """Serialize entries to JSON with stable key order."""
    return json.dumps([e.to_dict() for e in entries], sort_keys=True)


def loads(text: str | None) -> list[ModifierEntry]:
    if not text:
        return []
    return [ModifierEntry.from_dict(d) for d in json.loads(text)]
