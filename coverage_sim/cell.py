"""Per-position grid state."""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class CellType(str, Enum):
    FREE = "free"
    OBSTACLE = "obstacle"


@dataclass
class Cell:
    x: int
    y: int
    type: CellType = CellType.FREE
    hazard_probability: float = 0.0
    hazard_fuel: float = 0.0
    spreadability: float = 0.0
    cover_count: int = 0
    cost: float = 1.0

    @property
    def is_obstacle(self) -> bool:
        return self.type is CellType.OBSTACLE

    @property
    def is_free(self) -> bool:
        return self.type is CellType.FREE

    @property
    def covered(self) -> bool:
        return self.cover_count > 0


__all__ = ["Cell", "CellType"]
