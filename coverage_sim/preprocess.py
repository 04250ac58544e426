"""State preprocessors: turn what a Sensor sees into a flat feature vector."""
from __future__ import annotations

from typing import Callable, Optional, Tuple

import numpy as np

from .agent import Sensor


class StatePreprocessor:
    """Base class; ``featurize`` must return a 1-D float32 array of length ``size``."""

    size: int = 0

    def featurize(self, sensor: Sensor) -> np.ndarray:
        raise NotImplementedError


class LocalWindowPreprocessor(StatePreprocessor):
    """Square window around the agent, four channels per cell.

    Channels: blocked (obstacle or off-grid), covered, quantised hazard, occupied by
    another agent.  Values are in ``[0, 1]``.
    """

    CHANNELS = 4

    def __init__(self, radius: int = 1, hazard_levels: int = 4, hazard_cap: float = 0.25):
        self.radius = radius
        self.hazard_levels = max(1, hazard_levels)
        self.hazard_cap = hazard_cap if hazard_cap > 0 else 1.0
        side = 2 * radius + 1
        self.size = side * side * self.CHANNELS

    def _hazard_level(self, probability: float) -> float:
        level = min(self.hazard_levels, int(np.ceil(probability / self.hazard_cap * self.hazard_levels)))
        return level / self.hazard_levels

    def featurize(self, sensor: Sensor) -> np.ndarray:
        out = np.zeros(self.size, dtype=np.float32)
        idx = 0
        for dy in range(-self.radius, self.radius + 1):
            for dx in range(-self.radius, self.radius + 1):
                cell = sensor.cell_at(dx, dy)
                if cell is None or cell.is_obstacle:
                    out[idx] = 1.0
                else:
                    out[idx + 1] = 1.0 if cell.cover_count > 0 else 0.0
                    out[idx + 2] = self._hazard_level(cell.hazard_probability)
                    if (dx or dy) and sensor.is_occupied(dx, dy):
                        out[idx + 3] = 1.0
                idx += self.CHANNELS
        return out


class GoalVectorPreprocessor(StatePreprocessor):
    """Wraps another preprocessor and appends the normalised offset to a goal cell."""

    def __init__(self, inner: StatePreprocessor, goal: Callable[[], Optional[Tuple[int, int]]]):
        self.inner = inner
        self.goal = goal
        self.size = inner.size + 2

    def featurize(self, sensor: Sensor) -> np.ndarray:
        base = self.inner.featurize(sensor)
        goal = self.goal()
        offset = np.zeros(2, dtype=np.float32)
        if goal is not None:
            width, height = sensor.grid_size
            x, y = sensor.location
            offset[0] = (goal[0] - x) / max(1, width - 1)
            offset[1] = (goal[1] - y) / max(1, height - 1)
        return np.concatenate([base, offset]).astype(np.float32)


__all__ = ["StatePreprocessor", "LocalWindowPreprocessor", "GoalVectorPreprocessor"]
