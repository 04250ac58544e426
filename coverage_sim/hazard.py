"""Per-tick hazard spread and decay over the whole grid."""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Tuple

import numpy as np

from .config import Settings

if TYPE_CHECKING:
    from .grid import GridWorld

logger = logging.getLogger(__name__)


class HazardDiffusionModel:
    """Spreads hazard to orthogonal neighbours and decays (or refuels) each cell.

    All deltas are accumulated from the pre-tick field and applied at once, so the
    update does not depend on cell iteration order.
    """

    def __init__(self, spread_factor: float = 0.1, decay_factor: float = 0.1, cap: float = 0.25):
        self.spread_factor = spread_factor
        self.decay_factor = decay_factor
        self.cap = cap

    @classmethod
    def from_settings(cls, settings: Settings) -> "HazardDiffusionModel":
        model = cls()
        model.reload_settings(settings)
        return model

    def reload_settings(self, settings: Settings) -> None:
        self.spread_factor = settings.get_float("hazard.spread_factor")
        self.decay_factor = settings.get_float("hazard.decay_factor")
        self.cap = settings.get_float("hazard.cap")

    def compute_deltas(
        self, prob: np.ndarray, fuel: np.ndarray, spread: np.ndarray
    ) -> Tuple[np.ndarray, np.ndarray]:
        """Return ``(delta, new_fuel)`` for ``(width, height)`` arrays; inputs are not modified."""

        delta = np.zeros_like(prob, dtype=float)
        out = prob * spread * self.spread_factor
        delta[1:, :] += out[:-1, :]
        delta[:-1, :] += out[1:, :]
        delta[:, 1:] += out[:, :-1]
        delta[:, :-1] += out[:, 1:]

        burn = prob * self.decay_factor
        fuelled = fuel > 0.0
        consumed = np.where(fuelled, np.minimum(fuel, burn), 0.0)
        delta += np.where(fuelled, consumed, -burn)
        return delta, fuel - consumed

    def apply(self, prob: np.ndarray, fuel: np.ndarray, spread: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        delta, new_fuel = self.compute_deltas(prob, fuel, spread)
        return np.clip(prob + delta, 0.0, self.cap), new_fuel

    def update(self, world: "GridWorld") -> None:
        prob, fuel, spread = world.hazard_arrays()
        new_prob, new_fuel = self.apply(prob, fuel, spread)
        world.set_hazard_arrays(new_prob, new_fuel)


__all__ = ["HazardDiffusionModel"]
