"""Run and batch statistics for coverage runs."""
from __future__ import annotations

from dataclasses import dataclass, field, asdict
import logging
import math
from typing import TYPE_CHECKING, Any, Dict, List, Optional

if TYPE_CHECKING:
    from .agent import Agent
    from .grid import GridWorld

logger = logging.getLogger(__name__)


class SampledVariable:
    """Running mean/variance using Welford's online update."""

    def __init__(self) -> None:
        self.reset()

    def reset(self) -> None:
        self.count = 0
        self.mean = 0.0
        self._m2 = 0.0
        self.sum = 0.0

    def add_sample(self, value: float) -> None:
        value = float(value)
        self.count += 1
        self.sum += value
        delta = value - self.mean
        self.mean += delta / self.count
        self._m2 += delta * (value - self.mean)

    @property
    def variance(self) -> float:
        if self.count < 2:
            return 0.0
        return self._m2 / (self.count - 1)

    @property
    def std(self) -> float:
        return math.sqrt(self.variance)

    def __repr__(self) -> str:
        return f"SampledVariable(count={self.count}, mean={self.mean:.4f}, std={self.std:.4f})"


@dataclass
class RunSummary:
    steps: int
    covered_cells: int
    free_cells: int
    coverage: float
    team_survivability: float
    surviving: int
    agents: int
    batch: Optional["BatchSummary"] = None


@dataclass
class BatchSummary:
    size: int
    steps_mean: float
    steps_std: float
    survivability_mean: float
    survivability_std: float
    coverage_mean: float
    coverage_std: float
    extras: Dict[str, float] = field(default_factory=dict)

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


class RunStatistics:
    """Per-run counters for the attached world plus batch aggregates across runs."""

    def __init__(self, world: Optional["GridWorld"] = None, batch_size: int = 10):
        if batch_size < 1:
            raise ValueError(f"batch_size must be >= 1 (got {batch_size})")
        self.world = world
        self.batch_size = batch_size
        self.batch_steps = SampledVariable()
        self.batch_survivability = SampledVariable()
        self.batch_coverage = SampledVariable()
        self.batch_summaries: List[BatchSummary] = []
        self.last_run: Optional[RunSummary] = None
        self.start_new_run()

    def attach(self, world: "GridWorld") -> None:
        self.world = world

    def reload_settings(self, settings) -> None:
        self.batch_size = settings.get_int("stats.multirun.batch_size")

    # ------------------------------------------------------------------
    # per-run
    # ------------------------------------------------------------------
    def start_new_run(self) -> None:
        self.steps = 0
        self.cover_events = 0
        self._agent_survival: Dict[int, float] = {}

    def update_time_step(self) -> None:
        self.steps += 1

    def update_cell_covered(self, agent: "Agent") -> None:
        """Record one cover event; called before the cell's counter is incremented."""

        cell = self.world.cells[agent.x][agent.y]
        self.cover_events += 1
        survival = self._agent_survival.get(agent.id, 1.0)
        self._agent_survival[agent.id] = survival * (1.0 - cell.hazard_probability)

    @property
    def free_cell_count(self) -> int:
        return sum(1 for cell in self.world.iter_cells() if cell.is_free)

    @property
    def covered_free_cells(self) -> int:
        return sum(1 for cell in self.world.iter_cells() if cell.is_free and cell.covered)

    @property
    def coverage_fraction(self) -> float:
        free = self.free_cell_count
        return self.covered_free_cells / free if free else 1.0

    @property
    def broken_count(self) -> int:
        return sum(1 for agent in self.world.agents if agent.broken)

    @property
    def surviving_count(self) -> int:
        return len(self.world.agents) - self.broken_count

    @property
    def team_survivability(self) -> float:
        total = len(self.world.agents)
        return self.surviving_count / total if total else 0.0

    def agent_survivability(self, agent_id: int) -> float:
        return self._agent_survival.get(agent_id, 1.0)

    @property
    def best_survivability(self) -> float:
        if not self.world.agents:
            return 0.0
        return max(self.agent_survivability(agent.id) for agent in self.world.agents)

    # ------------------------------------------------------------------
    # batch
    # ------------------------------------------------------------------
    @property
    def runs_in_batch(self) -> int:
        return self.batch_steps.count

    def finish_run(self) -> RunSummary:
        """Fold the current run into the batch; flushes the batch when it is full."""

        summary = RunSummary(
            steps=self.steps,
            covered_cells=self.covered_free_cells,
            free_cells=self.free_cell_count,
            coverage=self.coverage_fraction,
            team_survivability=self.team_survivability,
            surviving=self.surviving_count,
            agents=len(self.world.agents),
        )
        self.batch_steps.add_sample(summary.steps)
        self.batch_survivability.add_sample(summary.team_survivability)
        self.batch_coverage.add_sample(summary.coverage)
        if self.runs_in_batch >= self.batch_size:
            summary.batch = self.flush_batch()
        self.last_run = summary
        return summary

    def flush_batch(self) -> BatchSummary:
        batch = BatchSummary(
            size=self.runs_in_batch,
            steps_mean=self.batch_steps.mean,
            steps_std=self.batch_steps.std,
            survivability_mean=self.batch_survivability.mean,
            survivability_std=self.batch_survivability.std,
            coverage_mean=self.batch_coverage.mean,
            coverage_std=self.batch_coverage.std,
        )
        self.batch_summaries.append(batch)
        self.reset_batch()
        return batch

    def reset_batch(self) -> None:
        self.batch_steps.reset()
        self.batch_survivability.reset()
        self.batch_coverage.reset()

    # ------------------------------------------------------------------
    # reporting
    # ------------------------------------------------------------------
    def report(self) -> Dict[str, Any]:
        free = [cell.cover_count for cell in self.world.iter_cells() if cell.is_free]
        total_cells = self.world.width * self.world.height
        return {
            "Avg. times each cell covered": (sum(free) / len(free)) if free else 0.0,
            "Max times a cell was covered": max(free) if free else 0,
            "Min times a cell was covered": min(free) if free else 0,
            "Cells covered exactly once": sum(1 for c in free if c == 1),
            "Total cells": total_cells,
            "Total free cells": len(free),
            "Time steps": self.steps,
            "Broken robots": self.broken_count,
            "Surviving robots": self.surviving_count,
            "Percent covered": 100.0 * self.coverage_fraction,
            "Best survivability": self.best_survivability,
        }

    def format_report(self) -> str:
        lines = ["Name\tValue"]
        for name, value in self.report().items():
            if isinstance(value, float):
                lines.append(f"{name}\t{value:.3f}")
            else:
                lines.append(f"{name}\t{value}")
        return "\n".join(lines)


__all__ = ["SampledVariable", "RunSummary", "BatchSummary", "RunStatistics"]
