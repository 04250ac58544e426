"""Scenarios compose world predicates into a terminal test and own the run/batch reports."""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING, List, Optional, Tuple

import numpy as np

from .agent import RewardFunction
from .cell import CellType
from .config import Settings
from .errors import CommandError, ConfigError
from .preprocess import GoalVectorPreprocessor, LocalWindowPreprocessor, StatePreprocessor
from .reward_config import coverage_reward, pathplan_reward
from .stats import BatchSummary, RunStatistics, RunSummary, SampledVariable

if TYPE_CHECKING:
    from .commands import CommandRegistry
    from .grid import GridWorld

logger = logging.getLogger(__name__)


class Scenario:
    name = "base"

    def __init__(self, settings: Settings, rng: Optional[np.random.Generator] = None):
        self.rng = rng if rng is not None else np.random.default_rng()
        self.reload_settings(settings)

    def reload_settings(self, settings: Settings) -> None:
        self.max_steps = settings.get_int("autorun.max_steps_per_run")
        self.hazard_cap = settings.get_float("hazard.cap")

    def step_cap_reached(self, world: "GridWorld") -> bool:
        return self.max_steps > 0 and world.step_count >= self.max_steps

    def is_terminal(self, world: "GridWorld", stats: RunStatistics) -> bool:
        raise NotImplementedError

    def reward_fn(self) -> RewardFunction:
        return coverage_reward()

    def make_preprocessor(self) -> StatePreprocessor:
        return LocalWindowPreprocessor(hazard_cap=self.hazard_cap)

    def on_regenerate(self, world: "GridWorld") -> None:
        pass

    def on_run_end(self, world: "GridWorld", stats: RunStatistics, summary: RunSummary) -> None:
        logger.info(
            "END OF RUN: steps=%d, cover=%d/%d, teamSurv=%.3f, bots=%d/%d",
            summary.steps,
            summary.covered_cells,
            summary.free_cells,
            summary.team_survivability,
            summary.surviving,
            summary.agents,
        )

    def on_batch_end(self, batch: BatchSummary) -> None:
        logger.info(
            "Batch averages (size=%d): steps=%.3f (%.2f), teamSurv=%.3f (%.2f)",
            batch.size,
            batch.steps_mean,
            batch.steps_std,
            batch.survivability_mean,
            batch.survivability_std,
        )

    def register_commands(self, commands: "CommandRegistry", simulation) -> None:
        pass


class CoverageScenario(Scenario):
    """A run ends when every free cell is covered, every agent is broken, or the step cap hits."""

    name = "coverage"

    def is_terminal(self, world: "GridWorld", stats: RunStatistics) -> bool:
        return world.is_fully_covered() or world.all_broken() or self.step_cap_reached(world)


class PathplanScenario(Scenario):
    """Reach a goal cell; reports the closest approach per run and the success rate per batch."""

    name = "pathplan"

    def __init__(self, settings: Settings, rng: Optional[np.random.Generator] = None):
        self.goal: Optional[Tuple[int, int]] = None
        self.batch_distance = SampledVariable()
        self.batch_goal_reached = SampledVariable()
        super().__init__(settings, rng)

    def reload_settings(self, settings: Settings) -> None:
        super().reload_settings(settings)
        self.clear_goal_neighbors = settings.get_bool("pathplan.clear_obstacles_adjacent_to_goal")

    def goal_or_origin(self) -> Tuple[int, int]:
        return self.goal if self.goal is not None else (0, 0)

    def reward_fn(self) -> RewardFunction:
        return pathplan_reward(self.goal_or_origin)

    def make_preprocessor(self) -> StatePreprocessor:
        return GoalVectorPreprocessor(LocalWindowPreprocessor(hazard_cap=self.hazard_cap), lambda: self.goal)

    def reset_goal(self, world: "GridWorld") -> None:
        x = int(self.rng.integers(world.width))
        y = int(self.rng.integers(world.height))
        self.goal = (x, y)
        if self.clear_goal_neighbors:
            world.clear_adjacent_cells(x, y)
            world.cells[x][y].type = CellType.FREE

    def on_regenerate(self, world: "GridWorld") -> None:
        self.reset_goal(world)

    def goal_has_agent(self, world: "GridWorld") -> bool:
        return self.goal is not None and world.is_occupied(*self.goal)

    def min_goal_distance(self, world: "GridWorld") -> int:
        gx, gy = self.goal_or_origin()
        distances: List[int] = [abs(a.x - gx) + abs(a.y - gy) for a in world.agents]
        return min(distances) if distances else 0

    def is_terminal(self, world: "GridWorld", stats: RunStatistics) -> bool:
        return world.all_broken() or self.goal_has_agent(world) or self.step_cap_reached(world)

    def on_run_end(self, world: "GridWorld", stats: RunStatistics, summary: RunSummary) -> None:
        distance = self.min_goal_distance(world)
        self.batch_distance.add_sample(distance)
        self.batch_goal_reached.add_sample(1 if distance == 0 else 0)
        logger.info(
            "Run end: steps=%d, minMdst=%d, tSv=%.1f, bots=%d/%d",
            summary.steps,
            distance,
            summary.team_survivability,
            summary.surviving,
            summary.agents,
        )

    def on_batch_end(self, batch: BatchSummary) -> None:
        batch.extras["min_goal_distance_mean"] = self.batch_distance.mean
        batch.extras["min_goal_distance_std"] = self.batch_distance.std
        batch.extras["goal_reached"] = self.batch_goal_reached.sum
        batch.extras["success_rate"] = self.batch_goal_reached.mean
        logger.info(
            "Batch end (size=%d): steps=%.1f (%.1f), minMdst=%.1f (%.1f), success=%d (%.1f%%)",
            batch.size,
            batch.steps_mean,
            batch.steps_std,
            self.batch_distance.mean,
            self.batch_distance.std,
            int(self.batch_goal_reached.sum),
            self.batch_goal_reached.mean * 100.0,
        )
        self.batch_distance.reset()
        self.batch_goal_reached.reset()

    def register_commands(self, commands: "CommandRegistry", simulation) -> None:
        def set_goal_pos(args: List[str]) -> str:
            if len(args) != 2:
                raise CommandError("usage: set_goal_pos x y")
            x, y = int(args[0]), int(args[1])
            if not simulation.ensure_world().is_on_grid(x, y):
                raise CommandError(f"({x}, {y}) is not on the grid")
            self.goal = (x, y)
            return f"goal set to ({x}, {y})"

        commands.register("set_goal_pos", set_goal_pos)


SCENARIOS = {
    CoverageScenario.name: CoverageScenario,
    PathplanScenario.name: PathplanScenario,
}


def make_scenario(settings: Settings, rng: Optional[np.random.Generator] = None) -> Scenario:
    name = settings.get_str("sim.scenario").strip().lower()
    try:
        cls = SCENARIOS[name]
    except KeyError:
        raise ConfigError(f"unknown scenario {name!r}") from None
    return cls(settings, rng)


__all__ = ["Scenario", "CoverageScenario", "PathplanScenario", "SCENARIOS", "make_scenario"]
