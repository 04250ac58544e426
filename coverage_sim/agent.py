"""Agents and the two capabilities a policy uses to drive one: Sensor (read) and Actuator (act)."""
from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
import logging
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Tuple

import numpy as np

from .cell import Cell
from .config import Settings

if TYPE_CHECKING:
    from .grid import GridWorld
    from .stats import RunStatistics

logger = logging.getLogger(__name__)


class Action(IntEnum):
    MOVE_RIGHT = 0
    MOVE_UP = 1
    MOVE_LEFT = 2
    MOVE_DOWN = 3
    COVER = 4


ACTION_OFFSETS: Dict[Action, Tuple[int, int]] = {
    Action.MOVE_RIGHT: (1, 0),
    Action.MOVE_UP: (0, 1),
    Action.MOVE_LEFT: (-1, 0),
    Action.MOVE_DOWN: (0, -1),
    Action.COVER: (0, 0),
}
NUM_ACTIONS = len(Action)


@dataclass(eq=False)
class Agent:
    id: int
    x: int = 0
    y: int = 0
    broken: bool = False
    policy: Any = None
    actuator: Optional["Actuator"] = None

    @property
    def location(self) -> Tuple[int, int]:
        return (self.x, self.y)


@dataclass(frozen=True)
class CoverEvent:
    """What the post-action rule observed for one agent in one tick."""

    agent: Agent
    cell: Cell
    prior_cover_count: int
    hazard_triggered: bool


RewardFunction = Callable[[CoverEvent], float]


def zero_reward(event: CoverEvent) -> float:
    return 0.0


class Sensor:
    """Read-only view of the world from one agent's point of view."""

    def __init__(self, world: "GridWorld", agent: Agent):
        self.world = world
        self.agent = agent

    @property
    def location(self) -> Tuple[int, int]:
        return self.agent.location

    @property
    def broken(self) -> bool:
        return self.agent.broken

    def current_cell(self) -> Cell:
        return self.world.cells[self.agent.x][self.agent.y]

    def cell_at(self, dx: int, dy: int) -> Optional[Cell]:
        """Cell at an offset from the agent, ``None`` when off-grid."""

        return self.world.get_cell(self.agent.x + dx, self.agent.y + dy)

    def is_occupied(self, dx: int, dy: int) -> bool:
        return self.world.is_occupied(self.agent.x + dx, self.agent.y + dy, ignore=self.agent)

    def can_move(self, action: Action) -> bool:
        action = Action(action)
        if action is Action.COVER:
            return True
        dx, dy = ACTION_OFFSETS[action]
        cell = self.cell_at(dx, dy)
        return cell is not None and not cell.is_obstacle and not self.is_occupied(dx, dy)

    def other_agents(self) -> List[Agent]:
        return [a for a in self.world.agents if a is not self.agent]

    @property
    def grid_size(self) -> Tuple[int, int]:
        return self.world.size

    @property
    def step_count(self) -> int:
        return self.world.step_count


class Actuator:
    """Applies one of the five primitive actions for one agent, then the cover rule."""

    def __init__(
        self,
        world: "GridWorld",
        agent: Agent,
        settings: Settings,
        reward_fn: Optional[RewardFunction] = None,
        stats: Optional["RunStatistics"] = None,
        rng: Optional[np.random.Generator] = None,
    ):
        self.world = world
        self.agent = agent
        self.reward_fn = reward_fn if reward_fn is not None else zero_reward
        self.stats = stats
        self.rng = rng if rng is not None else np.random.default_rng()
        self.last_reward = 0.0
        self.last_action: Optional[Action] = None
        self.last_move_succeeded = False
        self.reload_settings(settings)
        agent.actuator = self

    def reload_settings(self, settings: Settings) -> None:
        self.breakable = settings.get_bool("robots.breakable")

    # primitive actions -------------------------------------------------
    def move_right(self) -> None:
        self._move(Action.MOVE_RIGHT)

    def move_up(self) -> None:
        self._move(Action.MOVE_UP)

    def move_left(self) -> None:
        self._move(Action.MOVE_LEFT)

    def move_down(self) -> None:
        self._move(Action.MOVE_DOWN)

    def cover_in_place(self) -> None:
        self.last_action = Action.COVER
        self.last_move_succeeded = False
        self._post_action()

    def take_action_by_id(self, action_id: int) -> None:
        """Dispatch an integer action; ids outside 0..3 fall through to cover-in-place."""

        try:
            action = Action(int(action_id))
        except ValueError:
            action = Action.COVER
        if action is Action.COVER:
            self.cover_in_place()
        else:
            self._move(action)

    # rules ---------------------------------------------------------------
    def _move(self, action: Action) -> None:
        dx, dy = ACTION_OFFSETS[action]
        tx, ty = self.agent.x + dx, self.agent.y + dy
        target = self.world.get_cell(tx, ty)
        moved = (
            target is not None
            and not target.is_obstacle
            and not self.world.is_occupied(tx, ty, ignore=self.agent)
        )
        if moved:
            self.agent.x, self.agent.y = tx, ty
        self.last_action = action
        self.last_move_succeeded = moved
        self._post_action()

    def _post_action(self) -> None:
        cell = self.world.cells[self.agent.x][self.agent.y]
        draw = float(self.rng.random())
        triggered = draw < cell.hazard_probability and self.breakable
        prior = cell.cover_count
        if self.stats is not None:
            self.stats.update_cell_covered(self.agent)
        cell.cover_count = prior + 1
        if triggered:
            self.agent.broken = True
            logger.debug("agent %d broke at (%d, %d)", self.agent.id, cell.x, cell.y)
        self.last_reward = float(self.reward_fn(CoverEvent(self.agent, cell, prior, triggered)))


__all__ = [
    "Action",
    "ACTION_OFFSETS",
    "NUM_ACTIONS",
    "Agent",
    "CoverEvent",
    "RewardFunction",
    "zero_reward",
    "Sensor",
    "Actuator",
]
