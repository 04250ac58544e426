from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Optional, Tuple

from .agent import CoverEvent, RewardFunction


@dataclass
class RewardTerm:
    enabled: bool = True
    weight: float = 0.0

    def value(self, scale: float = 1.0) -> float:
        return self.weight * scale if self.enabled else 0.0


@dataclass
class RewardConfig:
    # first cover of a cell
    new_cell_bonus: RewardTerm = field(default_factory=lambda: RewardTerm(True, 1.0))
    # covering an already covered cell, scaled by prior cover count
    revisit_penalty: RewardTerm = field(default_factory=lambda: RewardTerm(True, -0.1))
    # flat per-action cost
    time_penalty: RewardTerm = field(default_factory=lambda: RewardTerm(True, -0.01))
    # the hazard draw broke the agent
    hazard_penalty: RewardTerm = field(default_factory=lambda: RewardTerm(True, -5.0))

    # path planning
    goal_bonus: RewardTerm = field(default_factory=lambda: RewardTerm(True, 10.0))
    # change in Manhattan distance to the goal (previous - current)
    goal_potential: RewardTerm = field(default_factory=lambda: RewardTerm(True, 0.2))


reward_cfg = RewardConfig()


def coverage_reward(cfg: Optional[RewardConfig] = None) -> RewardFunction:
    cfg = cfg if cfg is not None else reward_cfg

    def reward(event: CoverEvent) -> float:
        total = cfg.time_penalty.value()
        if event.prior_cover_count == 0:
            total += cfg.new_cell_bonus.value()
        else:
            total += cfg.revisit_penalty.value(min(event.prior_cover_count, 10))
        if event.hazard_triggered:
            total += cfg.hazard_penalty.value()
        return total

    return reward


def pathplan_reward(goal: Callable[[], Tuple[int, int]], cfg: Optional[RewardConfig] = None) -> RewardFunction:
    """Reward reaching ``goal()``; the goal is read lazily so it can move between runs."""

    cfg = cfg if cfg is not None else reward_cfg
    last_distance = {}

    def reward(event: CoverEvent) -> float:
        gx, gy = goal()
        distance = abs(event.agent.x - gx) + abs(event.agent.y - gy)
        seen_goal, previous = last_distance.get(event.agent.id, ((gx, gy), distance))
        if seen_goal != (gx, gy):
            previous = distance
        last_distance[event.agent.id] = ((gx, gy), distance)
        total = cfg.time_penalty.value() + cfg.goal_potential.value(previous - distance)
        if distance == 0:
            total += cfg.goal_bonus.value()
            last_distance.pop(event.agent.id, None)
        if event.hazard_triggered:
            total += cfg.hazard_penalty.value()
            last_distance.pop(event.agent.id, None)
        return total

    return reward


__all__ = ["RewardTerm", "RewardConfig", "reward_cfg", "coverage_reward", "pathplan_reward"]
