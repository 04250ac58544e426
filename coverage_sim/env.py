"""Gymnasium environment for one agent on the coverage grid.

Shares the world model with the simulator (GridWorld, Actuator, hazard
diffusion and the active scenario's reward and terminal test), so a model
trained here can be served back through ``ModelOracle``.

Action space: Discrete(5) -> [right, up, left, down, cover]
Observation: the scenario's preprocessor features.
"""
from __future__ import annotations

from typing import Optional

import gymnasium as gym
from gymnasium import spaces
import numpy as np

from .agent import NUM_ACTIONS, Actuator, Agent, Sensor
from .config import Settings
from .grid import GridWorld
from .hazard import HazardDiffusionModel
from .scenario import make_scenario
from .stats import RunStatistics


class CoverageEnv(gym.Env):
    metadata = {"render_modes": ["ansi"]}

    def __init__(
        self,
        settings: Optional[Settings] = None,
        max_steps: Optional[int] = None,
        seed: int = 0,
        render_mode: Optional[str] = None,
    ):
        super().__init__()
        self.settings = settings if settings is not None else Settings()
        self.render_mode = render_mode
        self.rng = np.random.default_rng(seed)
        self.scenario = make_scenario(self.settings, self.rng)
        self.preprocessor = self.scenario.make_preprocessor()
        self.hazard = HazardDiffusionModel.from_settings(self.settings)
        if max_steps is None:
            max_steps = self.settings.get_int("autorun.max_steps_per_run")
        if max_steps <= 0:
            max_steps = 4 * self.settings.get_int("env.grid.width") * self.settings.get_int("env.grid.height")
        self.max_steps = max_steps

        self.action_space = spaces.Discrete(NUM_ACTIONS)
        self.observation_space = spaces.Box(low=-1.0, high=1.0, shape=(self.preprocessor.size,), dtype=np.float32)

        self.world: Optional[GridWorld] = None
        self.agent: Optional[Agent] = None
        self.sensor: Optional[Sensor] = None
        self.actuator: Optional[Actuator] = None
        self.stats: Optional[RunStatistics] = None

    def reset(self, *, seed: Optional[int] = None, options=None):
        super().reset(seed=seed)
        if seed is not None:
            self.rng = np.random.default_rng(seed)
            self.scenario.rng = self.rng
        world = GridWorld(
            self.settings.get_int("env.grid.width"),
            self.settings.get_int("env.grid.height"),
            self.settings,
            self.rng,
        )
        world.regenerate()
        agent = Agent(0)
        world.add_agent(agent)
        self.stats = RunStatistics(world, batch_size=self.settings.get_int("stats.multirun.batch_size"))
        self.sensor = Sensor(world, agent)
        self.actuator = Actuator(world, agent, self.settings, self.scenario.reward_fn(), self.stats, self.rng)
        self.scenario.on_regenerate(world)
        world.init()
        self.world, self.agent = world, agent
        return self._obs(), {}

    def step(self, action: int):
        self.actuator.take_action_by_id(int(action))
        self.world.step_count += 1
        self.hazard.update(self.world)
        self.stats.update_time_step()

        reward = float(self.actuator.last_reward)
        terminated = bool(self.scenario.is_terminal(self.world, self.stats))
        truncated = not terminated and self.world.step_count >= self.max_steps
        info = {
            "coverage": self.stats.coverage_fraction,
            "broken": self.agent.broken,
            "steps": self.world.step_count,
        }
        return self._obs(), reward, terminated, truncated, info

    def _obs(self) -> np.ndarray:
        return np.clip(self.preprocessor.featurize(self.sensor), -1.0, 1.0).astype(np.float32)

    def render(self):
        if self.world is None:
            return ""
        return self.world.format_grid()


__all__ = ["CoverageEnv"]
