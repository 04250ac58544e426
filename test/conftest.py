import logging

import numpy as np
import pytest

from coverage_sim import Actuator, Agent, GridWorld, Policy, Sensor, make_settings


class ScriptedPolicy(Policy):
    """Plays a fixed list of action ids, then covers in place."""

    def __init__(self, sensor, actuator, context=None, actions=()):
        super().__init__(sensor, actuator, context)
        self.actions = list(actions)
        self.steps = 0

    def step(self):
        action = self.actions[self.steps] if self.steps < len(self.actions) else 4
        self.steps += 1
        self.actuator.take_action_by_id(action)


def _blank_world(width=5, height=5, **overrides):
    overrides.setdefault("randomize_agent_start", False)
    overrides.setdefault("hazard_generator", "1:free")
    settings = make_settings(grid_width=width, grid_height=height, **overrides)
    return GridWorld(width, height, settings, np.random.default_rng(0))


def _add_agent(world, agent_id, x, y, actions=(), stats=None, reward_fn=None):
    agent = Agent(agent_id, x=x, y=y)
    world.add_agent(agent)
    sensor = Sensor(world, agent)
    actuator = Actuator(world, agent, world.settings, reward_fn, stats, np.random.default_rng(agent_id))
    agent.policy = ScriptedPolicy(sensor, actuator, actions=actions)
    return agent


@pytest.fixture
def blank_world():
    return _blank_world


@pytest.fixture
def add_agent():
    return _add_agent


@pytest.fixture
def scripted_policy():
    return ScriptedPolicy


@pytest.fixture(autouse=True)
def _restore_package_logger():
    logger = logging.getLogger("coverage_sim")
    handlers, level = list(logger.handlers), logger.level
    yield
    for handler in list(logger.handlers):
        if handler not in handlers:
            logger.removeHandler(handler)
            handler.close()
    logger.setLevel(level)
