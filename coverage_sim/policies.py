"""Decision policies and the ``"[meta+]base"`` selector registry."""
from __future__ import annotations

from dataclasses import dataclass, field
import logging
from typing import Any, Callable, Dict, List, Optional, Tuple

import numpy as np

from .agent import NUM_ACTIONS, Actuator, Sensor
from .config import Settings
from .oracle import Oracle, oracle_from_settings
from .preprocess import LocalWindowPreprocessor, StatePreprocessor

logger = logging.getLogger(__name__)

DEFAULT_POLICY = "qlearning"

_BASE_POLICIES: Dict[str, Callable[..., "Policy"]] = {}
_META_POLICIES: Dict[str, Callable[..., "Policy"]] = {}


def register_policy(*names: str):
    def decorator(cls):
        for name in names:
            _BASE_POLICIES[name.strip().lower()] = cls
        return cls

    return decorator


def register_meta_policy(*names: str):
    def decorator(cls):
        for name in names:
            _META_POLICIES[name.strip().lower()] = cls
        return cls

    return decorator


def available_policies() -> Tuple[List[str], List[str]]:
    return sorted(_BASE_POLICIES), sorted(_META_POLICIES)


@dataclass
class PolicyContext:
    """Shared state handed to every policy; ``shared`` outlives individual runs."""

    settings: Settings
    rng: np.random.Generator = field(default_factory=np.random.default_rng)
    preprocessor_factory: Optional[Callable[[], StatePreprocessor]] = None
    oracle_factory: Optional[Callable[[Settings], Oracle]] = None
    shared: Dict[str, Any] = field(default_factory=dict)

    def make_preprocessor(self) -> StatePreprocessor:
        if self.preprocessor_factory is not None:
            return self.preprocessor_factory()
        return LocalWindowPreprocessor(hazard_cap=self.settings.get_float("hazard.cap"))

    def get_oracle(self) -> Oracle:
        oracle = self.shared.get("oracle")
        if oracle is None:
            factory = self.oracle_factory if self.oracle_factory is not None else oracle_from_settings
            oracle = factory(self.settings)
            self.shared["oracle"] = oracle
        return oracle

    def close(self) -> None:
        oracle = self.shared.pop("oracle", None)
        if oracle is not None:
            oracle.close()


class Policy:
    """Decides one agent's action each tick through its Sensor and Actuator."""

    def __init__(self, sensor: Sensor, actuator: Actuator, context: PolicyContext):
        self.sensor = sensor
        self.actuator = actuator
        self.context = context

    def init(self) -> None:
        """Called once per run before the first ``step``."""

    def step(self) -> None:
        raise NotImplementedError

    def reload_settings(self, settings: Settings) -> None:
        pass


@register_policy("random")
class RandomPolicy(Policy):
    def step(self) -> None:
        self.actuator.take_action_by_id(int(self.context.rng.integers(NUM_ACTIONS)))


class QTable:
    """Action values keyed by the byte image of a (rounded) feature vector."""

    def __init__(self, num_actions: int = NUM_ACTIONS):
        self.num_actions = num_actions
        self._values: Dict[bytes, np.ndarray] = {}

    @staticmethod
    def key(obs: np.ndarray) -> bytes:
        return np.round(np.asarray(obs, dtype=np.float32), 3).tobytes()

    def values(self, obs: np.ndarray) -> np.ndarray:
        k = self.key(obs)
        row = self._values.get(k)
        if row is None:
            row = np.zeros(self.num_actions, dtype=float)
            self._values[k] = row
        return row

    def __len__(self) -> int:
        return len(self._values)


@register_policy("qlearning", "q", "dql")
class QLearningPolicy(Policy):
    """Tabular epsilon-greedy Q-learning; the table is shared by all agents and runs."""

    def __init__(self, sensor: Sensor, actuator: Actuator, context: PolicyContext):
        super().__init__(sensor, actuator, context)
        self.preprocessor = context.make_preprocessor()
        self.table: QTable = context.shared.setdefault("qtable", QTable())
        self._read_hyperparameters(context.settings)
        configured = context.settings.get_float("policy.qlearning.epsilon")
        context.shared.setdefault("epsilon_configured", configured)
        context.shared.setdefault("epsilon", configured)

    def _read_hyperparameters(self, settings: Settings) -> None:
        self.alpha = settings.get_float("policy.qlearning.alpha")
        self.gamma = settings.get_float("policy.qlearning.gamma")
        self.epsilon_decay = settings.get_float("policy.qlearning.epsilon_decay")
        self.epsilon_min = settings.get_float("policy.qlearning.epsilon_min")

    def reload_settings(self, settings: Settings) -> None:
        self._read_hyperparameters(settings)
        # the decayed value survives reloads until epsilon itself is reconfigured
        configured = settings.get_float("policy.qlearning.epsilon")
        if configured != self.context.shared.get("epsilon_configured"):
            self.context.shared["epsilon_configured"] = configured
            self.context.shared["epsilon"] = configured

    @property
    def epsilon(self) -> float:
        return self.context.shared["epsilon"]

    def init(self) -> None:
        # decay once per run, not once per agent
        if self.sensor.agent is self.sensor.world.agents[0]:
            self.context.shared["epsilon"] = max(self.epsilon_min, self.epsilon * self.epsilon_decay)

    def choose(self, obs: np.ndarray) -> int:
        rng = self.context.rng
        if rng.random() < self.epsilon:
            return int(rng.integers(NUM_ACTIONS))
        q = self.table.values(obs)
        best = np.flatnonzero(q == q.max())
        return int(rng.choice(best))

    def step(self) -> None:
        obs = self.preprocessor.featurize(self.sensor)
        action = self.choose(obs)
        self.actuator.take_action_by_id(action)
        reward = self.actuator.last_reward
        q = self.table.values(obs)
        if self.sensor.broken:
            target = reward
        else:
            next_q = self.table.values(self.preprocessor.featurize(self.sensor))
            target = reward + self.gamma * float(next_q.max())
        q[action] += self.alpha * (target - q[action])


@register_policy("external")
@register_meta_policy("external")
class ExternalPolicy(Policy):
    """Delegates decisions to an out-of-process oracle.

    As a meta policy (``external+base``) the wrapped policy acts whenever the
    oracle abstains by answering ``None``; standalone, an abstention covers in place.
    """

    def __init__(
        self,
        sensor: Sensor,
        actuator: Actuator,
        context: PolicyContext,
        inner: Optional[Policy] = None,
    ):
        super().__init__(sensor, actuator, context)
        self.inner = inner
        self.preprocessor = context.make_preprocessor()
        self.oracle = context.get_oracle()
        self.decisions = 0
        self.abstentions = 0
        self.total_reward = 0.0

    def init(self) -> None:
        self.total_reward = 0.0
        if self.inner is not None:
            self.inner.init()

    def reload_settings(self, settings: Settings) -> None:
        if self.inner is not None:
            self.inner.reload_settings(settings)

    def step(self) -> None:
        obs = self.preprocessor.featurize(self.sensor)
        action = self.oracle.choose(obs)
        if action is None:
            self.abstentions += 1
            if self.inner is not None:
                self.inner.step()
            else:
                self.actuator.cover_in_place()
        else:
            self.decisions += 1
            self.actuator.take_action_by_id(action)
        reward = self.actuator.last_reward
        self.total_reward += reward
        self.oracle.observe(self.preprocessor.featurize(self.sensor), reward, self.sensor.broken)


def parse_selector(selector: Optional[str]) -> Tuple[Optional[str], str]:
    """Split ``"meta+base"`` into normalised ``(meta, base)``; meta is ``None`` when absent."""

    text = (selector or "").strip()
    if "+" in text:
        meta, base = text.split("+", 1)
        meta = meta.strip().lower() or None
    else:
        meta, base = None, text
    return meta, base.strip().lower()


def make_policy(selector: Optional[str], sensor: Sensor, actuator: Actuator, context: PolicyContext) -> Policy:
    meta, base = parse_selector(selector)
    factory = _BASE_POLICIES.get(base)
    if factory is None:
        if base:
            logger.warning("Unknown policy %r, using %s", base, DEFAULT_POLICY)
        factory = _BASE_POLICIES[DEFAULT_POLICY]
    policy = factory(sensor, actuator, context)
    if meta is not None:
        wrapper = _META_POLICIES.get(meta)
        if wrapper is None:
            logger.warning("Unknown meta policy %r ignored", meta)
        else:
            policy = wrapper(sensor, actuator, context, inner=policy)
    return policy


__all__ = [
    "DEFAULT_POLICY",
    "Policy",
    "PolicyContext",
    "RandomPolicy",
    "QTable",
    "QLearningPolicy",
    "ExternalPolicy",
    "register_policy",
    "register_meta_policy",
    "available_policies",
    "parse_selector",
    "make_policy",
]
