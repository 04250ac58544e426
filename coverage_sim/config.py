"""Configuration helpers for the adversarial coverage simulator.

Every tunable lives on :class:`SimulationConfig`.  Each field is addressed by a
dotted settings key (``env.grid.width``, ``robots.breakable`` ...) so that an
operator-facing layer can look values up and change them by name through
:class:`Settings`.  Components receive the ``Settings`` object when they are
built and re-read it whenever :meth:`Settings.reload_settings` is called.
"""
from __future__ import annotations

from dataclasses import dataclass, field, asdict, fields, replace
import logging
import os
from typing import Any, Dict, List, Optional, Protocol, get_type_hints

from .errors import ConfigError
from .generator import DEFAULT_HAZARD_EXPRESSION, parse_generator_expression

logger = logging.getLogger(__name__)

_TRUE_WORDS = {"1", "true", "yes", "on"}
_FALSE_WORDS = {"0", "false", "no", "off"}


def _setting(key: str, default: Any, *, minimum: Any = None, maximum: Any = None, choices: Any = None):
    meta: Dict[str, Any] = {"key": key}
    if minimum is not None:
        meta["min"] = minimum
    if maximum is not None:
        meta["max"] = maximum
    if choices is not None:
        meta["choices"] = tuple(choices)
    return field(default=default, metadata=meta)


def _coerce_value(value: Any, target_type: Any) -> Any:
    """Coerce ``value`` to ``target_type`` with a few best-effort rules."""

    if not isinstance(value, str):
        if target_type is bool and isinstance(value, bool):
            return value
        if target_type is int and isinstance(value, int) and not isinstance(value, bool):
            return value
        if target_type is float and isinstance(value, (int, float)) and not isinstance(value, bool):
            return float(value)
        if target_type is str:
            return str(value)
        raise ValueError(f"expected {target_type.__name__}, got {type(value).__name__}")
    text = value.strip()
    if target_type is bool:
        lowered = text.lower()
        if lowered in _TRUE_WORDS:
            return True
        if lowered in _FALSE_WORDS:
            return False
        raise ValueError(f"not a boolean: {value!r}")
    if target_type is int:
        return int(text)
    if target_type is float:
        return float(text)
    return value


@dataclass
class SimulationConfig:
    """Container for all simulation tunables."""

    # grid
    grid_width: int = _setting("env.grid.width", 10, minimum=1)
    grid_height: int = _setting("env.grid.height", 10, minimum=1)
    min_width: int = _setting("env.grid.minwidth", 5, minimum=1)
    max_width: int = _setting("env.grid.maxwidth", 20, minimum=1)
    min_height: int = _setting("env.grid.minheight", 5, minimum=1)
    max_height: int = _setting("env.grid.maxheight", 20, minimum=1)
    force_square: bool = _setting("env.grid.force_square", False)
    variable_grid_size: bool = _setting("env.variable_grid_size", False)
    hazard_generator: str = _setting("env.grid.dangervalues", DEFAULT_HAZARD_EXPRESSION)
    clear_adjacent_cells_on_init: bool = _setting("env.clear_adjacent_cells_on_init", True)

    # hazard diffusion
    spread_factor: float = _setting("hazard.spread_factor", 0.1, minimum=0.0)
    decay_factor: float = _setting("hazard.decay_factor", 0.1, minimum=0.0)
    hazard_cap: float = _setting("hazard.cap", 0.25, minimum=0.0, maximum=1.0)

    # agents
    agent_count: int = _setting("robots.count", 1, minimum=1)
    breakable: bool = _setting("robots.breakable", True)

    # autorun / driver
    step_delay_ms: int = _setting("autorun.stepdelay", 100, minimum=0)
    do_repaint: bool = _setting("autorun.do_repaint", True)
    auto_restart: bool = _setting("autorun.finished.newgrid", False)
    display_full_stats: bool = _setting("autorun.finished.display_full_stats", False)
    randomize_agent_start: bool = _setting("autorun.randomize_robot_start", True)
    max_steps_per_run: int = _setting("autorun.max_steps_per_run", 0, minimum=0)
    command_queue_size: int = _setting("driver.command_queue_size", 64, minimum=1)

    # statistics
    batch_size: int = _setting("stats.multirun.batch_size", 10, minimum=1)

    # policies
    policy_selector: str = _setting("policy.selector", "qlearning")
    qlearning_alpha: float = _setting("policy.qlearning.alpha", 0.1, minimum=0.0, maximum=1.0)
    qlearning_gamma: float = _setting("policy.qlearning.gamma", 0.9, minimum=0.0, maximum=1.0)
    qlearning_epsilon: float = _setting("policy.qlearning.epsilon", 0.1, minimum=0.0, maximum=1.0)
    qlearning_epsilon_decay: float = _setting("policy.qlearning.epsilon_decay", 1.0, minimum=0.0, maximum=1.0)
    qlearning_epsilon_min: float = _setting("policy.qlearning.epsilon_min", 0.01, minimum=0.0, maximum=1.0)
    external_command: str = _setting("policy.external.command", "")
    external_model_path: str = _setting("policy.external.model_path", "")
    external_reply_timeout_ms: int = _setting("policy.external.reply_timeout_ms", 5000, minimum=0)

    # scenario
    scenario: str = _setting("sim.scenario", "coverage", choices=("coverage", "pathplan"))
    seed: int = _setting("sim.seed", -1, minimum=-1)
    clear_goal_neighbors: bool = _setting("pathplan.clear_obstacles_adjacent_to_goal", True)

    def validate(self) -> "SimulationConfig":
        """Raise :class:`ConfigError` if any field is out of range."""

        for f in fields(self):
            value = getattr(self, f.name)
            key = f.metadata.get("key", f.name)
            if "min" in f.metadata and value < f.metadata["min"]:
                raise ConfigError(f"{key} must be >= {f.metadata['min']} (got {value})")
            if "max" in f.metadata and value > f.metadata["max"]:
                raise ConfigError(f"{key} must be <= {f.metadata['max']} (got {value})")
            if "choices" in f.metadata and str(value).strip().lower() not in f.metadata["choices"]:
                choices = ", ".join(f.metadata["choices"])
                raise ConfigError(f"{key} must be one of {choices} (got {value!r})")
        if self.min_width > self.max_width:
            raise ConfigError("env.grid.minwidth must not exceed env.grid.maxwidth")
        if self.min_height > self.max_height:
            raise ConfigError("env.grid.minheight must not exceed env.grid.maxheight")
        if self.variable_grid_size:
            capacity = self.min_width * (self.min_width if self.force_square else self.min_height)
        else:
            capacity = self.grid_width * self.grid_height
        if self.agent_count > capacity:
            raise ConfigError(f"robots.count ({self.agent_count}) exceeds the {capacity} cells of the grid")
        parse_generator_expression(self.hazard_generator)
        return self

    def as_dict(self) -> Dict[str, Any]:
        """Return the configuration as a serialisable dictionary."""

        return asdict(self)


_FIELD_TYPES = get_type_hints(SimulationConfig)
_FIELDS_BY_KEY = {f.metadata["key"]: f for f in fields(SimulationConfig)}


class SettingsReloadable(Protocol):
    def reload_settings(self, settings: "Settings") -> None:
        ...


class Settings:
    """Key-based, typed view over a :class:`SimulationConfig`."""

    def __init__(self, config: Optional[SimulationConfig] = None):
        self.config = (config if config is not None else SimulationConfig()).validate()
        self._reloadables: List[SettingsReloadable] = []

    # ------------------------------------------------------------------
    # lookup
    # ------------------------------------------------------------------
    @staticmethod
    def keys() -> List[str]:
        return list(_FIELDS_BY_KEY)

    def has_key(self, key: str) -> bool:
        return key in _FIELDS_BY_KEY

    def _field(self, key: str):
        try:
            return _FIELDS_BY_KEY[key]
        except KeyError:
            raise ConfigError(f"unknown setting: {key}") from None

    def get(self, key: str) -> Any:
        return getattr(self.config, self._field(key).name)

    def _typed(self, key: str, expected: type) -> Any:
        f = self._field(key)
        if _FIELD_TYPES[f.name] is not expected:
            raise ConfigError(f"{key} is a {_FIELD_TYPES[f.name].__name__} setting, not {expected.__name__}")
        return getattr(self.config, f.name)

    def get_bool(self, key: str) -> bool:
        return self._typed(key, bool)

    def get_int(self, key: str) -> int:
        return self._typed(key, int)

    def get_float(self, key: str) -> float:
        return self._typed(key, float)

    def get_str(self, key: str) -> str:
        return self._typed(key, str)

    def get_as_string(self, key: str) -> str:
        value = self.get(key)
        if isinstance(value, bool):
            return "true" if value else "false"
        return str(value)

    # ------------------------------------------------------------------
    # mutation
    # ------------------------------------------------------------------
    def set(self, key: str, raw: Any) -> Any:
        """Parse ``raw`` for ``key`` and store it; the config is untouched on error."""

        return self.update({key: raw})[key]

    def update(self, values: Dict[str, Any]) -> Dict[str, Any]:
        """Apply several settings atomically."""

        changes: Dict[str, Any] = {}
        coerced: Dict[str, Any] = {}
        for key, raw in values.items():
            f = self._field(key)
            try:
                value = _coerce_value(raw, _FIELD_TYPES[f.name])
            except ValueError as exc:
                raise ConfigError(f"cannot parse {key}={raw!r}: {exc}") from exc
            changes[f.name] = value
            coerced[key] = value
        candidate = replace(self.config, **changes).validate()
        self.config = candidate
        return coerced

    def update_from_env(self, prefix: str = "COVSIM_") -> "Settings":
        """Override settings from environment variables (``env.grid.width`` -> ``COVSIM_ENV_GRID_WIDTH``)."""

        overrides: Dict[str, str] = {}
        for key in _FIELDS_BY_KEY:
            env_key = prefix + key.upper().replace(".", "_")
            if env_key in os.environ:
                overrides[key] = os.environ[env_key]
        if overrides:
            self.update(overrides)
        return self

    # ------------------------------------------------------------------
    # reload hooks
    # ------------------------------------------------------------------
    def register_reloadable(self, obj: SettingsReloadable) -> None:
        if obj not in self._reloadables:
            self._reloadables.append(obj)

    def unregister_reloadable(self, obj: SettingsReloadable) -> None:
        if obj in self._reloadables:
            self._reloadables.remove(obj)

    def reload_settings(self) -> None:
        for obj in list(self._reloadables):
            obj.reload_settings(self)

    # ------------------------------------------------------------------
    # export
    # ------------------------------------------------------------------
    def as_dict(self) -> Dict[str, Any]:
        return {key: self.get(key) for key in _FIELDS_BY_KEY}

    def export_string(self) -> str:
        return "\n".join(f"{key} = {self.get_as_string(key)}" for key in sorted(_FIELDS_BY_KEY))

    def export_commands(self) -> str:
        lines = []
        for key in sorted(_FIELDS_BY_KEY):
            value = self.get_as_string(key)
            if not value or any(ch.isspace() for ch in value):
                value = '"' + value.replace('"', '\\"') + '"'
            lines.append(f"set {key} {value}")
        return "\n".join(lines)


def make_settings(**overrides: Any) -> Settings:
    """Build :class:`Settings` from python field names, e.g. ``make_settings(grid_width=5)``."""

    return Settings(SimulationConfig(**overrides))


__all__ = ["SimulationConfig", "Settings", "SettingsReloadable", "make_settings"]
