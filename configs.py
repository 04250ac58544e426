"""Centralised configuration objects for coverage experiments."""
from __future__ import annotations

from dataclasses import dataclass, field, asdict, fields, replace
import os
from pathlib import Path
from typing import Any, Dict, Iterable, List

from coverage_sim.config import SimulationConfig, _coerce_value


@dataclass
class ExperimentConfig:
    """One experiment: a simulation configuration plus where its results go."""

    simulation: SimulationConfig = field(default_factory=SimulationConfig)
    runs: int = 10
    output_dir: str = "artifacts"
    summary_filename: str = "summary.json"
    runs_filename: str = "runs.csv"
    gif_filename: str = "runs.gif"
    record_gif: bool = False
    run_name: str | None = None

    def ensure_output_dir(self) -> Path:
        directory = Path(self.output_dir)
        directory.mkdir(parents=True, exist_ok=True)
        return directory

    def output_path(self, filename: str) -> Path:
        return self.ensure_output_dir() / filename

    def label(self) -> str:
        sim = self.simulation
        return self.run_name or f"{sim.policy_selector}_{'brk' if sim.breakable else 'nobrk'}_R{sim.agent_count}"

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def update_from_env(self, prefix: str = "COVSIM_EXPERIMENT_") -> "ExperimentConfig":
        hints = {"runs": int, "output_dir": str, "record_gif": bool}
        for f in fields(self):
            env_key = f"{prefix}{f.name.upper()}"
            if f.name in hints and env_key in os.environ:
                setattr(self, f.name, _coerce_value(os.environ[env_key], hints[f.name]))
        return self


@dataclass
class BatchSettings:
    """Grid definition for `scripts/run_batch.py`."""

    policies: List[str] = field(default_factory=lambda: ["random", "qlearning"])
    breakable: List[bool] = field(default_factory=lambda: [True, False])
    agent_counts: List[int] = field(default_factory=lambda: [1, 3])
    scenario: str = "coverage"
    grid_size: int = 10
    runs: int = 20
    seed: int = 0
    output_root: str = "batch_runs"

    def iter_configs(self) -> Iterable[ExperimentConfig]:
        base = SimulationConfig(
            grid_width=self.grid_size,
            grid_height=self.grid_size,
            scenario=self.scenario,
            seed=self.seed,
            batch_size=self.runs,
            max_steps_per_run=20 * self.grid_size * self.grid_size,
            step_delay_ms=0,
            do_repaint=False,
        )
        for policy in self.policies:
            for breakable in self.breakable:
                for count in self.agent_counts:
                    label = f"{policy}_{'brk' if breakable else 'nobrk'}_R{count}"
                    yield ExperimentConfig(
                        simulation=replace(base, policy_selector=policy, breakable=breakable, agent_count=count).validate(),
                        runs=self.runs,
                        output_dir=str(Path(self.output_root) / label),
                        run_name=label,
                    )


__all__ = ["ExperimentConfig", "BatchSettings"]
