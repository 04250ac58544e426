"""Batch executor: every policy/breakability/team-size combination for a fixed number of runs."""
from __future__ import annotations

import argparse
import json
from pathlib import Path
from typing import Dict, List
import sys

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from configs import BatchSettings, ExperimentConfig
from coverage_sim import Settings, Simulation, setup_logging
from coverage_sim.display import NullDisplay
from coverage_sim.io_utils import ensure_dir, save_json, save_rows
from coverage_sim.stats import SampledVariable


def _parse_bool_list(values: List[str] | None) -> List[bool] | None:
    if not values:
        return None
    return [value.strip().lower() in {"1", "true", "yes", "on"} for value in values]


def execute_experiment(config: ExperimentConfig) -> Dict:
    simulation = Simulation(Settings(config.simulation))
    display = NullDisplay()
    if config.record_gif:
        from coverage_sim.visuals import FrameRecorderDisplay

        display = FrameRecorderDisplay(str(config.output_path(config.gif_filename)), every=2)

    rows = []
    steps = SampledVariable()
    survivability = SampledVariable()
    coverage = SampledVariable()
    try:
        for index in range(config.runs):
            if index == 0:
                simulation.new_run()
            else:
                simulation.next_run()
            # only the first run is recorded
            on_tick = display.refresh if index == 0 else None
            summary = simulation.run_episode(on_tick=on_tick)
            steps.add_sample(summary.steps)
            survivability.add_sample(summary.team_survivability)
            coverage.add_sample(summary.coverage)
            rows.append(
                {
                    "run": index,
                    "steps": summary.steps,
                    "covered": summary.covered_cells,
                    "free_cells": summary.free_cells,
                    "coverage": round(summary.coverage, 4),
                    "team_survivability": round(summary.team_survivability, 4),
                    "surviving": summary.surviving,
                    "agents": summary.agents,
                }
            )
    finally:
        display.dispose()
        simulation.close()

    save_rows(rows, str(config.output_path(config.runs_filename)))
    save_json(config.as_dict(), str(config.output_path("config.json")))
    sim = config.simulation
    result = {
        "label": config.label(),
        "policy": sim.policy_selector,
        "breakable": sim.breakable,
        "agents": sim.agent_count,
        "scenario": sim.scenario,
        "runs": config.runs,
        "steps_mean": round(steps.mean, 3),
        "steps_std": round(steps.std, 3),
        "coverage_mean": round(coverage.mean, 4),
        "team_survivability_mean": round(survivability.mean, 4),
        "team_survivability_std": round(survivability.std, 4),
    }
    save_json(result, str(config.output_path(config.summary_filename)))
    return result


def main(argv: List[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Batch adversarial coverage experiments")
    parser.add_argument("--output", help="Override batch output root directory")
    parser.add_argument("--policies", nargs="*", help="Policy selectors to evaluate")
    parser.add_argument("--breakable", nargs="*", help="Breakability values (true/false)")
    parser.add_argument("--agents", nargs="*", type=int, help="Team sizes to evaluate")
    parser.add_argument("--scenario", choices=["coverage", "pathplan"])
    parser.add_argument("--grid", type=int, help="Square grid side length")
    parser.add_argument("--runs", type=int, help="Runs per configuration")
    parser.add_argument("--seed", type=int)
    parser.add_argument("--gif", action="store_true", help="Record the first run of every configuration")
    args = parser.parse_args(argv)

    setup_logging()
    settings = BatchSettings()
    if args.output:
        settings.output_root = args.output
    if args.policies:
        settings.policies = args.policies
    breakable = _parse_bool_list(args.breakable)
    if breakable:
        settings.breakable = breakable
    if args.agents:
        settings.agent_counts = args.agents
    if args.scenario:
        settings.scenario = args.scenario
    if args.grid:
        settings.grid_size = args.grid
    if args.runs:
        settings.runs = args.runs
    if args.seed is not None:
        settings.seed = args.seed

    out_dir = ensure_dir(settings.output_root)
    checkpoint = Path(out_dir) / "batch.jsonl"
    summaries = []
    with checkpoint.open("w", encoding="utf-8") as handle:
        for config in settings.iter_configs():
            config.record_gif = args.gif
            config.update_from_env()
            result = execute_experiment(config)
            summaries.append(result)
            handle.write(json.dumps(result, ensure_ascii=False) + "\n")
            handle.flush()
            print(json.dumps(result, ensure_ascii=False))

    summary_path = Path(out_dir) / "summary.json"
    csv_path = Path(out_dir) / "summary.csv"
    save_json(summaries, str(summary_path))
    save_rows(summaries, str(csv_path))
    print(f"Batch summary written to {summary_path} and {csv_path}")


if __name__ == "__main__":
    main()
