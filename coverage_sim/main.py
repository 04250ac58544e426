"""Command-line entrypoint for the adversarial coverage simulator."""
from __future__ import annotations

import argparse
import json
import logging
from typing import Dict, List, Optional

from .config import Settings
from .display import ConsoleDisplay, Display, NullDisplay
from .driver import SimulationDriver
from .errors import ConfigError
from .log import setup_logging
from .simulation import Simulation
from .simulation_logger import TrajectoryLogger
from .stats import RunSummary

logger = logging.getLogger(__name__)


def _parse_overrides(pairs: List[str]) -> Dict[str, str]:
    overrides: Dict[str, str] = {}
    for pair in pairs:
        if "=" not in pair:
            raise ConfigError(f"expected key=value, got {pair!r}")
        key, value = pair.split("=", 1)
        overrides[key.strip()] = value.strip()
    return overrides


def build_settings(args: argparse.Namespace) -> Settings:
    settings = Settings().update_from_env()
    overrides = _parse_overrides(args.set or [])
    if args.policy is not None:
        overrides["policy.selector"] = args.policy
    if args.scenario is not None:
        overrides["sim.scenario"] = args.scenario
    if args.seed is not None:
        overrides["sim.seed"] = str(args.seed)
    if args.agents is not None:
        overrides["robots.count"] = str(args.agents)
    if overrides:
        settings.update(overrides)
    return settings


def build_display(args: argparse.Namespace) -> Display:
    if args.gif:
        from .visuals import FrameRecorderDisplay

        return FrameRecorderDisplay(args.gif, every=args.frame_every)
    if args.trajectory:
        return TrajectoryLogger(args.trajectory)
    if args.display == "console":
        return ConsoleDisplay()
    return NullDisplay()


def _summary_dict(summary: RunSummary) -> dict:
    data = {
        "steps": summary.steps,
        "coverage": summary.coverage,
        "team_survivability": summary.team_survivability,
        "surviving": summary.surviving,
        "agents": summary.agents,
    }
    if summary.batch is not None:
        data["batch"] = summary.batch.as_dict()
    return data


def run_headless(simulation: Simulation, display: Display, runs: int) -> List[RunSummary]:
    summaries = []
    try:
        for index in range(runs):
            if index == 0:
                simulation.new_run()
            else:
                simulation.next_run()
            summaries.append(simulation.run_episode(on_tick=display.refresh))
    finally:
        display.dispose()
        simulation.close()
    return summaries


def run_threaded(simulation: Simulation, display: Display, runs: int, timeout: Optional[float]) -> int:
    simulation.settings.set("autorun.finished.newgrid", True)
    driver = SimulationDriver(simulation, display)
    try:
        driver.new_run()
        driver.run()
        finished = driver.wait_until(lambda d: d.runs_finished >= runs or d.failed, timeout)
        if not finished:
            logger.warning("Timed out after %d runs", driver.runs_finished)
        if driver.failed:
            logger.error("Run failed: %s", driver.last_error)
            return 1
    finally:
        driver.kill()
    return 0


def run_from_cli(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Multi-agent adversarial coverage simulator")
    parser.add_argument("--set", action="append", metavar="KEY=VALUE", help="override a setting (repeatable)")
    parser.add_argument("--policy", help='policy selector, e.g. "random" or "external+qlearning"')
    parser.add_argument("--scenario", choices=["coverage", "pathplan"])
    parser.add_argument("--agents", type=int)
    parser.add_argument("--seed", type=int)
    parser.add_argument("--runs", type=int, default=1)
    parser.add_argument("--display", choices=["null", "console"], default="null")
    parser.add_argument("--gif", help="write a GIF of the runs to this path")
    parser.add_argument("--frame-every", type=int, default=1)
    parser.add_argument("--trajectory", help="write agent trajectories as JSON lines")
    parser.add_argument("--threaded", action="store_true", help="drive runs from the background tick loop")
    parser.add_argument("--timeout", type=float, default=None)
    parser.add_argument("--summary", help="write run summaries to this JSON file")
    parser.add_argument("--show-settings", action="store_true")
    parser.add_argument("--log-level", default="INFO")
    parser.add_argument("--log-file")
    args = parser.parse_args(argv)

    setup_logging(getattr(logging, args.log_level.upper(), logging.INFO), args.log_file)
    try:
        settings = build_settings(args)
    except ConfigError as exc:
        parser.error(str(exc))
    if args.show_settings:
        print(settings.export_string())
        return 0

    simulation = Simulation(settings)
    display = build_display(args)
    if args.threaded:
        return run_threaded(simulation, display, args.runs, args.timeout)

    summaries = run_headless(simulation, display, args.runs)
    results = [_summary_dict(s) for s in summaries]
    if args.summary:
        from .io_utils import save_json

        save_json(results, args.summary)
    print(json.dumps(results[-1] if len(results) == 1 else results, ensure_ascii=False))
    return 0


__all__ = ["run_from_cli", "build_settings", "run_headless", "run_threaded"]
