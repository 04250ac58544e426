"""Single-threaded simulation: world lifecycle, the tick, and run/batch completion.

:class:`Simulation` is not thread-aware; :class:`coverage_sim.driver.SimulationDriver`
owns one and serialises every access to it on its loop thread.
"""
from __future__ import annotations

import logging
import sys
from typing import Callable, List, Optional

import numpy as np

from .agent import Actuator, Agent, Sensor
from .commands import CommandRegistry
from .config import Settings
from .errors import CommandError, SimulationError
from .grid import GridWorld
from .hazard import HazardDiffusionModel
from .policies import Policy, PolicyContext, make_policy
from .scenario import Scenario, make_scenario
from .stats import RunStatistics, RunSummary

logger = logging.getLogger(__name__)

PolicyFactory = Callable[[Sensor, Actuator, PolicyContext], Policy]


class Simulation:
    def __init__(
        self,
        settings: Optional[Settings] = None,
        scenario: Optional[Scenario] = None,
        rng: Optional[np.random.Generator] = None,
        policy_factory: Optional[PolicyFactory] = None,
        context: Optional[PolicyContext] = None,
    ):
        self.settings = settings if settings is not None else Settings()
        if rng is None:
            seed = self.settings.get_int("sim.seed")
            rng = np.random.default_rng(None if seed < 0 else seed)
        self.rng = rng
        self.scenario = scenario if scenario is not None else make_scenario(self.settings, self.rng)
        self.context = context if context is not None else PolicyContext(
            self.settings, rng=self.rng, preprocessor_factory=self.scenario.make_preprocessor
        )
        self.policy_factory = policy_factory
        self.hazard = HazardDiffusionModel.from_settings(self.settings)
        self.stats = RunStatistics(batch_size=self.settings.get_int("stats.multirun.batch_size"))
        self.world: Optional[GridWorld] = None
        self.runs_completed = 0
        self.display_full_stats = self.settings.get_bool("autorun.finished.display_full_stats")
        self.settings.register_reloadable(self)

    def reload_settings(self, settings: Settings) -> None:
        self.hazard.reload_settings(settings)
        self.stats.reload_settings(settings)
        self.scenario.reload_settings(settings)
        self.display_full_stats = settings.get_bool("autorun.finished.display_full_stats")
        if self.world is not None:
            self.world.reload_settings(settings)

    # ------------------------------------------------------------------
    # run lifecycle
    # ------------------------------------------------------------------
    def _make_policy(self, sensor: Sensor, actuator: Actuator) -> Policy:
        if self.policy_factory is not None:
            return self.policy_factory(sensor, actuator, self.context)
        return make_policy(self.settings.get_str("policy.selector"), sensor, actuator, self.context)

    def new_run(self) -> GridWorld:
        """Build a fresh world (new hazard field, new agents and policies) and initialise it."""

        settings = self.settings
        world = GridWorld(
            settings.get_int("env.grid.width"),
            settings.get_int("env.grid.height"),
            settings,
            self.rng,
        )
        world.regenerate()
        for i in range(settings.get_int("robots.count")):
            # fixed starts fill the grid row by row
            world.add_agent(Agent(i, x=i % world.width, y=(i // world.width) % world.height))
        reward_fn = self.scenario.reward_fn()
        for agent in world.agents:
            sensor = Sensor(world, agent)
            actuator = Actuator(world, agent, settings, reward_fn, self.stats, self.rng)
            agent.policy = self._make_policy(sensor, actuator)
        self.scenario.on_regenerate(world)
        self.stats.attach(world)
        self.stats.start_new_run()
        world.init()
        self.world = world
        logger.debug("New %dx%d run with %d agents", world.width, world.height, len(world.agents))
        return world

    def ensure_world(self) -> GridWorld:
        if self.world is None:
            return self.new_run()
        return self.world

    def restart(self) -> None:
        """Same grid and hazard field; cover counts zeroed, agents repaired and re-placed."""

        world = self.ensure_world()
        world.reset_cover_counts()
        for agent in world.agents:
            agent.broken = False
        self.stats.start_new_run()
        world.init()

    def next_run(self) -> None:
        """Continue on a regenerated grid with the same agents and policies."""

        world = self.ensure_world()
        for agent in world.agents:
            agent.broken = False
        world.regenerate()
        self.scenario.on_regenerate(world)
        self.stats.start_new_run()
        world.init()

    # ------------------------------------------------------------------
    # ticking
    # ------------------------------------------------------------------
    def is_terminal(self) -> bool:
        world = self.ensure_world()
        return self.scenario.is_terminal(world, self.stats)

    def tick(self) -> None:
        """Agents act, the hazard field diffuses, statistics advance."""

        world = self.ensure_world()
        world.step()
        self.hazard.update(world)
        self.stats.update_time_step()

    def end_run(self) -> RunSummary:
        world = self.ensure_world()
        summary = self.stats.finish_run()
        self.scenario.on_run_end(world, self.stats, summary)
        if self.display_full_stats:
            logger.info("Run statistics:\n%s", self.stats.format_report())
        if summary.batch is not None:
            self.scenario.on_batch_end(summary.batch)
        self.runs_completed += 1
        return summary

    def run_episode(
        self,
        max_ticks: Optional[int] = None,
        on_tick: Optional[Callable[[GridWorld, RunStatistics], None]] = None,
    ) -> RunSummary:
        """Tick until terminal (or ``max_ticks``), then finish the run."""

        ticks = 0
        while not self.is_terminal():
            if max_ticks is not None and ticks >= max_ticks:
                break
            self.tick()
            ticks += 1
            if on_tick is not None:
                on_tick(self.world, self.stats)
        return self.end_run()

    # ------------------------------------------------------------------
    # commands
    # ------------------------------------------------------------------
    def register_commands(self, commands: CommandRegistry) -> None:
        def env_printgrid(args: List[str]) -> None:
            stream = sys.stderr if args and args[0].lower() == "stderr" else sys.stdout
            self.ensure_world().print_grid(stream)

        def env_set_agent_pos(args: List[str]) -> str:
            if len(args) != 3:
                raise CommandError("usage: env_set_agent_pos id x y")
            agent_id, x, y = (int(a) for a in args)
            world = self.ensure_world()
            agent = world.get_agent_by_id(agent_id)
            if agent is None:
                raise CommandError(f"no agent with id {agent_id}")
            if world.is_occupied(x, y, ignore=agent):
                raise CommandError(f"({x}, {y}) is occupied")
            try:
                world.set_agent_location(agent, x, y)
            except SimulationError as exc:
                raise CommandError(str(exc)) from exc
            return f"agent {agent_id} at ({x}, {y})"

        def env_export_hazard(args: List[str]) -> str:
            return self.ensure_world().export_hazard_field()

        def env_import_hazard(args: List[str]) -> str:
            self.ensure_world().import_hazard_field(" ".join(args))
            return "hazard field imported"

        def stats(args: List[str]) -> str:
            self.ensure_world()
            return self.stats.format_report()

        def set_setting(args: List[str]) -> str:
            if len(args) < 2:
                raise CommandError("usage: set key value")
            key, raw = args[0], " ".join(args[1:])
            value = self.settings.set(key, raw)
            self.settings.reload_settings()
            return f"{key} = {value}"

        def get_setting(args: List[str]) -> str:
            if len(args) != 1:
                raise CommandError("usage: get key")
            return f"{args[0]} = {self.settings.get_as_string(args[0])}"

        def showsettings(args: List[str]) -> str:
            if args and args[0].lower() == "ascommands":
                return self.settings.export_commands()
            return self.settings.export_string()

        commands.register("env_printgrid", env_printgrid)
        commands.register("env_set_agent_pos", env_set_agent_pos)
        commands.register("env_export_hazard", env_export_hazard)
        commands.register("env_import_hazard", env_import_hazard)
        commands.register("stats", stats)
        commands.register("set", set_setting)
        commands.register("get", get_setting)
        commands.register("showsettings", showsettings)
        self.scenario.register_commands(commands, self)

    def close(self) -> None:
        self.context.close()
        self.settings.unregister_reloadable(self)


__all__ = ["Simulation", "PolicyFactory"]
