"""Public API for the adversarial coverage simulator."""
from .agent import Action, Actuator, Agent, CoverEvent, Sensor
from .cell import Cell, CellType
from .commands import CommandRegistry
from .config import Settings, SimulationConfig, make_settings
from .display import ConsoleDisplay, Display, NullDisplay
from .driver import DriverState, SimulationDriver
from .errors import (
    CommandError,
    CommandQueueFull,
    ConfigError,
    DriverKilledError,
    GeneratorSyntaxError,
    HazardFieldFormatError,
    OracleError,
    SimulationError,
)
from .generator import HazardFieldGenerator, parse_generator_expression
from .grid import GridWorld
from .hazard import HazardDiffusionModel
from .log import setup_logging
from .policies import Policy, PolicyContext, make_policy, register_meta_policy, register_policy
from .scenario import CoverageScenario, PathplanScenario, Scenario, make_scenario
from .simulation import Simulation
from .simulation_logger import TrajectoryLogger
from .stats import BatchSummary, RunStatistics, RunSummary, SampledVariable

__all__ = [
    "Action",
    "Actuator",
    "Agent",
    "CoverEvent",
    "Sensor",
    "Cell",
    "CellType",
    "CommandRegistry",
    "Settings",
    "SimulationConfig",
    "make_settings",
    "Display",
    "NullDisplay",
    "ConsoleDisplay",
    "DriverState",
    "SimulationDriver",
    "SimulationError",
    "ConfigError",
    "GeneratorSyntaxError",
    "HazardFieldFormatError",
    "OracleError",
    "CommandError",
    "DriverKilledError",
    "CommandQueueFull",
    "HazardFieldGenerator",
    "parse_generator_expression",
    "GridWorld",
    "HazardDiffusionModel",
    "setup_logging",
    "Policy",
    "PolicyContext",
    "make_policy",
    "register_policy",
    "register_meta_policy",
    "Scenario",
    "CoverageScenario",
    "PathplanScenario",
    "make_scenario",
    "Simulation",
    "TrajectoryLogger",
    "SampledVariable",
    "RunStatistics",
    "RunSummary",
    "BatchSummary",
]
