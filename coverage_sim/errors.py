"""Exception hierarchy shared by the simulator components."""
from __future__ import annotations


class SimulationError(Exception):
    """Base class for every error raised by ``coverage_sim``."""


class ConfigError(SimulationError, ValueError):
    """A configuration value could not be parsed or is out of range."""


class GeneratorSyntaxError(ConfigError):
    """The hazard-field generator expression is malformed."""


class HazardFieldFormatError(SimulationError, ValueError):
    """An exported hazard field could not be imported."""


class OracleError(SimulationError):
    """The external decision oracle failed or answered garbage."""


class CommandError(SimulationError):
    """A registered command was invoked with bad arguments."""


class DriverKilledError(SimulationError):
    """A command was sent to a driver that has been killed."""


class CommandQueueFull(SimulationError):
    """The driver's command channel is saturated."""


__all__ = [
    "SimulationError",
    "ConfigError",
    "GeneratorSyntaxError",
    "HazardFieldFormatError",
    "OracleError",
    "CommandError",
    "DriverKilledError",
    "CommandQueueFull",
]
