"""Grid world model: the cell array, the agents on it and their activation loop."""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Iterator, List, Optional, TextIO, Tuple

import numpy as np

from .cell import Cell, CellType
from .config import Settings
from .errors import HazardFieldFormatError, SimulationError
from .generator import HazardFieldGenerator

if TYPE_CHECKING:
    from .agent import Agent

logger = logging.getLogger(__name__)

Coord = Tuple[int, int]
NEIGHBOR_OFFSETS: Tuple[Coord, ...] = ((1, 0), (-1, 0), (0, 1), (0, -1))


class GridWorld:
    """2-D array of :class:`Cell` (indexed ``cells[x][y]``) plus the ordered agent list.

    The order of ``agents`` is the activation order, which also decides who
    wins when two agents contend for the same cell in one tick.
    """

    def __init__(
        self,
        width: int,
        height: int,
        settings: Optional[Settings] = None,
        rng: Optional[np.random.Generator] = None,
    ):
        if width < 1 or height < 1:
            raise SimulationError(f"grid must be at least 1x1 (got {width}x{height})")
        self.width = width
        self.height = height
        self.cells: List[List[Cell]] = [[Cell(x, y) for y in range(height)] for x in range(width)]
        self.agents: List["Agent"] = []
        self.step_count = 0
        self.rng = rng if rng is not None else np.random.default_rng()
        self.generator = HazardFieldGenerator(rng=self.rng)
        self.reload_settings(settings if settings is not None else Settings())

    def reload_settings(self, settings: Settings) -> None:
        self.settings = settings
        self.randomize_agent_start = settings.get_bool("autorun.randomize_robot_start")
        self.clear_adjacent_cells_on_init = settings.get_bool("env.clear_adjacent_cells_on_init")
        self.variable_grid_size = settings.get_bool("env.variable_grid_size")
        self.force_square = settings.get_bool("env.grid.force_square")
        self.min_width = settings.get_int("env.grid.minwidth")
        self.max_width = settings.get_int("env.grid.maxwidth")
        self.min_height = settings.get_int("env.grid.minheight")
        self.max_height = settings.get_int("env.grid.maxheight")
        self.hazard_cap = settings.get_float("hazard.cap")
        self.hazard_expression = settings.get_str("env.grid.dangervalues")
        for agent in self.agents:
            if agent.actuator is not None:
                agent.actuator.reload_settings(settings)
            if agent.policy is not None:
                agent.policy.reload_settings(settings)

    # ------------------------------------------------------------------
    # queries
    # ------------------------------------------------------------------
    @property
    def size(self) -> Coord:
        return (self.width, self.height)

    def is_on_grid(self, x: int, y: int) -> bool:
        return 0 <= x < self.width and 0 <= y < self.height

    def get_cell(self, x: int, y: int) -> Optional[Cell]:
        """The cell at ``(x, y)``, or ``None`` when the coordinate is off-grid."""

        if self.is_on_grid(x, y):
            return self.cells[x][y]
        return None

    def iter_cells(self) -> Iterator[Cell]:
        for column in self.cells:
            yield from column

    def free_cells(self) -> List[Cell]:
        return [cell for cell in self.iter_cells() if cell.is_free]

    def neighbors(self, x: int, y: int) -> List[Cell]:
        found = []
        for dx, dy in NEIGHBOR_OFFSETS:
            cell = self.get_cell(x + dx, y + dy)
            if cell is not None:
                found.append(cell)
        return found

    def get_agent_by_id(self, agent_id: int) -> Optional["Agent"]:
        for agent in self.agents:
            if agent.id == agent_id:
                return agent
        return None

    def is_occupied(self, x: int, y: int, ignore: Optional["Agent"] = None) -> bool:
        return any(agent is not ignore and agent.x == x and agent.y == y for agent in self.agents)

    def all_broken(self) -> bool:
        return all(agent.broken for agent in self.agents)

    def is_fully_covered(self) -> bool:
        return all(cell.covered for cell in self.iter_cells() if cell.is_free)

    # ------------------------------------------------------------------
    # agents
    # ------------------------------------------------------------------
    def add_agent(self, agent: "Agent") -> None:
        if self.get_agent_by_id(agent.id) is not None:
            raise SimulationError(f"duplicate agent id {agent.id}")
        self.agents.append(agent)

    def set_agent_location(self, agent: "Agent", x: int, y: int) -> None:
        """Teleport ``agent``; the target must be an on-grid, non-obstacle cell."""

        cell = self.get_cell(x, y)
        if cell is None:
            raise SimulationError(f"({x}, {y}) is not on the {self.width}x{self.height} grid")
        if cell.is_obstacle:
            raise SimulationError(f"({x}, {y}) is an obstacle")
        agent.x, agent.y = x, y

    def clear_adjacent_cells(self, x: int, y: int) -> None:
        """Turn the four orthogonal neighbours of ``(x, y)`` into FREE cells."""

        for dx, dy in NEIGHBOR_OFFSETS:
            cell = self.get_cell(x + dx, y + dy)
            if cell is not None:
                cell.type = CellType.FREE

    def _sample_start(self, agent: "Agent") -> Coord:
        candidates = [
            (cell.x, cell.y)
            for cell in self.iter_cells()
            if cell.is_free and not self.is_occupied(cell.x, cell.y, ignore=agent)
        ]
        if not candidates:
            # nothing usable left: take any cell, it is cleared below
            return int(self.rng.integers(self.width)), int(self.rng.integers(self.height))
        for _ in range(4 * self.width * self.height):
            x = int(self.rng.integers(self.width))
            y = int(self.rng.integers(self.height))
            if self.cells[x][y].is_free and not self.is_occupied(x, y, ignore=agent):
                return x, y
        return candidates[int(self.rng.integers(len(candidates)))]

    def place_agent_randomly(self, agent: "Agent") -> None:
        x, y = self._sample_start(agent)
        agent.x, agent.y = x, y
        if self.clear_adjacent_cells_on_init:
            self.clear_adjacent_cells(x, y)
        self.cells[x][y].type = CellType.FREE

    def init(self) -> None:
        """Place agents (when randomised) and initialise every policy for a new run."""

        self.step_count = 0
        for agent in self.agents:
            if self.randomize_agent_start:
                self.place_agent_randomly(agent)
            else:
                cell = self.get_cell(agent.x, agent.y)
                if cell is None:
                    raise SimulationError(f"agent {agent.id} is off-grid at ({agent.x}, {agent.y})")
                # a fixed start must stay usable
                cell.type = CellType.FREE
        for agent in self.agents:
            if agent.policy is not None:
                agent.policy.init()

    def step(self) -> None:
        """Activate every unbroken agent once, in list order."""

        self.step_count += 1
        for agent in self.agents:
            if not agent.broken:
                agent.policy.step()

    # ------------------------------------------------------------------
    # structure
    # ------------------------------------------------------------------
    def resize(self, new_width: int, new_height: int) -> None:
        if new_width < 1 or new_height < 1:
            raise SimulationError(f"grid must be at least 1x1 (got {new_width}x{new_height})")
        new_cells: List[List[Cell]] = []
        for x in range(new_width):
            column = []
            for y in range(new_height):
                if x < self.width and y < self.height:
                    column.append(self.cells[x][y])
                else:
                    column.append(Cell(x, y))
            new_cells.append(column)
        self.cells = new_cells
        self.width = new_width
        self.height = new_height
        for agent in self.agents:
            if not self.is_on_grid(agent.x, agent.y):
                agent.x = min(agent.x, new_width - 1)
                agent.y = min(agent.y, new_height - 1)
                self.cells[agent.x][agent.y].type = CellType.FREE

    def _sample_dimensions(self) -> Coord:
        new_width = int(self.rng.random() * (self.max_width - self.min_width) + self.min_width)
        new_height = int(self.rng.random() * (self.max_height - self.min_height) + self.min_height)
        if self.force_square:
            new_height = new_width
        return new_width, new_height

    def regenerate(self) -> None:
        """Optionally re-size the grid, then refill every cell from the generator expression."""

        # compile first so a bad expression leaves the grid untouched
        self.generator.set_expression(self.hazard_expression)
        if self.variable_grid_size:
            self.resize(*self._sample_dimensions())
        self.generator.set_random_map()
        for cell in self.iter_cells():
            self.generator.gen_next(cell)
            cell.hazard_probability = min(cell.hazard_probability, self.hazard_cap)

    def reset_cover_counts(self) -> None:
        for cell in self.iter_cells():
            cell.cover_count = 0

    # ------------------------------------------------------------------
    # hazard field arrays
    # ------------------------------------------------------------------
    def hazard_arrays(self) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """``(probability, fuel, spreadability)`` as ``(width, height)`` arrays."""

        prob = np.array([[c.hazard_probability for c in col] for col in self.cells], dtype=float)
        fuel = np.array([[c.hazard_fuel for c in col] for col in self.cells], dtype=float)
        spread = np.array([[c.spreadability for c in col] for col in self.cells], dtype=float)
        return prob, fuel, spread

    def set_hazard_arrays(self, prob: np.ndarray, fuel: Optional[np.ndarray] = None) -> None:
        for x, column in enumerate(self.cells):
            for y, cell in enumerate(column):
                cell.hazard_probability = float(prob[x, y])
                if fuel is not None:
                    cell.hazard_fuel = float(fuel[x, y])

    def cover_counts(self) -> np.ndarray:
        return np.array([[c.cover_count for c in col] for col in self.cells], dtype=int)

    def export_hazard_field(self) -> str:
        """Whitespace-separated hazard probabilities, x-major then y."""

        return " ".join(f"{cell.hazard_probability:f}" for cell in self.iter_cells())

    def import_hazard_field(self, text: str) -> None:
        tokens = text.split()
        expected = self.width * self.height
        if len(tokens) != expected:
            raise HazardFieldFormatError(f"expected {expected} values for a {self.width}x{self.height} grid, got {len(tokens)}")
        try:
            values = [float(token) for token in tokens]
        except ValueError as exc:
            raise HazardFieldFormatError(f"bad hazard value: {exc}") from exc
        if any(not np.isfinite(v) or v < 0.0 for v in values):
            raise HazardFieldFormatError("hazard values must be finite and non-negative")
        for cell, value in zip(self.iter_cells(), values):
            cell.hazard_probability = min(value, self.hazard_cap)

    # ------------------------------------------------------------------
    # diagnostics
    # ------------------------------------------------------------------
    def format_grid(self) -> str:
        lines = []
        for y in range(self.height):
            parts = []
            for x in range(self.width):
                cell = self.cells[x][y]
                if cell.is_obstacle:
                    token = f"{'OBS':>4}"
                elif cell.hazard_probability == 0.0:
                    token = f"{'FREE':>4}"
                else:
                    token = f"{cell.hazard_probability:4.2f}"
                if self.is_occupied(x, y):
                    marker = "*"
                else:
                    marker = "Y" if cell.cover_count > 0 else "N"
                parts.append(f"{token}{marker} ")
            lines.append("".join(parts))
        return "\n".join(lines) + "\n"

    def print_grid(self, stream: TextIO) -> None:
        stream.write(self.format_grid())
        stream.flush()


__all__ = ["GridWorld", "NEIGHBOR_OFFSETS", "Coord"]
