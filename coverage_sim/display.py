"""Display collaborators refreshed by the driver after each completed tick."""
from __future__ import annotations

import sys
from typing import TYPE_CHECKING, Optional, TextIO

if TYPE_CHECKING:
    from .grid import GridWorld
    from .stats import RunStatistics


class Display:
    def refresh(self, world: "GridWorld", stats: "RunStatistics") -> None:
        raise NotImplementedError

    def dispose(self) -> None:
        pass


class NullDisplay(Display):
    def refresh(self, world: "GridWorld", stats: "RunStatistics") -> None:
        pass


class ConsoleDisplay(Display):
    """Writes the diagnostic grid dump to a stream every ``every`` refreshes."""

    def __init__(self, stream: Optional[TextIO] = None, every: int = 1):
        self.stream = stream if stream is not None else sys.stdout
        self.every = max(1, every)
        self.refreshes = 0

    def refresh(self, world: "GridWorld", stats: "RunStatistics") -> None:
        self.refreshes += 1
        if self.refreshes % self.every:
            return
        self.stream.write(f"step {world.step_count}  coverage {stats.coverage_fraction:.3f}\n")
        world.print_grid(self.stream)


__all__ = ["Display", "NullDisplay", "ConsoleDisplay"]
