"""Visualization helpers that turn recorded grid states into lightweight GIFs."""
from __future__ import annotations

from dataclasses import dataclass
import io
import logging
from typing import TYPE_CHECKING, List, Sequence, Tuple

import matplotlib.pyplot as plt
from matplotlib.colors import ListedColormap
import numpy as np
from PIL import Image

from .display import Display

if TYPE_CHECKING:
    from .grid import GridWorld
    from .stats import RunStatistics

logger = logging.getLogger(__name__)

OBSTACLE_COLOUR = "#444444"
COVERED_COLOUR = "#2ca02c"
AGENT_COLOUR = "#1f77b4"
BROKEN_COLOUR = "#d62728"


@dataclass
class GridFrame:
    step: int
    hazard: np.ndarray
    covered: np.ndarray
    obstacles: np.ndarray
    agents: List[Tuple[int, int, bool]]


def capture_frame(world: "GridWorld") -> GridFrame:
    prob, _, _ = world.hazard_arrays()
    obstacles = np.array([[c.is_obstacle for c in col] for col in world.cells], dtype=bool)
    return GridFrame(
        step=world.step_count,
        hazard=prob,
        covered=world.cover_counts() > 0,
        obstacles=obstacles,
        agents=[(a.x, a.y, a.broken) for a in world.agents],
    )


def _draw_frame(frame: GridFrame, hazard_cap: float, dpi: int) -> Image.Image:
    width, height = frame.hazard.shape
    fig, ax = plt.subplots(figsize=(max(3.0, 0.4 * width), max(3.0, 0.4 * height)))
    ax.set_facecolor("#111111")
    fig.patch.set_facecolor("#111111")

    # arrays are (x, y); imshow wants rows = y
    ax.imshow(frame.hazard.T, origin="lower", cmap="Reds", vmin=0.0, vmax=max(hazard_cap, 1e-6))
    covered = np.ma.masked_where(~frame.covered.T, frame.covered.T.astype(float))
    ax.imshow(covered, origin="lower", cmap=ListedColormap([COVERED_COLOUR]), alpha=0.35)
    obstacles = np.ma.masked_where(~frame.obstacles.T, frame.obstacles.T.astype(float))
    ax.imshow(obstacles, origin="lower", cmap=ListedColormap([OBSTACLE_COLOUR]))
    for x, y, broken in frame.agents:
        ax.plot(x, y, marker="x" if broken else "o", color=BROKEN_COLOUR if broken else AGENT_COLOUR, markersize=8)

    ax.set_title(f"step {frame.step}", color="white", fontsize=11)
    ax.set_xticks([])
    ax.set_yticks([])
    fig.tight_layout()

    buf = io.BytesIO()
    fig.savefig(buf, format="png", dpi=dpi, bbox_inches="tight")
    plt.close(fig)
    buf.seek(0)
    image = Image.open(buf).convert("P")
    buf.close()
    return image


def render_grid_gif(frames: Sequence[GridFrame], output_path: str, hazard_cap: float = 1.0, dpi: int = 80) -> None:
    if not frames:
        return
    images = [_draw_frame(frame, hazard_cap, dpi) for frame in frames]
    first, *rest = images
    first.save(output_path, format="GIF", save_all=True, append_images=rest, duration=120, loop=0)


class FrameRecorderDisplay(Display):
    """Captures a frame every ``every`` refreshes and writes them as a GIF on dispose."""

    def __init__(self, output_path: str, every: int = 1, max_frames: int = 400, dpi: int = 80):
        self.output_path = output_path
        self.every = max(1, every)
        self.max_frames = max_frames
        self.dpi = dpi
        self.frames: List[GridFrame] = []
        self.hazard_cap = 1.0
        self._refreshes = 0

    def refresh(self, world: "GridWorld", stats: "RunStatistics") -> None:
        self._refreshes += 1
        if self._refreshes % self.every or len(self.frames) >= self.max_frames:
            return
        self.hazard_cap = world.hazard_cap
        self.frames.append(capture_frame(world))

    def dispose(self) -> None:
        if not self.frames:
            return
        render_grid_gif(self.frames, self.output_path, self.hazard_cap, self.dpi)
        logger.info("Wrote %d frames to %s", len(self.frames), self.output_path)
        self.frames = []


__all__ = ["GridFrame", "capture_frame", "render_grid_gif", "FrameRecorderDisplay"]
