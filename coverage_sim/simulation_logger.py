import json
from pathlib import Path

from .display import Display


class TrajectoryLogger(Display):
    """JSON Lines recorder of agent positions; usable as a display collaborator."""

    def __init__(self, save_path: str = "logs/trajectories.jsonl"):
        Path(save_path).parent.mkdir(exist_ok=True, parents=True)
        self.path = save_path
        self.file = open(save_path, "w", encoding="utf-8")

    def record(self, t, agents, covered=None):
        data = {
            "time": t,
            "agents": [
                {"id": a.id, "x": int(a.x), "y": int(a.y), "broken": bool(a.broken)}
                for a in agents
            ],
        }
        if covered is not None:
            data["covered"] = covered
        self.file.write(json.dumps(data, ensure_ascii=False) + "\n")

    def refresh(self, world, stats):
        self.record(world.step_count, world.agents, stats.covered_free_cells)

    def dispose(self):
        self.close()

    def close(self):
        if not self.file.closed:
            self.file.close()
