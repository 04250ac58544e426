import io
import json
import logging

import pytest

from coverage_sim import TrajectoryLogger, setup_logging
from coverage_sim.display import ConsoleDisplay
from coverage_sim.io_utils import load_hazard_field, load_json, save_hazard_field, save_json, save_rows
from coverage_sim.main import run_from_cli
from coverage_sim.stats import RunStatistics


def test_trajectory_logger_writes_jsonl(tmp_path, blank_world, add_agent):
    world = blank_world(3, 3)
    agent = add_agent(world, 0, 1, 1, actions=[0])
    stats = RunStatistics(world)
    path = tmp_path / "logs" / "traj.jsonl"
    recorder = TrajectoryLogger(str(path))
    world.step()
    recorder.refresh(world, stats)
    recorder.dispose()
    recorder.dispose()
    (line,) = path.read_text(encoding="utf-8").splitlines()
    data = json.loads(line)
    assert data["time"] == 1
    assert data["agents"] == [{"id": 0, "x": 2, "y": 1, "broken": False}]
    assert data["covered"] == 1
    assert agent.location == (2, 1)


def test_console_display_every_n(blank_world):
    world = blank_world(2, 1)
    stream = io.StringIO()
    display = ConsoleDisplay(stream, every=2)
    stats = RunStatistics(world)
    display.refresh(world, stats)
    assert stream.getvalue() == ""
    display.refresh(world, stats)
    assert stream.getvalue().startswith("step 0  coverage 0.000\n")
    assert stream.getvalue().endswith("FREEN FREEN \n")


def test_save_helpers(tmp_path):
    save_json({"a": 1}, str(tmp_path / "x.json"))
    assert load_json(str(tmp_path / "x.json")) == {"a": 1}
    save_rows([{"a": 1}, {"a": 2, "b": 3}], str(tmp_path / "rows.csv"))
    assert (tmp_path / "rows.csv").read_text(encoding="utf-8").splitlines() == ["a,b", "1,", "2,3"]
    save_hazard_field("0.1 0.2", str(tmp_path / "field.txt"))
    assert load_hazard_field(str(tmp_path / "field.txt")).split() == ["0.1", "0.2"]


def test_setup_logging_does_not_stack_handlers(tmp_path):
    log_path = tmp_path / "sim.log"
    logger = setup_logging(logging.INFO, str(log_path))
    count = len(logger.handlers)
    setup_logging(logging.INFO, str(log_path))
    assert len(logger.handlers) == count
    for handler in list(logger.handlers):
        if getattr(handler, "baseFilename", None):
            logger.removeHandler(handler)
            handler.close()
    assert "File logging enabled" in log_path.read_text(encoding="utf-8")


def test_cli_headless_run(tmp_path, capsys):
    summary_path = tmp_path / "summary.json"
    code = run_from_cli(
        [
            "--set", "env.grid.width=4",
            "--set", "env.grid.height=4",
            "--set", "autorun.max_steps_per_run=8",
            "--policy", "random",
            "--seed", "3",
            "--runs", "2",
            "--summary", str(summary_path),
            "--log-level", "WARNING",
        ]
    )
    assert code == 0
    results = json.loads(capsys.readouterr().out.strip().splitlines()[-1])
    assert len(results) == 2
    assert all(r["steps"] <= 8 for r in results)
    assert load_json(str(summary_path)) == results


def test_cli_rejects_bad_override(capsys):
    with pytest.raises(SystemExit):
        run_from_cli(["--set", "env.grid.width=zero"])


def test_cli_show_settings(capsys):
    assert run_from_cli(["--show-settings", "--log-level", "WARNING"]) == 0
    assert "env.grid.width = 10" in capsys.readouterr().out


def test_frame_recorder_writes_gif(tmp_path, blank_world, add_agent):
    pytest.importorskip("matplotlib")
    from PIL import Image

    from coverage_sim.visuals import FrameRecorderDisplay

    world = blank_world(3, 3)
    world.cells[1][1].hazard_probability = 0.2
    add_agent(world, 0, 0, 0, actions=[0, 1, 1])
    stats = RunStatistics(world)
    path = tmp_path / "run.gif"
    display = FrameRecorderDisplay(str(path), every=1, dpi=40)
    for _ in range(3):
        world.step()
        display.refresh(world, stats)
    display.dispose()
    with Image.open(path) as image:
        assert image.n_frames == 3
