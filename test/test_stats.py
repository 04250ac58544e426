import math

import numpy as np
import pytest

from coverage_sim import RunStatistics, SampledVariable, Simulation, make_settings
from coverage_sim.cell import CellType


def test_sampled_variable_mean_and_sample_std():
    var = SampledVariable()
    for value in [2, 4, 4, 4, 5, 5, 7, 9]:
        var.add_sample(value)
    assert var.count == 8
    assert var.mean == pytest.approx(5.0)
    assert var.sum == pytest.approx(40.0)
    assert var.std == pytest.approx(math.sqrt(32 / 7))
    var.reset()
    assert var.count == 0 and var.std == 0.0


def test_single_sample_has_zero_spread():
    var = SampledVariable()
    var.add_sample(3.0)
    assert var.variance == 0.0


def test_rejects_empty_batch():
    with pytest.raises(ValueError):
        RunStatistics(batch_size=0)


def test_run_counters_and_report(blank_world, add_agent):
    world = blank_world(2, 2)
    world.cells[1][1].type = CellType.OBSTACLE
    stats = RunStatistics(world, batch_size=5)
    a = add_agent(world, 0, 0, 0, stats=stats)
    add_agent(world, 1, 1, 0, stats=stats)
    a.actuator.cover_in_place()
    a.actuator.cover_in_place()
    a.broken = True
    stats.update_time_step()

    assert stats.free_cell_count == 3
    assert stats.covered_free_cells == 1
    assert stats.coverage_fraction == pytest.approx(1 / 3)
    assert stats.team_survivability == pytest.approx(0.5)
    report = stats.report()
    assert report["Max times a cell was covered"] == 2
    assert report["Min times a cell was covered"] == 0
    assert report["Total cells"] == 4
    assert report["Total free cells"] == 3
    assert report["Broken robots"] == 1
    assert report["Time steps"] == 1
    assert stats.format_report().splitlines()[0] == "Name\tValue"


def test_survivability_product_over_covered_cells(blank_world, add_agent):
    world = blank_world(3, 1, breakable=False, hazard_cap=1.0)
    world.cells[1][0].hazard_probability = 0.2
    world.cells[2][0].hazard_probability = 0.5
    stats = RunStatistics(world)
    agent = add_agent(world, 0, 0, 0, stats=stats)
    agent.actuator.move_right()
    agent.actuator.move_right()
    assert stats.agent_survivability(0) == pytest.approx(0.8 * 0.5)
    assert stats.best_survivability == pytest.approx(0.4)


def test_batch_flushes_every_n_runs():
    settings = make_settings(
        grid_width=4,
        grid_height=4,
        hazard_generator="1:free",
        max_steps_per_run=5,
        batch_size=3,
        policy_selector="random",
        seed=2,
    )
    simulation = Simulation(settings)
    simulation.new_run()
    summaries = []
    for index in range(4):
        if index:
            simulation.next_run()
        summaries.append(simulation.run_episode())

    assert [s.batch is None for s in summaries] == [True, True, False, True]
    batch = summaries[2].batch
    assert batch.size == 3
    assert batch.steps_mean == pytest.approx(np.mean([s.steps for s in summaries[:3]]))
    assert len(simulation.stats.batch_summaries) == 1
    assert simulation.stats.runs_in_batch == 1
    assert simulation.runs_completed == 4


def test_start_new_run_keeps_batch_state(blank_world, add_agent):
    world = blank_world(2, 1)
    stats = RunStatistics(world, batch_size=4)
    add_agent(world, 0, 0, 0, stats=stats)
    stats.update_time_step()
    stats.finish_run()
    stats.start_new_run()
    assert stats.steps == 0
    assert stats.runs_in_batch == 1
    assert stats.last_run.steps == 1
