import threading

import pytest

from coverage_sim import (
    CommandQueueFull,
    DriverKilledError,
    DriverState,
    Policy,
    Simulation,
    SimulationDriver,
    SimulationError,
    make_settings,
)
from coverage_sim.display import Display

from conftest import ScriptedPolicy


class RecordingDisplay(Display):
    def __init__(self):
        self.refreshes = 0
        self.disposed = False

    def refresh(self, world, stats):
        self.refreshes += 1

    def dispose(self):
        self.disposed = True


class ExplodingPolicy(Policy):
    def __init__(self, sensor, actuator, context, fail_at=3):
        super().__init__(sensor, actuator, context)
        self.fail_at = fail_at
        self.calls = 0

    def step(self):
        self.calls += 1
        if self.calls >= self.fail_at:
            raise RuntimeError("policy exploded")
        self.actuator.cover_in_place()


class FailingInitPolicy(ScriptedPolicy):
    """Initialises once, then fails every later run set-up."""

    def init(self):
        self.inits = getattr(self, "inits", 0) + 1
        if self.inits >= 2:
            raise RuntimeError("init exploded")


class BrokenDisplay(RecordingDisplay):
    def refresh(self, world, stats):
        super().refresh(world, stats)
        if self.refreshes == 2:
            raise RuntimeError("display broke")


def _driver(policy_cls=ScriptedPolicy, display=None, **overrides):
    params = dict(
        grid_width=4,
        grid_height=4,
        hazard_generator="1:free",
        breakable=False,
        randomize_agent_start=False,
        step_delay_ms=0,
        max_steps_per_run=10,
        seed=0,
    )
    params.update(overrides)
    simulation = Simulation(
        make_settings(**params),
        policy_factory=lambda sensor, actuator, context: policy_cls(sensor, actuator, context),
    )
    return SimulationDriver(simulation, display=display)


def test_manual_steps_advance_one_tick_each():
    driver = _driver()
    with driver:
        driver.new_run()
        assert driver.state is DriverState.IDLE
        assert driver.step() is True
        assert driver.step() is True
        assert driver.query(lambda sim: sim.world.step_count) == 2
        assert driver.ticks == 2


def test_step_on_terminal_run_does_nothing():
    driver = _driver(max_steps_per_run=1)
    with driver:
        driver.new_run()
        assert driver.step() is True
        assert driver.step() is False
        assert driver.query(lambda sim: sim.world.step_count) == 1
        # manual stepping never finalises the run
        assert driver.runs_finished == 0


def test_run_until_terminal_then_pause():
    display = RecordingDisplay()
    driver = _driver(display=display)
    with driver:
        driver.new_run()
        driver.run()
        assert driver.wait_until(lambda d: d.runs_finished == 1, timeout=10)
        assert driver.wait_for_state([DriverState.PAUSED], timeout=10)
        assert driver.query(lambda sim: sim.world.step_count) == 10
        assert driver.simulation.runs_completed == 1
        assert display.refreshes >= 10
    assert display.disposed


def test_auto_restart_keeps_running():
    driver = _driver(auto_restart=True, max_steps_per_run=3)
    with driver:
        driver.new_run()
        driver.run()
        assert driver.wait_until(lambda d: d.runs_finished >= 3, timeout=10)
        driver.pause()
        assert driver.state is DriverState.PAUSED
        assert driver.simulation.runs_completed >= 3


def test_pause_stops_ticking():
    driver = _driver(step_delay_ms=5, max_steps_per_run=0)
    with driver:
        driver.new_run()
        driver.run()
        assert driver.wait_until(lambda d: d.ticks >= 2, timeout=10)
        driver.pause()
        ticks = driver.ticks
        assert driver.query(lambda sim: sim.world.step_count) == ticks
        assert driver.state is DriverState.PAUSED


def test_failing_tick_pauses_and_surfaces_error():
    driver = _driver(policy_cls=ExplodingPolicy)
    with driver:
        driver.new_run()
        driver.run()
        assert driver.wait_until(lambda d: d.failed, timeout=10)
        assert driver.wait_for_state([DriverState.PAUSED], timeout=10)
        assert isinstance(driver.last_error, RuntimeError)
        assert driver.ticks == 2
        with pytest.raises(SimulationError):
            driver.step()
        with pytest.raises(SimulationError):
            driver.run()
        driver.restart()
        assert not driver.failed


def test_manual_step_reraises_tick_error():
    driver = _driver(policy_cls=lambda s, a, c: ExplodingPolicy(s, a, c, fail_at=1))
    with driver:
        driver.new_run()
        with pytest.raises(RuntimeError):
            driver.step()
        assert driver.failed


def test_set_applies_between_ticks():
    driver = _driver()
    with driver:
        driver.new_run()
        assert driver.set("robots.breakable", "true") is True
        assert driver.query(lambda sim: sim.world.agents[0].actuator.breakable) is True
        assert driver.set("autorun.stepdelay", "250") == 250
        assert driver.step_delay == pytest.approx(0.25)


def test_commands_through_driver():
    driver = _driver()
    with driver:
        driver.run_command("new")
        assert driver.run_command("step", ["3"]) == "stepped 3"
        assert driver.run_command("showstate").startswith("state=idle, step=3")
        assert driver.run_command("setdisplay", ["bogus"]) is None


def test_submit_from_many_threads():
    driver = _driver()
    results = []
    with driver:
        driver.new_run()

        def worker():
            results.append(driver.step())

        threads = [threading.Thread(target=worker) for _ in range(5)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(10)
        assert results == [True] * 5
        assert driver.query(lambda sim: sim.world.step_count) == 5


def test_kill_is_final():
    display = RecordingDisplay()
    driver = _driver(display=display)
    driver.new_run()
    driver.kill()
    assert driver.state is DriverState.KILLED
    assert display.disposed
    with pytest.raises(DriverKilledError):
        driver.step()
    with pytest.raises(DriverKilledError):
        driver.run()
    driver.kill()


def test_kill_before_thread_starts():
    driver = _driver()
    driver.kill()
    assert driver.state is DriverState.KILLED
    with pytest.raises(DriverKilledError):
        driver.new_run()


def test_policy_init_failure_on_auto_restart_pauses_loop():
    driver = _driver(policy_cls=FailingInitPolicy, auto_restart=True, max_steps_per_run=3)
    with driver:
        driver.new_run()
        driver.run()
        assert driver.wait_until(lambda d: d.failed, timeout=10)
        assert driver.wait_for_state([DriverState.PAUSED], timeout=10)
        assert str(driver.last_error) == "init exploded"
        assert driver.runs_finished == 1
        assert driver._thread.is_alive()
        assert driver.submit(lambda: "alive", timeout=5) == "alive"
        with pytest.raises(SimulationError):
            driver.run()
    assert driver.state is DriverState.KILLED


def test_display_failure_pauses_loop_and_kill_still_works():
    display = BrokenDisplay()
    driver = _driver(display=display)
    with driver:
        driver.new_run()
        driver.run()
        assert driver.wait_until(lambda d: d.failed, timeout=10)
        assert driver.wait_for_state([DriverState.PAUSED], timeout=10)
        assert str(driver.last_error) == "display broke"
        assert driver.ticks == 1
        driver.pause()
    assert driver.state is DriverState.KILLED
    assert display.disposed
    assert not driver._thread.is_alive()


def test_kill_bypasses_full_command_queue():
    display = RecordingDisplay()
    driver = _driver(display=display, command_queue_size=2)
    driver.new_run()
    gate = threading.Event()
    entered = threading.Event()

    def block():
        entered.set()
        gate.wait(10)

    driver.submit(block, wait=False)
    assert entered.wait(10)
    pending = [driver.submit(lambda: None, wait=False) for _ in range(2)]
    with pytest.raises(CommandQueueFull):
        driver.submit(lambda: None, wait=False)

    driver.kill(timeout=0.05)
    assert driver.state is DriverState.KILLED
    gate.set()
    driver._thread.join(10)
    assert not driver._thread.is_alive()
    for future in pending:
        with pytest.raises(DriverKilledError):
            future.result(5)
    assert display.disposed
