"""Threaded driver: one loop thread owns the simulation and paces its ticks.

Every public operation is shipped to the loop thread through a bounded
command queue and executed between ticks, so a tick (agent activation, hazard
diffusion, statistics update) is never observed half-done.  The loop waits on
the queue for the remainder of the inter-tick delay; any incoming command
therefore cuts the delay short and is handled before the next tick starts.
"""
from __future__ import annotations

from concurrent.futures import Future
from enum import Enum
import logging
import queue
import threading
import time
from typing import Any, Callable, List, Optional, Sequence

from .commands import CommandRegistry
from .config import Settings
from .display import ConsoleDisplay, Display, NullDisplay
from .errors import CommandError, CommandQueueFull, DriverKilledError, SimulationError
from .simulation import Simulation

logger = logging.getLogger(__name__)


class DriverState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    KILLED = "killed"


class SimulationDriver:
    def __init__(
        self,
        simulation: Simulation,
        display: Optional[Display] = None,
        commands: Optional[CommandRegistry] = None,
    ):
        self.simulation = simulation
        self.settings: Settings = simulation.settings
        self.display = display if display is not None else NullDisplay()
        self.commands = commands if commands is not None else CommandRegistry()
        # the bound is enforced in ``submit`` so ``kill`` can always enqueue its wake-up
        self._capacity = self.settings.get_int("driver.command_queue_size")
        self._queue: "queue.Queue[tuple]" = queue.Queue()
        self._cond = threading.Condition()
        self._submit_lock = threading.Lock()
        self._teardown_lock = threading.Lock()
        self._torn_down = False
        self._thread: Optional[threading.Thread] = None
        self._state = DriverState.IDLE
        self._next_tick_at = 0.0
        self._run_finalized = False
        self.failed = False
        self.last_error: Optional[BaseException] = None
        self.ticks = 0
        self.runs_finished = 0
        self.reload_settings(self.settings)
        self.settings.register_reloadable(self)
        simulation.register_commands(self.commands)
        self._register_commands()

    def reload_settings(self, settings: Settings) -> None:
        self.step_delay = settings.get_int("autorun.stepdelay") / 1000.0
        self.do_repaint = settings.get_bool("autorun.do_repaint")
        self.auto_restart = settings.get_bool("autorun.finished.newgrid")

    # ------------------------------------------------------------------
    # state
    # ------------------------------------------------------------------
    @property
    def state(self) -> DriverState:
        with self._cond:
            return self._state

    def _set_state(self, state: DriverState) -> None:
        with self._cond:
            if self._state is not DriverState.KILLED:
                self._state = state
            self._cond.notify_all()

    def wait_until(self, predicate: Callable[["SimulationDriver"], bool], timeout: Optional[float] = None) -> bool:
        """Block until ``predicate(driver)`` holds; re-checked after every command and tick."""

        with self._cond:
            return self._cond.wait_for(lambda: predicate(self), timeout=timeout)

    def wait_for_state(self, states: Sequence[DriverState], timeout: Optional[float] = None) -> bool:
        wanted = tuple(states)
        return self.wait_until(lambda d: d._state in wanted, timeout)

    # ------------------------------------------------------------------
    # command channel
    # ------------------------------------------------------------------
    def _ensure_thread(self) -> None:
        if self._thread is None:
            self._thread = threading.Thread(target=self._loop, name="coverage-sim-driver", daemon=True)
            self._thread.start()

    def _on_loop_thread(self) -> bool:
        return self._thread is not None and threading.current_thread() is self._thread

    def submit(self, fn: Callable[[], Any], wait: bool = True, timeout: Optional[float] = None) -> Any:
        """Run ``fn`` on the loop thread between ticks; returns its result (or a Future)."""

        if self._on_loop_thread():
            return fn()
        future: Future = Future()
        with self._submit_lock:
            if self._state is DriverState.KILLED:
                raise DriverKilledError("driver has been killed")
            if self._queue.qsize() >= self._capacity:
                raise CommandQueueFull(f"command queue is full ({self._capacity} pending)")
            self._ensure_thread()
            self._queue.put_nowait((fn, future))
        if not wait:
            return future
        return future.result(timeout)

    def _execute(self, fn: Callable[[], Any], future: Future) -> None:
        if not future.set_running_or_notify_cancel():
            return
        try:
            result = fn()
        except Exception as exc:
            future.set_exception(exc)
        else:
            future.set_result(result)

    def _drain_killed(self) -> None:
        while True:
            try:
                _, future = self._queue.get_nowait()
            except queue.Empty:
                return
            if future is not None and future.set_running_or_notify_cancel():
                future.set_exception(DriverKilledError("driver has been killed"))

    def _shutdown(self) -> None:
        """Mark the driver killed, fail pending commands and release the display and simulation once."""

        with self._submit_lock:
            with self._cond:
                self._state = DriverState.KILLED
                self._cond.notify_all()
        self._drain_killed()
        with self._teardown_lock:
            if self._torn_down:
                return
            self._torn_down = True
        self.settings.unregister_reloadable(self)
        self.display.dispose()
        self.simulation.close()

    # ------------------------------------------------------------------
    # loop
    # ------------------------------------------------------------------
    def _loop(self) -> None:
        logger.debug("Driver loop started")
        try:
            while True:
                if self.state is DriverState.KILLED:
                    break
                if self.state is DriverState.RUNNING:
                    timeout: Optional[float] = max(0.0, self._next_tick_at - time.monotonic())
                else:
                    timeout = None
                try:
                    fn, future = self._queue.get(timeout=timeout)
                except queue.Empty:
                    pass
                else:
                    if fn is not None:
                        self._execute(fn, future)
                    with self._cond:
                        self._cond.notify_all()
                    continue
                if self.state is DriverState.RUNNING:
                    started = time.monotonic()
                    try:
                        self._advance()
                    except Exception as exc:
                        self._fail(exc)
                    self._next_tick_at = started + self.step_delay
        finally:
            self._shutdown()
            logger.debug("Driver loop stopped")

    def _advance(self) -> bool:
        """One loop iteration while running: finish a terminal run or execute a tick."""

        if self.failed:
            self._set_state(DriverState.PAUSED)
            return False
        if self.simulation.is_terminal():
            self._finish_run()
            return False
        if not self._tick():
            return False
        if self.simulation.is_terminal():
            self._finish_run()
        return True

    def _tick(self) -> bool:
        try:
            self.simulation.tick()
            self.ticks += 1
            if self.do_repaint:
                self._refresh_display()
        except Exception as exc:
            self._fail(exc)
            return False
        with self._cond:
            self._cond.notify_all()
        return True

    def _fail(self, exc: BaseException) -> None:
        logger.exception("Run failed; loop paused: %s", exc)
        self.failed = True
        self.last_error = exc
        self._set_state(DriverState.PAUSED)

    def _finish_run(self) -> None:
        if self._run_finalized:
            self._set_state(DriverState.PAUSED)
            return
        self._run_finalized = True
        self.simulation.end_run()
        self.runs_finished += 1
        if self.auto_restart:
            self.simulation.next_run()
            self._run_finalized = False
            self._refresh_display()
        else:
            self._set_state(DriverState.PAUSED)
        with self._cond:
            self._cond.notify_all()

    def _refresh_display(self) -> None:
        world = self.simulation.world
        if world is not None:
            self.display.refresh(world, self.simulation.stats)

    def _reset_run_flags(self) -> None:
        self.failed = False
        self.last_error = None
        self._run_finalized = False

    # ------------------------------------------------------------------
    # public operations
    # ------------------------------------------------------------------
    def new_run(self) -> None:
        def _new_run() -> None:
            self.simulation.new_run()
            self._reset_run_flags()
            self._set_state(DriverState.IDLE)
            self._refresh_display()

        self.submit(_new_run)

    def restart(self) -> None:
        def _restart() -> None:
            self.simulation.restart()
            self._reset_run_flags()
            self._set_state(DriverState.IDLE)
            self._refresh_display()

        self.submit(_restart)

    def step(self) -> bool:
        """Execute exactly one tick unless the run is already terminal; re-raises a failing tick."""

        def _step() -> bool:
            if self.failed:
                raise SimulationError("run has failed; start a new run or restart") from self.last_error
            if self._state is DriverState.RUNNING:
                self._set_state(DriverState.PAUSED)
            if self.simulation.is_terminal():
                return False
            if not self._tick():
                raise self.last_error
            return True

        return self.submit(_step)

    def run(self) -> None:
        def _run() -> None:
            if self.failed:
                raise SimulationError("run has failed; start a new run or restart") from self.last_error
            self.simulation.ensure_world()
            self._next_tick_at = time.monotonic()
            self._set_state(DriverState.RUNNING)

        self.submit(_run)

    def pause(self) -> None:
        def _pause() -> None:
            if self._state is DriverState.RUNNING:
                self._set_state(DriverState.PAUSED)

        self.submit(_pause)

    def query(self, fn: Callable[[Simulation], Any]) -> Any:
        """Evaluate a read-only ``fn(simulation)`` between ticks."""

        return self.submit(lambda: fn(self.simulation))

    def refresh(self) -> None:
        self.submit(self._refresh_display)

    def set_display(self, display: Display) -> None:
        def _swap() -> None:
            old, self.display = self.display, display
            old.dispose()
            self._refresh_display()

        self.submit(_swap)

    def set(self, key: str, value: Any) -> Any:
        def _set() -> Any:
            result = self.settings.set(key, value)
            self.settings.reload_settings()
            return result

        return self.submit(_set)

    def run_command(self, name: str, args: Sequence[str] = ()) -> Optional[str]:
        return self.submit(lambda: self.commands.run(name, list(args)))

    def describe(self) -> str:
        sim = self.simulation
        world = sim.world
        if world is None:
            return f"state={self._state.value}, no world"
        return (
            f"state={self._state.value}, step={world.step_count}, "
            f"cover={sim.stats.covered_free_cells}/{sim.stats.free_cell_count}, "
            f"bots={sim.stats.surviving_count}/{len(world.agents)}, runs={self.runs_finished}"
        )

    def kill(self, timeout: Optional[float] = 5.0) -> None:
        """Stop the loop, release the display and join the loop thread.

        The state flips to KILLED immediately, bypassing the command bound; the
        loop notices after the command or tick in progress and tears down on exit.
        """

        with self._submit_lock:
            with self._cond:
                self._state = DriverState.KILLED
                self._cond.notify_all()
            thread = self._thread
            if thread is not None:
                # wake a loop blocked on an empty queue
                self._queue.put_nowait((None, None))
        if thread is None or not thread.is_alive() or self._on_loop_thread():
            self._shutdown()
            return
        thread.join(timeout)
        if thread.is_alive():
            logger.warning("Driver loop still busy %.1fs after kill; it stops after the current tick", timeout or 0.0)

    def __enter__(self) -> "SimulationDriver":
        return self

    def __exit__(self, *exc_info) -> None:
        self.kill()

    # ------------------------------------------------------------------
    # commands
    # ------------------------------------------------------------------
    def _register_commands(self) -> None:
        def no_args(fn: Callable[[], Any]) -> Callable[[List[str]], Any]:
            return lambda args: fn()

        def step(args: List[str]) -> str:
            count = int(args[0]) if args else 1
            done = 0
            for _ in range(count):
                if not self.step():
                    break
                done += 1
            return f"stepped {done}"

        def setdisplay(args: List[str]) -> str:
            kind = args[0].lower() if args else ""
            if kind == "null":
                self.set_display(NullDisplay())
            elif kind == "console":
                self.set_display(ConsoleDisplay())
            else:
                raise CommandError("usage: setdisplay null|console")
            return f"display set to {kind}"

        self.commands.register("run", no_args(self.run))
        self.commands.register("pause", no_args(self.pause))
        self.commands.register("step", step)
        self.commands.register("restart", no_args(self.restart))
        self.commands.register("new", no_args(self.new_run))
        self.commands.register("showstate", no_args(self.describe))
        self.commands.register("setdisplay", setdisplay)


__all__ = ["DriverState", "SimulationDriver"]
