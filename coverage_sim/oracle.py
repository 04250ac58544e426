"""Decision oracles that live outside the simulator: a child process or a trained SB3 model.

Subprocess protocol (one JSON object per line)::

    -> {"type": "choose", "obs": [...]}          <- {"action": 0..4 | null}
    -> {"type": "observe", "reward": r, "broken": b}
    -> {"type": "close"}
"""
from __future__ import annotations

import json
import logging
import queue
import shlex
import subprocess
import threading
from typing import Any, Callable, Optional, Sequence, Union

import numpy as np

from .config import Settings
from .errors import ConfigError, OracleError

logger = logging.getLogger(__name__)


class Oracle:
    def choose(self, obs: np.ndarray) -> Optional[int]:
        raise NotImplementedError

    def observe(self, obs: np.ndarray, reward: float, broken: bool) -> None:
        pass

    def close(self) -> None:
        pass


class CallableOracle(Oracle):
    """Adapts a plain ``obs -> action | None`` function."""

    def __init__(self, fn: Callable[[np.ndarray], Optional[int]]):
        self.fn = fn

    def choose(self, obs: np.ndarray) -> Optional[int]:
        return self.fn(obs)


class SubprocessOracle(Oracle):
    """Talks to a child process over its pipes; replies are read on a background thread.

    ``reply_timeout`` bounds the wait for each ``choose`` answer (``None`` waits
    forever).  A process that misses the deadline is killed.
    """

    def __init__(self, command: Union[str, Sequence[str]], reply_timeout: Optional[float] = 5.0):
        self.reply_timeout = reply_timeout
        argv = shlex.split(command) if isinstance(command, str) else list(command)
        if not argv:
            raise ConfigError("oracle command is empty")
        try:
            self.proc = subprocess.Popen(
                argv,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                text=True,
                bufsize=1,
            )
        except OSError as exc:
            raise OracleError(f"cannot start oracle {argv[0]!r}: {exc}") from exc
        logger.info("Started oracle process pid=%d: %s", self.proc.pid, " ".join(argv))
        self._replies: "queue.Queue[str]" = queue.Queue()
        self._reader = threading.Thread(target=self._read_replies, name="oracle-reader", daemon=True)
        self._reader.start()

    def _read_replies(self) -> None:
        for line in iter(self.proc.stdout.readline, ""):
            self._replies.put(line)
        # end of output
        self._replies.put("")

    def _send(self, message: dict) -> None:
        if self.proc.poll() is not None:
            raise OracleError(f"oracle exited with status {self.proc.returncode}")
        try:
            self.proc.stdin.write(json.dumps(message) + "\n")
            self.proc.stdin.flush()
        except (BrokenPipeError, OSError) as exc:
            raise OracleError(f"oracle pipe closed: {exc}") from exc

    def choose(self, obs: np.ndarray) -> Optional[int]:
        self._send({"type": "choose", "obs": [float(v) for v in np.asarray(obs).ravel()]})
        try:
            line = self._replies.get(timeout=self.reply_timeout)
        except queue.Empty:
            logger.error("Oracle pid=%d gave no reply within %.1fs, killing it", self.proc.pid, self.reply_timeout)
            self.proc.kill()
            self.proc.wait()
            raise OracleError(f"oracle did not reply within {self.reply_timeout}s") from None
        if not line:
            raise OracleError("oracle closed its output")
        try:
            reply = json.loads(line)
        except json.JSONDecodeError as exc:
            raise OracleError(f"bad oracle reply {line.strip()!r}") from exc
        action = reply.get("action") if isinstance(reply, dict) else None
        return None if action is None else int(action)

    def observe(self, obs: np.ndarray, reward: float, broken: bool) -> None:
        self._send({"type": "observe", "reward": float(reward), "broken": bool(broken)})

    def close(self) -> None:
        if self.proc.poll() is None:
            try:
                self._send({"type": "close"})
                self.proc.stdin.close()
                self.proc.wait(timeout=2.0)
            except (OracleError, subprocess.TimeoutExpired):
                logger.warning("Oracle pid=%d did not exit cleanly, killing it", self.proc.pid)
                self.proc.kill()
                self.proc.wait()


class ModelOracle(Oracle):
    """Serves actions from a stable-baselines3 model (anything with ``predict``)."""

    def __init__(self, model: Any, deterministic: bool = True):
        self.model = model
        self.deterministic = deterministic

    @classmethod
    def load(cls, path: str, deterministic: bool = True) -> "ModelOracle":
        from stable_baselines3 import PPO

        return cls(PPO.load(path, device="cpu"), deterministic=deterministic)

    def choose(self, obs: np.ndarray) -> Optional[int]:
        action, _ = self.model.predict(np.asarray(obs, dtype=np.float32), deterministic=self.deterministic)
        return int(np.asarray(action).item())


def oracle_from_settings(settings: Settings) -> Oracle:
    model_path = settings.get_str("policy.external.model_path").strip()
    if model_path:
        return ModelOracle.load(model_path)
    command = settings.get_str("policy.external.command").strip()
    if command:
        timeout_ms = settings.get_int("policy.external.reply_timeout_ms")
        return SubprocessOracle(command, reply_timeout=timeout_ms / 1000.0 if timeout_ms > 0 else None)
    raise ConfigError("external policy needs policy.external.model_path or policy.external.command")


__all__ = ["Oracle", "CallableOracle", "SubprocessOracle", "ModelOracle", "oracle_from_settings"]
