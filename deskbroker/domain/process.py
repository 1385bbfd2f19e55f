"""
Supervision of the external processes owned by a session.

Each launched program is wrapped in a handle that:
- reaps the child on a background watcher thread and notifies exit callbacks
- drains stdout/stderr into the log (diagnostics only)
- runs in its own process group, so teardown reaches anything it forked
- can be terminated any number of times (SIGTERM, then SIGKILL, to the group)
"""

from __future__ import annotations

import logging
import os
import signal
import subprocess
import threading
from typing import IO, Callable, Mapping, Protocol, Sequence

from deskbroker.domain.errors import LaunchFailure

logger = logging.getLogger("desktop-broker")
output_logger = logging.getLogger("desktop-broker.process")

ExitCallback = Callable[["ProcessHandle", "int | None"], None]


class ProcessHandle(Protocol):
    """Interface of a supervised child process."""

    role: str
    program: str

    @property
    def pid(self) -> int | None:
        ...

    @property
    def returncode(self) -> int | None:
        """Exit code, or None while the process is running."""
        ...

    def wait(self, timeout: float | None = None) -> int | None:
        """
        Block until the process exits or timeout elapses.

        Returns:
            Exit code (negative signal number if killed), or None on timeout
        """
        ...

    def terminate(self, timeout: float = 5.0) -> None:
        """Stop the process. Idempotent."""
        ...

    def add_exit_callback(self, callback: ExitCallback) -> None:
        """
        Register a callback fired once when the process exits.

        Fires immediately if the process already exited.
        """
        ...


class ProcessLauncher(Protocol):
    """Interface used by sessions to start their child processes."""

    def launch(
        self,
        role: str,
        program: str,
        args: Sequence[str],
        env: Mapping[str, str] | None = None,
    ) -> ProcessHandle:
        """
        Start a program.

        Raises:
            LaunchFailure: If the program cannot be found or executed
        """
        ...


class SubprocessHandle:
    """ProcessHandle backed by subprocess.Popen."""

    def __init__(self, role: str, program: str, proc: subprocess.Popen, output_level: int = logging.DEBUG) -> None:
        self.role = role
        self.program = program
        self._proc = proc
        self._lock = threading.Lock()
        self._callbacks: list[ExitCallback] = []
        self._exited = threading.Event()
        self._returncode: int | None = None
        self._terminated = False

        for stream in (proc.stdout, proc.stderr):
            if stream is not None:
                threading.Thread(
                    target=self._pump, args=(stream, output_level), daemon=True,
                    name=f"{role}-{proc.pid}-output",
                ).start()

        threading.Thread(
            target=self._watch, daemon=True, name=f"{role}-{proc.pid}-watch"
        ).start()

    @property
    def pid(self) -> int | None:
        return self._proc.pid

    @property
    def returncode(self) -> int | None:
        return self._returncode

    @property
    def terminated(self) -> bool:
        """True once terminate() was requested."""
        return self._terminated

    def wait(self, timeout: float | None = None) -> int | None:
        self._exited.wait(timeout)
        return self._returncode

    def terminate(self, timeout: float = 5.0) -> None:
        """
        Signal the whole process group: SIGTERM, then SIGKILL after timeout.

        Runs even when the leader already exited, since its children may
        still hold the group.
        """
        with self._lock:
            if self._terminated:
                return
            self._terminated = True

        logger.debug(f"Terminating {self.role} (pid={self.pid})")
        self._signal_group(signal.SIGTERM)
        try:
            self._proc.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            logger.warning(f"{self.role} (pid={self.pid}) did not exit cleanly; killing")
            self._signal_group(signal.SIGKILL)
            self._proc.wait()
            return
        # Leader gone; stragglers in its group get no grace period
        self._signal_group(signal.SIGKILL)

    def _signal_group(self, signum: int) -> None:
        try:
            os.killpg(self._proc.pid, signum)
        except (ProcessLookupError, PermissionError):
            pass

    def add_exit_callback(self, callback: ExitCallback) -> None:
        with self._lock:
            if not self._exited.is_set():
                self._callbacks.append(callback)
                return
        self._fire(callback)

    # ------------------------------------------------------------------
    # Background threads
    # ------------------------------------------------------------------

    def _watch(self) -> None:
        returncode = self._proc.wait()
        with self._lock:
            self._returncode = returncode
            self._exited.set()
            callbacks, self._callbacks = self._callbacks, []
        logger.debug(f"{self.role} (pid={self.pid}) exited with code {returncode}")
        for callback in callbacks:
            self._fire(callback)

    def _fire(self, callback: ExitCallback) -> None:
        try:
            callback(self, self._returncode)
        except Exception as e:
            logger.error(f"Exit callback for {self.role} (pid={self.pid}) failed: {e}")

    def _pump(self, stream: IO[bytes], level: int) -> None:
        with stream:
            for raw in iter(stream.readline, b""):
                line = raw.decode("utf-8", errors="replace").rstrip()
                if line:
                    output_logger.log(level, f"[{self.role}:{self.pid}] {line}")


class SubprocessLauncher:
    """Launches genuine OS processes inheriting the broker environment."""

    def __init__(self, output_level: int = logging.DEBUG) -> None:
        self.output_level = output_level

    def launch(
        self,
        role: str,
        program: str,
        args: Sequence[str],
        env: Mapping[str, str] | None = None,
    ) -> SubprocessHandle:
        child_env = os.environ.copy()
        if env:
            child_env.update(env)

        cmd = [program, *args]
        logger.info(f"Launching {role}: {' '.join(cmd)}")
        try:
            proc = subprocess.Popen(  # noqa: S603 - expected invocation of external binary
                cmd,
                env=child_env,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                start_new_session=True,
            )
        except OSError as e:
            raise LaunchFailure(role, program, str(e)) from e

        return SubprocessHandle(role, program, proc, self.output_level)
