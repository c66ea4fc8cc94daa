"""
Gradle runner (bounded test execution)

Purpose
-------
Run the project's test task against the located project root under a hard
deadline and return a structured result: how the process ended, its exit
code, and the combined stdout/stderr text.

Public API
----------
- run_tests(project_root, timeout=None, *, settings=None, sink=..., env=None) -> ExecutionResult
    Builds `<tool> <task> --no-daemon --console=plain -g <cache-dir>` for each
    configured tool candidate and runs the first one that can be started.
- run_command(cmd, cwd, timeout, *, grace_seconds=5.0, sink=..., env=None) -> ExecutionResult
    The bounded runner itself; raises OSError when the command cannot start.
- ensure_wrapper_executable(project_root, settings=None, sink=...) -> Path | None

Notes
-----
- stderr is merged into stdout and drained by a reader thread while the
  caller waits for exit, so a chatty build cannot fill the pipe and stall.
- The timeout bounds the exit wait only. On expiry the process group gets
  SIGTERM, then SIGKILL if it is still alive after the grace period.
- Once the child has exited its session is SIGKILLed, so a background
  descendant holding the pipe cannot keep the run alive. The output reader
  gets at most the grace period to reach EOF.
- Another tool candidate is tried only when the previous one could not be
  spawned. A process that started is never retried.
"""
from __future__ import annotations

import os
import signal
import subprocess
import threading
import time
from enum import Enum
from pathlib import Path
from typing import IO, Callable, Optional, Sequence

from solution_runner.core.errors import ProcessSpawnError
from solution_runner.core.models import ExecutionResult, OutcomeKind
from solution_runner.core.settings import DEFAULT_SETTINGS, RunnerSettings
from solution_runner.tools.archive import mark_executable
from solution_runner.tools.diagnostics import DEFAULT_SINK, DiagnosticSink
from solution_runner.tools.storage_layer import STORAGE, Storage

_IS_POSIX = os.name != "nt"


# -------------------------
# Process supervision
# -------------------------

class ProcState(str, Enum):
    RUNNING = "running"
    GRACE_WAIT = "grace_wait"
    KILLED = "killed"
    EXITED = "exited"


class ProcessSupervisor:
    """Lifecycle of one child: RUNNING → (GRACE_WAIT → (KILLED →)) EXITED."""

    def __init__(
        self,
        proc: subprocess.Popen,
        *,
        grace_seconds: float = 5.0,
        sink: DiagnosticSink = DEFAULT_SINK,
        process_group: bool = _IS_POSIX,
    ):
        self.proc = proc
        self.grace_seconds = grace_seconds
        self.sink = sink
        self.process_group = process_group
        self.state = ProcState.RUNNING
        self.history: list[ProcState] = [ProcState.RUNNING]

    def _to(self, state: ProcState) -> None:
        self.state = state
        self.history.append(state)

    def _signal(self, sig: int, fallback: Callable[[], None]) -> None:
        if self.process_group:
            try:
                os.killpg(self.proc.pid, sig)
                return
            except ProcessLookupError:
                return
            except OSError as e:
                self.sink.warn(f"Signalling process group {self.proc.pid} failed: {e}")
        try:
            fallback()
        except ProcessLookupError:
            pass

    def wait(self, timeout: Optional[float]) -> bool:
        """Wait for exit; True if the process exited within `timeout`."""
        try:
            self.proc.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            return False
        self._to(ProcState.EXITED)
        return True

    def reap_group(self) -> None:
        """SIGKILL whatever is left of the child's session after it exited."""
        if not self.process_group:
            return
        try:
            os.killpg(self.proc.pid, getattr(signal, "SIGKILL", signal.SIGTERM))
            self.sink.debug(f"Killed leftover processes in group {self.proc.pid}")
        except ProcessLookupError:
            pass
        except OSError as e:
            self.sink.warn(f"Signalling process group {self.proc.pid} failed: {e}")

    def escalate(self) -> ProcState:
        """Graceful termination, grace window, then forceful kill."""
        if self.state is ProcState.EXITED:
            return self.state
        self._to(ProcState.GRACE_WAIT)
        self._signal(signal.SIGTERM, self.proc.terminate)
        try:
            self.proc.wait(timeout=self.grace_seconds)
            self.sink.info("Process terminated gracefully")
            self._to(ProcState.EXITED)
            return self.state
        except subprocess.TimeoutExpired:
            pass

        self._to(ProcState.KILLED)
        self._signal(getattr(signal, "SIGKILL", signal.SIGTERM), self.proc.kill)
        self.sink.info("Process was forcibly terminated")
        try:
            self.proc.wait(timeout=self.grace_seconds)
            self._to(ProcState.EXITED)
        except subprocess.TimeoutExpired:
            self.sink.error(f"Process {self.proc.pid} did not exit after SIGKILL")
        return self.state


class OutputDrain(threading.Thread):
    """Reads a pipe to EOF in the background."""

    def __init__(self, stream: IO[bytes]):
        super().__init__(name="gradle-output-drain", daemon=True)
        self.stream = stream
        self._chunks: list[bytes] = []
        self._lock = threading.Lock()

    def run(self) -> None:
        try:
            for chunk in iter(lambda: self.stream.read1(8192), b""):
                with self._lock:
                    self._chunks.append(chunk)
        except (OSError, ValueError):
            # pipe closed underneath us after a kill
            pass
        finally:
            try:
                self.stream.close()
            except OSError:
                pass

    def text(self) -> str:
        with self._lock:
            return b"".join(self._chunks).decode("utf-8", errors="replace")


def _finish_drain(drain: OutputDrain, grace_seconds: float, sink: DiagnosticSink) -> None:
    drain.join(grace_seconds)
    if drain.is_alive():
        # the daemon thread is left blocked on the pipe; closing it under read1 could deadlock
        sink.warn("Output pipe still open after process exit; captured output may be incomplete")


# -------------------------
# Core execution
# -------------------------

def _spawn(cmd: Sequence[str], cwd: Path, env: Optional[dict[str, str]]) -> subprocess.Popen:
    kwargs: dict = {}
    if _IS_POSIX:
        kwargs["start_new_session"] = True
    else:
        kwargs["creationflags"] = getattr(subprocess, "CREATE_NEW_PROCESS_GROUP", 0)
    return subprocess.Popen(
        list(cmd),
        cwd=str(cwd),
        env=env,
        stdin=subprocess.DEVNULL,
        stdout=subprocess.PIPE,
        stderr=subprocess.STDOUT,
        **kwargs,
    )


def run_command(
    cmd: Sequence[str],
    cwd: Path | str,
    timeout: float,
    *,
    grace_seconds: float = 5.0,
    sink: DiagnosticSink = DEFAULT_SINK,
    env: Optional[dict[str, str]] = None,
) -> ExecutionResult:
    """Run `cmd` in `cwd` with a deadline on exit. Raises OSError if it cannot start."""
    t0 = time.monotonic()
    proc = _spawn(cmd, Path(cwd), env)
    assert proc.stdout is not None
    drain = OutputDrain(proc.stdout)
    drain.start()
    supervisor = ProcessSupervisor(proc, grace_seconds=grace_seconds, sink=sink)

    if supervisor.wait(timeout):
        # a background descendant may still hold the pipe open
        supervisor.reap_group()
        _finish_drain(drain, grace_seconds, sink)
        elapsed = time.monotonic() - t0
        return ExecutionResult(
            kind=OutcomeKind.COMPLETED,
            output=drain.text(),
            command=list(cmd),
            exit_code=proc.returncode,
            elapsed_seconds=elapsed,
            timeout=timeout,
        )

    sink.error(f"Execution timed out after {timeout:g} seconds")
    supervisor.escalate()
    supervisor.reap_group()
    _finish_drain(drain, grace_seconds, sink)
    elapsed = time.monotonic() - t0
    return ExecutionResult(
        kind=OutcomeKind.TIMED_OUT,
        output=drain.text(),
        command=list(cmd),
        exit_code=proc.returncode,
        elapsed_seconds=elapsed,
        timeout=timeout,
    )


def build_command(tool: str, settings: Optional[RunnerSettings] = None) -> list[str]:
    s = settings or DEFAULT_SETTINGS
    return [tool, s.gradle_task, "--no-daemon", "--console=plain", "-g", s.gradle_cache_dir]


def ensure_wrapper_executable(
    project_root: Path | str,
    settings: Optional[RunnerSettings] = None,
    *,
    sink: DiagnosticSink = DEFAULT_SINK,
    storage: Storage = STORAGE,
) -> Optional[Path]:
    s = settings or DEFAULT_SETTINGS
    wrapper = Path(project_root) / s.project_marker
    exists = storage.exists(wrapper)
    sink.info(f"{wrapper.name} file exists: {exists}")
    if not exists:
        return None
    mark_executable(wrapper, sink=sink, storage=storage)
    sink.info(f"{wrapper.name} file permissions: {storage.mode_string(wrapper)}")
    return wrapper


# -------------------------
# Public API
# -------------------------

def run_tests(
    project_root: Path | str,
    timeout: Optional[float] = None,
    *,
    settings: Optional[RunnerSettings] = None,
    sink: DiagnosticSink = DEFAULT_SINK,
    env: Optional[dict[str, str]] = None,
) -> ExecutionResult:
    """Run the Gradle test task; fall through tool candidates only on spawn failure."""
    s = settings or DEFAULT_SETTINGS
    root = Path(project_root)
    budget = float(timeout if timeout is not None else s.timeout_seconds)

    run_env = dict(os.environ if env is None else env)
    # Environment: make Gradle non-interactive for headless runs
    run_env.setdefault("CI", "true")

    attempts: list[str] = []
    for tool in s.gradle_commands:
        cmd = build_command(tool, s)
        sink.info(f"Executing command: {' '.join(cmd)}")
        try:
            result = run_command(cmd, root, budget, grace_seconds=s.grace_seconds, sink=sink, env=run_env)
        except OSError as e:
            attempts.append(f"{tool}: {e}")
            sink.warn(f"Execution of {tool} failed to start: {e}")
            continue
        if result.timed_out:
            sink.info(f"Partial output:\n{result.output}")
        elif result.exit_code == 0:
            sink.info("Code executed successfully. Exit code: 0")
        else:
            sink.error(f"Code execution failed. Exit code: {result.exit_code}")
        return result

    raise ProcessSpawnError(
        "Every gradle invocation method failed to start. Last error: "
        + (attempts[-1] if attempts else "no gradle command configured"),
        attempts=attempts,
    )


__all__ = [
    "ProcState",
    "ProcessSupervisor",
    "OutputDrain",
    "run_command",
    "build_command",
    "ensure_wrapper_executable",
    "run_tests",
]
