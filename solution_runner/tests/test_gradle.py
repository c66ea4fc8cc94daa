from __future__ import annotations

import os
import subprocess
import sys
import textwrap
import time
from dataclasses import replace

import pytest

from conftest import posix_only
from solution_runner.core.errors import ProcessSpawnError, TimedOutError
from solution_runner.core.models import OutcomeKind
from solution_runner.tools import gradle
from solution_runner.tools.gradle import ProcState, ProcessSupervisor


def _py(code: str) -> list[str]:
    return [sys.executable, "-c", textwrap.dedent(code)]


@pytest.fixture()
def project(tmp_path):
    """A project whose `runTests` task is a Python script, so the interpreter can stand in for gradle."""
    root = tmp_path / "project"
    root.mkdir()
    (root / "gradlew").write_text("#!/bin/sh\n")

    def _task(body: str):
        (root / "runTests").write_text(textwrap.dedent(body))
        return root

    return _task


def test_run_command_captures_stdout_and_stderr(tmp_path, sink):
    result = gradle.run_command(
        _py("""
            import sys
            print("to stdout", flush=True)
            sys.stderr.write("to stderr\\n")
        """),
        tmp_path,
        30,
        sink=sink,
    )

    assert result.kind is OutcomeKind.COMPLETED
    assert result.exit_code == 0
    assert result.succeeded
    assert "to stdout" in result.output
    assert "to stderr" in result.output


def test_run_command_reports_nonzero_exit(tmp_path, sink):
    result = gradle.run_command(_py("import sys; sys.exit(3)"), tmp_path, 30, sink=sink)

    assert result.kind is OutcomeKind.COMPLETED
    assert result.exit_code == 3
    assert not result.succeeded
    assert result.raise_for_outcome() is result


def test_run_command_survives_large_output(tmp_path, sink):
    # far more than a pipe buffer; would deadlock without the drain thread
    result = gradle.run_command(_py("import sys; sys.stdout.write('x' * 2_000_000)"), tmp_path, 60, sink=sink)

    assert result.exit_code == 0
    assert len(result.output) == 2_000_000


def test_run_command_times_out(tmp_path, sink):
    t0 = time.monotonic()
    result = gradle.run_command(
        _py("""
            import time
            print("started", flush=True)
            time.sleep(60)
        """),
        tmp_path,
        1.0,
        grace_seconds=2.0,
        sink=sink,
    )
    elapsed = time.monotonic() - t0

    assert result.kind is OutcomeKind.TIMED_OUT
    assert result.timed_out
    assert elapsed < 1.0 + 2.0 + 2.0 + 5.0
    assert sink.contains("Execution timed out after 1 seconds", "error")
    with pytest.raises(TimedOutError):
        result.raise_for_outcome()


@posix_only
def test_run_command_returns_when_background_child_holds_pipe(tmp_path, sink):
    t0 = time.monotonic()
    result = gradle.run_command(["sh", "-c", "sleep 20 & echo parent-done"], tmp_path, 2.0, grace_seconds=1.0, sink=sink)
    elapsed = time.monotonic() - t0

    assert elapsed < 6
    assert result.kind is OutcomeKind.COMPLETED
    assert result.exit_code == 0
    assert "parent-done" in result.output


def test_run_command_raises_when_tool_is_missing(tmp_path, sink):
    with pytest.raises(OSError):
        gradle.run_command([str(tmp_path / "no-such-gradle")], tmp_path, 5, sink=sink)


@posix_only
def test_supervisor_term_then_exit(tmp_path, sink):
    proc = subprocess.Popen(_py("import time; time.sleep(60)"), start_new_session=True)
    sup = ProcessSupervisor(proc, grace_seconds=5.0, sink=sink)

    assert sup.wait(0.2) is False
    assert sup.escalate() is ProcState.EXITED
    assert sup.history == [ProcState.RUNNING, ProcState.GRACE_WAIT, ProcState.EXITED]
    assert sink.contains("terminated gracefully", "info")


@posix_only
def test_supervisor_kills_when_term_is_ignored(tmp_path, sink):
    proc = subprocess.Popen(
        _py("""
            import signal, time
            signal.signal(signal.SIGTERM, signal.SIG_IGN)
            print("ready", flush=True)
            time.sleep(60)
        """),
        stdout=subprocess.PIPE,
        start_new_session=True,
    )
    assert proc.stdout.readline().strip() == b"ready"
    sup = ProcessSupervisor(proc, grace_seconds=0.5, sink=sink)

    state = sup.escalate()
    proc.stdout.close()

    assert state is ProcState.EXITED
    assert sup.history == [ProcState.RUNNING, ProcState.GRACE_WAIT, ProcState.KILLED, ProcState.EXITED]
    assert proc.returncode is not None
    assert sink.contains("forcibly terminated", "info")


def test_supervisor_escalate_after_exit_is_noop(tmp_path, sink):
    proc = subprocess.Popen(_py("pass"))
    sup = ProcessSupervisor(proc, sink=sink, process_group=False)

    assert sup.wait(30)
    assert sup.escalate() is ProcState.EXITED
    assert sup.history == [ProcState.RUNNING, ProcState.EXITED]


def test_build_command(settings):
    assert gradle.build_command("gradle", settings) == [
        "gradle",
        "runTests",
        "--no-daemon",
        "--console=plain",
        "-g",
        settings.gradle_cache_dir,
    ]


def test_run_tests_falls_through_to_next_tool_on_spawn_failure(project, tmp_path, settings, sink, monkeypatch):
    monkeypatch.delenv("CI", raising=False)
    root = project("""
        import os, sys
        print("args:", " ".join(sys.argv[1:]))
        print("CI:", os.environ.get("CI"))
    """)
    s = replace(settings, gradle_commands=(str(tmp_path / "missing-gradle"), sys.executable))

    result = gradle.run_tests(root, 30, settings=s, sink=sink)

    assert result.exit_code == 0
    assert result.command[0] == sys.executable
    assert "args: --no-daemon --console=plain -g" in result.output
    assert "CI: true" in result.output
    assert sink.contains("failed to start", "warn")
    assert sink.contains("Code executed successfully. Exit code: 0", "info")


def test_run_tests_does_not_retry_a_process_that_started(project, settings, sink):
    root = project("import sys; sys.exit(1)")
    s = replace(settings, gradle_commands=(sys.executable, sys.executable))

    result = gradle.run_tests(root, 30, settings=s, sink=sink)

    assert result.exit_code == 1
    assert len([m for m in sink.messages("info") if m.startswith("Executing command:")]) == 1
    assert sink.contains("Code execution failed. Exit code: 1", "error")


def test_run_tests_raises_when_no_tool_starts(project, tmp_path, settings, sink):
    root = project("pass")
    s = replace(settings, gradle_commands=(str(tmp_path / "g1"), str(tmp_path / "g2")))

    with pytest.raises(ProcessSpawnError) as ei:
        gradle.run_tests(root, 5, settings=s, sink=sink)

    assert len(ei.value.attempts) == 2


def test_run_tests_times_out_without_retry(project, settings, sink):
    root = project("import time; time.sleep(60)")
    s = replace(settings, gradle_commands=(sys.executable, sys.executable), grace_seconds=2.0)

    result = gradle.run_tests(root, 1, settings=s, sink=sink)

    assert result.timed_out
    assert len(sink.messages("error")) == 1
    assert sink.contains("Partial output", "info")


def test_run_tests_passes_explicit_env(project, settings, sink):
    root = project("import os; print('FOO=' + os.environ.get('FOO', ''), 'CI=' + os.environ.get('CI', ''))")
    env = dict(os.environ, FOO="bar", CI="false")
    s = replace(settings, gradle_commands=(sys.executable,))

    result = gradle.run_tests(root, 30, settings=s, sink=sink, env=env)

    assert "FOO=bar CI=false" in result.output


@posix_only
def test_ensure_wrapper_executable(project, settings, sink):
    root = project("pass")
    os.chmod(root / "gradlew", 0o644)

    wrapper = gradle.ensure_wrapper_executable(root, settings, sink=sink)

    assert wrapper == root / "gradlew"
    assert os.access(wrapper, os.X_OK)
    assert sink.contains("gradlew file exists: True", "info")
    assert sink.contains("gradlew file permissions: -rwxr-xr-x", "info")


def test_ensure_wrapper_executable_when_absent(tmp_path, settings, sink):
    assert gradle.ensure_wrapper_executable(tmp_path, settings, sink=sink) is None
    assert sink.contains("gradlew file exists: False", "info")
