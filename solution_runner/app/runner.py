"""
Solution run orchestration.

One run: allocate a workspace → merge the archives into it → find the
project root → make the wrapper executable → run the test task under the
timeout → harvest the result file → remove the workspace.

Every error is caught here and turned into a RunReport; nothing escapes as an
unhandled crash, and the workspace is removed whichever way the run ends.
"""
from __future__ import annotations

import traceback
from pathlib import Path
from typing import Optional, Sequence

from solution_runner.core.errors import (
    ArchiveOpenError,
    ArtifactMissingError,
    ExtractionError,
    ProcessSpawnError,
    ProjectNotFoundError,
)
from solution_runner.core.models import ExecutionResult, ExtractionReport, RunReport, RunStatus
from solution_runner.core.settings import RunnerSettings, load_settings
from solution_runner.tools import gradle, harvest as harvester, merge, workspace
from solution_runner.tools.diagnostics import ConsoleSink, DiagnosticSink
from solution_runner.tools.merge import ExtractionStrategy


class SolutionRunner:
    def __init__(
        self,
        settings: Optional[RunnerSettings] = None,
        *,
        sink: Optional[DiagnosticSink] = None,
        strategies: Optional[Sequence[ExtractionStrategy]] = None,
        workspace_base: Optional[Path | str] = None,
        env: Optional[dict[str, str]] = None,
    ):
        self.settings = settings or load_settings()
        self.sink = sink or ConsoleSink(verbose=self.settings.verbose)
        self.strategies = strategies
        self.workspace_base = workspace_base
        self.env = env

    def execute(
        self,
        archives: Sequence[Path | str],
        *,
        timeout: Optional[float] = None,
        results_path: Optional[Path | str] = None,
    ) -> RunReport:
        paths = [Path(a) for a in archives]
        budget = float(timeout if timeout is not None else self.settings.timeout_seconds)
        destination = Path(results_path or self.settings.results_path).resolve()

        missing = [p for p in paths if not p.is_file()]
        if not paths or missing:
            msg = "No archive supplied" if not paths else f"File not found: {', '.join(map(str, missing))}"
            self.sink.error(msg)
            return RunReport(RunStatus.ARCHIVE_NOT_FOUND, msg)

        self.sink.info(
            f"Processing zip files: {', '.join(str(p) for p in paths)} with timeout: {budget:g} seconds"
        )
        extractions: list[ExtractionReport] = []
        try:
            with workspace.workspace_scope(self.workspace_base, sink=self.sink) as ws:
                extractions = merge.ingest(
                    paths, ws, strategies=self.strategies, settings=self.settings, sink=self.sink
                )
                self.sink.info("Merged directory structure:")
                workspace.log_tree(ws, sink=self.sink)

                project = workspace.locate_project_root(ws, self.settings.project_marker, sink=self.sink)
                gradle.ensure_wrapper_executable(project, self.settings, sink=self.sink)
                result = gradle.run_tests(
                    project, budget, settings=self.settings, sink=self.sink, env=self.env
                )
                report = self._classify(result, project, destination)
                report.extractions = extractions
                self.sink.info(f"Execution logs:\n{result.output}")
                return report
        except ArchiveOpenError as e:
            self.sink.error(str(e))
            return RunReport(RunStatus.ARCHIVE_NOT_FOUND, str(e), extractions=extractions)
        except ExtractionError as e:
            self.sink.error(f"Error extracting archives: {e}")
            return RunReport(RunStatus.EXTRACTION_FAILED, str(e), extractions=extractions)
        except ProjectNotFoundError as e:
            self.sink.error(str(e))
            return RunReport(RunStatus.PROJECT_NOT_FOUND, str(e), extractions=extractions)
        except ProcessSpawnError as e:
            self.sink.error(f"Both system Gradle execution methods failed. {e}")
            return RunReport(RunStatus.SPAWN_FAILED, str(e), extractions=extractions)
        except Exception as e:
            self.sink.error(f"Error executing code: {e}\n{traceback.format_exc()}")
            return RunReport(RunStatus.ERROR, str(e), extractions=extractions)

    def _classify(self, result: ExecutionResult, project: Path, destination: Path) -> RunReport:
        if result.timed_out:
            return RunReport(RunStatus.TIMED_OUT, f"Execution timed out after {result.timeout:g} seconds", result)
        if result.exit_code != 0:
            return RunReport(RunStatus.FAILED, f"Code execution failed. Exit code: {result.exit_code}", result)

        try:
            result.harvest = harvester.harvest(project, destination, settings=self.settings, sink=self.sink)
            message = f"Results copied to: {destination}"
        except ArtifactMissingError as e:
            self.sink.warn(f"{self.settings.result_file} file not found at: {e.expected}")
            message = f"Run succeeded without a result artifact ({e.expected.name} missing)"
        except OSError as e:
            self.sink.error(f"Failed to read or copy {self.settings.result_file}: {e}")
            return RunReport(
                RunStatus.HARVEST_FAILED, f"Run succeeded but the result artifact could not be copied: {e}", result
            )
        return RunReport(RunStatus.SUCCESS, message, result)


def execute_code(
    archives: Sequence[Path | str],
    *,
    timeout: Optional[float] = None,
    results_path: Optional[Path | str] = None,
    settings: Optional[RunnerSettings] = None,
    sink: Optional[DiagnosticSink] = None,
) -> RunReport:
    """Convenience wrapper around SolutionRunner(...).execute(...)."""
    return SolutionRunner(settings, sink=sink).execute(archives, timeout=timeout, results_path=results_path)


__all__ = ["SolutionRunner", "execute_code"]
