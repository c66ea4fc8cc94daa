"""
Result harvesting.

After a successful run the build leaves a result file under the project's
build directory. It is copied, byte for byte, to the destination the caller
asked for. Its contents are never interpreted.
"""
from __future__ import annotations

from pathlib import Path
from typing import Optional

from solution_runner.core.errors import ArtifactMissingError
from solution_runner.core.models import HarvestOutcome
from solution_runner.core.settings import DEFAULT_SETTINGS, RunnerSettings
from solution_runner.tools.diagnostics import DEFAULT_SINK, DiagnosticSink
from solution_runner.tools.storage_layer import STORAGE, Storage


def result_file(project_root: Path | str, settings: Optional[RunnerSettings] = None) -> Path:
    s = settings or DEFAULT_SETTINGS
    return Path(project_root) / s.build_dir / s.result_file


def harvest(
    project_root: Path | str,
    destination: Path | str,
    *,
    settings: Optional[RunnerSettings] = None,
    sink: DiagnosticSink = DEFAULT_SINK,
    storage: Storage = STORAGE,
) -> HarvestOutcome:
    """Copy the result file to `destination`, replacing any existing file.

    Raises ArtifactMissingError when the build produced no result file.
    """
    source = result_file(project_root, settings)
    if not storage.is_file(source):
        raise ArtifactMissingError(source)

    dest = Path(destination)
    sink.info(f"Contents of {source.name}:\n{storage.read_text(source)}")
    storage.copy_file(source, dest)
    sink.info(f"Results copied to: {dest}")
    return HarvestOutcome(copied=True, source=source, destination=dest)


__all__ = ["harvest", "result_file"]
