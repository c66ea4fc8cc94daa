"""
Merge coordinator: extract several archives into one tree.

Each archive goes through an ordered ladder of strategies
(stream → unzip → manual). The first strategy that returns a report wins.
Archives are processed in caller order into the same destination, so a
later archive's file replaces an earlier one at the same relative path and
directories simply union.

Public API
----------
- default_strategies(settings, sink) -> list[ExtractionStrategy]
- extract_with_fallback(archive, destination, ...) -> ExtractionReport
- ingest(archives, destination, ...) -> list[ExtractionReport]
"""
from __future__ import annotations

from pathlib import Path
from typing import Iterable, Optional, Protocol, Sequence

from solution_runner.core.errors import (
    EntryDecodeError,
    ExtractionError,
    StrategyFailedError,
)
from solution_runner.core.models import ExtractionReport
from solution_runner.core.settings import DEFAULT_SETTINGS, RunnerSettings
from solution_runner.tools.archive import StreamExtractor
from solution_runner.tools.diagnostics import DEFAULT_SINK, DiagnosticSink
from solution_runner.tools.recovery import ManualExtractor, UnzipExtractor
from solution_runner.tools.storage_layer import STORAGE, Storage


class ExtractionStrategy(Protocol):
    name: str

    def try_extract(self, archive: Path, destination: Path) -> ExtractionReport:
        ...


def default_strategies(
    settings: Optional[RunnerSettings] = None,
    *,
    sink: DiagnosticSink = DEFAULT_SINK,
    storage: Storage = STORAGE,
) -> list[ExtractionStrategy]:
    s = settings or DEFAULT_SETTINGS
    return [
        StreamExtractor(s, sink=sink, storage=storage),
        UnzipExtractor(s, sink=sink, storage=storage),
        ManualExtractor(s, sink=sink, storage=storage),
    ]


def is_recoverable(err: EntryDecodeError, signatures: Iterable[str]) -> bool:
    message = str(err)
    return any(sig in message for sig in signatures)


def extract_with_fallback(
    archive: Path | str,
    destination: Path | str,
    *,
    strategies: Optional[Sequence[ExtractionStrategy]] = None,
    settings: Optional[RunnerSettings] = None,
    sink: DiagnosticSink = DEFAULT_SINK,
) -> ExtractionReport:
    """Run the ladder for one archive.

    The first strategy's decode error only opens the ladder when its message
    matches a recoverable signature; any other error is terminal. After that,
    a recovery strategy that fails hands over to the next one. The last
    strategy's error propagates unchanged.
    """
    s = settings or DEFAULT_SETTINGS
    archive, destination = Path(archive), Path(destination)
    ladder = list(strategies) if strategies is not None else default_strategies(s, sink=sink)
    if not ladder:
        raise ValueError("at least one extraction strategy is required")

    sink.info(f"Starting extraction of ZIP file: {archive.name} to directory: {destination}")
    for index, strategy in enumerate(ladder):
        is_last = index == len(ladder) - 1
        try:
            return strategy.try_extract(archive, destination)
        except EntryDecodeError as e:
            if is_last:
                raise
            if index == 0 and not is_recoverable(e, s.recoverable_signatures):
                sink.error(f"ZIP extraction failed: {e}")
                raise ExtractionError(f"Failed to extract ZIP archive {archive.name}: {e}", archive=archive) from e
            sink.warn(f"ZIP compatibility issue detected with {strategy.name} strategy: {e}")
        except StrategyFailedError as e:
            if is_last:
                raise
            sink.warn(f"{strategy.name} strategy failed: {e}")
        sink.info(f"Switching to {ladder[index + 1].name} extraction...")
    raise AssertionError("unreachable")  # pragma: no cover


def ingest(
    archives: Sequence[Path | str],
    destination: Path | str,
    *,
    strategies: Optional[Sequence[ExtractionStrategy]] = None,
    settings: Optional[RunnerSettings] = None,
    sink: DiagnosticSink = DEFAULT_SINK,
    storage: Storage = STORAGE,
) -> list[ExtractionReport]:
    """Extract `archives` in order into `destination`; later archives win on collisions."""
    destination = Path(destination)
    storage.ensure_dir(destination)
    ladder = strategies if strategies is not None else default_strategies(settings, sink=sink, storage=storage)

    reports: list[ExtractionReport] = []
    for i, archive in enumerate(archives, start=1):
        sink.info(f"Extracting archive {i}/{len(archives)} ({Path(archive).name}) to: {destination}")
        report = extract_with_fallback(archive, destination, strategies=ladder, settings=settings, sink=sink)
        reports.append(report)
        sink.info(
            f"{Path(archive).name}: {report.files_written} files via {report.strategy}, "
            f"{report.skipped} skipped, {report.rejected} rejected; "
            f"total files in target directory: {storage.count_files(destination)}"
        )
    return reports


__all__ = [
    "ExtractionStrategy",
    "default_strategies",
    "extract_with_fallback",
    "ingest",
    "is_recoverable",
]
