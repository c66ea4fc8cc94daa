"""
Archive extraction: the primary (stream) strategy and the entry writer that
every strategy shares.

Responsibilities:
- visit ZIP entries in stream order (local headers, front to back) and
  materialize them under `destination`
- skip noise entries and strip known wrapper prefixes (entry_filter)
- refuse entries that would land outside `destination` (path_guard)
- create directories idempotently; overwrite files on path collision
- mark Gradle wrapper scripts executable (ZIP does not reliably keep the bit)

Usage:
    from pathlib import Path
    from solution_runner.tools.archive import StreamExtractor

    report = StreamExtractor().try_extract(Path("solution.zip"), Path("/tmp/code-1234"))

Design notes:
- Entries come from the forward-only ZipStreamReader, so an archive whose
  central directory is missing or cut off still yields its intact members.
- A decoder failure is raised as EntryDecodeError and is never retried here;
  the merge coordinator decides whether a recovery strategy should run. Entries
  written before the failure stay on disk.
- A filesystem failure while writing is an ExtractionError.
"""
from __future__ import annotations

import io
import shutil
from pathlib import Path, PurePosixPath
from typing import BinaryIO, Optional

from solution_runner.core.errors import ArchiveOpenError, ExtractionError
from solution_runner.core.models import ExtractionReport
from solution_runner.core.settings import DEFAULT_SETTINGS, RunnerSettings
from solution_runner.tools.diagnostics import DEFAULT_SINK, DiagnosticSink
from solution_runner.tools.entry_filter import EntryFilter
from solution_runner.tools.path_guard import is_safe
from solution_runner.tools.storage_layer import STORAGE, Storage
from solution_runner.tools.zip_stream import ZipStreamReader

_COPY_CHUNK = 64 * 1024


def mark_executable(path: Path, *, sink: DiagnosticSink = DEFAULT_SINK, storage: Storage = STORAGE) -> bool:
    """Best-effort: set the exec bits, then also try an external `chmod +x`."""
    ok = storage.set_executable(path)
    sink.debug(f"Set executable permissions for: {path.name} - {'success' if ok else 'failed'}")
    try:
        code = storage.chmod_command(path)
        sink.debug(f"Chmod command for {path.name}: {'success' if code == 0 else f'failed with code {code}'}")
    except OSError as e:
        sink.warn(f"Failed to execute chmod command for {path.name}: {e}")
    return ok


class EntryWriter:
    """Classify → guard → materialize, for one destination tree."""

    def __init__(
        self,
        destination: Path,
        *,
        entry_filter: EntryFilter,
        wrapper_names: tuple[str, ...],
        sink: DiagnosticSink = DEFAULT_SINK,
        storage: Storage = STORAGE,
    ):
        self.destination = Path(destination)
        self.entry_filter = entry_filter
        self.wrapper_names = tuple(wrapper_names)
        self.sink = sink
        self.storage = storage

    def target_for(self, raw_name: str, report: ExtractionReport) -> Optional[tuple[str, Path]]:
        """Return (normalized, target) or None when the entry must be dropped."""
        classified = self.entry_filter.classify(raw_name)
        if classified.skip:
            self.sink.debug(f"Skipping filtered path: {raw_name}")
            report.skipped += 1
            return None
        normalized = classified.normalized_path
        if normalized.strip("/") in ("", "."):
            report.skipped += 1
            return None
        if normalized != raw_name:
            self.sink.debug(f"Stripped prefix from entry: {raw_name} -> {normalized}")

        target = self.destination / normalized
        if not is_safe(self.destination, target):
            self.sink.warn(f"Path traversal attempt detected: {raw_name}")
            report.rejected += 1
            return None
        return normalized, target

    def write_dir(self, raw_name: str, report: ExtractionReport) -> None:
        resolved = self.target_for(raw_name, report)
        if resolved is None:
            return
        normalized, target = resolved
        self.storage.ensure_dir(target)
        self.sink.debug(f"Created directory: {normalized} (original: {raw_name})")

    def write_file(self, raw_name: str, source: BinaryIO, report: ExtractionReport) -> bool:
        """Stream `source` to the entry's target. Returns True if a file was written."""
        resolved = self.target_for(raw_name, report)
        if resolved is None:
            return False
        normalized, target = resolved
        if self.storage.is_dir(target):
            raise IsADirectoryError(f"Cannot overwrite directory with file entry: {normalized}")
        with self.storage.open_for_write_bytes(target) as out:
            shutil.copyfileobj(source, out, _COPY_CHUNK)
        report.files_written += 1
        self.sink.debug(f"Extracted file: {normalized} (original: {raw_name})")

        if PurePosixPath(normalized).name in self.wrapper_names:
            mark_executable(target, sink=self.sink, storage=self.storage)
        return True


class StreamExtractor:
    """Primary strategy: materialize entries in stream order with the forward-only reader."""

    name = "stream"

    def __init__(
        self,
        settings: Optional[RunnerSettings] = None,
        *,
        sink: DiagnosticSink = DEFAULT_SINK,
        storage: Storage = STORAGE,
    ):
        self.settings = settings or DEFAULT_SETTINGS
        self.sink = sink
        self.storage = storage
        self.entry_filter = EntryFilter.from_settings(self.settings)

    def writer(self, destination: Path) -> EntryWriter:
        return EntryWriter(
            destination,
            entry_filter=self.entry_filter,
            wrapper_names=self.settings.wrapper_names,
            sink=self.sink,
            storage=self.storage,
        )

    def try_extract(self, archive: Path, destination: Path) -> ExtractionReport:
        archive, destination = Path(archive), Path(destination)
        if not self.storage.is_file(archive):
            raise ArchiveOpenError(f"Archive not found: {archive}", archive=archive)
        self.storage.ensure_dir(destination)

        report = ExtractionReport(archive=archive, strategy=self.name)
        writer = self.writer(destination)
        # EntryDecodeError from the reader propagates untouched
        for entry in ZipStreamReader.open(archive).entries():
            try:
                if entry.is_dir:
                    writer.write_dir(entry.name, report)
                else:
                    writer.write_file(entry.name, io.BytesIO(entry.data), report)
            except OSError as e:
                raise ExtractionError(
                    f"Failed to write entry {entry.name} from {archive.name}: {e}", archive=archive, entry=entry.name
                ) from e

        self.sink.info(f"ZIP archive {archive.name} successfully extracted to {destination}")
        return report


def extract(
    archive: Path | str,
    destination: Path | str,
    *,
    settings: Optional[RunnerSettings] = None,
    sink: DiagnosticSink = DEFAULT_SINK,
) -> ExtractionReport:
    """Primary extraction only; see merge.extract_with_fallback for the full ladder."""
    return StreamExtractor(settings, sink=sink).try_extract(Path(archive), Path(destination))


__all__ = [
    "EntryWriter",
    "StreamExtractor",
    "extract",
    "mark_executable",
]
