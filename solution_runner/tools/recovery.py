"""
Recovery strategies for archives the primary reader cannot decode.

- UnzipExtractor  ("unzip")  shells out to the system `unzip` into a scratch
  directory, unwraps a known nesting directory if present, and relocates the
  result into the destination through the noise filter.
- ManualExtractor ("manual") walks local headers front to back, skipping
  members that fail to decode. Zero recovered files is terminal.

Both expose `try_extract(archive, destination) -> ExtractionReport`. A
strategy that cannot do its job raises StrategyFailedError so the merge
coordinator moves on to the next one.
"""
from __future__ import annotations

import io
import os
import subprocess
import tempfile
from pathlib import Path
from typing import Optional

from solution_runner.core.errors import (
    EntryDecodeError,
    ExtractionExhaustedError,
    StrategyFailedError,
)
from solution_runner.core.models import ExtractionReport
from solution_runner.core.settings import DEFAULT_SETTINGS, RunnerSettings
from solution_runner.tools.archive import EntryWriter, mark_executable
from solution_runner.tools.diagnostics import DEFAULT_SINK, DiagnosticSink
from solution_runner.tools.entry_filter import EntryFilter
from solution_runner.tools.path_guard import is_safe
from solution_runner.tools.storage_layer import STORAGE, Storage
from solution_runner.tools.zip_stream import ZipStreamReader


# --------------------------
# Strategy A: external unzip
# --------------------------

class UnzipExtractor:
    name = "unzip"

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

    def _run_unzip(self, archive: Path, scratch: Path) -> None:
        cmd = [self.settings.unzip_command, "-q", "-o", str(archive.resolve()), "-d", str(scratch)]
        try:
            proc = subprocess.run(
                cmd,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                errors="replace",
                check=False,
            )
        except OSError as e:
            raise StrategyFailedError(f"Error using unzip command: {e}", archive=archive) from e
        if proc.returncode != 0:
            raise StrategyFailedError(
                f"Unzip command exited with code {proc.returncode}. Output: {proc.stdout.strip()}",
                archive=archive,
            )

    def effective_root(self, scratch: Path) -> Path:
        """Unwrap the first known nesting directory present in the scratch tree."""
        for prefix in self.settings.root_prefixes:
            candidate = scratch / prefix.strip("/")
            if self.storage.is_dir(candidate):
                self.sink.info(f"Moving contents from {prefix.strip('/')} directory to target")
                return candidate
        self.sink.info("No common prefixes found, moving all files")
        return scratch

    def relocate(self, source: Path, destination: Path, report: ExtractionReport) -> None:
        """Move `source`'s tree into `destination`; files replace files, dirs union."""
        for dirpath, dirnames, filenames in os.walk(source):
            dirnames.sort()
            base = Path(dirpath)
            rel_base = base.relative_to(source)

            kept_dirs = []
            for name in dirnames:
                rel = (rel_base / name).as_posix()
                src = base / name
                if self.entry_filter.is_noise(rel + "/"):
                    self.sink.debug(f"Skipping filtered path: {rel}")
                    report.skipped += 1
                    continue
                if src.is_symlink():
                    self.sink.warn(f"Skipping symlinked directory: {rel}")
                    report.rejected += 1
                    continue
                target = destination / rel
                if not is_safe(destination, target):
                    self.sink.warn(f"Path traversal attempt detected: {rel}")
                    report.rejected += 1
                    continue
                if not self.storage.exists(target):
                    self.sink.debug(f"Created directory: {rel}")
                self.storage.ensure_dir(target)
                kept_dirs.append(name)
            dirnames[:] = kept_dirs

            for name in sorted(filenames):
                rel = (rel_base / name).as_posix()
                src = base / name
                if self.entry_filter.is_noise(rel):
                    self.sink.debug(f"Skipping filtered path: {rel}")
                    report.skipped += 1
                    continue
                if src.is_symlink():
                    self.sink.warn(f"Skipping symlink: {rel}")
                    report.rejected += 1
                    continue
                target = destination / rel
                if not is_safe(destination, target):
                    self.sink.warn(f"Path traversal attempt detected: {rel}")
                    report.rejected += 1
                    continue
                replaced = self.storage.exists(target)
                self.storage.move(src, target)
                report.files_written += 1
                self.sink.debug(f"{'Replaced existing file' if replaced else 'Moved file'}: {rel}")

    def mark_wrappers(self, destination: Path) -> None:
        for p in self.storage.walk_files(destination):
            if p.name in self.settings.wrapper_names:
                mark_executable(p, sink=self.sink, storage=self.storage)

    def try_extract(self, archive: Path, destination: Path) -> ExtractionReport:
        archive, destination = Path(archive), Path(destination)
        self.sink.info("Attempting extraction with unzip command")
        self.storage.ensure_dir(destination)
        report = ExtractionReport(archive=archive, strategy=self.name)

        scratch = Path(tempfile.mkdtemp(prefix="unzip-temp"))
        try:
            self._run_unzip(archive, scratch)
            self.sink.info("Reorganizing extracted files to strip common prefixes")
            try:
                self.relocate(self.effective_root(scratch), destination, report)
            except OSError as e:
                raise StrategyFailedError(f"Relocating unzip output failed: {e}", archive=archive) from e
            self.mark_wrappers(destination)
            self.sink.info(f"Extracted and reorganized {report.files_written} files using unzip")
            return report
        finally:
            for path, err in self.storage.remove_tree(scratch):
                self.sink.warn(f"Failed to clean up temporary path {path}: {err}")


# --------------------------
# Strategy B: tolerant manual walk
# --------------------------

class ManualExtractor:
    name = "manual"

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

    def try_extract(self, archive: Path, destination: Path) -> ExtractionReport:
        archive, destination = Path(archive), Path(destination)
        self.sink.info("Performing manual extraction of ZIP archive")
        self.storage.ensure_dir(destination)
        report = ExtractionReport(archive=archive, strategy=self.name)
        writer = EntryWriter(
            destination,
            entry_filter=self.entry_filter,
            wrapper_names=self.settings.wrapper_names,
            sink=self.sink,
            storage=self.storage,
        )

        def on_error(offset: int, entry: Optional[str], err: EntryDecodeError) -> None:
            self.sink.warn(f"Skipping problematic ZIP entry at offset {offset}: {err}")
            report.failed_entries.append(entry or f"@{offset}")

        reader = ZipStreamReader.open(archive)
        processed: set[str] = set()
        for entry in reader.entries(tolerant=True, on_error=on_error):
            classified = self.entry_filter.classify(entry.name)
            if not classified.skip:
                # keyed on the normalized path: `src/A.kt` and `default-structure/src/A.kt` collide
                key = classified.normalized_path.rstrip("/")
                if key in processed:
                    self.sink.debug(f"Skipping already processed entry: {entry.name} -> {key}")
                    continue
                processed.add(key)
            try:
                if entry.is_dir:
                    writer.write_dir(entry.name, report)
                else:
                    writer.write_file(entry.name, io.BytesIO(entry.data), report)
            except OSError as e:
                self.sink.warn(f"Failed to extract file {entry.name}: {e}")
                report.failed_entries.append(entry.name)

        self.sink.info(f"Extracted {report.files_written} files using manual mode")
        if report.files_written == 0:
            raise ExtractionExhaustedError(
                f"ZIP archive {archive.name} appears to be empty or corrupted", archive=archive
            )
        return report


__all__ = ["UnzipExtractor", "ManualExtractor"]
