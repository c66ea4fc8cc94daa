"""
Diagnostic sinks.

Every component takes a `sink` instead of printing directly, so a run can be
sent to the console, a log file, both, or captured in memory by tests.

- ConsoleSink   prints tagged lines: "[INFO] ...", "[WARN] ...", "[ERROR] ..."
- FileSink      appends timestamped lines to a log file
- TeeSink       fans out to several sinks
- RecordingSink keeps (level, message) tuples in memory
"""
from __future__ import annotations

import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Protocol, Sequence


class DiagnosticSink(Protocol):
    def debug(self, message: str) -> None:
        ...

    def info(self, message: str) -> None:
        ...

    def warn(self, message: str) -> None:
        ...

    def error(self, message: str) -> None:
        ...


def _ts() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


class ConsoleSink:
    def __init__(self, verbose: bool = False, stream=None):
        self.verbose = verbose
        self._stream = stream

    def _emit(self, tag: str, message: str) -> None:
        print(f"[{tag}] {message}", file=self._stream or sys.stdout, flush=True)

    def debug(self, message: str) -> None:
        if self.verbose:
            self._emit("DEBUG", message)

    def info(self, message: str) -> None:
        self._emit("INFO", message)

    def warn(self, message: str) -> None:
        self._emit("WARN", message)

    def error(self, message: str) -> None:
        self._emit("ERROR", message)


class FileSink:
    """Append-only text log, one timestamped line per event."""

    def __init__(self, path: Path | str):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)

    def _write(self, level: str, message: str) -> None:
        try:
            with self.path.open("a", encoding="utf-8") as fh:
                fh.write(f"[{_ts()}] {level} {message}\n")
        except OSError as e:
            print(f"[LOG] failed to write {self.path}: {e}", file=sys.stderr)

    def debug(self, message: str) -> None:
        self._write("DEBUG", message)

    def info(self, message: str) -> None:
        self._write("INFO", message)

    def warn(self, message: str) -> None:
        self._write("WARN", message)

    def error(self, message: str) -> None:
        self._write("ERROR", message)


class TeeSink:
    def __init__(self, sinks: Sequence[DiagnosticSink]):
        self.sinks = list(sinks)

    def debug(self, message: str) -> None:
        for s in self.sinks:
            s.debug(message)

    def info(self, message: str) -> None:
        for s in self.sinks:
            s.info(message)

    def warn(self, message: str) -> None:
        for s in self.sinks:
            s.warn(message)

    def error(self, message: str) -> None:
        for s in self.sinks:
            s.error(message)


class RecordingSink:
    def __init__(self):
        self.records: list[tuple[str, str]] = []

    def debug(self, message: str) -> None:
        self.records.append(("debug", message))

    def info(self, message: str) -> None:
        self.records.append(("info", message))

    def warn(self, message: str) -> None:
        self.records.append(("warn", message))

    def error(self, message: str) -> None:
        self.records.append(("error", message))

    def messages(self, level: str | None = None) -> list[str]:
        return [m for lvl, m in self.records if level is None or lvl == level]

    def contains(self, needle: str, level: str | None = None) -> bool:
        return any(needle in m for m in self.messages(level))


DEFAULT_SINK: DiagnosticSink = ConsoleSink()

__all__ = [
    "DiagnosticSink",
    "ConsoleSink",
    "FileSink",
    "TeeSink",
    "RecordingSink",
    "DEFAULT_SINK",
]
