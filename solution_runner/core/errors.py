"""
Error taxonomy for a solution run.

Archive-level and process-level errors propagate to the run orchestrator,
which turns them into a RunReport. Entry-level problems never surface as
exceptions outside the extractor that hit them.
"""
from __future__ import annotations

from pathlib import Path
from typing import Optional


class SolutionRunnerError(Exception):
    """Base class for every error raised by the runner."""


# -------------------------
# Extraction
# -------------------------

class ExtractionError(SolutionRunnerError):
    def __init__(self, message: str, *, archive: Optional[Path] = None, entry: Optional[str] = None):
        super().__init__(message)
        self.archive = Path(archive) if archive is not None else None
        self.entry = entry


class ArchiveOpenError(ExtractionError):
    """The archive is missing or cannot be opened for reading."""


class EntryDecodeError(ExtractionError):
    """The ZIP decoder failed; the primary reader stops and fallback decides."""


class ExtractionExhaustedError(ExtractionError):
    """Every strategy ran and no file could be recovered."""


class StrategyFailedError(ExtractionError):
    """A recovery strategy could not run to completion; the next one should be tried."""


# -------------------------
# Project / process
# -------------------------

class ProjectNotFoundError(SolutionRunnerError):
    def __init__(self, root: Path | str, wrapper: str = "gradlew"):
        super().__init__(f"Project directory with {wrapper} not found in the archive (searched {root})")
        self.root = Path(root)
        self.wrapper = wrapper


class ProcessSpawnError(SolutionRunnerError):
    def __init__(self, message: str, *, attempts: Optional[list[str]] = None):
        super().__init__(message)
        self.attempts = list(attempts or [])


class TimedOutError(SolutionRunnerError):
    def __init__(self, timeout: float, output: str = ""):
        super().__init__(f"Execution timed out after {timeout:g} seconds")
        self.timeout = timeout
        self.output = output


class ArtifactMissingError(SolutionRunnerError):
    def __init__(self, expected: Path | str):
        super().__init__(f"Result artifact not found at: {expected}")
        self.expected = Path(expected)


__all__ = [
    "SolutionRunnerError",
    "ExtractionError",
    "ArchiveOpenError",
    "EntryDecodeError",
    "ExtractionExhaustedError",
    "StrategyFailedError",
    "ProjectNotFoundError",
    "ProcessSpawnError",
    "TimedOutError",
    "ArtifactMissingError",
]
