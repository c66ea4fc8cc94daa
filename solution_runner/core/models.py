from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional

from solution_runner.core.errors import TimedOutError


class OutcomeKind(str, Enum):
    """How the build process ended."""
    COMPLETED = "completed"
    TIMED_OUT = "timed_out"


class RunStatus(str, Enum):
    """Terminal status of a whole solution run."""
    SUCCESS = "success"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    ARCHIVE_NOT_FOUND = "archive_not_found"
    EXTRACTION_FAILED = "extraction_failed"
    PROJECT_NOT_FOUND = "project_not_found"
    SPAWN_FAILED = "spawn_failed"
    HARVEST_FAILED = "harvest_failed"
    ERROR = "error"


@dataclass(frozen=True)
class ClassifiedEntry:
    skip: bool
    normalized_path: str


@dataclass
class ExtractionReport:
    archive: Path
    strategy: str
    files_written: int = 0
    skipped: int = 0
    rejected: int = 0
    failed_entries: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class HarvestOutcome:
    copied: bool
    source: Path
    destination: Optional[Path] = None


@dataclass
class ExecutionResult:
    kind: OutcomeKind
    output: str
    command: list[str]
    exit_code: Optional[int] = None
    elapsed_seconds: float = 0.0
    timeout: float = 0.0
    harvest: Optional[HarvestOutcome] = None

    @property
    def timed_out(self) -> bool:
        return self.kind is OutcomeKind.TIMED_OUT

    @property
    def succeeded(self) -> bool:
        return self.kind is OutcomeKind.COMPLETED and self.exit_code == 0

    def raise_for_outcome(self) -> "ExecutionResult":
        """Raise TimedOutError for a timed-out run, return self otherwise."""
        if self.timed_out:
            raise TimedOutError(self.timeout, self.output)
        return self


@dataclass
class RunReport:
    status: RunStatus
    message: str = ""
    execution: Optional[ExecutionResult] = None
    extractions: list[ExtractionReport] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.status is RunStatus.SUCCESS

    def as_dict(self) -> dict:
        ex = self.execution
        harvest = ex.harvest if ex else None
        return {
            "ok": self.ok,
            "status": self.status.value,
            "message": self.message,
            "exit_code": ex.exit_code if ex else None,
            "outcome": ex.kind.value if ex else None,
            "elapsed_seconds": round(ex.elapsed_seconds, 3) if ex else None,
            "artifact": str(harvest.destination) if harvest and harvest.copied else None,
            "extractions": [
                {
                    "archive": str(r.archive),
                    "strategy": r.strategy,
                    "files_written": r.files_written,
                    "skipped": r.skipped,
                    "rejected": r.rejected,
                }
                for r in self.extractions
            ],
        }
