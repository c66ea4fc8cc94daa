"""
Workspace management utilities

A workspace is the per-run temporary directory that receives the merged
archives and in which Gradle runs. Exactly one execution owns it; it is
removed on every exit path.

Public API
----------
- create(base_dir=None, prefix="code-") -> Path
    Allocate a uniquely named directory, e.g. /tmp/code-3f2c…a1b2xyz

- cleanup(path, sink) -> bool
    Remove the tree bottom-up (children before parents); failures are logged.

- workspace_scope(base_dir=None, prefix="code-", sink=...) -> ContextManager[Path]
    create() on enter, cleanup() on exit, whatever happened inside.

- locate_project_root(root, marker="gradlew") -> Path
    First directory, in sorted pre-order, that directly contains `marker`.

- log_tree(root, sink) -> None
    Indented listing of the merged tree, for diagnostics.
"""
from __future__ import annotations

import tempfile
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

from solution_runner.core.errors import ProjectNotFoundError
from solution_runner.tools.diagnostics import DEFAULT_SINK, DiagnosticSink
from solution_runner.tools.storage_layer import STORAGE, Storage


def create(base_dir: Optional[Path | str] = None, prefix: str = "code-") -> Path:
    """Create a fresh, uniquely named workspace directory."""
    if base_dir is not None:
        STORAGE.ensure_dir(Path(base_dir))
    name_prefix = f"{prefix}{uuid.uuid4()}"
    return Path(tempfile.mkdtemp(prefix=name_prefix, dir=str(base_dir) if base_dir else None))


def cleanup(path: Path | str, *, sink: DiagnosticSink = DEFAULT_SINK, storage: Storage = STORAGE) -> bool:
    failures = storage.remove_tree(Path(path))
    for p, err in failures:
        sink.error(f"Error cleaning up temporary directory entry {p}: {err}")
    return not failures


@contextmanager
def workspace_scope(
    base_dir: Optional[Path | str] = None,
    prefix: str = "code-",
    *,
    sink: DiagnosticSink = DEFAULT_SINK,
    storage: Storage = STORAGE,
) -> Iterator[Path]:
    ws = create(base_dir, prefix)
    sink.debug(f"Allocated workspace: {ws}")
    try:
        yield ws
    finally:
        if cleanup(ws, sink=sink, storage=storage):
            sink.debug(f"Removed workspace: {ws}")


def _preorder_dirs(root: Path, storage: Storage) -> Iterator[Path]:
    yield root
    for child in storage.iterdir(root):
        if child.is_dir() and not child.is_symlink():
            yield from _preorder_dirs(child, storage)


def locate_project_root(
    root: Path | str,
    marker: str = "gradlew",
    *,
    sink: DiagnosticSink = DEFAULT_SINK,
    storage: Storage = STORAGE,
) -> Path:
    root = Path(root)
    sink.info(f"Searching for project directory in: {root}")
    for d in _preorder_dirs(root, storage):
        if storage.is_file(d / marker):
            sink.info(f"Found project directory: {d}")
            return d
    raise ProjectNotFoundError(root, marker)


def log_tree(root: Path | str, *, sink: DiagnosticSink = DEFAULT_SINK, storage: Storage = STORAGE) -> None:
    def _walk(d: Path, level: int) -> None:
        indent = "  " * level
        sink.debug(f"{indent}{d.name}")
        for child in storage.iterdir(d):
            if child.is_dir() and not child.is_symlink():
                _walk(child, level + 1)
            else:
                sink.debug(f"{indent}  {child.name}")

    _walk(Path(root), 0)


__all__ = [
    "create",
    "cleanup",
    "workspace_scope",
    "locate_project_root",
    "log_tree",
]
