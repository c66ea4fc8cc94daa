"""
Traversal guard for archive entries.

`is_safe(root, candidate)` is a pure predicate: it resolves the candidate
against the workspace root and admits it only when the result stays inside
the root. Relative candidates are joined onto the root first, so both
`../escape.txt` and `/etc/passwd` style entries are rejected.
"""
from __future__ import annotations

from pathlib import Path


def resolve_entry(root: Path | str, candidate: Path | str) -> Path:
    root_resolved = Path(root).resolve()
    p = Path(candidate)
    if not p.is_absolute():
        p = root_resolved / p
    return p.resolve()


def is_safe(root: Path | str, candidate: Path | str) -> bool:
    root_resolved = Path(root).resolve()
    resolved = resolve_entry(root_resolved, candidate)
    return resolved == root_resolved or root_resolved in resolved.parents


__all__ = ["is_safe", "resolve_entry"]
