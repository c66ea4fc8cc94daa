"""
Entry classification: noise filtering and root-prefix stripping.

An entry is noise when its raw path contains (case-insensitively) any of the
configured substrings: build output, IDE metadata, OS cruft, VCS metadata.
Noise is decided first and noise entries are never stripped. Otherwise the
first configured wrapper prefix the path starts with is removed, so projects
packaged as `default-structure/...` merge with projects packaged flat.
"""
from __future__ import annotations

from typing import Iterable, Optional

from solution_runner.core.models import ClassifiedEntry
from solution_runner.core.settings import DEFAULT_SETTINGS, RunnerSettings


def _normalize_separators(raw: str) -> str:
    return raw.replace("\\", "/")


class EntryFilter:
    def __init__(self, noise_patterns: Iterable[str], root_prefixes: Iterable[str]):
        self.noise_patterns = tuple(noise_patterns)
        self.root_prefixes = tuple(root_prefixes)
        self._noise_lower = tuple(p.lower() for p in self.noise_patterns)

    @classmethod
    def from_settings(cls, settings: Optional[RunnerSettings] = None) -> "EntryFilter":
        s = settings or DEFAULT_SETTINGS
        return cls(s.noise_patterns, s.root_prefixes)

    def is_noise(self, raw_path: str) -> bool:
        low = _normalize_separators(raw_path).lower()
        return any(p in low for p in self._noise_lower)

    def strip_root(self, raw_path: str) -> str:
        path = _normalize_separators(raw_path)
        for prefix in self.root_prefixes:
            if path.startswith(prefix):
                return path[len(prefix):]
        return path

    def classify(self, raw_path: str) -> ClassifiedEntry:
        if self.is_noise(raw_path):
            return ClassifiedEntry(skip=True, normalized_path=_normalize_separators(raw_path))
        return ClassifiedEntry(skip=False, normalized_path=self.strip_root(raw_path))


DEFAULT_FILTER = EntryFilter.from_settings()


def classify(raw_path: str) -> ClassifiedEntry:
    """Classify with the default noise list and prefixes."""
    return DEFAULT_FILTER.classify(raw_path)


__all__ = ["EntryFilter", "DEFAULT_FILTER", "classify"]
