from __future__ import annotations

import io
import sys
import zipfile
from dataclasses import replace
from pathlib import Path
from typing import Callable, Mapping, Union

import pytest

from solution_runner.core.settings import DEFAULT_SETTINGS, RunnerSettings
from solution_runner.tools.diagnostics import RecordingSink

Content = Union[str, bytes, None]

posix_only = pytest.mark.skipif(sys.platform.startswith("win"), reason="POSIX permissions / process groups")


def zip_bytes(entries: Mapping[str, Content], compression: int = zipfile.ZIP_DEFLATED) -> bytes:
    """Build an archive in memory. A value of None (or a name ending in '/') is a directory entry."""
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w", compression=compression) as zf:
        for name, content in entries.items():
            if content is None or name.endswith("/"):
                zf.writestr(name if name.endswith("/") else name + "/", b"")
            else:
                zf.writestr(name, content)
    return buf.getvalue()


@pytest.fixture()
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture()
def settings(tmp_path: Path) -> RunnerSettings:
    """Defaults, but never shell out to a real unzip and keep the gradle cache in tmp."""
    return replace(
        DEFAULT_SETTINGS,
        unzip_command=str(tmp_path / "no-such-unzip"),
        gradle_cache_dir=str(tmp_path / "gradle-cache"),
        grace_seconds=2.0,
    )


@pytest.fixture()
def make_zip(tmp_path: Path) -> Callable[..., Path]:
    counter = {"n": 0}

    def _make(entries: Mapping[str, Content], name: str | None = None, compression: int = zipfile.ZIP_DEFLATED) -> Path:
        counter["n"] += 1
        path = tmp_path / (name or f"archive{counter['n']}.zip")
        path.write_bytes(zip_bytes(entries, compression))
        return path

    return _make


@pytest.fixture()
def out_dir(tmp_path: Path) -> Path:
    d = tmp_path / "out"
    d.mkdir()
    return d


def relative_files(root: Path) -> set[str]:
    return {p.relative_to(root).as_posix() for p in root.rglob("*") if p.is_file()}
