"""
Storage abstraction for the file operations used by extraction and harvesting.

Tools take a `storage` argument that defaults to the shared instance:
    from solution_runner.tools.storage_layer import STORAGE
    STORAGE.copy_file(src, dst)

Only the local filesystem is implemented; a different backend can replace
STORAGE without touching the extractors.
"""
from __future__ import annotations

import os
import shutil
import stat
import subprocess
from contextlib import contextmanager
from pathlib import Path
from typing import BinaryIO, Iterable, Iterator


class Storage:
    # Existence/metadata
    def exists(self, path: Path) -> bool: raise NotImplementedError
    def is_file(self, path: Path) -> bool: raise NotImplementedError
    def is_dir(self, path: Path) -> bool: raise NotImplementedError

    # Directory/listing
    def ensure_dir(self, path: Path) -> None: raise NotImplementedError
    def ensure_parent_dir(self, path: Path) -> None: raise NotImplementedError
    def iterdir(self, path: Path) -> Iterable[Path]: raise NotImplementedError
    def walk_files(self, root: Path) -> Iterable[Path]: raise NotImplementedError
    def count_files(self, root: Path) -> int: raise NotImplementedError

    # Read/write
    def read_text(self, path: Path, encoding: str = "utf-8", errors: str = "replace") -> str: raise NotImplementedError

    @contextmanager
    def open_for_write_bytes(self, path: Path) -> Iterator[BinaryIO]: raise NotImplementedError

    # Copy/move/delete
    def copy_file(self, src: Path, dst: Path) -> None: raise NotImplementedError
    def move(self, src: Path, dst: Path) -> None: raise NotImplementedError
    def remove_tree(self, path: Path) -> list[tuple[Path, str]]: raise NotImplementedError

    # Perms
    def set_executable(self, path: Path) -> bool: raise NotImplementedError
    def chmod_command(self, path: Path) -> int: raise NotImplementedError
    def mode_string(self, path: Path) -> str: raise NotImplementedError


class LocalStorage(Storage):
    """Filesystem-backed implementation."""

    # Existence/metadata
    def exists(self, path: Path) -> bool: return Path(path).exists()
    def is_file(self, path: Path) -> bool: return Path(path).is_file()
    def is_dir(self, path: Path) -> bool: return Path(path).is_dir()

    # Directory/listing
    def ensure_dir(self, path: Path) -> None:
        Path(path).mkdir(parents=True, exist_ok=True)
    def ensure_parent_dir(self, path: Path) -> None:
        Path(path).parent.mkdir(parents=True, exist_ok=True)
    def iterdir(self, path: Path) -> Iterable[Path]:
        return sorted(Path(path).iterdir(), key=lambda p: p.name)
    def walk_files(self, root: Path) -> Iterable[Path]:
        return sorted(p for p in Path(root).rglob("*") if p.is_file())
    def count_files(self, root: Path) -> int:
        return sum(1 for p in Path(root).rglob("*") if p.is_file())

    # Read/write
    def read_text(self, path: Path, encoding: str = "utf-8", errors: str = "replace") -> str:
        return Path(path).read_text(encoding=encoding, errors=errors)
    @contextmanager
    def open_for_write_bytes(self, path: Path) -> Iterator[BinaryIO]:
        p = Path(path)
        self.ensure_parent_dir(p)
        with open(p, "wb") as f:
            yield f

    # Copy/move/delete
    def copy_file(self, src: Path, dst: Path) -> None:
        dstp = Path(dst); dstp.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(Path(src), dstp)
    def move(self, src: Path, dst: Path) -> None:
        """Move a file; an existing destination file is replaced."""
        srcp, dstp = Path(src), Path(dst)
        dstp.parent.mkdir(parents=True, exist_ok=True)
        try:
            os.replace(srcp, dstp)
        except OSError:
            # cross-device, or a directory sits at dst
            if dstp.is_dir():
                raise
            shutil.copyfile(srcp, dstp)
            srcp.unlink()
    def remove_tree(self, path: Path) -> list[tuple[Path, str]]:
        """Delete bottom-up (children before parents). Returns the paths that failed."""
        root = Path(path)
        failures: list[tuple[Path, str]] = []
        if not root.exists():
            return failures
        for dirpath, dirnames, filenames in os.walk(root, topdown=False):
            d = Path(dirpath)
            for name in filenames:
                _remove(d / name, failures, is_dir=False)
            for name in dirnames:
                child = d / name
                # symlinked dirs are listed in dirnames but must be unlinked
                _remove(child, failures, is_dir=not child.is_symlink())
        _remove(root, failures, is_dir=True)
        return failures

    # Perms
    def set_executable(self, path: Path) -> bool:
        try:
            p = Path(path)
            mode = p.stat().st_mode
            p.chmod(mode | stat.S_IRUSR | stat.S_IRGRP | stat.S_IROTH
                    | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
            return True
        except OSError:
            return False
    def chmod_command(self, path: Path) -> int:
        """Run the external `chmod +x`; raises OSError if chmod is unavailable."""
        proc = subprocess.run(
            ["chmod", "+x", str(path)],
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            check=False,
        )
        return proc.returncode
    def mode_string(self, path: Path) -> str:
        try:
            return stat.filemode(Path(path).stat().st_mode)
        except OSError as e:
            return f"<unavailable: {e}>"


def _remove(p: Path, failures: list[tuple[Path, str]], *, is_dir: bool) -> None:
    try:
        if is_dir:
            p.rmdir()
        else:
            p.unlink()
    except FileNotFoundError:
        pass
    except OSError as e:
        failures.append((p, str(e)))


# Shared instance; every tool defaults its `storage` argument to this.
STORAGE: Storage = LocalStorage()

__all__ = [
    "Storage",
    "LocalStorage",
    "STORAGE",
]
