from __future__ import annotations

import zipfile
from pathlib import Path

import pytest

from conftest import relative_files, zip_bytes
from solution_runner.core.errors import (
    ArchiveOpenError,
    EntryDecodeError,
    ExtractionError,
    ExtractionExhaustedError,
    StrategyFailedError,
)
from solution_runner.core.models import ExtractionReport
from solution_runner.tools.merge import extract_with_fallback, ingest, is_recoverable


class FakeStrategy:
    """Stub strategy: raises `error` if given, otherwise returns an empty report."""

    def __init__(self, name: str, error: Exception | None = None):
        self.name = name
        self.error = error
        self.calls: list[Path] = []

    def try_extract(self, archive: Path, destination: Path) -> ExtractionReport:
        self.calls.append(archive)
        if self.error is not None:
            raise self.error
        return ExtractionReport(archive=archive, strategy=self.name, files_written=1)


def test_merging_two_archives(make_zip, out_dir, settings, sink):
    main = make_zip({"default-structure/gradlew": "#!/bin/sh\n", "default-structure/src/main/kotlin/Main.kt": "fun main() {}"})
    tests = make_zip({"src/test/kotlin/MainTest.kt": "class MainTest"})

    reports = ingest([main, tests], out_dir, settings=settings, sink=sink)

    assert [r.strategy for r in reports] == ["stream", "stream"]
    assert relative_files(out_dir) == {"gradlew", "src/main/kotlin/Main.kt", "src/test/kotlin/MainTest.kt"}
    assert sink.contains("total files in target directory: 3", "info")


def test_later_archive_wins_and_directories_union(make_zip, out_dir, settings, sink):
    first = make_zip({"a.txt": "one", "dir1/x.txt": "x", "shared/": None})
    second = make_zip({"a.txt": "two", "dir2/y.txt": "y", "shared/": None})

    ingest([first, second], out_dir, settings=settings, sink=sink)

    assert (out_dir / "a.txt").read_text() == "two"
    assert relative_files(out_dir) == {"a.txt", "dir1/x.txt", "dir2/y.txt"}
    assert (out_dir / "shared").is_dir()


def test_archive_without_central_directory_streams_in_primary(tmp_path, out_dir, settings, sink):
    data = zip_bytes({"src/A.kt": "class A", "src/B.kt": "class B"})
    archive = tmp_path / "truncated.zip"
    archive.write_bytes(data[: data.find(b"PK\x01\x02")])

    report = extract_with_fallback(archive, out_dir, settings=settings, sink=sink)

    assert report.strategy == "stream"
    assert relative_files(out_dir) == {"src/A.kt", "src/B.kt"}
    assert not sink.contains("ZIP compatibility issue detected")


def test_archive_cut_mid_entry_falls_through_to_manual(tmp_path, out_dir, settings, sink):
    data = zip_bytes({"src/A.kt": "class A", "src/B.kt": "class B\n" * 50}, zipfile.ZIP_STORED)
    archive = tmp_path / "cut.zip"
    archive.write_bytes(data[: data.find(b"PK\x01\x02") - 20])

    report = extract_with_fallback(archive, out_dir, settings=settings, sink=sink)

    assert report.strategy == "manual"
    assert relative_files(out_dir) == {"src/A.kt"}
    assert report.failed_entries == ["src/B.kt"]
    assert sink.contains("ZIP compatibility issue detected", "warn")
    assert sink.contains("unzip strategy failed", "warn")
    assert sink.contains("Switching to manual extraction", "info")


def test_corrupted_entry_recovers_remaining_files(tmp_path, out_dir, settings, sink):
    data = zip_bytes({"a.txt": "AAAAAAAA", "b.txt": "BBBBBBBB", "c.txt": "CCCCCCCC"}, zipfile.ZIP_STORED)
    archive = tmp_path / "corrupt.zip"
    archive.write_bytes(data.replace(b"BBBBBBBB", b"XXXXXXXX"))

    report = extract_with_fallback(archive, out_dir, settings=settings, sink=sink)

    assert report.strategy == "manual"
    assert report.failed_entries == ["b.txt"]
    assert (out_dir / "a.txt").read_text() == "AAAAAAAA"
    assert (out_dir / "c.txt").read_text() == "CCCCCCCC"


def test_corrupted_archive_with_nothing_recoverable(tmp_path, out_dir, settings, sink):
    bogus = tmp_path / "corrupted.zip"
    bogus.write_text("This is not a valid ZIP file")

    with pytest.raises(ExtractionExhaustedError):
        ingest([bogus], out_dir, settings=settings, sink=sink)


def test_missing_archive_is_terminal(tmp_path, out_dir, settings, sink):
    manual = FakeStrategy("manual")
    with pytest.raises(ArchiveOpenError):
        extract_with_fallback(
            tmp_path / "missing.zip",
            out_dir,
            strategies=[FakeStrategy("stream", ArchiveOpenError("Archive not found")), manual],
            settings=settings,
            sink=sink,
        )
    assert manual.calls == []


def test_unrecognized_decode_error_does_not_open_the_ladder(tmp_path, out_dir, settings, sink):
    second = FakeStrategy("unzip")

    with pytest.raises(ExtractionError) as ei:
        extract_with_fallback(
            tmp_path / "x.zip",
            out_dir,
            strategies=[FakeStrategy("stream", EntryDecodeError("something nobody expected")), second],
            settings=settings,
            sink=sink,
        )

    assert type(ei.value) is ExtractionError
    assert second.calls == []
    assert sink.contains("ZIP extraction failed", "error")


def test_ladder_order_and_hand_over(tmp_path, out_dir, settings, sink):
    a = FakeStrategy("stream", EntryDecodeError("BadZipFile: Bad CRC-32 for file 'x'"))
    b = FakeStrategy("unzip", StrategyFailedError("unzip exited 9"))
    c = FakeStrategy("manual")

    report = extract_with_fallback(tmp_path / "x.zip", out_dir, strategies=[a, b, c], settings=settings, sink=sink)

    assert report.strategy == "manual"
    assert len(a.calls) == len(b.calls) == len(c.calls) == 1


def test_last_strategy_error_propagates(tmp_path, out_dir, settings, sink):
    a = FakeStrategy("stream", EntryDecodeError("File is not a zip file"))
    b = FakeStrategy("manual", StrategyFailedError("still broken"))

    with pytest.raises(StrategyFailedError):
        extract_with_fallback(tmp_path / "x.zip", out_dir, strategies=[a, b], settings=settings, sink=sink)


def test_empty_ladder_is_rejected(tmp_path, out_dir, settings, sink):
    with pytest.raises(ValueError):
        extract_with_fallback(tmp_path / "x.zip", out_dir, strategies=[], settings=settings, sink=sink)


@pytest.mark.parametrize(
    "message, expected",
    [
        ("BadZipFile: File is not a zip file", True),
        ("Error -3 while decompressing data: invalid stored block lengths", True),
        ("only DEFLATED entries can have EXT descriptor", True),
        ("disk quota exceeded", False),
    ],
)
def test_is_recoverable(settings, message, expected):
    assert is_recoverable(EntryDecodeError(message), settings.recoverable_signatures) is expected
