"""
Forward-only ZIP reader driven by local file headers.

Members are materialized in the order their local headers appear, without
consulting the central directory. Archives cut short, archives with junk
appended by some desktop tools, and archives whose data descriptors confuse a
central-directory reader can still be walked front to back: every member
starts with a local header (PK\\x03\\x04) that carries its name, compression
method and, usually, its sizes.

In strict mode the first member that fails to decode stops the walk with an
EntryDecodeError; its message is what the fallback ladder matches on.

In tolerant mode a member that fails to decode is reported through
`on_error` and the reader resynchronizes on the next local header, so one bad
member does not hide the ones after it.
"""
from __future__ import annotations

import struct
import zlib
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterator, Optional

from solution_runner.core.errors import ArchiveOpenError, EntryDecodeError

SIG_LOCAL = b"PK\x03\x04"
SIG_CENTRAL = b"PK\x01\x02"
SIG_EOCD = b"PK\x05\x06"
SIG_ZIP64_EOCD = b"PK\x06\x06"
SIG_DESCRIPTOR = b"PK\x07\x08"

METHOD_STORE = 0
METHOD_DEFLATE = 8

FLAG_DESCRIPTOR = 0x0008
FLAG_UTF8 = 0x0800

_LOCAL = struct.Struct("<4sHHHHHIIIHH")  # 30 bytes
_DESCRIPTOR = struct.Struct("<III")       # crc, csize, usize (after optional signature)
_ZIP64_EXTRA_ID = 0x0001

_END_MARKERS = (SIG_CENTRAL, SIG_EOCD, SIG_ZIP64_EOCD)


@dataclass
class StreamEntry:
    name: str
    offset: int
    data: bytes = b""

    @property
    def is_dir(self) -> bool:
        return self.name.endswith("/") or self.name.endswith("\\")


ErrorHook = Callable[[int, Optional[str], EntryDecodeError], None]


def _decode_name(raw: bytes, flags: int) -> str:
    if flags & FLAG_UTF8:
        return raw.decode("utf-8", errors="replace")
    return raw.decode("cp437")


def _zip64_sizes(extra: bytes, usize: int, csize: int) -> tuple[int, int]:
    i = 0
    while i + 4 <= len(extra):
        hid, hlen = struct.unpack_from("<HH", extra, i)
        body = extra[i + 4:i + 4 + hlen]
        if hid == _ZIP64_EXTRA_ID:
            vals = []
            for j in range(0, len(body) - 7, 8):
                vals.append(struct.unpack_from("<Q", body, j)[0])
            k = 0
            if usize == 0xFFFFFFFF and k < len(vals):
                usize = vals[k]; k += 1
            if csize == 0xFFFFFFFF and k < len(vals):
                csize = vals[k]
            break
        i += 4 + hlen
    return usize, csize


class ZipStreamReader:
    def __init__(self, data: bytes, *, source: Optional[Path] = None):
        self.data = data
        self.source = source

    @classmethod
    def open(cls, path: Path | str) -> "ZipStreamReader":
        p = Path(path)
        try:
            return cls(p.read_bytes(), source=p)
        except OSError as e:
            raise ArchiveOpenError(f"Cannot read archive {p}: {e}", archive=p) from e

    def _fail(self, message: str, entry: Optional[str] = None) -> EntryDecodeError:
        return EntryDecodeError(message, archive=self.source, entry=entry)

    def entries(self, *, tolerant: bool = False, on_error: Optional[ErrorHook] = None) -> Iterator[StreamEntry]:
        data = self.data
        pos = data.find(SIG_LOCAL)
        if pos < 0 and not tolerant and not data.startswith(SIG_EOCD):
            # an empty archive is just an end record; anything else is not a zip
            raise self._fail("File is not a zip file")
        while 0 <= pos < len(data):
            sig = data[pos:pos + 4]
            if sig in _END_MARKERS:
                return
            try:
                if sig != SIG_LOCAL:
                    raise self._fail(f"Bad magic number for file header at offset {pos}")
                entry, end = self._read_member(pos)
            except EntryDecodeError as err:
                if not tolerant:
                    raise
                if on_error:
                    on_error(pos, err.entry, err)
                pos = data.find(SIG_LOCAL, pos + 1)
                continue
            yield entry
            pos = end

    def _read_member(self, pos: int) -> tuple[StreamEntry, int]:
        data = self.data
        if pos + _LOCAL.size > len(data):
            raise self._fail(f"Truncated file header at offset {pos}")
        (_sig, _ver, flags, method, _t, _d,
         crc, csize, usize, nlen, xlen) = _LOCAL.unpack_from(data, pos)

        name_start = pos + _LOCAL.size
        data_start = name_start + nlen + xlen
        if data_start > len(data):
            raise self._fail(f"Truncated file header at offset {pos}")
        name = _decode_name(data[name_start:name_start + nlen], flags)
        extra = data[name_start + nlen:data_start]
        if csize == 0xFFFFFFFF or usize == 0xFFFFFFFF:
            usize, csize = _zip64_sizes(extra, usize, csize)

        has_descriptor = bool(flags & FLAG_DESCRIPTOR)
        size = csize if (not has_descriptor or csize > 0) else None

        try:
            if method == METHOD_DEFLATE:
                payload, end = self._inflate(data_start, size, name)
            elif method == METHOD_STORE:
                payload, end = self._stored(data_start, size, name)
            else:
                raise self._fail(f"Compression method {method} cannot be streamed; only STORED and DEFLATED entries can", name)
            if has_descriptor:
                crc, end = self._read_descriptor(end, crc, name)
        except zlib.error as e:
            raise self._fail(f"{e} ({name})", name) from e

        if (zlib.crc32(payload) & 0xFFFFFFFF) != crc:
            raise self._fail(f"Bad CRC-32 for file {name!r}", name)
        return StreamEntry(name=name, offset=pos, data=payload), end

    def _inflate(self, start: int, csize: Optional[int], name: str) -> tuple[bytes, int]:
        chunk = self.data[start:start + csize] if csize is not None else self.data[start:]
        d = zlib.decompressobj(-15)
        out = d.decompress(chunk)
        if not d.eof:
            raise self._fail("Compressed file ended before the end-of-stream marker was reached", name)
        consumed = len(chunk) - len(d.unused_data)
        return out, start + consumed

    def _stored(self, start: int, csize: Optional[int], name: str) -> tuple[bytes, int]:
        if csize is None:
            # size unknown until the descriptor, which follows the data directly
            end = self.data.find(SIG_DESCRIPTOR, start)
            if end < 0:
                raise self._fail("EXT descriptor not found for STORED entry", name)
            return self.data[start:end], end
        end = start + csize
        if end > len(self.data):
            raise self._fail("Truncated file data", name)
        return self.data[start:end], end

    def _read_descriptor(self, pos: int, header_crc: int, name: str) -> tuple[int, int]:
        data = self.data
        if data[pos:pos + 4] == SIG_DESCRIPTOR:
            pos += 4
        if pos + _DESCRIPTOR.size > len(data):
            raise self._fail("Truncated EXT descriptor", name)
        crc, _csize, _usize = _DESCRIPTOR.unpack_from(data, pos)
        end = pos + _DESCRIPTOR.size
        # zip64 descriptors carry 8-byte sizes; step over the extra 8 bytes
        boundary = (SIG_LOCAL,) + _END_MARKERS
        if data[end:end + 4] not in boundary and data[end + 8:end + 12] in boundary:
            end += 8
        return (crc or header_crc), end


__all__ = ["ZipStreamReader", "StreamEntry"]
