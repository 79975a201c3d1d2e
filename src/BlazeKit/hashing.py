"""Replayable byte sources and streaming SHA-1 helpers.

Uploads hash a payload once while sizing it and then read it again for
transmission, so every payload is wrapped in a :class:`ByteSource` that
supports repeated, independent positioned reads:

* :class:`MemoryByteSource` slices an in-memory buffer.
* :class:`StreamByteSource` wraps a seekable binary stream.  Reads are
  serialised with a lock and the stream's original position is restored
  afterwards, so one source may safely be shared by concurrent part workers.
* :class:`FileByteSource` opens a path and uses ``os.pread`` where the
  platform provides it.

The digest algorithm is SHA-1 because that is what the service verifies on
every upload and part.
"""

from __future__ import annotations

import hashlib
import io
import os
import threading
from pathlib import Path
from typing import IO, Iterator, Protocol, Tuple, Union, runtime_checkable

from .errors import ValidationError

__all__ = [
    "CHUNK_SIZE",
    "ByteSource",
    "MemoryByteSource",
    "StreamByteSource",
    "FileByteSource",
    "as_byte_source",
    "digest_and_size",
    "digest_range",
    "sha1_hex",
]

CHUNK_SIZE = 1024 * 1024

Payload = Union[bytes, bytearray, memoryview, str, IO[bytes], Path, "ByteSource"]


@runtime_checkable
class ByteSource(Protocol):
    """Finite payload supporting repeated positioned reads."""

    def size(self) -> int: ...

    def read_range(self, offset: int, length: int) -> bytes:
        """Return up to ``length`` bytes starting at ``offset`` (fewer only at the end)."""
        ...

    def iter_chunks(self, chunk_size: int = CHUNK_SIZE) -> Iterator[bytes]: ...


class MemoryByteSource:
    """Byte source backed by an immutable copy of an in-memory buffer."""

    def __init__(self, data: Union[bytes, bytearray, memoryview]) -> None:
        self._data = bytes(data)

    def size(self) -> int:
        return len(self._data)

    def read_range(self, offset: int, length: int) -> bytes:
        return self._data[offset : offset + length]

    def iter_chunks(self, chunk_size: int = CHUNK_SIZE) -> Iterator[bytes]:
        view = memoryview(self._data)
        for start in range(0, len(self._data), chunk_size):
            yield bytes(view[start : start + chunk_size])


class StreamByteSource:
    """Byte source over a seekable binary stream.

    Every read seeks to the requested offset and, once done, puts the stream
    back where the caller left it.  Hashing therefore does not rewind the
    stream to offset 0: the caller's position is preserved, and later reads
    for transmission address absolute offsets, so they see the same bytes
    either way.
    """

    def __init__(self, stream: IO[bytes]) -> None:
        seekable = getattr(stream, "seekable", None)
        if not callable(seekable) or not seekable():
            raise ValidationError("Upload streams must be seekable so they can be re-read")
        self._stream = stream
        self._lock = threading.Lock()

    def size(self) -> int:
        with self._lock:
            position = self._stream.tell()
            try:
                return self._stream.seek(0, io.SEEK_END)
            finally:
                self._stream.seek(position)

    def read_range(self, offset: int, length: int) -> bytes:
        with self._lock:
            position = self._stream.tell()
            try:
                self._stream.seek(offset)
                return _read_exactly(self._stream, length)
            finally:
                self._stream.seek(position)

    def iter_chunks(self, chunk_size: int = CHUNK_SIZE) -> Iterator[bytes]:
        offset = 0
        while True:
            chunk = self.read_range(offset, chunk_size)
            if not chunk:
                return
            offset += len(chunk)
            yield chunk


class FileByteSource:
    """Byte source reading a file on disk with independent positioned reads."""

    def __init__(self, path: Union[str, Path]) -> None:
        self.path = Path(path)
        try:
            self._handle = self.path.open("rb")
        except OSError as exc:
            raise ValidationError(f"Cannot open upload source {self.path}: {exc}") from exc
        self._fallback = None if hasattr(os, "pread") else StreamByteSource(self._handle)

    def size(self) -> int:
        return os.fstat(self._handle.fileno()).st_size

    def read_range(self, offset: int, length: int) -> bytes:
        if self._fallback is not None:
            return self._fallback.read_range(offset, length)
        parts = []
        remaining = length
        while remaining > 0:
            chunk = os.pread(self._handle.fileno(), remaining, offset)
            if not chunk:
                break
            parts.append(chunk)
            offset += len(chunk)
            remaining -= len(chunk)
        return b"".join(parts)

    def iter_chunks(self, chunk_size: int = CHUNK_SIZE) -> Iterator[bytes]:
        offset = 0
        while True:
            chunk = self.read_range(offset, chunk_size)
            if not chunk:
                return
            offset += len(chunk)
            yield chunk

    def close(self) -> None:
        self._handle.close()

    def __enter__(self) -> "FileByteSource":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


def _read_exactly(stream: IO[bytes], length: int) -> bytes:
    parts = []
    remaining = length
    while remaining > 0:
        chunk = stream.read(remaining)
        if not chunk:
            break
        parts.append(chunk)
        remaining -= len(chunk)
    return b"".join(parts)


def as_byte_source(payload: Payload) -> ByteSource:
    """Wrap ``payload`` in the matching :class:`ByteSource` implementation.

    ``str`` payloads are encoded as UTF-8; ``Path`` payloads are opened for
    reading.  Anything else must be a seekable binary stream.
    """

    if isinstance(payload, (MemoryByteSource, StreamByteSource, FileByteSource)):
        return payload
    if isinstance(payload, (bytes, bytearray, memoryview)):
        return MemoryByteSource(payload)
    if isinstance(payload, str):
        return MemoryByteSource(payload.encode("utf-8"))
    if isinstance(payload, Path):
        return FileByteSource(payload)
    if hasattr(payload, "read") and hasattr(payload, "seek"):
        return StreamByteSource(payload)  # type: ignore[arg-type]
    if isinstance(payload, ByteSource):
        return payload
    raise ValidationError(f"Unsupported upload body type: {type(payload).__name__}")


def sha1_hex(data: bytes) -> str:
    return hashlib.sha1(data).hexdigest()


def digest_and_size(source: Payload) -> Tuple[str, int]:
    """Stream the whole source through SHA-1.

    Returns:
        ``(hex_digest, byte_length)``.  Stream-backed sources end up at the
        position they started from, ready to be read again.
    """

    byte_source = as_byte_source(source)
    hasher = hashlib.sha1()
    total = 0
    for chunk in byte_source.iter_chunks():
        hasher.update(chunk)
        total += len(chunk)
    return hasher.hexdigest(), total


def digest_range(source: Payload, offset: int, length: int) -> Tuple[str, bytes]:
    """Read ``length`` bytes at ``offset`` and return ``(hex_digest, data)``.

    A source shorter than requested yields the bytes that are available;
    callers compare ``len(data)`` against what they expected.
    """

    if offset < 0 or length < 0:
        raise ValidationError("offset and length must be non-negative")
    data = as_byte_source(source).read_range(offset, length)
    return sha1_hex(data), data
