"""
Length-prefixed binary record codec shared by the knowledge base and chat
history files.

Both files start with a 16-byte header (magic, version, record count,
reserved) followed by records, each prefixed with its byte length. All
integers are unsigned 32-bit big-endian; floats are big-endian float64.
"""

import os
import struct
import tempfile
from pathlib import Path
from typing import Iterator, List, Sequence, Tuple, Union

import numpy as np

from .exceptions import MalformedPersistedDataError

HEADER = struct.Struct(">IIII")
UINT32 = struct.Struct(">I")
FLOAT64 = np.dtype(">f8")


def pack_header(magic: int, version: int, count: int) -> bytes:
    return HEADER.pack(magic, version, count, 0)


def unpack_header(data: bytes, magic: int, version: int) -> int:
    """
    Validate a file header and return its record count.

    Raises:
        MalformedPersistedDataError: On short data, wrong magic or version
    """
    if len(data) < HEADER.size:
        raise MalformedPersistedDataError(f"File too small for header: {len(data)} bytes")
    file_magic, file_version, count, _reserved = HEADER.unpack_from(data, 0)
    if file_magic != magic:
        raise MalformedPersistedDataError(f"Bad magic number: 0x{file_magic:08X}")
    if file_version != version:
        raise MalformedPersistedDataError(f"Unsupported format version: {file_version}")
    return count


class RecordWriter:
    """Builds the body of one record."""

    def __init__(self):
        self._parts: List[bytes] = []

    def write_text(self, value: str) -> "RecordWriter":
        encoded = value.encode("utf-8")
        self._parts.append(UINT32.pack(len(encoded)))
        self._parts.append(encoded)
        return self

    def write_floats(self, values: Sequence[float]) -> "RecordWriter":
        array = np.asarray(values, dtype=np.float64)
        self._parts.append(UINT32.pack(array.shape[0]))
        self._parts.append(array.astype(FLOAT64).tobytes())
        return self

    def to_bytes(self) -> bytes:
        """Record body prefixed with its length."""
        body = b"".join(self._parts)
        return UINT32.pack(len(body)) + body


class RecordReader:
    """Sequential reader over one record body."""

    def __init__(self, body: bytes):
        self._body = body
        self._offset = 0

    def _take(self, size: int) -> bytes:
        end = self._offset + size
        if end > len(self._body):
            raise MalformedPersistedDataError(
                f"Record truncated: need {size} bytes at offset {self._offset}"
            )
        chunk = self._body[self._offset:end]
        self._offset = end
        return chunk

    def read_uint32(self) -> int:
        return UINT32.unpack(self._take(UINT32.size))[0]

    def read_text(self) -> str:
        length = self.read_uint32()
        try:
            return self._take(length).decode("utf-8")
        except UnicodeDecodeError as e:
            raise MalformedPersistedDataError(f"Invalid UTF-8 in record: {e}") from e

    def read_floats(self) -> np.ndarray:
        count = self.read_uint32()
        raw = self._take(count * FLOAT64.itemsize)
        return np.frombuffer(raw, dtype=FLOAT64).astype(np.float64)


def iter_records(data: bytes, count: int) -> Iterator[Tuple[int, Union[bytes, MalformedPersistedDataError]]]:
    """
    Yield ``(index, body)`` for each length-prefixed record after the header.

    A record whose declared length runs past the end of the data is yielded
    as an error and ends the iteration, since nothing after it can be framed.
    """
    offset = HEADER.size
    for index in range(count):
        if offset + UINT32.size > len(data):
            yield index, MalformedPersistedDataError("Missing record length", record_index=index)
            return
        (length,) = UINT32.unpack_from(data, offset)
        offset += UINT32.size
        if offset + length > len(data):
            yield index, MalformedPersistedDataError(
                f"Record length {length} exceeds remaining data", record_index=index
            )
            return
        yield index, data[offset:offset + length]
        offset += length


def write_atomic(path: Path, payload: bytes) -> None:
    """Replace ``path`` with ``payload`` through a temporary sibling file."""
    path = Path(path)
    if not path.parent.exists():
        path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=str(path.parent))
    try:
        with os.fdopen(fd, "wb") as handle:
            handle.write(payload)
        os.replace(tmp_name, path)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise
