"""
Byte-source helpers shared by the header reader and the decoders.

A byte source is anything with a ``read(n)`` method: an open file, an
``io.BytesIO``, or a SegmentReader over a slice of a mapped image. Short
reads are always failures here; nothing is silently padded.
"""

from typing import Protocol, TypeVar

from .errors import MalformedImageError, Reason
from .types import Buffer

R = TypeVar("R")

SKIP_CHUNK_SIZE = 0x10000


class ByteSource(Protocol):
    def read(self, size: int = -1) -> Buffer | None: ...


BYTE_FORMATS = ("B", "<B", "@B")  # ctypes arrays report "<B"


def byte_view(data: Buffer) -> memoryview:
    """Flat unsigned-byte memoryview over any buffer, without copying."""
    view = memoryview(data)
    if view.format not in BYTE_FORMATS or view.ndim != 1:
        view = view.cast("B")
    return view


class SegmentReader:
    """Forward-only reader over a buffer that hands out slices, not copies.

    Reads return memoryview slices of the underlying buffer, so decoding a
    directory of a mapped image never duplicates its bytes.
    """

    def __init__(self, data: Buffer):
        self._data = byte_view(data)
        self._pos = 0

    def read(self, size: int = -1) -> memoryview:
        if size is None or size < 0:
            end = len(self._data)
        else:
            end = min(self._pos + size, len(self._data))
        chunk = self._data[self._pos : end]
        self._pos = end
        return chunk

    def tell(self) -> int:
        return self._pos

    @property
    def remaining(self) -> int:
        return len(self._data) - self._pos


def read_exact(stream: ByteSource, size: int, detail: str = "") -> Buffer:
    """Read exactly ``size`` bytes or raise TRUNCATED."""
    data = stream.read(size)
    if data is None:
        data = b""
    if len(data) == size:
        return data

    buf = bytearray(data)
    while len(buf) < size:
        chunk = stream.read(size - len(buf))
        if not chunk:
            raise MalformedImageError(
                Reason.TRUNCATED, detail or f"wanted {size} bytes, got {len(buf)}"
            )
        buf += chunk
    return bytes(buf)


def read_record(stream: ByteSource, record_type: type[R], detail: str = "") -> R:
    """Read one fixed-size record, failing on a short read."""
    data = read_exact(stream, record_type.SIZE, detail or f"reading {record_type.__name__}")
    return record_type.from_bytes(data)


def read_record_or_none(stream: ByteSource, record_type: type[R]) -> R | None:
    """Read one record, or return None if the source is already exhausted.

    A source that ends part-way through the record is still TRUNCATED.
    """
    data = stream.read(record_type.SIZE)
    if not data:
        return None
    if len(data) < record_type.SIZE:
        data = bytes(data) + read_exact(
            stream,
            record_type.SIZE - len(data),
            f"partial {record_type.__name__}",
        )
    return record_type.from_bytes(data)


def skip_exact(stream: ByteSource, size: int, detail: str = "") -> None:
    """Consume and discard exactly ``size`` bytes or raise TRUNCATED."""
    remaining = size
    while remaining > 0:
        chunk = stream.read(min(remaining, SKIP_CHUNK_SIZE))
        if not chunk:
            raise MalformedImageError(
                Reason.TRUNCATED, detail or f"{remaining} of {size} bytes missing"
            )
        remaining -= len(chunk)
