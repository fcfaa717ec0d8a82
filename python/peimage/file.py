"""
PE image backed by a seekable binary stream, typically a file on disk.

The header region is read and validated once, up front, into an owned
PeHeaderBundle. Section payloads stay in the stream and are read on demand
from each section's raw data, so decoding the relocations of a large DLL
only touches the pages that hold them.
"""

import io
import logging
from pathlib import Path
from typing import BinaryIO

from .base import PeReadable
from .nt import NtHeaders
from .parse import PeHeaderBundle, read_headers
from .stream import read_exact
from .types import Buffer, DataDirectory, DosHeader, SectionHeader, checked_add

logger = logging.getLogger(__name__)


class PeFile(PeReadable):
    """A validated PE file read from a seekable stream.

    Usage:
        with PeFile.open("kernel32.dll") as pe:
            for descriptor in pe.imports():
                print(pe.import_name(descriptor))
    """

    def __init__(self, stream: BinaryIO, owns_stream: bool = False):
        """Read and validate the headers of the image at the stream's start.

        Args:
            stream: Seekable binary stream positioned at the image start
            owns_stream: Close the stream when this object is closed

        Raises:
            MalformedImageError: If the header region is not valid
        """
        self._stream = stream
        self._owns_stream = owns_stream
        self._headers = read_headers(stream)

    @classmethod
    def open(cls, path: str | Path) -> "PeFile":
        """Open and validate a PE file by path."""
        stream = open(path, "rb")
        try:
            return cls(stream, owns_stream=True)
        except BaseException:
            stream.close()
            raise

    @classmethod
    def from_bytes(cls, data: Buffer) -> "PeFile":
        """Validate an in-memory copy of a PE file."""
        return cls(io.BytesIO(data), owns_stream=True)

    def close(self) -> None:
        if self._owns_stream:
            self._stream.close()

    def __enter__(self) -> "PeFile":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    @property
    def headers(self) -> PeHeaderBundle:
        return self._headers

    @property
    def dos_header(self) -> DosHeader:
        return self._headers.dos_header

    @property
    def dos_stub(self) -> bytes:
        return self._headers.dos_stub

    @property
    def nt_headers(self) -> NtHeaders:
        return self._headers.nt_headers

    @property
    def data_directories(self) -> list[DataDirectory]:
        return self._headers.data_directories

    @property
    def section_headers(self) -> list[SectionHeader]:
        return self._headers.section_headers

    def section_segment(self, section: SectionHeader, offset: int, size: int) -> bytes:
        """Read part of a section's payload from the file.

        Bytes past the section's raw data (its uninitialized tail) read as
        zero, the way the loader maps them.

        Raises:
            MalformedImageError: If the file ends inside the raw data
        """
        available = max(0, min(size, section.SizeOfRawData - offset))
        data = b""
        if available:
            position = checked_add(section.PointerToRawData, offset)
            self._stream.seek(position)
            data = bytes(
                read_exact(
                    self._stream,
                    available,
                    f"{section.name_str} raw data at 0x{position:x}",
                )
            )
        if available < size:
            logger.debug(
                "Zero-filling %d bytes of %s past its raw data",
                size - available,
                section.name_str,
            )
        return data + bytes(size - available)
