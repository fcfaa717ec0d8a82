"""
Zero-copy view over a PE image laid out as it is in memory.

In a mapped image every RVA is a plain offset from the image base, so a
View resolves addresses by slicing its buffer. Nothing is copied: segments
are memoryview slices, and a View over a writable buffer hands out
writable slices.

Usage:
    view = View(mapped_bytes)
    for reloc in view.relocations():
        ...

    # Live memory, e.g. a module loaded in this process
    view = View.from_base(module_handle)
"""

import ctypes
import logging
import struct

from .base import PeReadable
from .errors import MalformedImageError, Reason
from .nt import NtHeaders, NtKind
from .parse import validate_headers
from .stream import SegmentReader, byte_view
from .types import (
    Buffer,
    DataDirectory,
    DosHeader,
    FileHeader,
    SectionHeader,
    DOS_HEADER_SIZE,
    NT_PREFIX_SIZE,
    NT_SIGNATURE_SIZE,
    checked_add,
)

logger = logging.getLogger(__name__)


def _memory_at(address: int, size: int) -> memoryview:
    """Borrow ``size`` bytes of this process's memory at ``address``."""
    if address == 0:
        raise ValueError("Cannot map a view at address 0")
    return byte_view((ctypes.c_ubyte * size).from_address(address))


class View(PeReadable):
    """A validated PE image whose RVAs are offsets into a buffer.

    The buffer is either owned (bytes, bytearray) or borrowed (a memoryview,
    or live memory through ``from_base``). For borrowed memory the caller
    keeps the region valid and unmodified for as long as the View and any
    slice taken from it are in use.

    Attributes:
        BOOTSTRAP_SIZE: Bytes read from live memory to find SizeOfImage
    """

    BOOTSTRAP_SIZE = 0x1000

    def __init__(self, data: Buffer):
        """Validate ``data`` as a PE image and wrap it.

        Raises:
            MalformedImageError: If the header region is not valid
        """
        validate_headers(SegmentReader(data))
        self._attach(data)

    def _attach(self, data: Buffer) -> None:
        self._buffer = data  # Keeps the owner alive
        self._data = byte_view(data)

    @classmethod
    def unchecked(cls, data: Buffer) -> "View":
        """Wrap ``data`` without validating it.

        Accessors still bounds-check every read, so a bad image fails with
        MalformedImageError instead of reading past the buffer.
        """
        view = cls.__new__(cls)
        view._attach(data)
        return view

    @classmethod
    def from_base(cls, address: int, bootstrap_size: int | None = None) -> "View":
        """Validate and wrap an image mapped at ``address`` in this process.

        The first ``bootstrap_size`` bytes must hold the whole header region;
        once they validate, the view is re-wrapped to SizeOfImage bytes.

        Raises:
            MalformedImageError: If the headers are not valid
        """
        size = bootstrap_size or cls.BOOTSTRAP_SIZE
        bootstrap = _memory_at(address, size)
        validate_headers(SegmentReader(bootstrap))
        size_of_image = cls.unchecked(bootstrap).nt_headers.size_of_image
        logger.debug("Mapped view at 0x%x: SizeOfImage=0x%x", address, size_of_image)
        return cls.unchecked(_memory_at(address, size_of_image))

    @classmethod
    def from_base_unchecked(cls, address: int) -> "View":
        """Wrap an image mapped at ``address`` without validating it.

        The caller asserts the region holds a valid image of SizeOfImage
        bytes that stays mapped for the lifetime of the view.
        """
        bootstrap = cls.unchecked(_memory_at(address, cls.BOOTSTRAP_SIZE))
        size_of_image = bootstrap.nt_headers.size_of_image
        return cls.unchecked(_memory_at(address, size_of_image))

    @property
    def data(self) -> memoryview:
        """The whole image buffer."""
        return self._data

    @property
    def writable(self) -> bool:
        return not self._data.readonly

    def __len__(self) -> int:
        return len(self._data)

    # =========================================================================
    # Header accessors
    # =========================================================================

    @property
    def dos_header(self) -> DosHeader:
        return DosHeader.from_bytes(self._data)

    @property
    def dos_stub(self) -> memoryview:
        lfanew = self.dos_header.e_lfanew
        if not DOS_HEADER_SIZE <= lfanew <= len(self._data):
            raise MalformedImageError(Reason.BAD_PE_OFFSET, f"e_lfanew 0x{lfanew:x}")
        return self._data[DOS_HEADER_SIZE:lfanew]

    @property
    def _nt_offset(self) -> int:
        return self.dos_header.e_lfanew

    @property
    def nt_headers(self) -> NtHeaders:
        offset = self._nt_offset
        if len(self._data) < offset + NT_PREFIX_SIZE:
            raise MalformedImageError(Reason.TRUNCATED, "reading NT headers")

        (signature,) = struct.unpack_from("<I", self._data, offset)
        file_header = FileHeader.from_bytes(self._data, offset + NT_SIGNATURE_SIZE)
        magic_offset = offset + NT_PREFIX_SIZE - 2
        (magic,) = struct.unpack_from("<H", self._data, magic_offset)
        header_type = NtKind.from_magic(magic).optional_header_type

        return NtHeaders(
            signature=signature,
            file_header=file_header,
            optional_header=header_type.from_bytes(self._data, magic_offset),
        )

    @property
    def data_directories(self) -> list[DataDirectory]:
        nt = self.nt_headers
        start = self._nt_offset + NT_PREFIX_SIZE - 2 + nt.kind.size_of_optional_header
        return [
            DataDirectory.from_bytes(self._data, start + i * DataDirectory.SIZE)
            for i in range(nt.number_of_rva_and_sizes)
        ]

    @property
    def section_headers(self) -> list[SectionHeader]:
        nt = self.nt_headers
        start = self._nt_offset + NT_PREFIX_SIZE - 2 + nt.file_header.SizeOfOptionalHeader
        return [
            SectionHeader.from_bytes(self._data, start + i * SectionHeader.SIZE)
            for i in range(nt.number_of_sections)
        ]

    # =========================================================================
    # Section access
    # =========================================================================

    def section_segment(self, section: SectionHeader, offset: int, size: int) -> memoryview:
        start = checked_add(section.VirtualAddress, offset)
        end = checked_add(start, size)
        if end > len(self._data):
            raise MalformedImageError(
                Reason.SEGMENT_OUT_OF_BOUNDS,
                f"0x{start:x}+0x{size:x} past image end 0x{len(self._data):x}",
            )
        return self._data[start:end]
