"""
Sequential PE header reader and validator.

The reader consumes a forward-only byte source and checks every layout
invariant in a fixed order, each step relying on the ones before it:

1. DOS header and its magic
2. DOS stub, whose length comes from e_lfanew
3. NT signature, file header and the optional header magic, then the rest
   of the width-selected optional header
4. NumberOfRvaAndSizes data directories
5. SizeOfOptionalHeader against what was actually read, skipping padding
6. Section headers, folding the largest virtual extent
7. That extent against SizeOfImage
8. SizeOfHeaders against everything read so far, skipping padding

After a successful call the source is positioned exactly at SizeOfHeaders.
"""

import logging
import struct
from dataclasses import dataclass

from .errors import MalformedImageError, Reason
from .nt import NtHeaders, NtKind
from .stream import ByteSource, read_exact, read_record, skip_exact
from .types import (
    DosHeader,
    FileHeader,
    DataDirectory,
    SectionHeader,
    DOS_MAGIC,
    NT_SIGNATURE,
    DOS_HEADER_SIZE,
    NT_PREFIX_SIZE,
    NT_SIGNATURE_SIZE,
    DATA_DIRECTORY_SIZE,
    checked_add,
)

logger = logging.getLogger(__name__)


@dataclass
class PeHeaderBundle:
    """Owned copy of everything in the header region of a PE file."""

    dos_header: DosHeader
    dos_stub: bytes
    nt_headers: NtHeaders
    data_directories: list[DataDirectory]
    section_headers: list[SectionHeader]

    @property
    def kind(self) -> NtKind:
        return self.nt_headers.kind


def validate_headers(stream: ByteSource) -> None:
    """Validate the header region of a PE image, discarding what was read.

    Args:
        stream: Byte source positioned at the start of the image

    Raises:
        MalformedImageError: If any header invariant does not hold
    """
    _parse_headers(stream, keep=False)


def read_headers(stream: ByteSource) -> PeHeaderBundle:
    """Validate the header region of a PE image and return it.

    Args:
        stream: Byte source positioned at the start of the image

    Returns:
        PeHeaderBundle with DOS header, stub, NT headers, data directories
        and section headers

    Raises:
        MalformedImageError: If any header invariant does not hold
    """
    return _parse_headers(stream, keep=True)


def _parse_headers(stream: ByteSource, keep: bool) -> PeHeaderBundle:
    """Run the ordered header checks.

    With ``keep=False`` the stub, directories and sections are skipped
    rather than collected, and the returned bundle holds them empty.
    """
    dos = read_record(stream, DosHeader, "reading DOS header")
    if dos.e_magic != DOS_MAGIC:
        raise MalformedImageError(Reason.BAD_DOS_SIGNATURE, f"0x{dos.e_magic:04X}")

    stub_len = dos.e_lfanew - DOS_HEADER_SIZE
    if stub_len < 0:
        raise MalformedImageError(
            Reason.BAD_PE_OFFSET, f"e_lfanew 0x{dos.e_lfanew:x} inside DOS header"
        )

    stub = b""
    if keep:
        stub = bytes(read_exact(stream, stub_len, "PE header offset past EOF"))
    else:
        skip_exact(stream, stub_len, "PE header offset past EOF")

    nt = _read_nt_headers(stream)
    opt_size = nt.kind.size_of_optional_header

    directories = []
    for _ in range(nt.number_of_rva_and_sizes):
        directory = read_record(stream, DataDirectory, "reading data directories")
        if keep:
            directories.append(directory)

    read_len = opt_size + nt.number_of_rva_and_sizes * DATA_DIRECTORY_SIZE
    trailing = nt.file_header.SizeOfOptionalHeader - read_len
    if trailing < 0:
        raise MalformedImageError(
            Reason.BAD_SIZE_OF_OPTIONAL_HEADER,
            f"declared {nt.file_header.SizeOfOptionalHeader}, need {read_len}",
        )
    skip_exact(stream, trailing, "trailing data directory EOF")

    sections = []
    image_size = nt.size_of_headers
    for _ in range(nt.number_of_sections):
        section = read_record(stream, SectionHeader, "reading section headers")
        end = checked_add(
            section.VirtualAddress, section.VirtualSize, Reason.BAD_SECTION_SIZE
        )
        image_size = max(image_size, end)
        if keep:
            sections.append(section)

    if image_size > nt.size_of_image:
        raise MalformedImageError(
            Reason.BAD_SIZE_OF_IMAGE,
            f"sections reach 0x{image_size:x}, SizeOfImage is 0x{nt.size_of_image:x}",
        )

    read_len = nt.length + dos.e_lfanew
    trailing = nt.size_of_headers - read_len
    if trailing < 0:
        raise MalformedImageError(
            Reason.BAD_SIZE_OF_HEADERS,
            f"headers end at 0x{read_len:x}, SizeOfHeaders is 0x{nt.size_of_headers:x}",
        )
    skip_exact(stream, trailing, "trailing header data EOF")

    logger.debug(
        "Validated %s headers: %d directories, %d sections, SizeOfImage=0x%x",
        nt.kind.name,
        nt.number_of_rva_and_sizes,
        nt.number_of_sections,
        nt.size_of_image,
    )

    return PeHeaderBundle(
        dos_header=dos,
        dos_stub=stub,
        nt_headers=nt,
        data_directories=directories,
        section_headers=sections,
    )


def _read_nt_headers(stream: ByteSource) -> NtHeaders:
    """Read signature, file header and the width-selected optional header."""
    prefix = bytes(read_exact(stream, NT_PREFIX_SIZE, "reading NT headers"))

    (signature,) = struct.unpack_from("<I", prefix, 0)
    if signature != NT_SIGNATURE:
        raise MalformedImageError(Reason.BAD_NT_SIGNATURE, f"0x{signature:08X}")

    file_header = FileHeader.from_bytes(prefix, NT_SIGNATURE_SIZE)
    magic_offset = NT_PREFIX_SIZE - 2
    (magic,) = struct.unpack_from("<H", prefix, magic_offset)
    kind = NtKind.from_magic(magic)

    header_type = kind.optional_header_type
    rest = read_exact(stream, header_type.SIZE - 2, "reading optional header")
    optional_header = header_type.from_bytes(prefix[magic_offset:] + bytes(rest))

    return NtHeaders(
        signature=signature,
        file_header=file_header,
        optional_header=optional_header,
    )
