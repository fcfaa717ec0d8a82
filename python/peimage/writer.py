"""
Serialize a PE image back into file layout.

The header region is emitted record by record from the decoded structures,
so a round trip through ``write_pe`` normalizes header padding to zeros.
Section payloads follow, placed at their virtual addresses (a memory-style
layout) or, with ``raw=True``, at their PointerToRawData (a file-style
layout).
"""

import logging
from typing import BinaryIO

from .base import PeReadable
from .errors import MalformedImageError, Reason
from .types import Buffer, DATA_DIRECTORY_SIZE, SectionHeader

logger = logging.getLogger(__name__)

ZERO_CHUNK_SIZE = 0x10000


class _CountingSink:
    """Sink wrapper that tracks the output position and rejects short writes."""

    def __init__(self, sink: BinaryIO):
        self._sink = sink
        self.position = 0

    def write(self, data: Buffer) -> None:
        size = len(data)
        if size == 0:
            return
        written = self._sink.write(data)
        if written is not None and written < size:
            raise MalformedImageError(
                Reason.SHORT_WRITE,
                f"{written} of {size} bytes at offset 0x{self.position:x}",
            )
        self.position += size

    def write_zeros(self, count: int) -> None:
        while count > 0:
            chunk = min(count, ZERO_CHUNK_SIZE)
            self.write(bytes(chunk))
            count -= chunk


def _placement(section: SectionHeader, raw: bool) -> tuple[int, int]:
    if raw:
        return section.PointerToRawData, section.SizeOfRawData
    return section.VirtualAddress, section.VirtualSize


def write_pe(image: PeReadable, sink: BinaryIO, raw: bool = False) -> int:
    """Write ``image`` to ``sink`` as a PE file.

    Args:
        image: Source of headers and section payloads (PeFile or View)
        sink: Binary output with a ``write`` method
        raw: Place sections by PointerToRawData/SizeOfRawData instead of
            VirtualAddress/VirtualSize

    Returns:
        Number of bytes written

    Raises:
        MalformedImageError: If a section starts before the end of what was
            already written, its payload is short, or the sink stops
            accepting data
    """
    out = _CountingSink(sink)
    nt = image.nt_headers
    directories = image.data_directories
    sections = image.section_headers

    out.write(image.dos_header.to_bytes())
    out.write(image.dos_stub)
    out.write(nt.to_bytes())
    for directory in directories:
        out.write(directory.to_bytes())

    used = nt.kind.size_of_optional_header + len(directories) * DATA_DIRECTORY_SIZE
    out.write_zeros(nt.file_header.SizeOfOptionalHeader - used)

    for section in sections:
        out.write(section.to_bytes())
    logger.debug("Wrote %d bytes of headers", out.position)

    ordered = sorted(sections, key=lambda s: _placement(s, raw)[0])
    for section in ordered:
        offset, size = _placement(section, raw)
        if offset == 0 and size == 0:
            continue

        gap = offset - out.position
        if gap < 0:
            raise MalformedImageError(
                Reason.BAD_SECTION_OFFSET,
                f"{section.name_str} at 0x{offset:x}, output already at 0x{out.position:x}",
            )
        out.write_zeros(gap)

        try:
            payload = image.section_segment(section, 0, size)
        except MalformedImageError as e:
            raise MalformedImageError(
                Reason.SHORT_SECTION_PAYLOAD, f"{section.name_str}: {e}"
            ) from e
        if len(payload) < size:
            raise MalformedImageError(
                Reason.SHORT_SECTION_PAYLOAD,
                f"{section.name_str}: got {len(payload)} of {size} bytes",
            )

        logger.debug(
            "Placing %s at 0x%x (0x%x bytes)", section.name_str, offset, size
        )
        out.write(payload)

    return out.position
