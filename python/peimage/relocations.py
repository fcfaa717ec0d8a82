"""
Streaming decoder for the base relocation directory.

The directory is a run of blocks, each an 8-byte header (page RVA, block
size) followed by 2-byte entries. A block with page RVA zero ends the
table. A source that simply runs out also ends it cleanly; images in the
wild are not always zero-terminated.
"""

import logging

from .errors import MalformedImageError, Reason
from .nt import Relocation, RelocationKind
from .stream import ByteSource, read_exact, read_record_or_none
from .types import BaseRelocationBlock, BaseRelocationEntry, checked_add

logger = logging.getLogger(__name__)


class RelocationIterator:
    """Single-pass iterator over the relocations in a relocation directory.

    Once the table ends, or once decoding fails, the iterator is exhausted
    for good: later ``next()`` calls raise StopIteration instead of resuming
    past corrupt data.

    Usage:
        for reloc in RelocationIterator(stream):
            print(reloc.kind.name, hex(reloc.address))
    """

    def __init__(self, stream: ByteSource):
        self._stream = stream
        self._base = 0  # Page RVA of the current block
        self._remaining = 0  # Entry bytes left in the current block
        self._exhausted = False

    def __iter__(self) -> "RelocationIterator":
        return self

    def __next__(self) -> Relocation:
        if self._exhausted:
            raise StopIteration
        try:
            reloc = self._try_next()
        except MalformedImageError:
            self._exhausted = True
            raise
        if reloc is None:
            self._exhausted = True
            raise StopIteration
        return reloc

    @property
    def exhausted(self) -> bool:
        return self._exhausted

    def _try_next(self) -> Relocation | None:
        while True:
            if self._remaining > 0:
                entry = self._read_entry()
                if entry is not None:
                    kind = RelocationKind.from_kind(entry.kind)
                    address = checked_add(self._base, entry.offset)
                    return Relocation(kind=kind, address=address)

            block = read_record_or_none(self._stream, BaseRelocationBlock)
            if block is None:
                logger.debug("Relocation table ended without a zero block")
                return None
            if block.VirtualAddress == 0:
                return None

            remaining = block.SizeOfBlock - BaseRelocationBlock.SIZE
            if remaining < 0 or remaining % BaseRelocationEntry.SIZE:
                raise MalformedImageError(
                    Reason.BAD_RELOCATION_BLOCK_SIZE,
                    f"block at 0x{block.VirtualAddress:x} has size {block.SizeOfBlock}",
                )
            self._base = block.VirtualAddress
            self._remaining = remaining

    def _read_entry(self) -> BaseRelocationEntry | None:
        """Read one entry from the current block.

        Returns None if the source ran out where the block said more
        entries would be; the caller then looks for a next block, which
        ends the table.
        """
        data = self._stream.read(BaseRelocationEntry.SIZE)
        if not data:
            self._remaining = 0
            return None
        if len(data) < BaseRelocationEntry.SIZE:
            data = bytes(data) + read_exact(
                self._stream,
                BaseRelocationEntry.SIZE - len(data),
                f"partial relocation entry in block at 0x{self._base:x}",
            )
        self._remaining -= BaseRelocationEntry.SIZE
        return BaseRelocationEntry.from_bytes(data)
