"""
Streaming decoders for the import directory and its thunk tables.

The import directory is an array of ImportDescriptors, one per imported
DLL, terminated by a descriptor whose Name is zero. Each descriptor points
at a zero-terminated table of thunks; a thunk is either an ordinal or the
RVA of an ImportByName (hint + inline name) record.
"""

import logging
from typing import TYPE_CHECKING

from .errors import MalformedImageError
from .nt import ImportSymbol, NamedImport, NtKind, OrdinalImport
from .stream import ByteSource, read_record, read_record_or_none
from .types import ImportByName, ImportDescriptor, ThunkData32, ThunkData64

if TYPE_CHECKING:
    from .base import PeReadable

logger = logging.getLogger(__name__)


class ImportIterator:
    """Single-pass iterator over the descriptors of an import directory.

    Stops at the first descriptor with a zero Name. A source that runs out
    on a record boundary also ends the sequence; one that runs out inside a
    record fails with TRUNCATED. After the end or the first failure the
    iterator stays exhausted.
    """

    def __init__(self, stream: ByteSource):
        self._stream = stream
        self._exhausted = False

    def __iter__(self) -> "ImportIterator":
        return self

    def __next__(self) -> ImportDescriptor:
        if self._exhausted:
            raise StopIteration
        try:
            descriptor = read_record_or_none(self._stream, ImportDescriptor)
        except MalformedImageError:
            self._exhausted = True
            raise
        if descriptor is None:
            logger.debug("Import directory ended without a null descriptor")
            self._exhausted = True
            raise StopIteration
        if descriptor.Name == 0:
            self._exhausted = True
            raise StopIteration
        return descriptor

    @property
    def exhausted(self) -> bool:
        return self._exhausted


class ImportTableIterator:
    """Single-pass iterator over the symbols of one import lookup table.

    Thunks are read at the image's native width; 32-bit thunks are widened
    so both widths decode through the same path. Named imports are resolved
    through ``image``, which must be the image the table belongs to.

    Usage:
        for symbol in image.import_table(descriptor):
            if isinstance(symbol, NamedImport):
                print(symbol.name.decode())
    """

    def __init__(self, stream: ByteSource, image: "PeReadable"):
        self._stream = stream
        self._image = image
        self._exhausted = False

    def __iter__(self) -> "ImportTableIterator":
        return self

    def __next__(self) -> ImportSymbol:
        if self._exhausted:
            raise StopIteration
        try:
            symbol = self._try_next()
        except MalformedImageError:
            self._exhausted = True
            raise
        if symbol is None:
            self._exhausted = True
            raise StopIteration
        return symbol

    @property
    def exhausted(self) -> bool:
        return self._exhausted

    def _read_thunk(self) -> ThunkData64:
        if self._image.kind is NtKind.WIN32:
            return read_record(self._stream, ThunkData32, "reading import thunk").widen()
        return read_record(self._stream, ThunkData64, "reading import thunk")

    def _try_next(self) -> ImportSymbol | None:
        thunk = self._read_thunk()
        if thunk.Data == 0:
            return None
        if thunk.is_ordinal:
            return OrdinalImport(ordinal=thunk.ordinal)

        rva = thunk.address_of_data
        hint = ImportByName.from_bytes(self._image.segment(rva, ImportByName.SIZE))
        name = self._image.read_cstring(rva + ImportByName.SIZE)
        return NamedImport(ordinal_hint=hint.Hint, name=name)
