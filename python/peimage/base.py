"""
Capability interfaces shared by file-backed and memory-backed images.

PeHeaders exposes the parsed header bundle; PeReadable adds access to
section contents by RVA. The relocation and import decoders, the writer
and the verifier only depend on these two interfaces, so they work the
same whether the image came from disk (PeFile) or memory (View).
"""

from abc import ABC, abstractmethod

from .errors import MalformedImageError, Reason
from .nt import DirectoryEntry, NtHeaders, NtKind
from .stream import SegmentReader
from .types import (
    Buffer,
    DataDirectory,
    DosHeader,
    ImportDescriptor,
    SectionHeader,
    checked_add,
)
from .imports import ImportIterator, ImportTableIterator
from .relocations import RelocationIterator

CSTRING_SCAN_CHUNK = 256


class PeHeaders(ABC):
    """Access to the header region of a validated PE image."""

    @property
    @abstractmethod
    def dos_header(self) -> DosHeader: ...

    @property
    @abstractmethod
    def dos_stub(self) -> Buffer: ...

    @property
    @abstractmethod
    def nt_headers(self) -> NtHeaders: ...

    @property
    @abstractmethod
    def data_directories(self) -> list[DataDirectory]: ...

    @property
    @abstractmethod
    def section_headers(self) -> list[SectionHeader]: ...

    @property
    def kind(self) -> NtKind:
        return self.nt_headers.kind

    def directory_header(self, index: DirectoryEntry | int) -> DataDirectory | None:
        """Get a data directory by index, or None if missing or empty."""
        directories = self.data_directories
        if 0 <= index < len(directories) and directories[index].is_present:
            return directories[index]
        return None

    def find_section(self, rva: int) -> SectionHeader | None:
        """Find the section whose virtual extent contains ``rva``.

        Overlapping sections are tolerated; the one with the highest
        VirtualAddress wins.
        """
        best = None
        for section in self.section_headers:
            if section.contains_rva(rva):
                if best is None or section.VirtualAddress >= best.VirtualAddress:
                    best = section
        return best

    def find_section_by_name(self, name: str) -> SectionHeader | None:
        """Find the first section with the given (8-char max) name."""
        search_name = name[:8]
        for section in self.section_headers:
            if section.name_str == search_name:
                return section
        return None


class PeReadable(PeHeaders):
    """A PE image whose section contents can be read by RVA."""

    @abstractmethod
    def section_segment(self, section: SectionHeader, offset: int, size: int) -> Buffer:
        """Return ``size`` bytes of ``section`` starting ``offset`` bytes in.

        Implementations fail with MalformedImageError rather than returning
        fewer bytes than requested.
        """

    def _locate(self, rva: int) -> tuple[SectionHeader, int]:
        section = self.find_section(rva)
        if section is None:
            raise MalformedImageError(Reason.RVA_NOT_FOUND, f"0x{rva:x}")
        return section, rva - section.VirtualAddress

    def segment(self, rva: int, size: int) -> Buffer:
        """Return ``size`` bytes at ``rva``, which must not cross a section end."""
        section, offset = self._locate(rva)
        checked_add(rva, size)
        if size > section.VirtualSize - offset:
            raise MalformedImageError(
                Reason.SEGMENT_OUT_OF_BOUNDS,
                f"0x{rva:x}+0x{size:x} past {section.name_str} end 0x{section.end_rva:x}",
            )
        return self.section_segment(section, offset, size)

    def segment_from(self, rva: int) -> Buffer:
        """Return everything from ``rva`` to the end of its section."""
        section, offset = self._locate(rva)
        return self.section_segment(section, offset, section.VirtualSize - offset)

    def read_cstring(self, rva: int) -> bytes:
        """Read a null-terminated string at ``rva`` (terminator excluded).

        The string must end before its section does. The section is scanned
        in CSTRING_SCAN_CHUNK pieces, so only the string itself is held in
        memory however large the section's VirtualSize is.
        """
        section, offset = self._locate(rva)
        end = section.VirtualSize
        parts = []
        while offset < end:
            chunk = bytes(
                self.section_segment(section, offset, min(CSTRING_SCAN_CHUNK, end - offset))
            )
            terminator = chunk.find(b"\x00")
            if terminator >= 0:
                parts.append(chunk[:terminator])
                return b"".join(parts)
            parts.append(chunk)
            offset += len(chunk)
        raise MalformedImageError(Reason.UNTERMINATED_STRING, f"at 0x{rva:x}")

    def section(self, section: SectionHeader) -> Buffer:
        """Full virtual contents of a section."""
        return self.section_segment(section, 0, section.VirtualSize)

    def directory(self, directory: DataDirectory) -> Buffer:
        """Contents of a data directory."""
        return self.segment(directory.VirtualAddress, directory.Size)

    def _directory_reader(self, entry: DirectoryEntry) -> SegmentReader:
        directory = self.directory_header(entry)
        if directory is None:
            raise MalformedImageError(
                Reason.DIRECTORY_NOT_FOUND, f"{entry.name.lower()} directory"
            )
        return SegmentReader(self.directory(directory))

    def relocations(self) -> RelocationIterator:
        """Lazily decode the base relocation directory.

        Returns:
            RelocationIterator over Relocation values

        Raises:
            MalformedImageError: If the directory is absent or unresolvable
        """
        return RelocationIterator(self._directory_reader(DirectoryEntry.BASERELOC))

    def imports(self) -> ImportIterator:
        """Lazily decode the import directory into ImportDescriptors."""
        return ImportIterator(self._directory_reader(DirectoryEntry.IMPORT))

    def import_table(self, descriptor: ImportDescriptor) -> ImportTableIterator:
        """Lazily decode the symbols imported through one descriptor.

        Reads the lookup table (OriginalFirstThunk), or the import address
        table when the lookup table RVA is zero.
        """
        data = self.segment_from(descriptor.thunk_table_rva)
        return ImportTableIterator(SegmentReader(data), self)

    def import_name(self, descriptor: ImportDescriptor) -> bytes:
        """Name of the DLL a descriptor imports from."""
        return self.read_cstring(descriptor.Name)
