"""
peimage: Decoder, validator and writer for Windows PE images.

This package reads PE32 and PE32+ images either from a byte stream (a file
on disk) or from a buffer laid out as the loader maps it, and decodes the
base relocation and import directories from either:

    from peimage import PeFile, View

    with PeFile.open("foo.dll") as pe:
        for reloc in pe.relocations():
            print(reloc.kind.name, hex(reloc.address))

    view = View(mapped_image)
    for descriptor in view.imports():
        print(view.import_name(descriptor))

Modules:
- types: On-disk record layouts and PE constants
- nt: Width-independent NT headers and decoded values
- parse: Sequential header validator and reader
- file: Stream-backed image (PeFile)
- view: Zero-copy memory-layout image (View)
- relocations, imports: Streaming directory decoders
- writer: Serialization back to file layout
- protection: Section page protection
- verify: Structural verification reports
"""

from .errors import MalformedImageError, Reason
from .types import (
    # Records
    DosHeader,
    FileHeader,
    DataDirectory,
    OptionalHeader32,
    OptionalHeader64,
    OptionalHeader,
    SectionHeader,
    BaseRelocationBlock,
    BaseRelocationEntry,
    ImportDescriptor,
    ImportByName,
    ThunkData32,
    ThunkData64,
    # Constants
    DOS_MAGIC,
    PE_SIGNATURE,
    NT_SIGNATURE,
    IMAGE_NT_OPTIONAL_HDR32_MAGIC,
    IMAGE_NT_OPTIONAL_HDR64_MAGIC,
    IMAGE_SCN_MEM_READ,
    IMAGE_SCN_MEM_WRITE,
    IMAGE_SCN_MEM_EXECUTE,
    IMAGE_NUMBEROF_DIRECTORY_ENTRIES,
    # Structure sizes
    DOS_HEADER_SIZE,
    FILE_HEADER_SIZE,
    OPTIONAL_HEADER32_SIZE,
    OPTIONAL_HEADER64_SIZE,
    DATA_DIRECTORY_SIZE,
    SECTION_HEADER_SIZE,
)
from .nt import (
    NtKind,
    NtHeaders,
    DirectoryEntry,
    RelocationKind,
    Relocation,
    OrdinalImport,
    NamedImport,
    ImportSymbol,
)
from .base import PeHeaders, PeReadable
from .stream import SegmentReader
from .parse import PeHeaderBundle, validate_headers, read_headers
from .file import PeFile
from .view import View
from .relocations import RelocationIterator
from .imports import ImportIterator, ImportTableIterator
from .writer import write_pe
from .protection import MemoryProtection, section_protection, section_protections
from .verify import ImageVerifier, VerificationResult

__all__ = [
    # Errors
    "MalformedImageError",
    "Reason",
    # Records
    "DosHeader",
    "FileHeader",
    "DataDirectory",
    "OptionalHeader32",
    "OptionalHeader64",
    "OptionalHeader",
    "SectionHeader",
    "BaseRelocationBlock",
    "BaseRelocationEntry",
    "ImportDescriptor",
    "ImportByName",
    "ThunkData32",
    "ThunkData64",
    # Constants
    "DOS_MAGIC",
    "PE_SIGNATURE",
    "NT_SIGNATURE",
    "IMAGE_NT_OPTIONAL_HDR32_MAGIC",
    "IMAGE_NT_OPTIONAL_HDR64_MAGIC",
    "IMAGE_SCN_MEM_READ",
    "IMAGE_SCN_MEM_WRITE",
    "IMAGE_SCN_MEM_EXECUTE",
    "IMAGE_NUMBEROF_DIRECTORY_ENTRIES",
    # Structure sizes
    "DOS_HEADER_SIZE",
    "FILE_HEADER_SIZE",
    "OPTIONAL_HEADER32_SIZE",
    "OPTIONAL_HEADER64_SIZE",
    "DATA_DIRECTORY_SIZE",
    "SECTION_HEADER_SIZE",
    # Semantic model
    "NtKind",
    "NtHeaders",
    "DirectoryEntry",
    "RelocationKind",
    "Relocation",
    "OrdinalImport",
    "NamedImport",
    "ImportSymbol",
    # Images
    "PeHeaders",
    "PeReadable",
    "PeHeaderBundle",
    "PeFile",
    "View",
    "SegmentReader",
    "validate_headers",
    "read_headers",
    # Decoders
    "RelocationIterator",
    "ImportIterator",
    "ImportTableIterator",
    # Writer
    "write_pe",
    # Protection
    "MemoryProtection",
    "section_protection",
    "section_protections",
    # Verification
    "ImageVerifier",
    "VerificationResult",
]
