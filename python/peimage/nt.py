"""
Width-independent model of the NT headers and the values decoded from them.

NtHeaders is a tagged union over OptionalHeader32 and OptionalHeader64; the
accessors dispatch on whichever variant the optional-header magic selected,
so callers never need to branch on image width themselves.
"""

from dataclasses import dataclass
from enum import Enum, IntEnum

from .errors import MalformedImageError, Reason
from .types import (
    FileHeader,
    OptionalHeader,
    OptionalHeader32,
    OptionalHeader64,
    NT_SIGNATURE,
    NT_SIGNATURE_SIZE,
    FILE_HEADER_SIZE,
    SECTION_HEADER_SIZE,
    IMAGE_NT_OPTIONAL_HDR32_MAGIC,
    IMAGE_NT_OPTIONAL_HDR64_MAGIC,
    IMAGE_DIRECTORY_ENTRY_EXPORT,
    IMAGE_DIRECTORY_ENTRY_IMPORT,
    IMAGE_DIRECTORY_ENTRY_RESOURCE,
    IMAGE_DIRECTORY_ENTRY_EXCEPTION,
    IMAGE_DIRECTORY_ENTRY_SECURITY,
    IMAGE_DIRECTORY_ENTRY_BASERELOC,
    IMAGE_DIRECTORY_ENTRY_DEBUG,
    IMAGE_DIRECTORY_ENTRY_ARCHITECTURE,
    IMAGE_DIRECTORY_ENTRY_GLOBALPTR,
    IMAGE_DIRECTORY_ENTRY_TLS,
    IMAGE_DIRECTORY_ENTRY_LOAD_CONFIG,
    IMAGE_DIRECTORY_ENTRY_BOUND_IMPORT,
    IMAGE_DIRECTORY_ENTRY_IAT,
    IMAGE_DIRECTORY_ENTRY_DELAY_IMPORT,
    IMAGE_DIRECTORY_ENTRY_COM_DESCRIPTOR,
    IMAGE_REL_BASED_ABSOLUTE,
    IMAGE_REL_BASED_HIGH,
    IMAGE_REL_BASED_LOW,
    IMAGE_REL_BASED_HIGHLOW,
    IMAGE_REL_BASED_HIGHADJ,
    IMAGE_REL_BASED_MIPS_JMPADDR,
    IMAGE_REL_BASED_THUMB_MOV32,
    IMAGE_REL_BASED_MIPS_JMPADDR16,
    IMAGE_REL_BASED_DIR64,
)


class NtKind(Enum):
    """Image word width, selected by the optional header magic."""

    WIN32 = IMAGE_NT_OPTIONAL_HDR32_MAGIC
    WIN64 = IMAGE_NT_OPTIONAL_HDR64_MAGIC

    @classmethod
    def from_magic(cls, magic: int) -> "NtKind":
        try:
            return cls(magic)
        except ValueError:
            raise MalformedImageError(
                Reason.BAD_OPTIONAL_MAGIC, f"0x{magic:04X}"
            ) from None

    @property
    def optional_header_type(self) -> type[OptionalHeader32] | type[OptionalHeader64]:
        if self is NtKind.WIN32:
            return OptionalHeader32
        return OptionalHeader64

    @property
    def size_of_optional_header(self) -> int:
        """Size of the fixed optional header part, without data directories."""
        return self.optional_header_type.SIZE

    @property
    def thunk_size(self) -> int:
        return 4 if self is NtKind.WIN32 else 8


class DirectoryEntry(IntEnum):
    """Well-known data directory indices."""

    EXPORT = IMAGE_DIRECTORY_ENTRY_EXPORT
    IMPORT = IMAGE_DIRECTORY_ENTRY_IMPORT
    RESOURCE = IMAGE_DIRECTORY_ENTRY_RESOURCE
    EXCEPTION = IMAGE_DIRECTORY_ENTRY_EXCEPTION
    SECURITY = IMAGE_DIRECTORY_ENTRY_SECURITY
    BASERELOC = IMAGE_DIRECTORY_ENTRY_BASERELOC
    DEBUG = IMAGE_DIRECTORY_ENTRY_DEBUG
    ARCHITECTURE = IMAGE_DIRECTORY_ENTRY_ARCHITECTURE
    GLOBALPTR = IMAGE_DIRECTORY_ENTRY_GLOBALPTR
    TLS = IMAGE_DIRECTORY_ENTRY_TLS
    LOAD_CONFIG = IMAGE_DIRECTORY_ENTRY_LOAD_CONFIG
    BOUND_IMPORT = IMAGE_DIRECTORY_ENTRY_BOUND_IMPORT
    IAT = IMAGE_DIRECTORY_ENTRY_IAT
    DELAY_IMPORT = IMAGE_DIRECTORY_ENTRY_DELAY_IMPORT
    COM_DESCRIPTOR = IMAGE_DIRECTORY_ENTRY_COM_DESCRIPTOR


@dataclass
class NtHeaders:
    """NT signature, file header and the width-selected optional header.

    Data directories and section headers are not part of this object; their
    count is known from it, their records are kept alongside it.
    """

    signature: int
    file_header: FileHeader
    optional_header: OptionalHeader

    @property
    def kind(self) -> NtKind:
        if isinstance(self.optional_header, OptionalHeader32):
            return NtKind.WIN32
        return NtKind.WIN64

    @property
    def optional_header_32(self) -> OptionalHeader32 | None:
        if isinstance(self.optional_header, OptionalHeader32):
            return self.optional_header
        return None

    @property
    def optional_header_64(self) -> OptionalHeader64 | None:
        if isinstance(self.optional_header, OptionalHeader64):
            return self.optional_header
        return None

    @property
    def length(self) -> int:
        """Serialized size from the signature through the last section header."""
        return (
            NT_SIGNATURE_SIZE
            + FILE_HEADER_SIZE
            + self.file_header.SizeOfOptionalHeader
            + self.file_header.NumberOfSections * SECTION_HEADER_SIZE
        )

    @property
    def magic(self) -> int:
        return self.optional_header.Magic

    @property
    def machine(self) -> int:
        return self.file_header.Machine

    @property
    def number_of_sections(self) -> int:
        return self.file_header.NumberOfSections

    @property
    def address_of_entry_point(self) -> int:
        return self.optional_header.AddressOfEntryPoint

    @property
    def base_of_code(self) -> int:
        return self.optional_header.BaseOfCode

    @property
    def base_of_data(self) -> int | None:
        """BaseOfData, which only exists in PE32 images."""
        if isinstance(self.optional_header, OptionalHeader32):
            return self.optional_header.BaseOfData
        return None

    @property
    def image_base(self) -> int:
        return self.optional_header.ImageBase

    @property
    def section_alignment(self) -> int:
        return self.optional_header.SectionAlignment

    @property
    def file_alignment(self) -> int:
        return self.optional_header.FileAlignment

    @property
    def size_of_image(self) -> int:
        return self.optional_header.SizeOfImage

    @property
    def size_of_headers(self) -> int:
        return self.optional_header.SizeOfHeaders

    @property
    def check_sum(self) -> int:
        return self.optional_header.CheckSum

    @property
    def subsystem(self) -> int:
        return self.optional_header.Subsystem

    @property
    def dll_characteristics(self) -> int:
        return self.optional_header.DllCharacteristics

    @property
    def size_of_stack_reserve(self) -> int:
        return self.optional_header.SizeOfStackReserve

    @property
    def size_of_stack_commit(self) -> int:
        return self.optional_header.SizeOfStackCommit

    @property
    def size_of_heap_reserve(self) -> int:
        return self.optional_header.SizeOfHeapReserve

    @property
    def size_of_heap_commit(self) -> int:
        return self.optional_header.SizeOfHeapCommit

    @property
    def loader_flags(self) -> int:
        return self.optional_header.LoaderFlags

    @property
    def number_of_rva_and_sizes(self) -> int:
        return self.optional_header.NumberOfRvaAndSizes

    @property
    def has_valid_signature(self) -> bool:
        return self.signature == NT_SIGNATURE

    def to_bytes(self) -> bytes:
        """Serialize signature, file header and the optional header fixed part."""
        return (
            self.signature.to_bytes(NT_SIGNATURE_SIZE, "little")
            + self.file_header.to_bytes()
            + self.optional_header.to_bytes()
        )


class RelocationKind(IntEnum):
    """Base relocation kinds. Codes 6 and 8 are reserved."""

    ABSOLUTE = IMAGE_REL_BASED_ABSOLUTE
    HIGH = IMAGE_REL_BASED_HIGH
    LOW = IMAGE_REL_BASED_LOW
    HIGHLOW = IMAGE_REL_BASED_HIGHLOW
    HIGHADJ = IMAGE_REL_BASED_HIGHADJ
    MIPS_JMPADDR_ARM_MOV32 = IMAGE_REL_BASED_MIPS_JMPADDR
    THUMB_MOV32 = IMAGE_REL_BASED_THUMB_MOV32
    MIPS_JMPADDR16_IA64_IMM64 = IMAGE_REL_BASED_MIPS_JMPADDR16
    DIR64 = IMAGE_REL_BASED_DIR64

    @classmethod
    def from_kind(cls, value: int) -> "RelocationKind":
        try:
            return cls(value)
        except ValueError:
            raise MalformedImageError(
                Reason.BAD_RELOCATION_KIND, f"kind {value}"
            ) from None


@dataclass(frozen=True)
class Relocation:
    """A decoded base relocation: what to patch and where."""

    kind: RelocationKind
    address: int  # RVA of the patched location


@dataclass(frozen=True)
class OrdinalImport:
    """Symbol imported by ordinal."""

    ordinal: int


@dataclass(frozen=True)
class NamedImport:
    """Symbol imported by name, with the exporter's ordinal hint."""

    ordinal_hint: int
    name: bytes


ImportSymbol = OrdinalImport | NamedImport
