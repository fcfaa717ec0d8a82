"""
PE/COFF layout definitions for 32-bit and 64-bit images.

Each on-disk record is a dataclass with a little-endian ``STRUCT_FMT`` and a
fixed ``SIZE``. Records decode with ``from_bytes`` and encode with
``to_bytes``/``write_to``; none of them validate signatures, that is the job
of the header reader in ``peimage.parse``.

References:
- Microsoft PE/COFF Specification
- https://learn.microsoft.com/en-us/windows/win32/debug/pe-format
"""

import struct
from dataclasses import astuple, dataclass
from typing import ClassVar

from .errors import MalformedImageError, Reason

Buffer = bytes | bytearray | memoryview

# =============================================================================
# Constants
# =============================================================================

PAGE_SIZE = 0x1000
U32_MAX = 0xFFFFFFFF

# DOS Header
DOS_MAGIC = 0x5A4D  # "MZ" in little-endian
PE_SIGNATURE_OFFSET_LOCATION = 0x3C  # Offset in DOS header where e_lfanew lives

# PE Signature
PE_SIGNATURE = b"PE\x00\x00"
NT_SIGNATURE = 0x00004550  # PE_SIGNATURE as a little-endian u32

# Machine types
IMAGE_FILE_MACHINE_UNKNOWN = 0x0
IMAGE_FILE_MACHINE_I386 = 0x14C
IMAGE_FILE_MACHINE_ARM = 0x1C0
IMAGE_FILE_MACHINE_ARMNT = 0x1C4
IMAGE_FILE_MACHINE_IA64 = 0x200
IMAGE_FILE_MACHINE_AMD64 = 0x8664
IMAGE_FILE_MACHINE_ARM64 = 0xAA64

# Optional header magic
IMAGE_NT_OPTIONAL_HDR32_MAGIC = 0x10B
IMAGE_NT_OPTIONAL_HDR64_MAGIC = 0x20B  # PE32+
IMAGE_ROM_OPTIONAL_HDR_MAGIC = 0x107  # Recognized by name only, never accepted

# Section characteristics
IMAGE_SCN_TYPE_NO_PAD = 0x00000008
IMAGE_SCN_CNT_CODE = 0x00000020
IMAGE_SCN_CNT_INITIALIZED_DATA = 0x00000040
IMAGE_SCN_CNT_UNINITIALIZED_DATA = 0x00000080
IMAGE_SCN_LNK_INFO = 0x00000200
IMAGE_SCN_LNK_REMOVE = 0x00000800
IMAGE_SCN_LNK_COMDAT = 0x00001000
IMAGE_SCN_GPREL = 0x00008000
IMAGE_SCN_ALIGN_MASK = 0x00F00000
IMAGE_SCN_LNK_NRELOC_OVFL = 0x01000000
IMAGE_SCN_MEM_DISCARDABLE = 0x02000000
IMAGE_SCN_MEM_NOT_CACHED = 0x04000000
IMAGE_SCN_MEM_NOT_PAGED = 0x08000000
IMAGE_SCN_MEM_SHARED = 0x10000000
IMAGE_SCN_MEM_EXECUTE = 0x20000000
IMAGE_SCN_MEM_READ = 0x40000000
IMAGE_SCN_MEM_WRITE = 0x80000000

# File characteristics
IMAGE_FILE_RELOCS_STRIPPED = 0x0001
IMAGE_FILE_EXECUTABLE_IMAGE = 0x0002
IMAGE_FILE_LARGE_ADDRESS_AWARE = 0x0020
IMAGE_FILE_32BIT_MACHINE = 0x0100
IMAGE_FILE_DEBUG_STRIPPED = 0x0200
IMAGE_FILE_SYSTEM = 0x1000
IMAGE_FILE_DLL = 0x2000

# DLL characteristics
IMAGE_DLLCHARACTERISTICS_HIGH_ENTROPY_VA = 0x0020
IMAGE_DLLCHARACTERISTICS_DYNAMIC_BASE = 0x0040  # ASLR
IMAGE_DLLCHARACTERISTICS_FORCE_INTEGRITY = 0x0080
IMAGE_DLLCHARACTERISTICS_NX_COMPAT = 0x0100
IMAGE_DLLCHARACTERISTICS_NO_SEH = 0x0400
IMAGE_DLLCHARACTERISTICS_GUARD_CF = 0x4000

# Subsystems
IMAGE_SUBSYSTEM_UNKNOWN = 0
IMAGE_SUBSYSTEM_NATIVE = 1
IMAGE_SUBSYSTEM_WINDOWS_GUI = 2
IMAGE_SUBSYSTEM_WINDOWS_CUI = 3
IMAGE_SUBSYSTEM_EFI_APPLICATION = 10

# Data directory indices
IMAGE_DIRECTORY_ENTRY_EXPORT = 0
IMAGE_DIRECTORY_ENTRY_IMPORT = 1
IMAGE_DIRECTORY_ENTRY_RESOURCE = 2
IMAGE_DIRECTORY_ENTRY_EXCEPTION = 3
IMAGE_DIRECTORY_ENTRY_SECURITY = 4
IMAGE_DIRECTORY_ENTRY_BASERELOC = 5
IMAGE_DIRECTORY_ENTRY_DEBUG = 6
IMAGE_DIRECTORY_ENTRY_ARCHITECTURE = 7
IMAGE_DIRECTORY_ENTRY_GLOBALPTR = 8
IMAGE_DIRECTORY_ENTRY_TLS = 9
IMAGE_DIRECTORY_ENTRY_LOAD_CONFIG = 10
IMAGE_DIRECTORY_ENTRY_BOUND_IMPORT = 11
IMAGE_DIRECTORY_ENTRY_IAT = 12
IMAGE_DIRECTORY_ENTRY_DELAY_IMPORT = 13
IMAGE_DIRECTORY_ENTRY_COM_DESCRIPTOR = 14
IMAGE_NUMBEROF_DIRECTORY_ENTRIES = 16

# Base relocation types (6 and 8 are reserved)
IMAGE_REL_BASED_ABSOLUTE = 0  # Padding, skip
IMAGE_REL_BASED_HIGH = 1
IMAGE_REL_BASED_LOW = 2
IMAGE_REL_BASED_HIGHLOW = 3  # 32-bit pointer
IMAGE_REL_BASED_HIGHADJ = 4
IMAGE_REL_BASED_MIPS_JMPADDR = 5  # Also ARM_MOV32
IMAGE_REL_BASED_THUMB_MOV32 = 7
IMAGE_REL_BASED_MIPS_JMPADDR16 = 9  # Also IA64_IMM64
IMAGE_REL_BASED_DIR64 = 10  # 64-bit pointer

# Import thunk ordinal flags
IMAGE_ORDINAL_FLAG32 = 0x80000000
IMAGE_ORDINAL_FLAG64 = 0x8000000000000000

# Structure sizes
DOS_HEADER_SIZE = 64
FILE_HEADER_SIZE = 20
NT_SIGNATURE_SIZE = 4
NT_PREFIX_SIZE = 26  # signature + file header + optional header magic
OPTIONAL_HEADER32_SIZE = 96  # Fixed part, before data directories
OPTIONAL_HEADER64_SIZE = 112  # Fixed part, before data directories
DATA_DIRECTORY_SIZE = 8
SECTION_HEADER_SIZE = 40
SECTION_NAME_SIZE = 8


# =============================================================================
# Record base
# =============================================================================


class _Record:
    """Common decode/encode behaviour for fixed-size little-endian records."""

    STRUCT_FMT: ClassVar[str]
    SIZE: ClassVar[int]

    @classmethod
    def from_bytes(cls, data: Buffer, offset: int = 0):
        """Parse the record from binary data at offset."""
        if offset < 0 or len(data) < offset + cls.SIZE:
            raise MalformedImageError(
                Reason.TRUNCATED,
                f"data too short for {cls.__name__}: {len(data)} < {offset + cls.SIZE}",
            )
        return cls(*struct.unpack_from(cls.STRUCT_FMT, data, offset))

    def to_bytes(self) -> bytes:
        """Serialize the record to binary data."""
        return struct.pack(self.STRUCT_FMT, *astuple(self))

    def write_to(self, data: bytearray | memoryview, offset: int = 0) -> None:
        """Write the record to a mutable buffer at offset."""
        struct.pack_into(self.STRUCT_FMT, data, offset, *astuple(self))


# =============================================================================
# PE/COFF Structures
# =============================================================================


@dataclass
class DosHeader(_Record):
    """DOS MZ header (IMAGE_DOS_HEADER).

    The DOS header is 64 bytes and exists for backwards compatibility.
    The only field anything downstream relies on is e_lfanew, the file
    offset of the NT headers.
    """

    e_magic: int  # "MZ" = 0x5A4D
    e_cblp: int
    e_cp: int
    e_crlc: int
    e_cparhdr: int
    e_minalloc: int
    e_maxalloc: int
    e_ss: int
    e_sp: int
    e_csum: int
    e_ip: int
    e_cs: int
    e_lfarlc: int
    e_ovno: int
    e_res: bytes  # 8 bytes reserved
    e_oemid: int
    e_oeminfo: int
    e_res2: bytes  # 20 bytes reserved
    e_lfanew: int  # Offset to PE signature

    STRUCT_FMT: ClassVar[str] = "<HHHHHHHHHHHHHH8sHH20sI"
    SIZE: ClassVar[int] = DOS_HEADER_SIZE

    @classmethod
    def minimal(cls, e_lfanew: int) -> "DosHeader":
        """Build a header with only the magic and e_lfanew set."""
        return cls(DOS_MAGIC, *([0] * 13), bytes(8), 0, 0, bytes(20), e_lfanew)


@dataclass
class FileHeader(_Record):
    """COFF file header (IMAGE_FILE_HEADER).

    This 20-byte header comes right after the PE signature.
    """

    Machine: int
    NumberOfSections: int
    TimeDateStamp: int
    PointerToSymbolTable: int  # Usually 0 for images
    NumberOfSymbols: int  # Usually 0 for images
    SizeOfOptionalHeader: int  # Includes data directories and any padding
    Characteristics: int

    STRUCT_FMT: ClassVar[str] = "<HHIIIHH"
    SIZE: ClassVar[int] = FILE_HEADER_SIZE

    @property
    def is_dll(self) -> bool:
        return bool(self.Characteristics & IMAGE_FILE_DLL)

    @property
    def is_executable(self) -> bool:
        return bool(self.Characteristics & IMAGE_FILE_EXECUTABLE_IMAGE)


@dataclass
class DataDirectory(_Record):
    """Data directory entry (IMAGE_DATA_DIRECTORY).

    A directory with Size == 0 is absent, whatever its address says.
    """

    VirtualAddress: int
    Size: int

    STRUCT_FMT: ClassVar[str] = "<II"
    SIZE: ClassVar[int] = DATA_DIRECTORY_SIZE

    @property
    def is_present(self) -> bool:
        return self.Size != 0


@dataclass
class OptionalHeader32(_Record):
    """PE32 optional header (IMAGE_OPTIONAL_HEADER32), fixed part only.

    Data directories follow it in the file and are decoded separately.
    """

    Magic: int  # 0x10B
    MajorLinkerVersion: int
    MinorLinkerVersion: int
    SizeOfCode: int
    SizeOfInitializedData: int
    SizeOfUninitializedData: int
    AddressOfEntryPoint: int
    BaseOfCode: int
    BaseOfData: int
    ImageBase: int
    SectionAlignment: int
    FileAlignment: int
    MajorOperatingSystemVersion: int
    MinorOperatingSystemVersion: int
    MajorImageVersion: int
    MinorImageVersion: int
    MajorSubsystemVersion: int
    MinorSubsystemVersion: int
    Win32VersionValue: int
    SizeOfImage: int
    SizeOfHeaders: int
    CheckSum: int
    Subsystem: int
    DllCharacteristics: int
    SizeOfStackReserve: int
    SizeOfStackCommit: int
    SizeOfHeapReserve: int
    SizeOfHeapCommit: int
    LoaderFlags: int
    NumberOfRvaAndSizes: int

    STRUCT_FMT: ClassVar[str] = "<HBBIIIIIIIIIHHHHHH" "IIIIHHIIIIII"
    SIZE: ClassVar[int] = OPTIONAL_HEADER32_SIZE
    MAGIC: ClassVar[int] = IMAGE_NT_OPTIONAL_HDR32_MAGIC

    @property
    def has_aslr(self) -> bool:
        return bool(self.DllCharacteristics & IMAGE_DLLCHARACTERISTICS_DYNAMIC_BASE)


@dataclass
class OptionalHeader64(_Record):
    """PE32+ optional header (IMAGE_OPTIONAL_HEADER64), fixed part only.

    The 8-byte ImageBase occupies the two 32-bit slots that PE32 uses for
    BaseOfData and ImageBase. The low half lives in the BaseOfData slot, so
    the value is rebuilt as ``low | (high << 32)`` and there is no
    BaseOfData in this variant.
    """

    Magic: int  # 0x20B
    MajorLinkerVersion: int
    MinorLinkerVersion: int
    SizeOfCode: int
    SizeOfInitializedData: int
    SizeOfUninitializedData: int
    AddressOfEntryPoint: int
    BaseOfCode: int
    ImageBaseLow: int  # PE32 BaseOfData slot
    ImageBaseHigh: int  # PE32 ImageBase slot
    SectionAlignment: int
    FileAlignment: int
    MajorOperatingSystemVersion: int
    MinorOperatingSystemVersion: int
    MajorImageVersion: int
    MinorImageVersion: int
    MajorSubsystemVersion: int
    MinorSubsystemVersion: int
    Win32VersionValue: int
    SizeOfImage: int
    SizeOfHeaders: int
    CheckSum: int
    Subsystem: int
    DllCharacteristics: int
    SizeOfStackReserve: int  # 8 bytes for PE32+
    SizeOfStackCommit: int  # 8 bytes for PE32+
    SizeOfHeapReserve: int  # 8 bytes for PE32+
    SizeOfHeapCommit: int  # 8 bytes for PE32+
    LoaderFlags: int
    NumberOfRvaAndSizes: int

    STRUCT_FMT: ClassVar[str] = "<HBBIIIIIIIIIHHHHHH" "IIIIHHQQQQII"
    SIZE: ClassVar[int] = OPTIONAL_HEADER64_SIZE
    MAGIC: ClassVar[int] = IMAGE_NT_OPTIONAL_HDR64_MAGIC

    @property
    def ImageBase(self) -> int:
        return self.ImageBaseLow | (self.ImageBaseHigh << 32)

    @ImageBase.setter
    def ImageBase(self, value: int) -> None:
        self.ImageBaseLow = value & U32_MAX
        self.ImageBaseHigh = (value >> 32) & U32_MAX

    @property
    def has_aslr(self) -> bool:
        return bool(self.DllCharacteristics & IMAGE_DLLCHARACTERISTICS_DYNAMIC_BASE)


OptionalHeader = OptionalHeader32 | OptionalHeader64


@dataclass
class SectionHeader(_Record):
    """PE/COFF section header (IMAGE_SECTION_HEADER).

    Each section header is 40 bytes.
    """

    Name: bytes  # 8 bytes, null-padded (NOT null-terminated if 8 chars)
    VirtualSize: int  # Size in memory (can be > SizeOfRawData)
    VirtualAddress: int  # RVA of section
    SizeOfRawData: int  # Size in file (rounded to FileAlignment)
    PointerToRawData: int  # File offset
    PointerToRelocations: int  # Usually 0 for images
    PointerToLinenumbers: int  # Deprecated, usually 0
    NumberOfRelocations: int
    NumberOfLinenumbers: int
    Characteristics: int

    STRUCT_FMT: ClassVar[str] = "<8sIIIIIIHHI"
    SIZE: ClassVar[int] = SECTION_HEADER_SIZE

    @property
    def name_str(self) -> str:
        """Section name with null padding stripped."""
        null_pos = self.Name.find(b"\x00")
        if null_pos >= 0:
            return self.Name[:null_pos].decode("ascii", errors="replace")
        return self.Name.decode("ascii", errors="replace")

    @property
    def end_rva(self) -> int:
        """RVA one past the end of the section in memory."""
        return self.VirtualAddress + self.VirtualSize

    @property
    def end_file_offset(self) -> int:
        return self.PointerToRawData + self.SizeOfRawData

    @property
    def is_code(self) -> bool:
        return bool(self.Characteristics & IMAGE_SCN_CNT_CODE)

    @property
    def is_uninitialized_data(self) -> bool:
        return bool(self.Characteristics & IMAGE_SCN_CNT_UNINITIALIZED_DATA)

    @property
    def is_discardable(self) -> bool:
        return bool(self.Characteristics & IMAGE_SCN_MEM_DISCARDABLE)

    @property
    def is_readable(self) -> bool:
        return bool(self.Characteristics & IMAGE_SCN_MEM_READ)

    @property
    def is_writable(self) -> bool:
        return bool(self.Characteristics & IMAGE_SCN_MEM_WRITE)

    @property
    def is_executable(self) -> bool:
        return bool(self.Characteristics & IMAGE_SCN_MEM_EXECUTE)

    @property
    def alignment(self) -> int:
        """Section alignment in bytes from IMAGE_SCN_ALIGN_*, 0 if unset."""
        code = (self.Characteristics & IMAGE_SCN_ALIGN_MASK) >> 20
        return 1 << (code - 1) if code else 0

    def contains_rva(self, rva: int) -> bool:
        """Check if an RVA falls within this section's virtual extent."""
        return self.VirtualAddress <= rva < self.end_rva


@dataclass
class BaseRelocationBlock(_Record):
    """Base relocation block header (IMAGE_BASE_RELOCATION).

    Each block covers one page and is followed by
    ``SizeOfBlock - 8`` bytes of 2-byte entries.
    """

    VirtualAddress: int  # Page RVA; zero terminates the table
    SizeOfBlock: int  # Size including this header

    STRUCT_FMT: ClassVar[str] = "<II"
    SIZE: ClassVar[int] = 8


@dataclass
class BaseRelocationEntry(_Record):
    """Single base relocation entry (2 bytes).

    - High 4 bits: relocation kind
    - Low 12 bits: offset within the block's page
    """

    raw: int

    STRUCT_FMT: ClassVar[str] = "<H"
    SIZE: ClassVar[int] = 2

    @classmethod
    def pack(cls, kind: int, offset: int) -> "BaseRelocationEntry":
        return cls(((kind & 0xF) << 12) | (offset & 0xFFF))

    @property
    def kind(self) -> int:
        return self.raw >> 12

    @property
    def offset(self) -> int:
        return self.raw & 0xFFF


@dataclass
class ImportDescriptor(_Record):
    """Import directory entry (IMAGE_IMPORT_DESCRIPTOR).

    A descriptor with Name == 0 terminates the import directory.
    """

    OriginalFirstThunk: int  # Also "Characteristics"; RVA of the lookup table
    TimeDateStamp: int
    ForwarderChain: int
    Name: int  # RVA of the DLL name
    FirstThunk: int  # RVA of the import address table

    STRUCT_FMT: ClassVar[str] = "<IIIII"
    SIZE: ClassVar[int] = 20

    @property
    def thunk_table_rva(self) -> int:
        """Lookup table RVA, falling back to the IAT when it is zero."""
        return self.OriginalFirstThunk or self.FirstThunk


@dataclass
class ThunkData64(_Record):
    """64-bit import thunk (IMAGE_THUNK_DATA64).

    Either an ordinal (bit 63 set, ordinal in the low 16 bits) or the RVA
    of an ImportByName record.
    """

    Data: int

    STRUCT_FMT: ClassVar[str] = "<Q"
    SIZE: ClassVar[int] = 8

    @property
    def is_ordinal(self) -> bool:
        return bool(self.Data & IMAGE_ORDINAL_FLAG64)

    @property
    def ordinal(self) -> int:
        return self.Data & 0xFFFF

    @property
    def address_of_data(self) -> int:
        return self.Data


@dataclass
class ThunkData32(_Record):
    """32-bit import thunk (IMAGE_THUNK_DATA32)."""

    Data: int

    STRUCT_FMT: ClassVar[str] = "<I"
    SIZE: ClassVar[int] = 4

    @property
    def is_ordinal(self) -> bool:
        return bool(self.Data & IMAGE_ORDINAL_FLAG32)

    def widen(self) -> ThunkData64:
        """Convert to the 64-bit representation.

        Bit 31 is masked off and, if it was set, re-applied as bit 63.
        """
        data = self.Data & 0x7FFFFFFF
        if self.is_ordinal:
            data |= IMAGE_ORDINAL_FLAG64
        return ThunkData64(data)


@dataclass
class ImportByName(_Record):
    """Hint/name record (IMAGE_IMPORT_BY_NAME) without its inline name.

    The null-terminated name starts right after the 2-byte hint.
    """

    Hint: int

    STRUCT_FMT: ClassVar[str] = "<H"
    SIZE: ClassVar[int] = 2


# =============================================================================
# Helper Functions
# =============================================================================


def checked_add(a: int, b: int, reason: Reason = Reason.OVERFLOW) -> int:
    """Add two u32 quantities, failing instead of wrapping."""
    total = a + b
    if total > U32_MAX:
        raise MalformedImageError(reason, f"0x{a:x} + 0x{b:x} overflows 32 bits")
    return total


def round_up_to_alignment(value: int, alignment: int) -> int:
    """Round value up to next alignment boundary."""
    if alignment == 0:
        return value
    return (value + alignment - 1) & ~(alignment - 1)


def section_name_to_bytes(name: str) -> bytes:
    """Convert section name string to 8-byte padded bytes.

    Section names are limited to 8 characters in PE/COFF.
    """
    if len(name) > SECTION_NAME_SIZE:
        raise ValueError(f"Section name too long (max 8 chars): {name}")
    return name.encode("ascii").ljust(SECTION_NAME_SIZE, b"\x00")
