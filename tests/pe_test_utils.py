"""
Synthetic PE image builder for tests.

Builds small but complete PE32 and PE32+ images with struct.pack_into, so
the tests exercise the decoder against byte layouts written independently
of peimage's own record classes.

Layout of every image:
----------------------
    0x0000  DOS header, e_lfanew = 0x80, followed by a DOS stub
    0x0080  NT headers, 16 data directories, 2 section headers
    0x1000  .text  (VirtualSize 0x1000, first 0x200 bytes hold a pattern)
    0x2000  .data  (VirtualSize 0x1000)
              0x2000  import directory: one descriptor + null descriptor
              0x2080  "KERNEL32.dll"
              0x2100  lookup table: ExitProcess by name, ordinal 7, null
              0x2180  import address table (same contents)
              0x2200  hint/name: hint 0x1234, "ExitProcess"
              0x2400  relocation block for page 0x1000 + zero block

By default PointerToRawData equals VirtualAddress, so the same bytes are a
valid file and a valid mapped image. With ``compact=True`` the sections are
packed at FileAlignment 0x200 instead, the way a linker writes them to disk.

Usage:
------
    from pe_test_utils import build_pe, set_data_directory

    data = build_pe(wide=True)
    set_data_directory(data, IMAGE_DIRECTORY_ENTRY_BASERELOC, 0, 0)
"""

import struct

DOS_MAGIC = 0x5A4D
E_LFANEW = 0x80
DOS_STUB = b"This program cannot be run in DOS mode.\r\r\n$".ljust(E_LFANEW - 64, b"\x00")

SIZE_OF_HEADERS = 0x400
IMAGE_SIZE = 0x3000
SECTION_ALIGNMENT = 0x1000

TEXT_RVA = 0x1000
DATA_RVA = 0x2000
SECTION_SIZE = 0x1000

IMPORT_RVA = 0x2000
IMPORT_DIR_SIZE = 40
DLL_NAME_RVA = 0x2080
DLL_NAME = b"KERNEL32.dll"
LOOKUP_RVA = 0x2100
IAT_RVA = 0x2180
HINT_NAME_RVA = 0x2200
HINT = 0x1234
IMPORT_NAME = b"ExitProcess"
ORDINAL = 7

RELOC_RVA = 0x2400
RELOC_PAGE = 0x1000
RELOC_ENTRIES = [0x300A, 0xA010, 0x3FFF, 0x0000]
RELOC_DIR_SIZE = 8 + 2 * len(RELOC_ENTRIES) + 8

IMAGE_BASE_32 = 0x00400000
IMAGE_BASE_64 = 0x0000000140000000

TEXT_PATTERN = bytes(range(256)) * 2

# Compact file layout
COMPACT_FILE_ALIGNMENT = 0x200
COMPACT_TEXT_RAW = (0x400, 0x200)
COMPACT_DATA_RAW = (0x600, 0x600)
COMPACT_FILE_SIZE = 0xC00

SCN_TEXT = 0x60000020  # CODE | EXECUTE | READ
SCN_DATA = 0xC0000040  # INITIALIZED_DATA | READ | WRITE

IMAGE_DIRECTORY_ENTRY_IMPORT = 1
IMAGE_DIRECTORY_ENTRY_BASERELOC = 5
IMAGE_DIRECTORY_ENTRY_IAT = 12


def optional_header_offset() -> int:
    return E_LFANEW + 4 + 20


def optional_header_size(wide: bool) -> int:
    return 112 if wide else 96


def data_directory_offset(data: bytes | bytearray, index: int) -> int:
    (magic,) = struct.unpack_from("<H", data, optional_header_offset())
    fixed = optional_header_size(magic == 0x20B)
    return optional_header_offset() + fixed + index * 8


def section_header_offset(data: bytes | bytearray, index: int) -> int:
    (size_of_optional_header,) = struct.unpack_from("<H", data, E_LFANEW + 4 + 16)
    return optional_header_offset() + size_of_optional_header + index * 40


def set_data_directory(data: bytearray, index: int, rva: int, size: int) -> None:
    struct.pack_into("<II", data, data_directory_offset(data, index), rva, size)


def _write_optional_header(
    data: bytearray,
    wide: bool,
    file_alignment: int,
    number_of_rva_and_sizes: int,
) -> None:
    offset = optional_header_offset()
    common = (
        14,  # MajorLinkerVersion
        0,  # MinorLinkerVersion
        0x200,  # SizeOfCode
        0x600,  # SizeOfInitializedData
        0,  # SizeOfUninitializedData
        TEXT_RVA,  # AddressOfEntryPoint
        TEXT_RVA,  # BaseOfCode
    )
    versions = (6, 0, 0, 0, 6, 0)
    if wide:
        struct.pack_into(
            "<HBBIIIIIIIIIHHHHHHIIIIHHQQQQII",
            data,
            offset,
            0x20B,
            *common,
            IMAGE_BASE_64 & 0xFFFFFFFF,  # low half, PE32 BaseOfData slot
            IMAGE_BASE_64 >> 32,
            SECTION_ALIGNMENT,
            file_alignment,
            *versions,
            0,  # Win32VersionValue
            IMAGE_SIZE,
            SIZE_OF_HEADERS,
            0,  # CheckSum
            3,  # Subsystem: console
            0x8160,  # DllCharacteristics
            0x100000,
            0x1000,
            0x100000,
            0x1000,
            0,  # LoaderFlags
            number_of_rva_and_sizes,
        )
    else:
        struct.pack_into(
            "<HBBIIIIIIIIIHHHHHHIIIIHHIIIIII",
            data,
            offset,
            0x10B,
            *common,
            DATA_RVA,  # BaseOfData
            IMAGE_BASE_32,
            SECTION_ALIGNMENT,
            file_alignment,
            *versions,
            0,
            IMAGE_SIZE,
            SIZE_OF_HEADERS,
            0,
            3,
            0x0140,
            0x100000,
            0x1000,
            0x100000,
            0x1000,
            0,
            number_of_rva_and_sizes,
        )


def _write_section_header(
    data: bytearray,
    index: int,
    name: bytes,
    rva: int,
    raw: tuple[int, int],
    characteristics: int,
) -> None:
    pointer, size = raw
    struct.pack_into(
        "<8sIIIIIIHHI",
        data,
        section_header_offset(data, index),
        name,
        SECTION_SIZE,
        rva,
        size,
        pointer,
        0,
        0,
        0,
        0,
        characteristics,
    )


def _write_imports(data: bytearray, wide: bool) -> None:
    struct.pack_into("<IIIII", data, IMPORT_RVA, LOOKUP_RVA, 0, 0, DLL_NAME_RVA, IAT_RVA)
    data[DLL_NAME_RVA : DLL_NAME_RVA + len(DLL_NAME) + 1] = DLL_NAME + b"\x00"

    if wide:
        thunks = [HINT_NAME_RVA, 0x8000000000000000 | ORDINAL, 0]
        fmt = "<QQQ"
    else:
        thunks = [HINT_NAME_RVA, 0x80000000 | ORDINAL, 0]
        fmt = "<III"
    struct.pack_into(fmt, data, LOOKUP_RVA, *thunks)
    struct.pack_into(fmt, data, IAT_RVA, *thunks)

    struct.pack_into("<H", data, HINT_NAME_RVA, HINT)
    name_rva = HINT_NAME_RVA + 2
    data[name_rva : name_rva + len(IMPORT_NAME) + 1] = IMPORT_NAME + b"\x00"


def _write_relocations(data: bytearray) -> None:
    block_size = 8 + 2 * len(RELOC_ENTRIES)
    struct.pack_into("<II", data, RELOC_RVA, RELOC_PAGE, block_size)
    struct.pack_into(f"<{len(RELOC_ENTRIES)}H", data, RELOC_RVA + 8, *RELOC_ENTRIES)
    struct.pack_into("<II", data, RELOC_RVA + block_size, 0, 0)


def build_pe(
    wide: bool = True,
    compact: bool = False,
    number_of_rva_and_sizes: int = 16,
    optional_header_padding: int = 0,
) -> bytearray:
    """Build a two-section PE image with imports and relocations.

    Args:
        wide: Build PE32+ (True) or PE32 (False)
        compact: Pack sections at FileAlignment 0x200 instead of placing
            raw data at the section RVAs
        number_of_rva_and_sizes: Data directory count
        optional_header_padding: Extra bytes declared in SizeOfOptionalHeader
            after the data directories

    Returns:
        Image bytes
    """
    data = bytearray(IMAGE_SIZE)

    struct.pack_into("<H", data, 0, DOS_MAGIC)
    struct.pack_into("<I", data, 0x3C, E_LFANEW)
    data[64:E_LFANEW] = DOS_STUB

    size_of_optional_header = (
        optional_header_size(wide) + number_of_rva_and_sizes * 8 + optional_header_padding
    )
    data[E_LFANEW : E_LFANEW + 4] = b"PE\x00\x00"
    struct.pack_into(
        "<HHIIIHH",
        data,
        E_LFANEW + 4,
        0x8664 if wide else 0x14C,
        2,  # NumberOfSections
        0x5F000000,  # TimeDateStamp
        0,
        0,
        size_of_optional_header,
        0x0022 if wide else 0x0102,
    )
    file_alignment = COMPACT_FILE_ALIGNMENT if compact else SECTION_ALIGNMENT
    _write_optional_header(data, wide, file_alignment, number_of_rva_and_sizes)

    if number_of_rva_and_sizes > IMAGE_DIRECTORY_ENTRY_IMPORT:
        set_data_directory(data, IMAGE_DIRECTORY_ENTRY_IMPORT, IMPORT_RVA, IMPORT_DIR_SIZE)
    if number_of_rva_and_sizes > IMAGE_DIRECTORY_ENTRY_BASERELOC:
        set_data_directory(data, IMAGE_DIRECTORY_ENTRY_BASERELOC, RELOC_RVA, RELOC_DIR_SIZE)
    if number_of_rva_and_sizes > IMAGE_DIRECTORY_ENTRY_IAT:
        set_data_directory(data, IMAGE_DIRECTORY_ENTRY_IAT, IAT_RVA, 3 * (8 if wide else 4))

    text_raw = COMPACT_TEXT_RAW if compact else (TEXT_RVA, SECTION_SIZE)
    data_raw = COMPACT_DATA_RAW if compact else (DATA_RVA, SECTION_SIZE)
    _write_section_header(data, 0, b".text", TEXT_RVA, text_raw, SCN_TEXT)
    _write_section_header(data, 1, b".data", DATA_RVA, data_raw, SCN_DATA)

    data[TEXT_RVA : TEXT_RVA + len(TEXT_PATTERN)] = TEXT_PATTERN
    _write_imports(data, wide)
    _write_relocations(data)

    if not compact:
        return data

    packed = bytearray(COMPACT_FILE_SIZE)
    packed[:SIZE_OF_HEADERS] = data[:SIZE_OF_HEADERS]
    for rva, (pointer, size) in ((TEXT_RVA, text_raw), (DATA_RVA, data_raw)):
        packed[pointer : pointer + size] = data[rva : rva + size]
    return packed
