"""
Page protection derived from section characteristics.

MemoryProtection is a platform-neutral flag set. It translates to and from
the Windows PAGE_* constants so a loader can hand it to VirtualProtect, but
nothing here calls into the OS.
"""

from enum import IntFlag

from .base import PeHeaders
from .types import IMAGE_SCN_MEM_EXECUTE, IMAGE_SCN_MEM_READ, IMAGE_SCN_MEM_WRITE, SectionHeader

# Windows page protection constants (winnt.h)
PAGE_NOACCESS = 0x01
PAGE_READONLY = 0x02
PAGE_READWRITE = 0x04
PAGE_WRITECOPY = 0x08
PAGE_EXECUTE = 0x10
PAGE_EXECUTE_READ = 0x20
PAGE_EXECUTE_READWRITE = 0x40
PAGE_EXECUTE_WRITECOPY = 0x80
PAGE_GUARD = 0x100
PAGE_NOCACHE = 0x200
PAGE_WRITECOMBINE = 0x400
PAGE_TARGETS_INVALID = 0x40000000

PAGE_ACCESS_MASK = 0xFF
PAGE_MODIFIER_MASK = 0xF00


class MemoryProtection(IntFlag):
    NONE = 0x0000
    READ = 0x0001
    WRITE = 0x0002
    EXECUTE = 0x0004
    COPY = 0x0008
    GUARD = 0x0010
    NOCACHE = 0x0020
    WRITECOMBINE = 0x0040
    TARGETS = 0x0080

    RX = READ | EXECUTE
    RW = READ | WRITE
    RWX = READ | WRITE | EXECUTE

    def to_windows(self) -> int | None:
        """Encode as a Windows PAGE_* value.

        Returns:
            The PAGE_* value, or None if Windows has no encoding for this
            combination (e.g. write-only, or GUARD together with NOCACHE)
        """
        access = _ACCESS_TO_WINDOWS.get(self & (MemoryProtection.RWX | MemoryProtection.COPY))
        modifier = _MODIFIER_TO_WINDOWS.get(self & _MODIFIERS)
        if access is None or modifier is None:
            return None
        if self & MemoryProtection.TARGETS:
            access |= PAGE_TARGETS_INVALID
        return access | modifier

    @classmethod
    def from_windows(cls, value: int) -> "MemoryProtection | None":
        """Decode a Windows PAGE_* value, or return None if it is not one."""
        access = _WINDOWS_TO_ACCESS.get(value & PAGE_ACCESS_MASK)
        modifier = _WINDOWS_TO_MODIFIER.get(value & PAGE_MODIFIER_MASK)
        if access is None or modifier is None:
            return None
        protection = access | modifier
        if value & PAGE_TARGETS_INVALID:
            protection |= cls.TARGETS
        return protection


_MODIFIERS = MemoryProtection.GUARD | MemoryProtection.NOCACHE | MemoryProtection.WRITECOMBINE

_ACCESS_TO_WINDOWS = {
    MemoryProtection.NONE: PAGE_NOACCESS,
    MemoryProtection.READ: PAGE_READONLY,
    MemoryProtection.RW: PAGE_READWRITE,
    MemoryProtection.WRITE | MemoryProtection.COPY: PAGE_WRITECOPY,
    MemoryProtection.EXECUTE: PAGE_EXECUTE,
    MemoryProtection.RX: PAGE_EXECUTE_READ,
    MemoryProtection.RWX: PAGE_EXECUTE_READWRITE,
    MemoryProtection.RWX | MemoryProtection.COPY: PAGE_EXECUTE_WRITECOPY,
}
_WINDOWS_TO_ACCESS = {v: k for k, v in _ACCESS_TO_WINDOWS.items()}

_MODIFIER_TO_WINDOWS = {
    MemoryProtection.NONE: 0,
    MemoryProtection.GUARD: PAGE_GUARD,
    MemoryProtection.NOCACHE: PAGE_NOCACHE,
    MemoryProtection.WRITECOMBINE: PAGE_WRITECOMBINE,
}
_WINDOWS_TO_MODIFIER = {v: k for k, v in _MODIFIER_TO_WINDOWS.items()}


def section_protection(section: SectionHeader) -> MemoryProtection:
    """Protection a loader applies to a section's pages."""
    protection = MemoryProtection.NONE
    if section.Characteristics & IMAGE_SCN_MEM_EXECUTE:
        protection |= MemoryProtection.EXECUTE
    if section.Characteristics & IMAGE_SCN_MEM_READ:
        protection |= MemoryProtection.READ
    if section.Characteristics & IMAGE_SCN_MEM_WRITE:
        protection |= MemoryProtection.WRITE
    return protection


def section_protections(image: PeHeaders) -> list[tuple[SectionHeader, MemoryProtection]]:
    """Pair every section of ``image`` with its protection, in header order."""
    return [(section, section_protection(section)) for section in image.section_headers]
