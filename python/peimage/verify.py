"""
Structural verification report for PE images.

Header validation is all-or-nothing and raises on the first problem. The
verifier goes further on an image whose headers are already valid: it walks
the relocation and import directories end to end and cross-checks the
section table, collecting every problem it finds into a VerificationResult
instead of stopping at the first one.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable

from .base import PeReadable
from .errors import MalformedImageError, Reason
from .file import PeFile
from .nt import DirectoryEntry
from .types import Buffer

logger = logging.getLogger(__name__)


def _directory_name(index: int) -> str:
    try:
        return DirectoryEntry(index).name
    except ValueError:
        return f"#{index}"


@dataclass
class VerificationResult:
    """Errors and warnings collected by ImageVerifier.

    Errors that come from a decoding failure also record the failure's
    Reason in ``reasons``, so callers can tell a bad relocation kind from an
    unresolvable RVA without matching message text. Structural findings
    (overlap, alignment) have no Reason and only add a message.
    """

    passed: bool = True
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    reasons: list[Reason] = field(default_factory=list)

    def add_error(self, msg: str, reason: Reason | None = None) -> None:
        """Add an error (verification failed)."""
        self.errors.append(msg)
        if reason is not None:
            self.reasons.append(reason)
        self.passed = False

    def add_warning(self, msg: str) -> None:
        """Add a warning (verification passed but with concerns)."""
        self.warnings.append(msg)

    def merge(self, other: "VerificationResult") -> None:
        if not other.passed:
            self.passed = False
        self.errors.extend(other.errors)
        self.warnings.extend(other.warnings)
        self.reasons.extend(other.reasons)

    def __str__(self) -> str:
        lines = ["Verification PASSED" if self.passed else "Verification FAILED"]
        for title, messages in (("Errors", self.errors), ("Warnings", self.warnings)):
            if messages:
                lines.append(f"{title} ({len(messages)}):")
                lines.extend(f"  - {msg}" for msg in messages)
        return "\n".join(lines)


class ImageVerifier:
    """Structural checks over a PE image with valid headers.

    Works on any PeReadable, so the same checks apply to a file on disk
    (PeFile) and to a mapped image (View).

    Usage:
        result = ImageVerifier.verify(Path("foo.dll"))
        if not result.passed:
            print(result)
    """

    def __init__(self, image: PeReadable):
        self._image = image

    @classmethod
    def verify(cls, path: Path) -> VerificationResult:
        """Verify a PE file on disk.

        Malformed headers are reported as a failed result rather than raised.
        """
        try:
            with PeFile.open(path) as image:
                return cls(image).run_all_checks()
        except MalformedImageError as e:
            return cls._rejected(e)

    @classmethod
    def verify_data(cls, data: Buffer) -> VerificationResult:
        """Verify an in-memory copy of a PE file (file layout, not mapped)."""
        try:
            image = PeFile.from_bytes(data)
        except MalformedImageError as e:
            return cls._rejected(e)
        with image:
            return cls(image).run_all_checks()

    @staticmethod
    def _rejected(error: MalformedImageError) -> VerificationResult:
        logger.debug("Headers rejected: %s", error)
        result = VerificationResult()
        result.add_error(f"Invalid headers: {error}", error.reason)
        return result

    def run_all_checks(self) -> VerificationResult:
        """Run all structural checks."""
        result = VerificationResult()

        checks: list[Callable[[], VerificationResult]] = [
            self.check_no_overlapping_sections,
            self.check_section_alignment,
            self.check_data_directories_resolve,
            self.check_entry_point,
            self.check_relocations,
            self.check_imports,
        ]

        for check in checks:
            result.merge(check())

        return result

    # =========================================================================
    # Section table
    # =========================================================================

    def check_no_overlapping_sections(self) -> VerificationResult:
        """Check that no two sections overlap in memory.

        Lookups tolerate overlap (the higher section wins), but a linker
        never produces it.
        """
        result = VerificationResult()
        sections = [s for s in self._image.section_headers if s.VirtualSize > 0]

        for i, first in enumerate(sections):
            for second in sections[i + 1 :]:
                if first.VirtualAddress < second.end_rva and second.VirtualAddress < first.end_rva:
                    result.add_error(
                        f"Sections {first.name_str} and {second.name_str} overlap in memory: "
                        f"[{first.VirtualAddress:#x}, {first.end_rva:#x}) and "
                        f"[{second.VirtualAddress:#x}, {second.end_rva:#x})"
                    )

        return result

    def check_section_alignment(self) -> VerificationResult:
        """Check sections against FileAlignment and SectionAlignment."""
        result = VerificationResult()
        nt = self._image.nt_headers

        for section in self._image.section_headers:
            if section.SizeOfRawData > 0 and nt.file_alignment:
                if section.PointerToRawData % nt.file_alignment != 0:
                    result.add_error(
                        f"Section {section.name_str} PointerToRawData "
                        f"0x{section.PointerToRawData:x} not aligned to "
                        f"FileAlignment 0x{nt.file_alignment:x}"
                    )

            if nt.section_alignment and section.VirtualAddress % nt.section_alignment != 0:
                result.add_warning(
                    f"Section {section.name_str} VirtualAddress 0x{section.VirtualAddress:x} "
                    f"not aligned to SectionAlignment 0x{nt.section_alignment:x}"
                )

        return result

    # =========================================================================
    # Directories
    # =========================================================================

    def check_data_directories_resolve(self) -> VerificationResult:
        """Check that every present data directory lies inside one section.

        The security directory holds a file offset, not an RVA, and is
        skipped.
        """
        result = VerificationResult()

        for index, directory in enumerate(self._image.data_directories):
            if not directory.is_present or index == DirectoryEntry.SECURITY:
                continue
            name = _directory_name(index)
            try:
                self._image.directory(directory)
            except MalformedImageError as e:
                result.add_error(
                    f"{name} directory [0x{directory.VirtualAddress:x}, "
                    f"+0x{directory.Size:x}) does not resolve: {e}",
                    e.reason,
                )

        return result

    def check_entry_point(self) -> VerificationResult:
        result = VerificationResult()
        entry = self._image.nt_headers.address_of_entry_point
        if entry and self._image.find_section(entry) is None:
            result.add_warning(f"Entry point 0x{entry:x} is not in any section")
        return result

    def check_relocations(self) -> VerificationResult:
        """Decode the whole base relocation directory, if present."""
        result = VerificationResult()
        if self._image.directory_header(DirectoryEntry.BASERELOC) is None:
            return result

        count = 0
        try:
            for _ in self._image.relocations():
                count += 1
        except MalformedImageError as e:
            result.add_error(f"Relocation directory: {e} (after {count} entries)", e.reason)
            return result

        logger.debug("Decoded %d relocations", count)
        return result

    def check_imports(self) -> VerificationResult:
        """Decode every import descriptor, DLL name and lookup table."""
        result = VerificationResult()
        if self._image.directory_header(DirectoryEntry.IMPORT) is None:
            return result

        try:
            descriptors = list(self._image.imports())
        except MalformedImageError as e:
            result.add_error(f"Import directory: {e}", e.reason)
            return result

        for index, descriptor in enumerate(descriptors):
            try:
                dll = self._image.import_name(descriptor).decode("ascii", errors="replace")
            except MalformedImageError as e:
                result.add_error(f"Import descriptor {index}: DLL name: {e}", e.reason)
                continue

            try:
                symbols = sum(1 for _ in self._image.import_table(descriptor))
            except MalformedImageError as e:
                result.add_error(f"Imports from {dll}: {e}", e.reason)
                continue
            logger.debug("Decoded %d imports from %s", symbols, dll)

        return result
