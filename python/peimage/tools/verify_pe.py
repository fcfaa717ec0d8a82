#!/usr/bin/env python3
"""
PE verification CLI tool.

Validates the headers of a PE binary, prints a summary of its layout and
runs the structural checks (relocation and import decoding, section table
consistency).

Usage:
    python -m peimage.tools.verify_pe <binary> [--verbose]
"""

import argparse
import logging
import sys
from pathlib import Path

from peimage import (
    ImageVerifier,
    MalformedImageError,
    PeFile,
    VerificationResult,
    section_protection,
)
from peimage.nt import DirectoryEntry
from peimage.protection import MemoryProtection


def _format_protection(protection: MemoryProtection) -> str:
    flags = (
        ("r", MemoryProtection.READ),
        ("w", MemoryProtection.WRITE),
        ("x", MemoryProtection.EXECUTE),
    )
    return "".join(c if protection & flag else "-" for c, flag in flags)


def print_summary(pe: PeFile) -> None:
    """Print headers, sections and directory counts of a parsed image."""
    nt = pe.nt_headers
    print(f"  format:       {nt.kind.name} (magic 0x{nt.magic:x})")
    print(f"  machine:      0x{nt.machine:04x}")
    print(f"  image base:   0x{nt.image_base:x}")
    print(f"  entry point:  0x{nt.address_of_entry_point:x}")
    print(f"  SizeOfImage:  0x{nt.size_of_image:x}")
    print(f"  directories:  {nt.number_of_rva_and_sizes}")

    print(f"  sections ({nt.number_of_sections}):")
    for section in pe.section_headers:
        protection = section_protection(section)
        print(
            f"    {section.name_str:<8} rva=0x{section.VirtualAddress:08x} "
            f"vsize=0x{section.VirtualSize:x} raw=0x{section.PointerToRawData:x}"
            f"+0x{section.SizeOfRawData:x} {_format_protection(protection)}"
        )

    if pe.directory_header(DirectoryEntry.BASERELOC) is not None:
        try:
            print(f"  relocations:  {sum(1 for _ in pe.relocations())}")
        except MalformedImageError as e:
            print(f"  relocations:  unreadable ({e})")

    if pe.directory_header(DirectoryEntry.IMPORT) is not None:
        try:
            print(f"  imported DLLs: {sum(1 for _ in pe.imports())}")
        except MalformedImageError as e:
            print(f"  imported DLLs: unreadable ({e})")


def verify_binary(binary: Path, verbose: bool = False) -> VerificationResult:
    """Print a summary of a binary and run all verification checks on it.

    Args:
        binary: Path to PE binary
        verbose: Whether to show warnings

    Returns:
        VerificationResult
    """
    print(f"Verifying: {binary}")
    print("-" * 60)

    try:
        with PeFile.open(binary) as pe:
            print_summary(pe)
    except MalformedImageError as e:
        print(f"  headers: INVALID ({e})")

    result = ImageVerifier.verify(binary)

    print("-" * 60)
    overall = "PASSED" if result.passed else "FAILED"
    print(f"Overall: {overall}")

    if result.errors:
        print("\nAll errors:")
        for e in result.errors:
            print(f"  {e}")

    if verbose and result.warnings:
        print("\nAll warnings:")
        for w in result.warnings:
            print(f"  {w}")

    return result


def main():
    parser = argparse.ArgumentParser(
        description="Verify PE binary integrity using structural checks"
    )
    parser.add_argument("binary", type=Path, help="Path to PE binary to verify")
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Show verbose output including warnings and debug logging",
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(name)s: %(message)s",
    )

    if not args.binary.exists():
        print(f"Error: {args.binary} does not exist", file=sys.stderr)
        sys.exit(1)

    result = verify_binary(args.binary, args.verbose)
    sys.exit(0 if result.passed else 1)


if __name__ == "__main__":
    main()
