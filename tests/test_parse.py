"""Tests for the sequential header validator and reader."""

import io
import struct

import pytest

from peimage import MalformedImageError, Reason, NtKind
from peimage.parse import read_headers, validate_headers
from peimage.stream import SegmentReader

from pe_test_utils import (
    DOS_STUB,
    E_LFANEW,
    IMAGE_SIZE,
    SIZE_OF_HEADERS,
    build_pe,
    optional_header_offset,
    section_header_offset,
)


def _reason(data: bytes | bytearray) -> Reason:
    with pytest.raises(MalformedImageError) as exc_info:
        validate_headers(io.BytesIO(bytes(data)))
    return exc_info.value.reason


class TestReadHeaders:
    """Tests for a successful header read."""

    def test_reads_bundle(self, pe_image):
        bundle = read_headers(io.BytesIO(bytes(pe_image)))

        assert bundle.dos_header.e_lfanew == E_LFANEW
        assert bundle.dos_stub == DOS_STUB
        assert bundle.nt_headers.size_of_image == IMAGE_SIZE
        assert len(bundle.data_directories) == 16
        assert [s.name_str for s in bundle.section_headers] == [".text", ".data"]

    def test_kind_follows_magic(self, pe32, pe64):
        assert read_headers(io.BytesIO(bytes(pe32))).kind is NtKind.WIN32
        assert read_headers(io.BytesIO(bytes(pe64))).kind is NtKind.WIN64

    def test_stream_left_at_size_of_headers(self, pe_image):
        stream = io.BytesIO(bytes(pe_image))
        read_headers(stream)
        assert stream.tell() == SIZE_OF_HEADERS

        stream = io.BytesIO(bytes(pe_image))
        validate_headers(stream)
        assert stream.tell() == SIZE_OF_HEADERS

    def test_validate_returns_nothing(self, pe64):
        """Both entry points share one pass; only read_headers keeps the result."""
        assert validate_headers(io.BytesIO(bytes(pe64))) is None
        bundle = read_headers(io.BytesIO(bytes(pe64)))
        assert len(bundle.section_headers) == 2
        assert bundle.dos_stub

    def test_segment_reader_source(self, pe64):
        reader = SegmentReader(pe64)
        validate_headers(reader)
        assert reader.tell() == SIZE_OF_HEADERS

    def test_idempotent(self, pe64):
        first = read_headers(io.BytesIO(bytes(pe64)))
        second = read_headers(io.BytesIO(bytes(pe64)))
        assert first == second

    def test_headers_only_is_enough(self, pe64):
        """Section payloads are not part of header validation."""
        validate_headers(io.BytesIO(bytes(pe64[:SIZE_OF_HEADERS])))

    def test_fewer_data_directories(self):
        data = build_pe(number_of_rva_and_sizes=6)
        bundle = read_headers(io.BytesIO(bytes(data)))
        assert len(bundle.data_directories) == 6

    def test_optional_header_padding_is_skipped(self):
        data = build_pe(optional_header_padding=16)
        bundle = read_headers(io.BytesIO(bytes(data)))
        assert [s.name_str for s in bundle.section_headers] == [".text", ".data"]

    def test_minimal_stub(self):
        """e_lfanew may point right after the DOS header."""
        data = build_pe()
        headers = bytearray(data[:SIZE_OF_HEADERS])
        moved = headers[:64] + headers[E_LFANEW:] + bytes(E_LFANEW - 64)
        struct.pack_into("<I", moved, 0x3C, 64)

        bundle = read_headers(io.BytesIO(bytes(moved)))
        assert bundle.dos_stub == b""


class TestValidationFailures:
    """Each header invariant fails with its own reason."""

    def test_bad_dos_magic(self, pe64):
        struct.pack_into("<H", pe64, 0, 0x4D5A)
        assert _reason(pe64) is Reason.BAD_DOS_SIGNATURE

    def test_lfanew_inside_dos_header(self, pe64):
        struct.pack_into("<I", pe64, 0x3C, 0x20)
        assert _reason(pe64) is Reason.BAD_PE_OFFSET

    def test_lfanew_past_eof(self, pe64):
        struct.pack_into("<I", pe64, 0x3C, 0x10000)
        assert _reason(pe64) is Reason.TRUNCATED

    def test_bad_nt_signature(self, pe64):
        pe64[E_LFANEW : E_LFANEW + 4] = b"PE\x00\x01"
        assert _reason(pe64) is Reason.BAD_NT_SIGNATURE

    @pytest.mark.parametrize("magic", [0x107, 0x0, 0x30B])
    def test_bad_optional_magic(self, pe64, magic):
        struct.pack_into("<H", pe64, optional_header_offset(), magic)
        assert _reason(pe64) is Reason.BAD_OPTIONAL_MAGIC

    def test_swapped_magic_reads_wrong_width(self, pe32):
        """A PE32 body with a PE32+ magic is misread and then rejected."""
        struct.pack_into("<H", pe32, optional_header_offset(), 0x20B)
        with pytest.raises(MalformedImageError):
            validate_headers(io.BytesIO(bytes(pe32)))

    def test_size_of_optional_header_too_small(self, pe64):
        struct.pack_into("<H", pe64, E_LFANEW + 4 + 16, 112 + 16 * 8 - 1)
        assert _reason(pe64) is Reason.BAD_SIZE_OF_OPTIONAL_HEADER

    def test_too_many_data_directories(self, pe64):
        struct.pack_into("<I", pe64, optional_header_offset() + 108, 17)
        assert _reason(pe64) is Reason.BAD_SIZE_OF_OPTIONAL_HEADER

    def test_section_extent_overflows(self, pe64):
        offset = section_header_offset(pe64, 1)
        struct.pack_into("<II", pe64, offset + 8, 0x1000, 0xFFFFF800)
        assert _reason(pe64) is Reason.BAD_SECTION_SIZE

    def test_section_past_size_of_image(self, pe64):
        offset = section_header_offset(pe64, 1)
        struct.pack_into("<I", pe64, offset + 8, 0x1001)  # VirtualSize
        assert _reason(pe64) is Reason.BAD_SIZE_OF_IMAGE

    def test_size_of_headers_past_size_of_image(self, pe64):
        """The section extent fold is seeded with SizeOfHeaders."""
        struct.pack_into("<I", pe64, optional_header_offset() + 60, IMAGE_SIZE + 1)
        assert _reason(pe64) is Reason.BAD_SIZE_OF_IMAGE

    def test_size_of_headers_too_small(self, pe64):
        struct.pack_into("<I", pe64, optional_header_offset() + 60, 0x100)
        assert _reason(pe64) is Reason.BAD_SIZE_OF_HEADERS

    def test_too_many_sections_truncated(self, pe64):
        struct.pack_into("<H", pe64, E_LFANEW + 4 + 2, 0x7FFF)
        assert _reason(pe64[:SIZE_OF_HEADERS]) is Reason.TRUNCATED

    def test_message_carries_reason(self, pe64):
        struct.pack_into("<H", pe64, 0, 0)
        with pytest.raises(MalformedImageError, match="bad DOS header magic"):
            validate_headers(io.BytesIO(bytes(pe64)))


class TestTruncation:
    """Validation is total: every proper prefix of the headers is rejected."""

    def test_every_prefix_fails(self, pe_image):
        headers = bytes(pe_image[:SIZE_OF_HEADERS])
        for length in range(SIZE_OF_HEADERS):
            with pytest.raises(MalformedImageError) as exc_info:
                validate_headers(io.BytesIO(headers[:length]))
            assert exc_info.value.reason is Reason.TRUNCATED, length

    def test_empty_input(self):
        assert _reason(b"") is Reason.TRUNCATED

    def test_non_pe_text(self):
        assert _reason(b"This is not a PE file" * 10) is Reason.BAD_DOS_SIGNATURE
