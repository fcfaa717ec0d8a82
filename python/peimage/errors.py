"""
Error taxonomy for malformed PE images.

Every validation and decoding failure raises MalformedImageError. The
``reason`` attribute is a machine-checkable Reason so callers (and tests)
can tell a truncated file from a bad signature without parsing messages.
"""

from enum import Enum


class Reason(str, Enum):
    """Why an image was rejected."""

    # Signatures and magic
    BAD_DOS_SIGNATURE = "bad DOS header magic"
    BAD_NT_SIGNATURE = "bad NT header magic"
    BAD_OPTIONAL_MAGIC = "bad NT optional header magic"

    # Declared sizes and offsets
    BAD_PE_OFFSET = "bad PE header offset"
    BAD_SIZE_OF_OPTIONAL_HEADER = "bad SizeOfOptionalHeader"
    BAD_SECTION_SIZE = "bad section VirtualSize"
    BAD_SIZE_OF_IMAGE = "invalid SizeOfImage"
    BAD_SIZE_OF_HEADERS = "bad SizeOfHeaders"

    # Input exhaustion and arithmetic
    TRUNCATED = "unexpected end of input"
    OVERFLOW = "address arithmetic overflow"

    # Address resolution
    RVA_NOT_FOUND = "rva not found in image"
    SEGMENT_OUT_OF_BOUNDS = "segment reaches beyond section end"
    UNTERMINATED_STRING = "cstring not null terminated"
    DIRECTORY_NOT_FOUND = "data directory not present"

    # Sub-format decoding
    BAD_RELOCATION_KIND = "bad relocation kind"
    BAD_RELOCATION_BLOCK_SIZE = "bad relocation block size"

    # Writing
    BAD_SECTION_OFFSET = "bad section offset"
    SHORT_SECTION_PAYLOAD = "failed to copy section"
    SHORT_WRITE = "sink accepted fewer bytes than written"


class MalformedImageError(ValueError):
    """Raised when a PE image violates the format.

    Attributes:
        reason: Reason code for the failure
    """

    def __init__(self, reason: Reason, detail: str = ""):
        self.reason = reason
        message = reason.value
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)
