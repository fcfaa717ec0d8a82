import pytest
import pathlib

from pe_test_utils import build_pe


@pytest.fixture
def pe64() -> bytearray:
    """PE32+ image whose file and memory layouts coincide."""
    return build_pe(wide=True)


@pytest.fixture
def pe32() -> bytearray:
    """PE32 image whose file and memory layouts coincide."""
    return build_pe(wide=False)


@pytest.fixture(params=[True, False], ids=["pe32plus", "pe32"])
def pe_image(request) -> bytearray:
    """Both widths, for behaviour that must not depend on image width."""
    return build_pe(wide=request.param)


@pytest.fixture
def pe64_compact() -> bytearray:
    """PE32+ image with sections packed at FileAlignment 0x200."""
    return build_pe(wide=True, compact=True)


@pytest.fixture
def pe64_path(tmp_path: pathlib.Path, pe64_compact: bytearray) -> pathlib.Path:
    """Compact PE32+ image written to disk."""
    path = tmp_path / "sample.dll"
    path.write_bytes(pe64_compact)
    return path
