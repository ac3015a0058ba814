"""Test the bundle codec.

Tests for src.buddhabrot.bundle:
    - Write/read round trip, including an all-zero histogram
    - data.bin header layout (version, iterations, width, height)
    - Strict reading: version byte, truncated header, missing entry,
      payload length mismatch, partial trailing word, non-zip file
    - Archive properties: deflate, ZIP64 extensions
    - File name pattern

Run:
    pytest tests/test_bundle.py -v
"""

import io
import re
import struct
import zipfile

import numpy as np
import pytest

from src.buddhabrot import bundle
from src.buddhabrot.errors import BundleFormatError


# ============================================================================
# HELPERS
# ============================================================================

def _write_zip(path, entries):
    """Write a zip with raw {name: bytes} entries."""
    with zipfile.ZipFile(path, 'w', compression=zipfile.ZIP_DEFLATED) as zf:
        for name, data in entries.items():
            zf.writestr(name, data)
    return path


def _header(version=1, iterations=100, width=2, height=2):
    return struct.pack('<BIII', version, iterations, width, height)


# ============================================================================
# ROUND TRIP
# ============================================================================

def test_round_trip(tmp_path):
    frame = np.array([0, 1, 2, 0xFFFFFFFF, 7, 42], dtype=np.uint32)
    path = bundle.write_bundle(tmp_path / "a.zip", 3, 2, 500, frame)

    b = bundle.decode(path)

    assert (b.width, b.height, b.iterations) == (3, 2, 500)
    assert b.payload.dtype == np.uint32
    np.testing.assert_array_equal(b.payload, frame)
    assert b == bundle.Bundle(3, 2, 500, frame.copy())


def test_round_trip_all_zero(tmp_path):
    frame = np.zeros(12, dtype=np.uint32)
    b = bundle.decode(bundle.write_bundle(tmp_path / "z.zip", 4, 3, 1, frame))
    assert b.payload.sum() == 0
    assert b.payload.shape == (12,)


def test_payload_layout():
    data = bundle.encode_payload(2, 1, 1000, np.array([5, 258], dtype=np.uint32))

    assert len(data) == 13 + 8
    assert data[0] == 0x01
    assert struct.unpack_from('<III', data, 1) == (1000, 2, 1)
    assert data[13:] == bytes([5, 0, 0, 0, 2, 1, 0, 0])


def test_encode_rejects_wrong_length():
    with pytest.raises(ValueError, match="expected"):
        bundle.encode_payload(2, 2, 10, np.zeros(3, dtype=np.uint32))


def test_encode_rejects_out_of_range():
    with pytest.raises(ValueError, match="32-bit"):
        bundle.encode_payload(1, 1, 10, np.array([1 << 32], dtype=np.uint64))


@pytest.mark.parametrize("width,height,iterations", [
    (-1, -1, 10),
    (1, 1, 1 << 32),
    (1 << 32, 1, 10),
])
def test_encode_rejects_header_out_of_range(width, height, iterations):
    with pytest.raises(ValueError, match="header field"):
        bundle.encode_payload(width, height, iterations, np.zeros(1, dtype=np.uint32))


def test_bundle_is_unhashable():
    """Array payload: value equality only, no hash."""
    b = bundle.Bundle(1, 1, 1, np.zeros(1, dtype=np.uint32))
    assert bundle.Bundle.__hash__ is None
    with pytest.raises(TypeError):
        hash(b)


# ============================================================================
# ARCHIVE PROPERTIES
# ============================================================================

def test_archive_single_deflated_zip64_entry():
    raw = bundle.encode(2, 2, 10, np.arange(4, dtype=np.uint32))

    with zipfile.ZipFile(io.BytesIO(raw)) as zf:
        infos = zf.infolist()
        assert [i.filename for i in infos] == ["data.bin"]
        assert infos[0].compress_type == zipfile.ZIP_DEFLATED
        # 4.5 is the first zip version with ZIP64 extensions
        assert infos[0].extract_version >= 45


def test_write_leaves_no_temp_files(tmp_path):
    bundle.write_bundle(tmp_path / "a.zip", 1, 1, 1, np.ones(1, dtype=np.uint32))
    assert [p.name for p in tmp_path.iterdir()] == ["a.zip"]


# ============================================================================
# STRICT READING
# ============================================================================

def test_rejects_wrong_version(tmp_path):
    path = _write_zip(tmp_path / "v2.zip", {"data.bin": _header(version=2) + bytes(16)})
    with pytest.raises(BundleFormatError, match="version"):
        bundle.decode(path)


def test_rejects_truncated_header(tmp_path):
    path = _write_zip(tmp_path / "short.zip", {"data.bin": b"\x01\x00\x00"})
    with pytest.raises(BundleFormatError, match="Truncated"):
        bundle.decode(path)


def test_rejects_missing_entry(tmp_path):
    path = _write_zip(tmp_path / "other.zip", {"other.bin": _header() + bytes(16)})
    with pytest.raises(BundleFormatError, match="data.bin"):
        bundle.decode(path)


def test_rejects_payload_length_mismatch(tmp_path):
    path = _write_zip(tmp_path / "len.zip", {"data.bin": _header(width=2, height=2) + bytes(12)})
    with pytest.raises(BundleFormatError, match="header says"):
        bundle.decode(path)


def test_rejects_partial_trailing_word(tmp_path):
    path = _write_zip(tmp_path / "odd.zip", {"data.bin": _header() + bytes(17)})
    with pytest.raises(BundleFormatError, match="whole number"):
        bundle.decode(path)


def test_rejects_non_zip(tmp_path):
    path = tmp_path / "junk.zip"
    path.write_bytes(b"not a zip archive")
    with pytest.raises(BundleFormatError):
        bundle.decode(path)


def test_missing_file_is_os_error(tmp_path):
    with pytest.raises(FileNotFoundError):
        bundle.decode(tmp_path / "nope.zip")


def test_format_error_is_value_error():
    assert issubclass(BundleFormatError, ValueError)


# ============================================================================
# FILE NAMES
# ============================================================================

def test_filename_pattern():
    assert bundle.bundle_filename("run", 320, 240, 1000, timestamp_ms=1234) == \
        "bbundle_run_1234_320_240_1000.zip"


def test_filename_uses_current_time():
    name = bundle.bundle_filename("night", 8, 4, 20)
    m = re.fullmatch(r"bbundle_night_(\d+)_8_4_20\.zip", name)
    assert m is not None
    assert int(m.group(1)) > 1_600_000_000_000
