"""Test the 16-bit PNG encoder.

Tests for src.buddhabrot.image:
    - Integer floor scaling to [0, 65535]
    - Identical R, G, B channels
    - Rejection of empty and all-zero histograms
    - Big-endian raster bytes
    - write_png() output read back through OpenCV

Run:
    pytest tests/test_image.py -v
"""

import cv2
import numpy as np
import pytest

from src.buddhabrot.image import normalize_rgb16, png_filename, to_big_endian_bytes, write_png
from src.buddhabrot.merge import MergedDataset


def _dataset(values, width, height):
    return MergedDataset(width, height, 100, np.asarray(values, dtype=np.uint64))


# ============================================================================
# NORMALIZATION
# ============================================================================

def test_max_maps_to_full_scale():
    rgb = normalize_rgb16(_dataset([0, 1, 2, 4], 2, 2))

    assert rgb.dtype == np.uint16
    assert rgb.shape == (2, 2, 3)
    assert rgb[1, 1].tolist() == [65535, 65535, 65535]
    assert rgb[0, 0].tolist() == [0, 0, 0]


def test_floor_scaling():
    rgb = normalize_rgb16(_dataset([1, 3], 2, 1))
    # 1 * 65535 // 3
    assert int(rgb[0, 0, 0]) == 21845
    rgb = normalize_rgb16(_dataset([2, 3], 2, 1))
    # 2 * 65535 // 3 = 43690
    assert int(rgb[0, 0, 0]) == 43690


def test_channels_identical():
    rng = np.random.default_rng(0)
    rgb = normalize_rgb16(_dataset(rng.integers(0, 1000, 24), 6, 4))

    np.testing.assert_array_equal(rgb[:, :, 0], rgb[:, :, 1])
    np.testing.assert_array_equal(rgb[:, :, 1], rgb[:, :, 2])


def test_large_counts_exact():
    big = 3_000_000_000_000
    rgb = normalize_rgb16(_dataset([big, big // 2], 2, 1))
    assert rgb[0, :, 0].tolist() == [65535, 32767]


def test_all_zero_rejected():
    with pytest.raises(ValueError, match="all-zero"):
        normalize_rgb16(_dataset([0, 0, 0, 0], 2, 2))


def test_empty_rejected():
    with pytest.raises(ValueError, match="empty"):
        normalize_rgb16(_dataset([], 0, 0))


def test_geometry_mismatch_rejected():
    with pytest.raises(ValueError, match="expected"):
        normalize_rgb16(_dataset([1, 2, 3], 2, 2))


# ============================================================================
# RAW BYTES
# ============================================================================

def test_big_endian_bytes():
    rgb = normalize_rgb16(_dataset([1, 2], 2, 1))
    raw = to_big_endian_bytes(rgb)

    assert len(raw) == 2 * 3 * 2
    # pixel 0 = 32767 = 0x7FFF, pixel 1 = 65535
    assert raw[:6] == b"\x7f\xff" * 3
    assert raw[6:] == b"\xff\xff" * 3


# ============================================================================
# PNG OUTPUT
# ============================================================================

def test_png_filename():
    assert png_filename(1700000000123) == "1700000000123.png"


def test_write_png_round_trip(tmp_path):
    ds = _dataset([0, 5, 10, 20, 40, 80], 3, 2)

    path = write_png(ds, tmp_path, timestamp_ms=42)

    assert path == tmp_path / "42.png"
    assert sorted(p.name for p in tmp_path.iterdir()) == ["42.png"]

    img = cv2.imread(str(path), cv2.IMREAD_UNCHANGED)
    assert img.dtype == np.uint16
    assert img.shape == (2, 3, 3)
    np.testing.assert_array_equal(img, normalize_rgb16(ds))


def test_write_png_zero_histogram_writes_nothing(tmp_path):
    with pytest.raises(ValueError):
        write_png(_dataset([0, 0], 2, 1), tmp_path)
    assert list(tmp_path.iterdir()) == []
