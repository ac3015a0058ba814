"""Image encoder: merged histogram → 16-bit grayscale-in-RGB PNG.

Normalization:
    v16 = count * 65535 // max(count)      (integer, floor)
written identically into R, G and B. PNG stores 16-bit samples big-endian;
to_big_endian_bytes() exposes that raster for callers that need raw bytes.

An all-zero (or empty) histogram has no meaningful scale and is rejected
rather than producing a black image from a division by zero.
"""

import logging
from pathlib import Path
from typing import Optional, Union

import cv2
import numpy as np

from src.utils import fs

from .bundle import epoch_ms
from .merge import MergedDataset

logger = logging.getLogger(__name__)

U16_MAX = 0xFFFF
# count * 65535 must stay inside uint64
_MAX_EXACT = np.iinfo(np.uint64).max // U16_MAX


def normalize_rgb16(dataset: MergedDataset) -> np.ndarray:
    """Scale counts to [0, 65535] and replicate into three channels.

    Returns
    -------
    np.ndarray
        uint16 array, shape (height, width, 3)

    Raises
    ------
    ValueError
        If the dataset is empty or its maximum is zero
    OverflowError
        If the maximum is too large for exact integer scaling
    """
    data = np.asarray(dataset.data, dtype=np.uint64)
    if data.size == 0:
        raise ValueError("Cannot normalize an empty histogram")
    if data.size != dataset.width * dataset.height:
        raise ValueError(f"Histogram has {data.size} cells, expected {dataset.width}×{dataset.height}")

    peak = int(data.max())
    if peak == 0:
        raise ValueError("Cannot normalize an all-zero histogram (maximum is 0)")
    if peak > _MAX_EXACT:
        raise OverflowError(f"Maximum {peak} too large for exact 16-bit scaling")

    scaled = (data * np.uint64(U16_MAX)) // np.uint64(peak)
    gray = scaled.astype(np.uint16).reshape(dataset.height, dataset.width)
    return np.repeat(gray[:, :, None], 3, axis=2)


def to_big_endian_bytes(rgb16: np.ndarray) -> bytes:
    """Interleaved RGB raster with big-endian 16-bit samples, row-major."""
    return np.ascontiguousarray(rgb16, dtype='>u2').tobytes()


def png_filename(timestamp_ms: Optional[int] = None) -> str:
    return f"{epoch_ms() if timestamp_ms is None else timestamp_ms}.png"


def write_png(
    dataset: MergedDataset,
    out_dir: Union[str, Path] = ".",
    timestamp_ms: Optional[int] = None,
) -> Path:
    """Normalize and write a 16-bit RGB PNG named by the epoch millisecond.

    Raises
    ------
    ValueError
        From normalize_rgb16
    OSError
        If OpenCV cannot encode or the file cannot be written
    """
    rgb16 = normalize_rgb16(dataset)
    path = Path(out_dir) / png_filename(timestamp_ms)

    with fs.atomic_path(path) as tmp:
        # channels are identical, so OpenCV's BGR order is irrelevant
        if not cv2.imwrite(str(tmp), rgb16):
            raise OSError(f"OpenCV failed to write {tmp}")

    logger.info(f"Wrote image {path} ({dataset.width}×{dataset.height}, 16-bit RGB)")
    return path
