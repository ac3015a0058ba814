"""Bundle codec: versioned binary histogram snapshots in a ZIP archive.

Archive layout:
    <tag>_<prefix>_<epoch-ms>_<width>_<height>_<iterations>.zip
    └── data.bin   (deflate, ZIP64 "large file" extensions always on)

data.bin layout (little-endian):
    offset 0   u8   version (always 0x01)
    offset 1   u32  max_iterations
    offset 5   u32  width
    offset 9   u32  height
    offset 13  u32 × width*height  per-pixel counts, row-major

Reading is strict: a wrong version byte, a missing entry, a truncated header
or a payload that is not exactly width*height words raises BundleFormatError.
A corrupted histogram cannot be repaired, so there is no lenient mode.

Usage:
    from src.buddhabrot import bundle
    path = bundle.write_bundle(out_dir / name, width, height, iters, frame)
    b = bundle.decode(path)
"""

import io
import logging
import struct
import time
import zipfile
import zlib
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

import numpy as np

from src.utils import fs

from .errors import BundleFormatError

logger = logging.getLogger(__name__)

BUNDLE_VERSION = 1
BUNDLE_TAG = "bbundle"
BUNDLE_EXT = "zip"
ENTRY_NAME = "data.bin"
HEADER = struct.Struct('<BIII')


@dataclass(frozen=True, eq=False)
class Bundle:
    """Decoded bundle contents."""
    width: int
    height: int
    iterations: int
    payload: np.ndarray

    def __eq__(self, other) -> bool:
        if not isinstance(other, Bundle):
            return NotImplemented
        return (
            (self.width, self.height, self.iterations) == (other.width, other.height, other.iterations)
            and np.array_equal(self.payload, other.payload)
        )


def epoch_ms() -> int:
    return time.time_ns() // 1_000_000


def bundle_filename(
    prefix: str,
    width: int,
    height: int,
    max_iterations: int,
    timestamp_ms: Optional[int] = None,
) -> str:
    """Archive file name; same-millisecond collisions are not guarded against."""
    if timestamp_ms is None:
        timestamp_ms = epoch_ms()
    return f"{BUNDLE_TAG}_{prefix}_{timestamp_ms}_{width}_{height}_{max_iterations}.{BUNDLE_EXT}"


def encode_payload(width: int, height: int, max_iterations: int, frame: np.ndarray) -> bytes:
    """Raw data.bin contents for one histogram.

    Raises
    ------
    ValueError
        If a header field or a frame value does not fit u32, or the frame
        length is not width*height
    """
    for field, value in (('width', width), ('height', height), ('max_iterations', max_iterations)):
        if not 0 <= value <= 0xFFFFFFFF:
            raise ValueError(f"{field}={value} does not fit an unsigned 32-bit header field")

    frame = np.asarray(frame).reshape(-1)
    if frame.shape[0] != width * height:
        raise ValueError(f"Frame has {frame.shape[0]} cells, expected {width}×{height}")
    if frame.size and (frame.min() < 0 or frame.max() > 0xFFFFFFFF):
        raise ValueError("Frame values must fit in an unsigned 32-bit integer")

    header = HEADER.pack(BUNDLE_VERSION, max_iterations, width, height)
    return header + frame.astype('<u4').tobytes()


def encode(width: int, height: int, max_iterations: int, frame: np.ndarray) -> bytes:
    """Complete archive bytes (single deflated data.bin entry, ZIP64 on)."""
    payload = encode_payload(width, height, max_iterations, frame)

    buf = io.BytesIO()
    with zipfile.ZipFile(buf, 'w', compression=zipfile.ZIP_DEFLATED) as zf:
        with zf.open(ENTRY_NAME, 'w', force_zip64=True) as entry:
            entry.write(payload)
    return buf.getvalue()


def write_bundle(
    path: Union[str, Path],
    width: int,
    height: int,
    max_iterations: int,
    frame: np.ndarray,
) -> Path:
    """Encode and write a bundle atomically; returns the final path."""
    path = Path(path)
    fs.atomic_write_bytes(path, encode(width, height, max_iterations, frame))
    logger.info(f"Wrote bundle {path} ({width}×{height}, iterations={max_iterations})")
    return path


def decode_payload(data: bytes) -> Bundle:
    """Parse data.bin contents."""
    if len(data) < HEADER.size:
        raise BundleFormatError(f"Truncated header: {len(data)} of {HEADER.size} bytes")

    version, iterations, width, height = HEADER.unpack_from(data)
    if version != BUNDLE_VERSION:
        raise BundleFormatError(f"Unsupported bundle version {version:#04x} (expected {BUNDLE_VERSION:#04x})")

    body = memoryview(data)[HEADER.size:]
    if len(body) % 4 != 0:
        raise BundleFormatError(f"Payload of {len(body)} bytes is not a whole number of u32 words")

    payload = np.frombuffer(body, dtype='<u4').astype(np.uint32)
    if payload.shape[0] != width * height:
        raise BundleFormatError(
            f"Payload has {payload.shape[0]} cells, header says {width}×{height} = {width * height}"
        )

    return Bundle(width=width, height=height, iterations=iterations, payload=payload)


def decode(path: Union[str, Path]) -> Bundle:
    """Read and validate a bundle archive.

    Raises
    ------
    FileNotFoundError, OSError
        If the file cannot be read
    BundleFormatError
        If the archive, entry or data.bin layout is invalid
    """
    path = Path(path)
    try:
        with zipfile.ZipFile(path, 'r') as zf:
            try:
                data = zf.read(ENTRY_NAME)
            except KeyError:
                raise BundleFormatError(f"{path}: archive has no '{ENTRY_NAME}' entry") from None
    except (zipfile.BadZipFile, zipfile.LargeZipFile, zlib.error, EOFError) as e:
        raise BundleFormatError(f"{path}: not a readable bundle archive: {e}") from e

    try:
        bundle = decode_payload(data)
    except BundleFormatError as e:
        raise BundleFormatError(f"{path}: {e}") from e

    logger.debug(f"Read bundle {path}: {bundle.width}×{bundle.height}, iterations={bundle.iterations}")
    return bundle
