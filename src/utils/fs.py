"""Atomic filesystem operations for bundle, image and YAML handling.

Provides:
    - Atomic writes: tmp file → fsync → rename (prevents partial reads)
    - atomic_path(): same guarantee for writers that need a filename (OpenCV)
    - YAML loading for render configs
    - Directory creation with exist_ok semantics
    - Glob expansion of bundle file patterns

Bundles are produced by long-running render processes and consumed by merge
jobs that may start at any time, so a bundle must never be visible in a
half-written state. All writers in this project go through this module.

All paths use pathlib.Path.

Usage:
    from src.utils import fs
    fs.atomic_write_bytes(out_dir / name, archive_bytes)
    with fs.atomic_path(out_dir / "1700000000000.png") as tmp:
        cv2.imwrite(str(tmp), img)
"""

import glob
import os
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, List, Union

import yaml


def ensure_dir(p: Union[str, Path]) -> Path:
    """Create directory if it doesn't exist, return Path object.

    Parameters
    ----------
    p : Union[str, Path]
        Directory path

    Returns
    -------
    Path
        Path object (guaranteed to exist)
    """
    p = Path(p)
    p.mkdir(parents=True, exist_ok=True)
    return p


def atomic_write_bytes(
    path: Union[str, Path],
    data: bytes,
    tmp_suffix: str = ".tmp"
) -> None:
    """Write bytes to file atomically (tmp → fsync → rename).

    Parameters
    ----------
    path : Union[str, Path]
        Target file path
    data : bytes
        Data to write
    tmp_suffix : str
        Temporary file suffix, default ".tmp"

    Raises
    ------
    OSError
        If the file cannot be created, written or renamed. The temporary
        file is removed before the error propagates.

    Notes
    -----
    The tmp file lives in the target directory so the rename stays on one
    filesystem.
    """
    path = Path(path)
    ensure_dir(path.parent)
    tmp_path = path.with_suffix(path.suffix + tmp_suffix)

    try:
        with open(tmp_path, 'wb') as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        tmp_path.replace(path)
    except BaseException:
        if tmp_path.exists():
            tmp_path.unlink()
        raise


@contextmanager
def atomic_path(path: Union[str, Path]) -> Iterator[Path]:
    """Yield a temporary sibling path that is renamed onto ``path`` on success.

    The temporary name keeps the original extension so format detection by
    extension (OpenCV, PIL) still works.

    Examples
    --------
    >>> with atomic_path("out/image.png") as tmp:
    ...     cv2.imwrite(str(tmp), img)
    """
    path = Path(path)
    ensure_dir(path.parent)
    tmp_path = path.with_name(path.stem + ".tmp" + path.suffix)

    try:
        yield tmp_path
        if not tmp_path.exists():
            raise OSError(f"Writer did not produce {tmp_path}")
        tmp_path.replace(path)
    except BaseException:
        if tmp_path.exists():
            tmp_path.unlink()
        raise


def load_yaml(path: Union[str, Path]) -> Dict[str, Any]:
    """Load YAML file safely.

    Parameters
    ----------
    path : Union[str, Path]
        YAML file path

    Returns
    -------
    Dict[str, Any]
        Parsed YAML content ({} for an empty file)

    Raises
    ------
    FileNotFoundError
        If file doesn't exist
    yaml.YAMLError
        If YAML parsing fails
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"YAML file not found: {path}")

    try:
        with open(path, 'r', encoding='utf-8') as f:
            return yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise yaml.YAMLError(f"Failed to parse YAML file {path}: {e}") from e


def expand_glob(pattern: str) -> List[Path]:
    """Expand a shell-style pattern into a sorted list of existing files.

    Parameters
    ----------
    pattern : str
        Glob pattern, e.g. "runs/bbundle_night_*.zip" (``**`` is recursive)

    Returns
    -------
    List[Path]
        Matching regular files in lexicographic order; may be empty
    """
    matches = glob.glob(pattern, recursive=True)
    return sorted(Path(m) for m in matches if Path(m).is_file())
