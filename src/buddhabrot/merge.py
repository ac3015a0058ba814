"""Bundle merger: elementwise uint64 sum of many histograms.

Rules:
    - Bundles are decoded in input order
    - The first bundle fixes width and height; any later mismatch aborts the
      whole merge (GeometryMismatchError), nothing partial is returned
    - Sums are uint64, enough for ~4e9 full-scale u32 bundles
    - iterations of the result is the value of the last bundle read; by default
      every bundle must carry the same value (IterationMismatchError),
      strict_iterations=False accepts mixed inputs with last-wins semantics

Narrowing back to u32 only happens when a merged dataset is written out as a
bundle, and fails loudly (OverflowError) instead of wrapping.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Union

import numpy as np

from . import bundle
from .errors import GeometryMismatchError, IterationMismatchError

logger = logging.getLogger(__name__)

U32_MAX = 0xFFFFFFFF


@dataclass
class MergedDataset:
    """Summed histogram of one merge invocation."""
    width: int
    height: int
    iterations: int
    data: np.ndarray

    @property
    def image(self) -> np.ndarray:
        """(height, width) view of the sums."""
        return self.data.reshape(self.height, self.width)


def gather_data(
    paths: Iterable[Union[str, Path]],
    strict_iterations: bool = True,
) -> MergedDataset:
    """Decode and sum bundles.

    Parameters
    ----------
    paths : Iterable[str | Path]
        Bundle files, summed in this order
    strict_iterations : bool
        Require identical max_iterations across inputs, default True

    Returns
    -------
    MergedDataset
        uint64 sums

    Raises
    ------
    ValueError
        If no paths are given
    GeometryMismatchError
        If a bundle's width/height differs from the first bundle's
    IterationMismatchError
        If strict_iterations and a bundle's iteration cap differs
    BundleFormatError, OSError
        From decoding
    """
    paths = [Path(p) for p in paths]
    if not paths:
        raise ValueError("No bundle files to merge")

    data = None
    width = height = iterations = 0

    for path in paths:
        b = bundle.decode(path)

        if data is None:
            width, height, iterations = b.width, b.height, b.iterations
            data = np.zeros(width * height, dtype=np.uint64)
        else:
            if (b.width, b.height) != (width, height):
                raise GeometryMismatchError(
                    f"{path} is {b.width}×{b.height}, expected {width}×{height} "
                    f"(from {paths[0]})"
                )
            if strict_iterations and b.iterations != iterations:
                raise IterationMismatchError(
                    f"{path} has iterations={b.iterations}, expected {iterations} (from {paths[0]})"
                )
            iterations = b.iterations

        data += b.payload.astype(np.uint64)

    logger.info(
        f"Merged {len(paths)} bundle(s): {width}×{height}, iterations={iterations}, "
        f"total hits={int(data.sum(dtype=np.uint64))}"
    )
    return MergedDataset(width=width, height=height, iterations=iterations, data=data)


def narrow_to_u32(dataset: MergedDataset) -> np.ndarray:
    """uint32 copy of the sums; raises OverflowError instead of wrapping."""
    if dataset.data.size and int(dataset.data.max()) > U32_MAX:
        raise OverflowError(
            f"Merged cell value {int(dataset.data.max())} does not fit the u32 bundle payload"
        )
    return dataset.data.astype(np.uint32)


def merge_bundles(
    paths: Iterable[Union[str, Path]],
    prefix: str,
    out_dir: Union[str, Path] = ".",
    strict_iterations: bool = True,
) -> Path:
    """Merge bundles and write the result as a new bundle; returns its path."""
    dataset = gather_data(paths, strict_iterations=strict_iterations)
    name = bundle.bundle_filename(prefix, dataset.width, dataset.height, dataset.iterations)
    return bundle.write_bundle(
        Path(out_dir) / name,
        dataset.width,
        dataset.height,
        dataset.iterations,
        narrow_to_u32(dataset),
    )
