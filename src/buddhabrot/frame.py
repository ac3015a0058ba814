"""Accumulation frame: a running histogram driven by repeated engine dispatches.

Lifecycle:
    zeroed → update() × runs_per_zip → dump_to_file() → reset() → ...

One frame lives as long as the render process; bundle files are cut from it
at whatever cadence the caller chooses.

Overflow:
    Counters are uint32 and addition wraps modulo 2**32, with no error and no
    warning. A single bundle would need ~4.3e9 hits on one pixel to wrap;
    runs long enough for that should cut bundles more often and let the
    uint64 merge stage do the summing.
"""

import logging
from pathlib import Path
from typing import Dict, Optional, Union

import numpy as np

from . import bundle
from .backends.base import ComputeBackend
from .engine import ComputeEngine
from .params import PlaneWindow, round_trials_x2

logger = logging.getLogger(__name__)


class BuddhabrotFrame:
    """Running Buddhabrot histogram for one sampling/zoom window pair.

    Parameters
    ----------
    width, height : int
        Output size in pixels
    max_iterations : int
        Iteration cap per trial
    gpu_trials : int
        Trials per dispatch; rounded so 2*gpu_trials is a multiple of 6400
    window : PlaneWindow
        Sampled region of the complex plane
    zoom : PlaneWindow
        Rendered region
    backend : ComputeBackend
        Backend handed to the engine (exclusively owned from then on)
    seed : int, optional
        Seed for the sample generator; None draws from OS entropy
    readback_timeout_s : float
        Forwarded to the engine

    Attributes
    ----------
    frame : np.ndarray
        uint32 counts, shape (width * height,)
    trials_x2 : int
        Samples consumed per update()
    updates : int
        update() calls since the last reset()
    """

    def __init__(
        self,
        width: int,
        height: int,
        max_iterations: int,
        gpu_trials: int,
        window: PlaneWindow,
        zoom: PlaneWindow,
        backend: ComputeBackend,
        seed: Optional[int] = None,
        readback_timeout_s: float = 600.0,
    ):
        self.width = width
        self.height = height
        self.max_iterations = max_iterations
        self.window = window
        self.zoom = zoom
        self.trials_x2 = round_trials_x2(gpu_trials)
        self.engine = ComputeEngine(
            self.trials_x2, width, height, backend, readback_timeout_s=readback_timeout_s
        )
        self.rng = np.random.default_rng(seed)
        self.frame = np.zeros(width * height, dtype=np.uint32)
        self.updates = 0

        if self.trials_x2 != 2 * gpu_trials:
            logger.info(f"gpu_trials={gpu_trials} rounded up to {self.trials_x2 // 2} trials per dispatch")

    def sample_batch(self) -> np.ndarray:
        """Fresh uniform [0, 1) float32 batch of length trials_x2."""
        return self.rng.random(self.trials_x2, dtype=np.float32)

    def update(self) -> np.ndarray:
        """Run one dispatch and add its delta into the frame (uint32 wraparound).

        Returns
        -------
        np.ndarray
            The dispatch delta, for callers that want per-pass statistics
        """
        delta = self.engine.call(self.window, self.zoom, self.max_iterations, self.sample_batch())
        np.add(self.frame, delta, out=self.frame)
        self.updates += 1
        return delta

    def reset(self) -> None:
        """Zero the frame; engine resources are untouched."""
        self.frame.fill(0)
        self.updates = 0

    def dump_stats(self) -> Dict[str, int]:
        """Log and return the total hit count and the brightest cell."""
        stats = {
            'sum': int(self.frame.sum(dtype=np.uint64)),
            'max': int(self.frame.max()) if self.frame.size else 0,
        }
        logger.info(f"sum: {stats['sum']}, max: {stats['max']}")
        return stats

    def dump_to_file(self, prefix: str, out_dir: Union[str, Path] = ".") -> Path:
        """Write the current frame as a bundle named from prefix, time and geometry."""
        name = bundle.bundle_filename(prefix, self.width, self.height, self.max_iterations)
        return bundle.write_bundle(
            Path(out_dir) / name, self.width, self.height, self.max_iterations, self.frame
        )
