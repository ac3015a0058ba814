"""Compute engine: backend resources plus one blocking sampling dispatch per call.

Resources (allocated once, never re-aliased):
    - storage  width*height*4 bytes, per-pixel uint32 counters   (binding 0)
    - prng     trials_x2*4 bytes, float32 sample batch           (binding 1)
    - params   44 bytes, packed GPUParameters                    (binding 2)
    - staging  width*height*4 bytes, host-readable copy of storage

call() sequence:
    zero storage → upload params → upload samples → dispatch
    (100, ceil(trials_x2 / 12800), 1) → copy storage → staging → blocking readback

The returned array is the contribution of that single dispatch; summing
across dispatches is the caller's job (see frame.BuddhabrotFrame).
"""

import logging
import time

import numpy as np

from .backends.base import ComputeBackend
from .errors import EngineConfigError
from .params import (
    GPU_PARAMS_NBYTES,
    TRIAL_TILE,
    PlaneWindow,
    dispatch_grid,
    pack_gpu_parameters,
)

logger = logging.getLogger(__name__)

STORAGE = "storage"
STAGING = "staging"
PARAMS = "params"
PRNG = "prng"


class ComputeEngine:
    """Opaque sampling engine over a ComputeBackend.

    Parameters
    ----------
    trials_x2 : int
        Samples per dispatch; must be a positive multiple of 6400
    width, height : int
        Histogram size in pixels
    backend : ComputeBackend
        Freshly created backend; the engine takes exclusive ownership
    readback_timeout_s : float
        Fatal timeout for the blocking readback

    Raises
    ------
    EngineConfigError
        If trials_x2 is not a multiple of 6400 or the size is not positive
    """

    def __init__(
        self,
        trials_x2: int,
        width: int,
        height: int,
        backend: ComputeBackend,
        readback_timeout_s: float = 600.0,
    ):
        if trials_x2 <= 0 or trials_x2 % TRIAL_TILE != 0:
            raise EngineConfigError(
                f"trials_x2 must be a positive multiple of {TRIAL_TILE}, got {trials_x2}"
            )
        if width <= 0 or height <= 0:
            raise EngineConfigError(f"Frame size must be positive, got {width}×{height}")
        if backend.buffers:
            raise EngineConfigError(f"Backend '{backend.name}' is already owned by another engine")

        self.trials_x2 = trials_x2
        self.width = width
        self.height = height
        self.backend = backend
        self.readback_timeout_s = readback_timeout_s
        self.grid = dispatch_grid(trials_x2)

        frame_nbytes = 4 * width * height
        backend.allocate(STORAGE, frame_nbytes, "storage")
        backend.allocate(STAGING, frame_nbytes, "staging")
        backend.allocate(PARAMS, GPU_PARAMS_NBYTES, "uniform")
        backend.allocate(PRNG, 4 * trials_x2, "prng")
        backend.build_pipeline({0: STORAGE, 1: PRNG, 2: PARAMS})

        self._zero = bytes(frame_nbytes)

        logger.info(
            f"ComputeEngine ready: backend={backend.name}, frame={width}×{height}, "
            f"trials_x2={trials_x2}, grid={self.grid}"
        )

    def call(
        self,
        window: PlaneWindow,
        zoom: PlaneWindow,
        max_iterations: int,
        samples: np.ndarray,
    ) -> np.ndarray:
        """Run one dispatch and return its per-pixel hit counts.

        Parameters
        ----------
        window : PlaneWindow
            Sampled region of the complex plane
        zoom : PlaneWindow
            Region mapped onto the width×height pixel grid
        max_iterations : int
            Iteration cap per trial
        samples : np.ndarray
            Uniform [0, 1) values, length trials_x2 (cast to float32)

        Returns
        -------
        np.ndarray
            uint32 array of shape (width * height,), row-major, row 0 at the top

        Raises
        ------
        EngineConfigError
            If len(samples) != trials_x2
        DeviceError, DeviceTimeoutError
            On device failure (fatal)
        """
        samples = np.ascontiguousarray(samples, dtype='<f4').reshape(-1)
        if samples.shape[0] != self.trials_x2:
            raise EngineConfigError(
                f"Sample batch has {samples.shape[0]} values, engine expects {self.trials_x2}"
            )
        if max_iterations < 0 or max_iterations > 0xFFFFFFFF:
            raise EngineConfigError(f"max_iterations out of u32 range: {max_iterations}")

        start = time.perf_counter()

        self.backend.upload(STORAGE, self._zero)
        self.backend.upload(
            PARAMS,
            pack_gpu_parameters(self.width, self.height, max_iterations, window, zoom),
        )
        self.backend.upload(PRNG, samples.tobytes())
        self.backend.dispatch(self.grid)
        self.backend.copy(STORAGE, STAGING)
        raw = self.backend.readback(STAGING, timeout_s=self.readback_timeout_s)

        delta = np.frombuffer(raw, dtype='<u4').astype(np.uint32)

        logger.debug(
            f"dispatch grid={self.grid} hits={int(delta.sum(dtype=np.uint64))} "
            f"in {time.perf_counter() - start:.3f} s"
        )
        return delta
