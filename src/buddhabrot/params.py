"""Plane windows, the device parameter record and dispatch sizing.

Dispatch tiling:
    - One workgroup = 64 invocations, 100 workgroups along X
    - Each invocation consumes 2 samples (real and imaginary offset)
    - A sample batch of trials_x2 values therefore maps to
      grid = (100, ceil(trials_x2 / 12800), 1)
    - trials_x2 must be a multiple of 6400 (64 × 100)

For multiples of 12800 the grid covers the batch exactly:
    100 * gy * 64 * 2 == trials_x2
For odd multiples of 6400 the last row is half full and the kernel skips the
invocations that run past the batch.

Parameter record (little-endian, 44 bytes, uploaded verbatim per dispatch):
    width:u32 height:u32 max_iterations:u32
    ll_re ll_im ur_re ur_im zoom_ll_re zoom_ll_im zoom_ur_re zoom_ur_im : f32
"""

import math
from dataclasses import dataclass
from typing import Tuple

import numpy as np

WORKGROUP_SIZE = 64
GROUPS_X = 100
SAMPLES_PER_INVOCATION = 2
TRIAL_TILE = WORKGROUP_SIZE * GROUPS_X
SAMPLES_PER_ROW = TRIAL_TILE * SAMPLES_PER_INVOCATION

GPU_PARAMS_DTYPE = np.dtype([
    ('width', '<u4'),
    ('height', '<u4'),
    ('max_iterations', '<u4'),
    ('ll_re', '<f4'),
    ('ll_im', '<f4'),
    ('ur_re', '<f4'),
    ('ur_im', '<f4'),
    ('zoom_ll_re', '<f4'),
    ('zoom_ll_im', '<f4'),
    ('zoom_ur_re', '<f4'),
    ('zoom_ur_im', '<f4'),
])
GPU_PARAMS_NBYTES = GPU_PARAMS_DTYPE.itemsize


@dataclass(frozen=True)
class PlaneWindow:
    """Rectangle of the complex plane given by its lower-left and upper-right corners."""
    lower_left: complex
    upper_right: complex

    def __post_init__(self):
        if not self.lower_left.real < self.upper_right.real:
            raise ValueError(
                f"Degenerate window: lower_left.re={self.lower_left.real} "
                f">= upper_right.re={self.upper_right.real}"
            )
        if not self.lower_left.imag < self.upper_right.imag:
            raise ValueError(
                f"Degenerate window: lower_left.im={self.lower_left.imag} "
                f">= upper_right.im={self.upper_right.imag}"
            )

    @classmethod
    def from_config(cls, cfg) -> 'PlaneWindow':
        """Build from a validators.PlaneWindowV1."""
        return cls(cfg.lower_left.to_complex(), cfg.upper_right.to_complex())


def round_trials_x2(gpu_trials: int) -> int:
    """Sample count for ``gpu_trials`` trials, rounded up to the dispatch tile.

    >>> round_trials_x2(64000)
    128000
    >>> round_trials_x2(1)
    6400
    """
    if gpu_trials <= 0:
        raise ValueError(f"gpu_trials must be positive, got {gpu_trials}")
    return -(-gpu_trials * SAMPLES_PER_INVOCATION // TRIAL_TILE) * TRIAL_TILE


def dispatch_grid(trials_x2: int) -> Tuple[int, int, int]:
    """Workgroup grid for a batch of ``trials_x2`` samples."""
    if trials_x2 <= 0 or trials_x2 % TRIAL_TILE != 0:
        raise ValueError(f"trials_x2 must be a positive multiple of {TRIAL_TILE}, got {trials_x2}")
    return (GROUPS_X, math.ceil(trials_x2 / SAMPLES_PER_ROW), 1)


def invocation_count(grid: Tuple[int, int, int]) -> int:
    return grid[0] * grid[1] * grid[2] * WORKGROUP_SIZE


def pack_gpu_parameters(
    width: int,
    height: int,
    max_iterations: int,
    window: PlaneWindow,
    zoom: PlaneWindow,
) -> bytes:
    """Serialize the per-dispatch parameter record."""
    rec = np.zeros((), dtype=GPU_PARAMS_DTYPE)
    rec['width'] = width
    rec['height'] = height
    rec['max_iterations'] = max_iterations
    rec['ll_re'] = window.lower_left.real
    rec['ll_im'] = window.lower_left.imag
    rec['ur_re'] = window.upper_right.real
    rec['ur_im'] = window.upper_right.imag
    rec['zoom_ll_re'] = zoom.lower_left.real
    rec['zoom_ll_im'] = zoom.lower_left.imag
    rec['zoom_ur_re'] = zoom.upper_right.real
    rec['zoom_ur_im'] = zoom.upper_right.imag
    return rec.tobytes()


def unpack_gpu_parameters(data: bytes) -> np.void:
    """Inverse of pack_gpu_parameters; fields are addressed by name."""
    if len(data) < GPU_PARAMS_NBYTES:
        raise ValueError(f"Parameter record needs {GPU_PARAMS_NBYTES} bytes, got {len(data)}")
    return np.frombuffer(data[:GPU_PARAMS_NBYTES], dtype=GPU_PARAMS_DTYPE)[0]
