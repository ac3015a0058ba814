"""Buddhabrot sampling, accumulation and bundle handling.

Provides the compute and persistence layers:
    - ComputeEngine: Owns backend buffers, runs one sampling dispatch per call
    - BuddhabrotFrame: Running uint32 histogram fed by repeated dispatches
    - bundle: Versioned binary snapshot inside a single-entry ZIP archive
    - merge: Elementwise uint64 sum of many bundles with geometry checks
    - image: 16-bit RGB normalization and PNG output

Backends (src.buddhabrot.backends):
    - TorchBackend: CUDA tensors (production), also runs on the torch CPU device
    - CPUReferenceBackend: NumPy kernel, deterministic, no GPU required

Invariants:
    - Dispatch batch length (trials_x2) is a multiple of 6400
    - Frame counters wrap at 2**32 (see BuddhabrotFrame.update)
    - Merged sums are uint64; narrowing happens only at the output stage

Used by:
    - scripts/render.py: Sampling loop writing bundles
    - scripts/merge_bundles.py: Many bundles → one bundle
    - scripts/make_image.py: Many bundles → PNG
"""

from .engine import ComputeEngine
from .errors import (
    BuddhabrotError,
    BundleFormatError,
    DeviceError,
    DeviceTimeoutError,
    EngineConfigError,
    GeometryMismatchError,
    IterationMismatchError,
)
from .frame import BuddhabrotFrame
from .params import PlaneWindow

__all__ = [
    'BuddhabrotFrame',
    'BuddhabrotError',
    'BundleFormatError',
    'ComputeEngine',
    'DeviceError',
    'DeviceTimeoutError',
    'EngineConfigError',
    'GeometryMismatchError',
    'IterationMismatchError',
    'PlaneWindow',
]
