"""CPU reference backend for ground-truth sampling dispatches.

This is a deterministic, pure-NumPy implementation of the sampling kernel.
It stands in for the GPU wherever no device is available (tests, CI, small
previews) and is the reference the torch backend is checked against.

Kernel, per invocation i (float32 throughout):
    - Read samples r0 = prng[2i], r1 = prng[2i + 1]; skip if past the batch
    - c = ll + r0 * (ur.re - ll.re) + 1j * r1 * (ur.im - ll.im)
    - Iterate z ← z² + c from z = 0, at most max_iterations times,
      stopping when |z|² > 4
    - If the orbit escaped, replay it and count every orbit point that falls
      inside the zoom window into storage[y * width + x]

Pixel mapping (row 0 is the top edge, the imaginary axis points up):
    x = floor((re - zoom_ll.re) / (zoom_ur.re - zoom_ll.re) * width)
    y = floor((zoom_ur.im - im) / (zoom_ur.im - zoom_ll.im) * height)

Invariants:
    - Storage counters are uint32 and wrap on overflow (atomicAdd semantics)
    - The kernel only adds into storage; zeroing is the engine's job
    - Identical inputs give bit-identical outputs
"""

import logging
from typing import Dict, Tuple

import numpy as np

from ..params import SAMPLES_PER_INVOCATION, invocation_count, unpack_gpu_parameters
from .base import BufferSpec, ComputeBackend

logger = logging.getLogger(__name__)

_F32 = np.float32


def escape_steps(c_re: np.ndarray, c_im: np.ndarray, max_iterations: int) -> np.ndarray:
    """Number of orbit points up to and including the escaping one (0 if bounded).

    Parameters
    ----------
    c_re, c_im : np.ndarray
        Float32 sample coordinates, shape (N,)
    max_iterations : int
        Iteration cap

    Returns
    -------
    np.ndarray
        int32 array, shape (N,)
    """
    n = c_re.shape[0]
    steps = np.zeros(n, dtype=np.int32)
    z_re = np.zeros(n, dtype=_F32)
    z_im = np.zeros(n, dtype=_F32)
    active = np.arange(n)

    for k in range(max_iterations):
        if active.size == 0:
            break
        zr, zi = z_re[active], z_im[active]
        new_re = zr * zr - zi * zi + c_re[active]
        new_im = _F32(2.0) * zr * zi + c_im[active]
        z_re[active] = new_re
        z_im[active] = new_im

        escaped = new_re * new_re + new_im * new_im > _F32(4.0)
        steps[active[escaped]] = k + 1
        active = active[~escaped]

    return steps


def orbit_histogram(params: np.void, samples: np.ndarray, n_invocations: int) -> np.ndarray:
    """Run the sampling kernel over ``n_invocations`` invocations.

    Parameters
    ----------
    params : np.void
        Unpacked parameter record (see params.GPU_PARAMS_DTYPE)
    samples : np.ndarray
        Float32 sample buffer
    n_invocations : int
        Invocations in the dispatch grid

    Returns
    -------
    np.ndarray
        uint32 hit counts, shape (width * height,)
    """
    width = int(params['width'])
    height = int(params['height'])
    max_iterations = int(params['max_iterations'])

    counts = np.zeros(width * height, dtype=np.uint32)
    n = min(n_invocations, samples.shape[0] // SAMPLES_PER_INVOCATION)
    if n <= 0 or max_iterations == 0:
        return counts

    pairs = samples[:n * SAMPLES_PER_INVOCATION].reshape(n, SAMPLES_PER_INVOCATION)
    c_re = params['ll_re'] + pairs[:, 0] * (params['ur_re'] - params['ll_re'])
    c_im = params['ll_im'] + pairs[:, 1] * (params['ur_im'] - params['ll_im'])

    steps = escape_steps(c_re, c_im, max_iterations)
    escaped = np.nonzero(steps)[0]
    if escaped.size == 0:
        return counts

    c_re, c_im, steps = c_re[escaped], c_im[escaped], steps[escaped]
    z_re = np.zeros(escaped.size, dtype=_F32)
    z_im = np.zeros(escaped.size, dtype=_F32)

    zoom_ll_re, zoom_ur_im = params['zoom_ll_re'], params['zoom_ur_im']
    span_re = params['zoom_ur_re'] - zoom_ll_re
    span_im = zoom_ur_im - params['zoom_ll_im']
    w_f, h_f = _F32(width), _F32(height)

    for k in range(int(steps.max())):
        live = steps > k
        if not live.all():
            c_re, c_im, steps = c_re[live], c_im[live], steps[live]
            z_re, z_im = z_re[live], z_im[live]

        z_re, z_im = z_re * z_re - z_im * z_im + c_re, _F32(2.0) * z_re * z_im + c_im

        fx = (z_re - zoom_ll_re) / span_re * w_f
        fy = (zoom_ur_im - z_im) / span_im * h_f
        inside = (fx >= 0) & (fx < w_f) & (fy >= 0) & (fy < h_f)
        if not inside.any():
            continue

        # float → int truncation equals floor on the non-negative range
        px = np.minimum(fx[inside].astype(np.int64), width - 1)
        py = np.minimum(fy[inside].astype(np.int64), height - 1)
        hits = np.bincount(py * width + px, minlength=width * height)
        counts += hits.astype(np.uint32)

    return counts


class CPUReferenceBackend(ComputeBackend):
    """NumPy implementation of the backend contract.

    Buffers are plain uint8 arrays; dispatches run synchronously, so
    readback() never waits and the timeout is never hit.
    """

    name = "cpu"

    def __init__(self):
        super().__init__()
        self._memory: Dict[str, np.ndarray] = {}
        self.dispatch_count = 0

    def _allocate(self, spec: BufferSpec) -> None:
        self._memory[spec.name] = np.zeros(spec.nbytes, dtype=np.uint8)

    def _upload(self, spec: BufferSpec, data: bytes) -> None:
        self._memory[spec.name][:len(data)] = np.frombuffer(data, dtype=np.uint8)

    def _dispatch(self, grid: Tuple[int, int, int]) -> None:
        storage = self._memory[self.bindings[0]].view('<u4')
        samples = self._memory[self.bindings[1]].view('<f4')
        params = unpack_gpu_parameters(self._memory[self.bindings[2]].tobytes())

        expected = int(params['width']) * int(params['height'])
        if storage.shape[0] != expected:
            raise ValueError(
                f"Storage holds {storage.shape[0]} counters but parameters describe "
                f"{params['width']}×{params['height']}"
            )

        counts = orbit_histogram(params, samples, invocation_count(grid))
        np.add(storage, counts, out=storage)
        self.dispatch_count += 1

    def _copy(self, src: BufferSpec, dst: BufferSpec) -> None:
        self._memory[dst.name][:] = self._memory[src.name]

    def _readback(self, spec: BufferSpec, timeout_s: float) -> bytes:
        return self._memory[spec.name].tobytes()
