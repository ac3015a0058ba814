"""GPU backend: the sampling kernel as PyTorch tensor ops on a CUDA device.

Buffers are flat uint8 device tensors reinterpreted per binding (int32
counters, float32 samples); the staging buffer is pinned host memory so the
storage → staging copy runs asynchronously on the current stream.

Readback bridging:
    - copy() enqueues the device → host transfer and records a CUDA event
    - readback() polls that one-shot event until it completes, then hands
      the bytes back; if the event has not fired within timeout_s the
      device is considered lost (DeviceTimeoutError, fatal, never retried)

On device="cpu" the same kernel runs on host tensors and every call is
synchronous, which is how the tests exercise this backend without a GPU.

Precision:
    - Orbits in FP32 (matches the reference kernel)
    - Counters as int32 views of the storage bytes; two's-complement adds wrap
      exactly like uint32 atomicAdd
"""

import logging
import time
from typing import Dict, Optional, Tuple, Union

import torch

from src.utils import profiler, torch_utils

from ..errors import DeviceError, DeviceTimeoutError
from ..params import SAMPLES_PER_INVOCATION, invocation_count, unpack_gpu_parameters
from .base import BufferSpec, ComputeBackend

logger = logging.getLogger(__name__)

POLL_INTERVAL_S = 0.001


def escape_steps(c_re: torch.Tensor, c_im: torch.Tensor, max_iterations: int) -> torch.Tensor:
    """Orbit length up to and including the escaping point (0 if bounded)."""
    n = c_re.shape[0]
    steps = torch.zeros(n, dtype=torch.int32, device=c_re.device)
    z_re = torch.zeros_like(c_re)
    z_im = torch.zeros_like(c_im)
    active = torch.arange(n, device=c_re.device)

    for k in range(max_iterations):
        if active.numel() == 0:
            break
        zr, zi = z_re[active], z_im[active]
        new_re = zr * zr - zi * zi + c_re[active]
        new_im = 2.0 * zr * zi + c_im[active]
        z_re[active] = new_re
        z_im[active] = new_im

        escaped = new_re * new_re + new_im * new_im > 4.0
        steps[active[escaped]] = k + 1
        active = active[~escaped]

    return steps


def orbit_histogram(params, samples: torch.Tensor, n_invocations: int) -> torch.Tensor:
    """Sampling kernel; returns int64 hit counts of shape (width * height,)."""
    width = int(params['width'])
    height = int(params['height'])
    max_iterations = int(params['max_iterations'])
    device = samples.device

    counts = torch.zeros(width * height, dtype=torch.int64, device=device)
    n = min(n_invocations, samples.shape[0] // SAMPLES_PER_INVOCATION)
    if n <= 0 or max_iterations == 0:
        return counts

    def f32(value) -> torch.Tensor:
        return torch.tensor(float(value), dtype=torch.float32, device=device)

    ll_re, ll_im = f32(params['ll_re']), f32(params['ll_im'])
    span_c_re = f32(params['ur_re']) - ll_re
    span_c_im = f32(params['ur_im']) - ll_im

    pairs = samples[:n * SAMPLES_PER_INVOCATION].view(n, SAMPLES_PER_INVOCATION)
    c_re = ll_re + pairs[:, 0] * span_c_re
    c_im = ll_im + pairs[:, 1] * span_c_im

    steps = escape_steps(c_re, c_im, max_iterations)
    escaped = torch.nonzero(steps, as_tuple=True)[0]
    if escaped.numel() == 0:
        return counts

    c_re, c_im, steps = c_re[escaped], c_im[escaped], steps[escaped]
    z_re = torch.zeros_like(c_re)
    z_im = torch.zeros_like(c_im)

    zoom_ll_re, zoom_ur_im = f32(params['zoom_ll_re']), f32(params['zoom_ur_im'])
    span_re = f32(params['zoom_ur_re']) - zoom_ll_re
    span_im = zoom_ur_im - f32(params['zoom_ll_im'])

    for k in range(int(steps.max().item())):
        live = steps > k
        if not bool(live.all()):
            c_re, c_im, steps = c_re[live], c_im[live], steps[live]
            z_re, z_im = z_re[live], z_im[live]

        z_re, z_im = z_re * z_re - z_im * z_im + c_re, 2.0 * z_re * z_im + c_im

        fx = (z_re - zoom_ll_re) / span_re * width
        fy = (zoom_ur_im - z_im) / span_im * height
        inside = (fx >= 0) & (fx < width) & (fy >= 0) & (fy < height)

        px = fx[inside].to(torch.int64).clamp_(max=width - 1)
        py = fy[inside].to(torch.int64).clamp_(max=height - 1)
        if px.numel():
            counts += torch.bincount(py * width + px, minlength=width * height)

    return counts


class TorchBackend(ComputeBackend):
    """PyTorch implementation of the backend contract.

    Parameters
    ----------
    device : str or torch.device, optional
        "cuda" (default), "cuda:N" or "cpu"

    Raises
    ------
    DeviceError
        If the requested device cannot be acquired
    """

    name = "torch"

    def __init__(self, device: Optional[Union[str, torch.device]] = None):
        super().__init__()
        try:
            self.device = torch_utils.resolve_device(device)
        except RuntimeError as e:
            raise DeviceError(f"Failed to acquire compute device: {e}") from e

        self._memory: Dict[str, torch.Tensor] = {}
        self._pending: Dict[str, torch.cuda.Event] = {}

    @property
    def is_cuda(self) -> bool:
        return self.device.type == "cuda"

    def _allocate(self, spec: BufferSpec) -> None:
        try:
            if spec.usage == "staging":
                self._memory[spec.name] = torch.zeros(
                    spec.nbytes, dtype=torch.uint8, pin_memory=self.is_cuda
                )
            else:
                self._memory[spec.name] = torch.zeros(spec.nbytes, dtype=torch.uint8, device=self.device)
        except RuntimeError as e:
            raise DeviceError(f"Failed to allocate '{spec.name}' ({spec.nbytes} bytes): {e}") from e

    def _upload(self, spec: BufferSpec, data: bytes) -> None:
        if not data:
            return
        host = torch.frombuffer(bytearray(data), dtype=torch.uint8)
        self._memory[spec.name][:host.numel()].copy_(host)

    def _dispatch(self, grid: Tuple[int, int, int]) -> None:
        storage = self._memory[self.bindings[0]].view(torch.int32)
        samples = self._memory[self.bindings[1]].view(torch.float32)
        params = unpack_gpu_parameters(self._memory[self.bindings[2]].cpu().numpy().tobytes())

        try:
            with profiler.nvtx_range("buddhabrot dispatch"):
                counts = orbit_histogram(params, samples, invocation_count(grid))
                storage.add_(counts.to(torch.int32))
        except RuntimeError as e:
            raise DeviceError(f"Dispatch {grid} failed on {self.device}: {e}") from e

    def _copy(self, src: BufferSpec, dst: BufferSpec) -> None:
        target = self._memory[dst.name]
        target.copy_(self._memory[src.name], non_blocking=self.is_cuda)
        if self.is_cuda:
            event = torch.cuda.Event()
            event.record()
            self._pending[dst.name] = event

    def _readback(self, spec: BufferSpec, timeout_s: float) -> bytes:
        event = self._pending.pop(spec.name, None)
        if event is not None:
            deadline = time.monotonic() + timeout_s
            while not event.query():
                if time.monotonic() > deadline:
                    raise DeviceTimeoutError(
                        f"Readback of '{spec.name}' did not complete within {timeout_s:g} s"
                    )
                time.sleep(POLL_INTERVAL_S)
        return self._memory[spec.name].numpy().tobytes()
