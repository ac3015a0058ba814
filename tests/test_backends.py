"""Test compute backends and the sampling kernel.

Test suites:
1. Backend contract (allocation, binding layout, upload/readback checks)
2. Kernel semantics on hand-computed orbits
3. Bounds-checked invocations past the sample batch
4. Torch (CPU device) vs NumPy reference parity
5. CUDA smoke test (skipped without a GPU), readback timeout

Fixtures:
- unit_window: sampling window where r = (0.5, 0.5) maps to c = 1 + 0i
- orbit_zoom: 8×2 zoom window over re ∈ [0, 8), im ∈ (-1, 1]
"""

import numpy as np
import pytest
import torch

from src.buddhabrot.backends import CPUReferenceBackend, create_backend
from src.buddhabrot.backends import cpu_reference
from src.buddhabrot.engine import ComputeEngine
from src.buddhabrot.errors import DeviceError, DeviceTimeoutError
from src.buddhabrot.params import PlaneWindow, pack_gpu_parameters, unpack_gpu_parameters


# ============================================================================
# FIXTURES
# ============================================================================

@pytest.fixture
def unit_window():
    """c = ll + r0*2 + i(-1 + r1*2): r = (0.5, 0.5) → c = 1 + 0i."""
    return PlaneWindow(complex(0.0, -1.0), complex(2.0, 1.0))


@pytest.fixture
def orbit_zoom():
    """One pixel per unit along re, two rows split at im = 0."""
    return PlaneWindow(complex(0.0, -1.0), complex(8.0, 1.0))


def _params(width, height, max_iterations, window, zoom):
    return unpack_gpu_parameters(pack_gpu_parameters(width, height, max_iterations, window, zoom))


def _ready_backend(backend, width=4, height=4, n_samples=6400):
    backend.allocate("storage", 4 * width * height, "storage")
    backend.allocate("staging", 4 * width * height, "staging")
    backend.allocate("params", 44, "uniform")
    backend.allocate("prng", 4 * n_samples, "prng")
    backend.build_pipeline({0: "storage", 1: "prng", 2: "params"})
    return backend


# ============================================================================
# TEST SUITE 1: Backend contract
# ============================================================================

def test_allocate_rejects_unknown_usage():
    with pytest.raises(ValueError):
        CPUReferenceBackend().allocate("x", 16, "vertex")


def test_allocate_rejects_duplicate_name():
    backend = CPUReferenceBackend()
    backend.allocate("storage", 16, "storage")
    with pytest.raises(ValueError):
        backend.allocate("storage", 16, "storage")


def test_pipeline_binding_usage_checked():
    """Binding 0 must be storage, 1 prng, 2 uniform."""
    backend = CPUReferenceBackend()
    backend.allocate("storage", 64, "storage")
    backend.allocate("params", 44, "uniform")
    backend.allocate("prng", 64, "prng")
    with pytest.raises(ValueError):
        backend.build_pipeline({0: "prng", 1: "storage", 2: "params"})


def test_pipeline_is_built_once():
    backend = _ready_backend(CPUReferenceBackend())
    with pytest.raises(DeviceError):
        backend.build_pipeline({0: "storage", 1: "prng", 2: "params"})


def test_dispatch_before_pipeline():
    backend = CPUReferenceBackend()
    with pytest.raises(DeviceError):
        backend.dispatch((100, 1, 1))


def test_upload_overflow_rejected():
    backend = _ready_backend(CPUReferenceBackend())
    with pytest.raises(ValueError):
        backend.upload("params", bytes(45))


def test_readback_requires_staging():
    backend = _ready_backend(CPUReferenceBackend())
    with pytest.raises(ValueError):
        backend.readback("storage")


def test_copy_then_readback():
    backend = _ready_backend(CPUReferenceBackend(), width=2, height=2)
    backend.upload("storage", np.array([1, 2, 3, 4], dtype='<u4').tobytes())
    backend.copy("storage", "staging")
    assert np.frombuffer(backend.readback("staging"), dtype='<u4').tolist() == [1, 2, 3, 4]


def test_create_backend_unknown():
    with pytest.raises(ValueError):
        create_backend("opencl")


# ============================================================================
# TEST SUITE 2: Kernel semantics
# ============================================================================

def test_escape_steps_known_orbits():
    """c = 1 escapes on the 3rd point (1, 2, 5); c = 0 and c = -1 stay bounded."""
    c_re = np.array([1.0, 0.0, -1.0, 3.0], dtype=np.float32)
    c_im = np.zeros(4, dtype=np.float32)

    steps = cpu_reference.escape_steps(c_re, c_im, 100)
    assert steps.tolist() == [3, 0, 0, 1]


def test_escape_steps_respects_cap():
    c_re = np.array([1.0], dtype=np.float32)
    c_im = np.zeros(1, dtype=np.float32)
    assert cpu_reference.escape_steps(c_re, c_im, 2).tolist() == [0]


def test_orbit_histogram_hand_computed(unit_window, orbit_zoom):
    """Orbit 1, 2, 5 of c = 1 lands in pixels (1,1), (2,1), (5,1) of an 8×2 frame."""
    params = _params(8, 2, 100, unit_window, orbit_zoom)
    samples = np.array([0.5, 0.5], dtype=np.float32)

    counts = cpu_reference.orbit_histogram(params, samples, 64)

    expected = np.zeros(16, dtype=np.uint32)
    expected[[9, 10, 13]] = 1
    np.testing.assert_array_equal(counts, expected)


def test_orbit_histogram_bounded_sample_contributes_nothing(unit_window, orbit_zoom):
    """r = (0, 0.5) → c = 0, which never escapes."""
    params = _params(8, 2, 100, unit_window, orbit_zoom)
    samples = np.array([0.0, 0.5], dtype=np.float32)

    assert cpu_reference.orbit_histogram(params, samples, 64).sum() == 0


def test_orbit_histogram_points_outside_zoom_ignored(unit_window):
    """A zoom window away from the orbit records nothing."""
    far_zoom = PlaneWindow(complex(-8.0, 3.0), complex(-4.0, 5.0))
    params = _params(8, 2, 100, unit_window, far_zoom)
    samples = np.array([0.5, 0.5], dtype=np.float32)

    assert cpu_reference.orbit_histogram(params, samples, 64).sum() == 0


# ============================================================================
# TEST SUITE 3: Invocation bounds
# ============================================================================

def test_invocations_past_batch_are_noops(unit_window, orbit_zoom):
    """Only min(invocations, len(samples) // 2) samples are read."""
    params = _params(8, 2, 100, unit_window, orbit_zoom)
    samples = np.array([0.5, 0.5, 0.5, 0.5], dtype=np.float32)

    one = cpu_reference.orbit_histogram(params, samples, 1)
    two = cpu_reference.orbit_histogram(params, samples, 6400)

    assert one.sum() == 3
    assert two.sum() == 6


def test_dispatch_accumulates_into_storage(unit_window, orbit_zoom):
    """Kernel adds into storage; the engine is the one that zeroes it."""
    backend = _ready_backend(CPUReferenceBackend(), width=8, height=2, n_samples=2)
    backend.upload("params", pack_gpu_parameters(8, 2, 100, unit_window, orbit_zoom))
    backend.upload("prng", np.array([0.5, 0.5], dtype='<f4').tobytes())

    backend.dispatch((1, 1, 1))
    backend.dispatch((1, 1, 1))
    backend.copy("storage", "staging")

    counts = np.frombuffer(backend.readback("staging"), dtype='<u4')
    assert counts[[9, 10, 13]].tolist() == [2, 2, 2]
    assert backend.dispatch_count == 2


# ============================================================================
# TEST SUITE 4: Torch parity
# ============================================================================

@pytest.mark.parametrize("seed", [7, 11, 23])
def test_torch_cpu_matches_reference(seed):
    """Same batch through both engines gives bit-identical histograms.

    19200 samples is an odd multiple of 6400, so the half-filled last row of
    the grid (bounds-checked invocations) is compared too.
    """
    window = PlaneWindow(complex(-2.25, -1.5), complex(1.0, 1.5))
    zoom = PlaneWindow(complex(-0.8, -0.3), complex(0.1, 0.9))
    samples = np.random.default_rng(seed).random(19200, dtype=np.float32)

    ref_engine = ComputeEngine(19200, 17, 11, CPUReferenceBackend())
    torch_engine = ComputeEngine(19200, 17, 11, create_backend("torch", device="cpu"))
    assert ref_engine.grid == (100, 2, 1)

    ref = ref_engine.call(window, zoom, 500, samples)
    got = torch_engine.call(window, zoom, 500, samples)

    assert ref.sum() > 0
    np.testing.assert_array_equal(got, ref)


def test_torch_backend_cpu_device_roundtrip():
    backend = _ready_backend(create_backend("torch", device="cpu"), width=2, height=2)
    backend.upload("storage", np.array([5, 6, 7, 8], dtype='<u4').tobytes())
    backend.copy("storage", "staging")
    assert np.frombuffer(backend.readback("staging"), dtype='<u4').tolist() == [5, 6, 7, 8]


def test_torch_backend_wraps_like_u32(unit_window, orbit_zoom):
    """int32 counters wrap exactly like uint32 atomics."""
    backend = _ready_backend(create_backend("torch", device="cpu"), width=8, height=2, n_samples=2)
    start = np.zeros(16, dtype='<u4')
    start[9] = 0xFFFFFFFF
    backend.upload("storage", start.tobytes())
    backend.upload("params", pack_gpu_parameters(8, 2, 100, unit_window, orbit_zoom))
    backend.upload("prng", np.array([0.5, 0.5], dtype='<f4').tobytes())

    backend.dispatch((1, 1, 1))
    backend.copy("storage", "staging")

    counts = np.frombuffer(backend.readback("staging"), dtype='<u4')
    assert counts[9] == 0
    assert counts[10] == 1


# ============================================================================
# TEST SUITE 5: CUDA
# ============================================================================

@pytest.mark.skipif(not torch.cuda.is_available(), reason="CUDA not available")
def test_torch_backend_cuda_readback(unit_window, orbit_zoom):
    backend = _ready_backend(create_backend("torch", device="cuda"), width=8, height=2, n_samples=2)
    backend.upload("storage", bytes(64))
    backend.upload("params", pack_gpu_parameters(8, 2, 100, unit_window, orbit_zoom))
    backend.upload("prng", np.array([0.5, 0.5], dtype='<f4').tobytes())
    backend.dispatch((1, 1, 1))
    backend.copy("storage", "staging")

    counts = np.frombuffer(backend.readback("staging", timeout_s=60.0), dtype='<u4')
    assert counts[[9, 10, 13]].tolist() == [1, 1, 1]


def test_cuda_requested_without_gpu_is_device_error(monkeypatch):
    monkeypatch.setattr(torch.cuda, "is_available", lambda: False)
    with pytest.raises(DeviceError):
        create_backend("torch", device="cuda")


class _StalledEvent:
    """CUDA event stand-in that never completes."""

    def query(self):
        return False


def test_torch_readback_timeout_is_fatal():
    backend = _ready_backend(create_backend("torch", device="cpu"), width=2, height=2)
    backend._pending["staging"] = _StalledEvent()

    with pytest.raises(DeviceTimeoutError, match="0.01 s"):
        backend.readback("staging", timeout_s=0.01)

    # the stalled event is dropped, never waited on again
    assert "staging" not in backend._pending
