"""Compute backends behind the engine's allocate/upload/dispatch/readback contract.

Modules:
    - base: ComputeBackend ABC, buffer usages and the fixed binding layout
    - torch_backend: CUDA (or torch CPU) tensors, production path
    - cpu_reference: NumPy kernel, deterministic ground truth

Usage:
    from src.buddhabrot.backends import create_backend
    backend = create_backend("torch", device="cuda")
"""

from typing import Optional

from .base import BINDING_LAYOUT, BUFFER_USAGES, BufferSpec, ComputeBackend
from .cpu_reference import CPUReferenceBackend


def create_backend(name: str, device: Optional[str] = None) -> ComputeBackend:
    """Instantiate a backend by name ("torch" or "cpu")."""
    if name == "cpu":
        return CPUReferenceBackend()
    if name == "torch":
        from .torch_backend import TorchBackend
        return TorchBackend(device)
    raise ValueError(f"Unknown backend: {name}. Use 'torch' or 'cpu'.")


__all__ = [
    'BINDING_LAYOUT',
    'BUFFER_USAGES',
    'BufferSpec',
    'ComputeBackend',
    'CPUReferenceBackend',
    'create_backend',
]
