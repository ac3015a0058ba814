"""Abstract compute backend: named buffers, one pipeline, blocking readback.

The engine never touches device objects directly; it talks to a backend
through six calls:

    allocate(name, nbytes, usage)   create a device buffer
    build_pipeline(bindings)        fix the kernel's binding layout (once)
    upload(name, data)              host → device write at offset 0
    dispatch(grid)                  run the sampling kernel over a workgroup grid
    copy(src, dst)                  device-side buffer copy
    readback(name, timeout_s)       blocking read of a staging buffer

Usages:
    storage  per-pixel uint32 counters written by the kernel (binding 0)
    prng     float32 sample batch read by the kernel (binding 1)
    uniform  packed parameter record (binding 2)
    staging  host-readable copy target; the only buffer readback() accepts

Subclasses implement the underscore methods; argument checking lives here so
every backend rejects the same misuse the same way.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, Tuple

from ..errors import DeviceError

logger = logging.getLogger(__name__)

BUFFER_USAGES = ("storage", "staging", "uniform", "prng")

# binding index → required buffer usage
BINDING_LAYOUT: Dict[int, str] = {0: "storage", 1: "prng", 2: "uniform"}


@dataclass(frozen=True)
class BufferSpec:
    name: str
    nbytes: int
    usage: str


class ComputeBackend(ABC):
    """Owner of the device-side state of one engine.

    Attributes
    ----------
    buffers : dict[str, BufferSpec]
        Allocated buffers by name
    bindings : dict[int, str] or None
        Binding index → buffer name once build_pipeline() has run
    """

    name = "abstract"

    def __init__(self):
        self.buffers: Dict[str, BufferSpec] = {}
        self.bindings = None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def allocate(self, name: str, nbytes: int, usage: str) -> BufferSpec:
        if usage not in BUFFER_USAGES:
            raise ValueError(f"Unknown buffer usage: {usage}. Use one of {BUFFER_USAGES}.")
        if name in self.buffers:
            raise ValueError(f"Buffer '{name}' already allocated")
        if nbytes <= 0 or (usage != "uniform" and nbytes % 4 != 0):
            raise ValueError(f"Buffer '{name}' needs a positive size in whole 32-bit words, got {nbytes}")

        spec = BufferSpec(name, int(nbytes), usage)
        self._allocate(spec)
        self.buffers[name] = spec
        logger.debug(f"[{self.name}] allocated {usage} buffer '{name}' ({nbytes} bytes)")
        return spec

    def build_pipeline(self, bindings: Dict[int, str]) -> None:
        if self.bindings is not None:
            raise DeviceError("Pipeline already built; the binding layout is fixed")
        if set(bindings) != set(BINDING_LAYOUT):
            raise ValueError(f"Bindings must cover {sorted(BINDING_LAYOUT)}, got {sorted(bindings)}")
        for index, buffer_name in bindings.items():
            spec = self._get(buffer_name)
            if spec.usage != BINDING_LAYOUT[index]:
                raise ValueError(
                    f"Binding {index} expects a {BINDING_LAYOUT[index]} buffer, "
                    f"'{buffer_name}' is {spec.usage}"
                )
        self._build_pipeline(dict(bindings))
        self.bindings = dict(bindings)

    def upload(self, name: str, data: bytes) -> None:
        spec = self._get(name)
        if spec.usage == "staging":
            raise ValueError(f"Cannot upload into staging buffer '{name}'")
        if len(data) > spec.nbytes:
            raise ValueError(f"Upload of {len(data)} bytes overflows '{name}' ({spec.nbytes} bytes)")
        self._upload(spec, data)

    def dispatch(self, grid: Tuple[int, int, int]) -> None:
        if self.bindings is None:
            raise DeviceError("dispatch() before build_pipeline()")
        if len(grid) != 3 or any(g < 0 for g in grid):
            raise ValueError(f"Grid must be three non-negative workgroup counts, got {grid}")
        self._dispatch(tuple(int(g) for g in grid))

    def copy(self, src: str, dst: str) -> None:
        src_spec, dst_spec = self._get(src), self._get(dst)
        if src_spec.nbytes != dst_spec.nbytes:
            raise ValueError(f"Copy size mismatch: '{src}' {src_spec.nbytes} B → '{dst}' {dst_spec.nbytes} B")
        self._copy(src_spec, dst_spec)

    def readback(self, name: str, timeout_s: float = 600.0) -> bytes:
        """Block until the staging buffer is host-readable and return its contents.

        Raises
        ------
        DeviceTimeoutError
            If the device does not complete within ``timeout_s`` (fatal)
        """
        spec = self._get(name)
        if spec.usage != "staging":
            raise ValueError(f"readback() needs a staging buffer, '{name}' is {spec.usage}")
        return self._readback(spec, timeout_s)

    # ------------------------------------------------------------------
    # Backend hooks
    # ------------------------------------------------------------------

    @abstractmethod
    def _allocate(self, spec: BufferSpec) -> None: ...

    def _build_pipeline(self, bindings: Dict[int, str]) -> None:
        pass

    @abstractmethod
    def _upload(self, spec: BufferSpec, data: bytes) -> None: ...

    @abstractmethod
    def _dispatch(self, grid: Tuple[int, int, int]) -> None: ...

    @abstractmethod
    def _copy(self, src: BufferSpec, dst: BufferSpec) -> None: ...

    @abstractmethod
    def _readback(self, spec: BufferSpec, timeout_s: float) -> bytes: ...

    def _get(self, name: str) -> BufferSpec:
        try:
            return self.buffers[name]
        except KeyError:
            raise ValueError(f"Unknown buffer '{name}'") from None
