"""Lightweight profiling: wall-clock timers and NVTX markers.

Provides:
    - timer(): Context manager for wall-clock timing with optional sink
    - TimerAccumulator: Mean dispatch time across a render run
    - nvtx_range(): NVIDIA Nsight markers around GPU dispatches

Used to measure:
    - One engine call (upload → dispatch → readback)
    - Bundle encoding and writing
    - Merge and PNG encoding

No heavy dependencies; torch is imported lazily for NVTX only.
"""

import logging
import time
from contextlib import contextmanager
from typing import Callable, Optional

logger = logging.getLogger(__name__)


@contextmanager
def timer(name: str, sink: Optional[Callable[[str, float], None]] = None):
    """Context manager for wall-clock timing.

    Parameters
    ----------
    name : str
        Timer name (for logging/display)
    sink : Optional[Callable[[str, float], None]]
        Optional callback(name, elapsed_seconds).
        If None, the timing is logged at DEBUG level.

    Examples
    --------
    >>> with timer("dispatch"):
    ...     delta = engine.call(window, zoom, 1000, samples)
    """
    start = time.perf_counter()
    try:
        yield
    finally:
        elapsed = time.perf_counter() - start
        if sink is not None:
            sink(name, elapsed)
        else:
            logger.debug(f"{name}: {elapsed:.3f} s")


@contextmanager
def nvtx_range(msg: str):
    """Context manager for NVIDIA NVTX range markers.

    No-op when torch or CUDA is unavailable.
    """
    pushed = False
    try:
        import torch
        if torch.cuda.is_available():
            torch.cuda.nvtx.range_push(msg)
            pushed = True
    except (ImportError, AttributeError):
        pass

    try:
        yield
    finally:
        if pushed:
            import torch
            torch.cuda.nvtx.range_pop()


class TimerAccumulator:
    """Accumulate multiple timing measurements for averaging.

    Examples
    --------
    >>> update_timer = TimerAccumulator("update")
    >>> for _ in range(runs_per_zip):
    ...     with update_timer.measure():
    ...         frame.update()
    >>> logger.info(f"mean update: {update_timer.mean():.3f} s")
    """

    def __init__(self, name: str):
        self.name = name
        self.total_time = 0.0
        self.count = 0

    @contextmanager
    def measure(self):
        """Context manager to measure and accumulate time."""
        start = time.perf_counter()
        try:
            yield
        finally:
            self.total_time += time.perf_counter() - start
            self.count += 1

    def mean(self) -> float:
        """Mean time in seconds, or 0.0 if nothing was measured."""
        return self.total_time / self.count if self.count > 0 else 0.0

    def reset(self) -> None:
        self.total_time = 0.0
        self.count = 0

    def __repr__(self) -> str:
        return f"TimerAccumulator({self.name}, mean={self.mean():.4f}s, count={self.count})"
