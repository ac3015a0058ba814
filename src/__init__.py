"""Buddhabrot GPU: Monte-Carlo escape-trajectory histogram rendering.

This package contains the compute engine that turns random sample batches into
per-pixel hit counts on a GPU (or a CPU reference backend), the accumulation
loop that snapshots running histograms into compressed bundles, and the merge
and image stages that combine bundles from many runs into one picture.

Architecture layers (strict one-way dependency):
    scripts/ → src/buddhabrot/ → src/utils/

Key invariants:
    - Dispatch batches are multiples of 6400 samples (64 × 100 tiling, 2 per invocation)
    - Frame counters are uint32; merged sums are uint64
    - Bundles are version 1 only; anything else is rejected
    - All merge inputs share identical width and height
"""

__version__ = "1.0.0"
