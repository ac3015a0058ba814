"""PyTorch ergonomics: seeding and device management.

Provides:
    - seed_everything(): Reproducible sampling (torch, numpy, Python RNG)
    - resolve_device(): Turn a device string into a usable torch.device

Device policy:
    - "cuda" / "cuda:N" must be available; there is no silent CPU fallback
      because a missing GPU is a configuration error for a render run
    - "cpu" runs the same tensor kernel on the host (tests, small previews)
"""

import logging
import random
from typing import Optional, Union

import numpy as np
import torch

logger = logging.getLogger(__name__)


def seed_everything(seed: int) -> None:
    """Seed Python, NumPy and torch RNGs."""
    random.seed(seed)
    np.random.seed(seed)
    torch.manual_seed(seed)
    if torch.cuda.is_available():
        torch.cuda.manual_seed_all(seed)


def resolve_device(device: Optional[Union[str, torch.device]] = None) -> torch.device:
    """Resolve a device spec, failing loudly if CUDA was requested but is missing.

    Parameters
    ----------
    device : str or torch.device, optional
        "cuda", "cuda:1", "cpu"; None means "cuda"

    Returns
    -------
    torch.device

    Raises
    ------
    RuntimeError
        If a CUDA device was requested and is not available
    """
    dev = torch.device(device if device is not None else "cuda")

    if dev.type == "cuda":
        if not torch.cuda.is_available():
            raise RuntimeError(f"CUDA device requested ({dev}) but torch.cuda is not available")
        index = dev.index if dev.index is not None else torch.cuda.current_device()
        if index >= torch.cuda.device_count():
            raise RuntimeError(
                f"CUDA device index {index} out of range "
                f"({torch.cuda.device_count()} device(s) visible)"
            )
        dev = torch.device("cuda", index)
        logger.info(f"Using GPU {index}: {torch.cuda.get_device_name(index)}")
    else:
        logger.info(f"Using torch device {dev}")

    return dev
