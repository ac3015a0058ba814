#!/usr/bin/env python3
"""Sampling loop: accumulate Buddhabrot dispatches and write bundles forever.

Runs the render pipeline until interrupted (or --max-zips bundles):
    1. Load render config (YAML, optional) and apply CLI overrides
    2. Create the compute backend (torch on CUDA by default, or the CPU reference)
    3. Repeat:
        - update() × runs_per_zip (one dispatch each)
        - write bbundle_<name>_<epoch-ms>_<w>_<h>_<iters>.zip
        - reset the frame

Refactored architecture:
    - render_main(cfg) → list[Path]
        * Callable function (used by tests and batch drivers)
    - CLI entry point: if __name__ == "__main__"

Every error is fatal: device loss, I/O failure or a bad config ends the run
with a logged traceback; restart the process to continue sampling (bundles
already written are complete and independent).

CLI:
    python scripts/render.py --name night1 --width 1920 --height 1080 --iterations 5000
    python scripts/render.py --config configs/render_v1.yaml --name night1 --max-zips 4
    python scripts/render.py --name preview --backend cpu --gpu-trials 6400 --max-zips 1
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from src.buddhabrot.backends import create_backend
from src.buddhabrot.frame import BuddhabrotFrame
from src.buddhabrot.params import PlaneWindow
from src.utils import fs, torch_utils, validators
from src.utils.logging_config import install_excepthook, pop_context, push_context, setup_logging, shutdown
from src.utils.profiler import TimerAccumulator

logger = logging.getLogger(__name__)

# CLI flag → (window key, corner, component)
_CORNER_FLAGS = {
    'lower_left_re': ('window', 'lower_left', 're'),
    'lower_left_im': ('window', 'lower_left', 'im'),
    'upper_right_re': ('window', 'upper_right', 're'),
    'upper_right_im': ('window', 'upper_right', 'im'),
    'zoom_lower_left_re': ('zoom', 'lower_left', 're'),
    'zoom_lower_left_im': ('zoom', 'lower_left', 'im'),
    'zoom_upper_right_re': ('zoom', 'upper_right', 're'),
    'zoom_upper_right_im': ('zoom', 'upper_right', 'im'),
}

_SCALAR_FLAGS = (
    'name', 'width', 'height', 'iterations', 'gpu_trials', 'runs_per_zip',
    'max_zips', 'backend', 'device', 'seed', 'output_dir', 'readback_timeout_s',
)


def render_main(cfg: validators.RenderConfigV1) -> List[Path]:
    """Run the sampling loop described by ``cfg``.

    Parameters
    ----------
    cfg : RenderConfigV1
        Validated config; ``name`` must be set

    Returns
    -------
    List[Path]
        Bundles written, in order (only returns when cfg.max_zips is set)
    """
    if not cfg.name:
        raise ValueError("A bundle name prefix is required (--name)")

    out_dir = fs.ensure_dir(cfg.output_dir)
    if cfg.seed is not None:
        torch_utils.seed_everything(cfg.seed)
    backend = create_backend(cfg.backend, cfg.device if cfg.backend == "torch" else None)

    frame = BuddhabrotFrame(
        width=cfg.width,
        height=cfg.height,
        max_iterations=cfg.iterations,
        gpu_trials=cfg.gpu_trials,
        window=PlaneWindow.from_config(cfg.window),
        zoom=PlaneWindow.from_config(cfg.zoom),
        backend=backend,
        seed=cfg.seed,
        readback_timeout_s=cfg.readback_timeout_s,
    )

    written: List[Path] = []
    update_timer = TimerAccumulator("update")
    run_count = 1

    while cfg.max_zips is None or run_count <= cfg.max_zips:
        push_context(zip=run_count)
        for trial in range(cfg.runs_per_zip):
            with update_timer.measure():
                frame.update()
            logger.info(f"Trial: {trial + 1}/{cfg.runs_per_zip}, Run: {run_count}")

        logger.info(f"Writing zip number {run_count} (mean update {update_timer.mean():.3f} s)")
        frame.dump_stats()
        written.append(frame.dump_to_file(cfg.name, out_dir))
        frame.reset()
        update_timer.reset()
        pop_context(keys=["zip"])

        run_count += 1

    return written


def build_config(args: argparse.Namespace) -> validators.RenderConfigV1:
    """Config file (or defaults) with every explicitly given CLI flag applied."""
    if args.config:
        base = validators.load_render_config(args.config)
    else:
        base = validators.RenderConfigV1()

    data: Dict[str, Any] = base.model_dump()
    for key in _SCALAR_FLAGS:
        value = getattr(args, key)
        if value is not None:
            data[key] = value
    for flag, (window, corner, part) in _CORNER_FLAGS.items():
        value = getattr(args, flag)
        if value is not None:
            data[window][corner][part] = value

    return validators.RenderConfigV1(**data)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Accumulate Buddhabrot samples on the GPU and write bbundle files",
    )
    parser.add_argument("-n", "--name", type=str, help="Name of prefix on bbundle output file")
    parser.add_argument("--config", type=str, help="Render config YAML (render.v1)")
    parser.add_argument("--width", type=int, help="Width of output in pixels (default 320)")
    parser.add_argument("--height", type=int, help="Height of output in pixels (default 240)")
    parser.add_argument("-i", "--iterations", type=int, help="Max iterations (default 1000)")
    parser.add_argument(
        "--gpu-trials", type=int,
        help="Number of parallel trials to run on the GPU each iteration (default 64000)",
    )
    parser.add_argument("-r", "--runs-per-zip", type=int, help="Number of times to run per zip file (default 10)")
    parser.add_argument("--max-zips", type=int, help="Stop after this many zip files (default: run forever)")
    parser.add_argument("--backend", choices=["torch", "cpu"], help="Compute backend (default torch)")
    parser.add_argument("--device", type=str, help="Torch device, e.g. cuda, cuda:1, cpu (default cuda)")
    parser.add_argument("--seed", type=int, help="Seed for the sample generator")
    parser.add_argument("--output-dir", type=str, help="Directory for bbundle files (default .)")
    parser.add_argument("--readback-timeout-s", type=float, help="Fatal GPU readback timeout in seconds")

    for flag, (window, corner, part) in _CORNER_FLAGS.items():
        what = "zoom" if window == "zoom" else "full image"
        axis = "Real" if part == "re" else "Imaginary"
        parser.add_argument(
            "--" + flag.replace("_", "-"), type=float,
            help=f"{axis} part of {what} {corner.replace('_', ' ')} corner",
        )

    parser.add_argument("--log-level", type=str, default=None, help="Logging level (default: $LOG_LEVEL or INFO)")
    parser.add_argument("--log-file", type=str, default=None, help="Optional log file")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entrypoint for the sampling loop."""
    args = parse_args(argv)

    setup_logging(log_level=args.log_level, log_file=args.log_file, context={"app": "render"})
    install_excepthook()

    cfg = build_config(args)
    push_context(backend=cfg.backend)

    written = render_main(cfg)
    logger.info(f"Wrote {len(written)} bundle(s)")
    shutdown()
    return 0


if __name__ == "__main__":
    sys.exit(main())
