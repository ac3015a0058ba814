#!/usr/bin/env python3
"""Merge many bbundle files into one.

Sums the histograms of every bundle matching a glob into a single bundle
(uint64 accumulation, u32 on output). All inputs must share width and height;
by default they must also share the iteration cap.

CLI:
    python scripts/merge_bundles.py --bundle-files "runs/bbundle_night*_1920_1080_5000.zip" --name night
    python scripts/merge_bundles.py -b "*.zip" -n all --allow-mixed-iterations
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from src.buddhabrot.merge import merge_bundles
from src.utils import fs
from src.utils.logging_config import install_excepthook, setup_logging, shutdown
from src.utils.profiler import timer

logger = logging.getLogger(__name__)


def merge_main(
    pattern: str,
    name: str,
    output_dir: str = ".",
    strict_iterations: bool = True,
) -> Path:
    """Expand ``pattern`` and merge the matching bundles; returns the new bundle path."""
    bundle_files = fs.expand_glob(pattern)
    logger.info(f"bundle files: {[str(p) for p in bundle_files]}")
    if not bundle_files:
        raise FileNotFoundError(f"No bundle files match {pattern!r}")

    with timer("merge"):
        return merge_bundles(bundle_files, name, output_dir, strict_iterations=strict_iterations)


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entrypoint for bundle merging."""
    parser = argparse.ArgumentParser(description="Merge bbundle files into one bbundle")
    parser.add_argument("-b", "--bundle-files", type=str, required=True,
                        help="File glob of bbundle files to include in output")
    parser.add_argument("-n", "--name", type=str, required=True,
                        help="Name of prefix on bbundle output file")
    parser.add_argument("--output-dir", type=str, default=".", help="Output directory (default .)")
    parser.add_argument("--allow-mixed-iterations", action="store_true",
                        help="Accept bundles with different iteration caps (last one wins)")
    parser.add_argument("--log-level", type=str, default=None, help="Logging level")
    args = parser.parse_args(argv)

    setup_logging(log_level=args.log_level, context={"app": "merge"})
    install_excepthook()

    out = merge_main(
        args.bundle_files,
        args.name,
        args.output_dir,
        strict_iterations=not args.allow_mixed_iterations,
    )
    logger.info(f"Merged bundle: {out}")
    shutdown()
    return 0


if __name__ == "__main__":
    sys.exit(main())
