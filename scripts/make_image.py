#!/usr/bin/env python3
"""Render bbundle files to a 16-bit RGB PNG.

Sums every bundle matching a glob and writes <epoch-ms>.png with counts
scaled linearly so the brightest pixel is 65535.

CLI:
    python scripts/make_image.py --bundle-files "runs/bbundle_night*.zip"
    python scripts/make_image.py -b "merged/*.zip" --output-dir images/
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from src.buddhabrot.image import write_png
from src.buddhabrot.merge import gather_data
from src.utils import fs
from src.utils.logging_config import install_excepthook, setup_logging, shutdown
from src.utils.profiler import timer

logger = logging.getLogger(__name__)


def image_main(
    pattern: str,
    output_dir: str = ".",
    strict_iterations: bool = True,
) -> Path:
    """Expand ``pattern``, merge the bundles in memory and write the PNG."""
    bundle_files = fs.expand_glob(pattern)
    logger.info(f"bundle files: {[str(p) for p in bundle_files]}")
    if not bundle_files:
        raise FileNotFoundError(f"No bundle files match {pattern!r}")

    with timer("merge"):
        dataset = gather_data(bundle_files, strict_iterations=strict_iterations)
    with timer("png"):
        return write_png(dataset, fs.ensure_dir(output_dir))


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entrypoint for PNG output."""
    parser = argparse.ArgumentParser(description="Render bbundle files to a 16-bit PNG")
    parser.add_argument("-b", "--bundle-files", type=str, required=True,
                        help="File glob of bbundle files to include in output")
    parser.add_argument("--output-dir", type=str, default=".", help="Output directory (default .)")
    parser.add_argument("--allow-mixed-iterations", action="store_true",
                        help="Accept bundles with different iteration caps")
    parser.add_argument("--log-level", type=str, default=None, help="Logging level")
    args = parser.parse_args(argv)

    setup_logging(log_level=args.log_level, context={"app": "image"})
    install_excepthook()

    out = image_main(args.bundle_files, args.output_dir, strict_iterations=not args.allow_mixed_iterations)
    logger.info(f"Image: {out}")
    shutdown()
    return 0


if __name__ == "__main__":
    sys.exit(main())
