#!/usr/bin/env python3
"""
Retarget a compiled Core ML Stable Diffusion bundle to a new image size.

Usage:
    python scripts/retarget_model.py models/sd15-split-einsum --width 768 --height 512
    python scripts/retarget_model.py models/sdxl-original --width 832 --height 1216 --cache_dir ~/.cache/sd_retarget
"""

import argparse
import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from sd_retarget.errors import RetargetError
from sd_retarget.utils.config import load_config, set_config_value
from sd_retarget.utils.logging import setup_logging
from sd_retarget.model.descriptor import build_descriptor
from sd_retarget.retarget.engine import RetargetEngine


def main():
    parser = argparse.ArgumentParser(description="Retarget a Core ML bundle to a new resolution")
    parser.add_argument(
        "bundle",
        type=str,
        help="Path to the source bundle directory"
    )
    parser.add_argument(
        "--width",
        type=int,
        required=True,
        help="Target image width"
    )
    parser.add_argument(
        "--height",
        type=int,
        required=True,
        help="Target image height"
    )
    parser.add_argument(
        "--name",
        type=str,
        default=None,
        help="Display name (defaults to the directory name)"
    )
    parser.add_argument(
        "--cache_dir",
        type=str,
        default=None,
        help="Directory for retargeted bundles (overrides config)"
    )
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to config file"
    )
    
    args = parser.parse_args()
    
    config = load_config(args.config)
    if args.cache_dir:
        set_config_value(config, "cache", "dir", args.cache_dir)
    
    logger = setup_logging(config)
    
    bundle = Path(args.bundle)
    name = args.name or bundle.name
    
    descriptor = build_descriptor(bundle, name)
    if descriptor is None:
        logger.error(f"Model unsupported or unreadable: {bundle}")
        sys.exit(1)
    
    engine = RetargetEngine.from_config(config, show_progress=True)
    
    try:
        resized = engine.retarget(descriptor, width=args.width, height=args.height)
    except (RetargetError, ValueError) as e:
        logger.error(f"Could not prepare model for {args.width}x{args.height}: {e}")
        sys.exit(1)
    
    logger.info(f"Done! Retargeted model at: {resized.location}")
    print(resized.location)


if __name__ == "__main__":
    main()
