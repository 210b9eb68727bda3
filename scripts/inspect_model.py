#!/usr/bin/env python3
"""
Inspect a compiled Core ML Stable Diffusion bundle.

Usage:
    python scripts/inspect_model.py models/sd15-split-einsum
    python scripts/inspect_model.py models/sdxl-original --name "SDXL Base" --json
"""

import argparse
import json
import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from sd_retarget.utils.config import load_config
from sd_retarget.utils.logging import setup_logging
from sd_retarget.model.descriptor import build_descriptor


def main():
    parser = argparse.ArgumentParser(description="Inspect a compiled Core ML bundle")
    parser.add_argument(
        "bundle",
        type=str,
        help="Path to the bundle directory"
    )
    parser.add_argument(
        "--name",
        type=str,
        default=None,
        help="Display name (defaults to the directory name)"
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Print the descriptor as JSON"
    )
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to config file"
    )
    parser.add_argument(
        "--log_level",
        type=str,
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (overrides config)"
    )
    
    args = parser.parse_args()
    
    config = load_config(args.config)
    logger = setup_logging(config, level=args.log_level)
    
    bundle = Path(args.bundle)
    name = args.name or bundle.name
    
    descriptor = build_descriptor(bundle, name)
    if descriptor is None:
        logger.error(f"Model unsupported or unreadable: {bundle}")
        sys.exit(1)
    
    info = descriptor.to_dict()
    if args.json:
        print(json.dumps(info, indent=2))
        return
    
    print(f"\n{'='*60}")
    print(f"Model: {name}")
    print(f"{'='*60}")
    for key, value in info.items():
        if key == "name":
            continue
        print(f"  {key:<30} {value}")


if __name__ == "__main__":
    main()
