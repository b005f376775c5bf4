#!/usr/bin/env python3
"""
Extract directional lights from an equirectangular environment map.

Usage:
    python sample_lights.py panorama.hdr --depth 4 --kind variance
"""

import argparse
import sys
from pathlib import Path

# Add package root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

import cv2

from mobilear.config import DEFAULT_CONFIG, SamplerConfig, SamplerKind
from mobilear.lighting import LightProbeSampler
from mobilear.ui import ProgressDisplay


KINDS = {
    "median": SamplerKind.MEDIAN_CUT,
    "variance": SamplerKind.VARIANCE_CUT,
}


def parse_args():
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(description="Light probe sampling")
    parser.add_argument("image", type=str, help="Equirectangular environment map")
    parser.add_argument("--depth", type=int, default=DEFAULT_CONFIG.sampler.depth, help="Recursion depth (2^depth lights)")
    parser.add_argument("--kind", choices=sorted(KINDS), default="median", help="Split strategy")
    return parser.parse_args()


def main():
    args = parse_args()

    image = cv2.imread(args.image, cv2.IMREAD_UNCHANGED)
    if image is None:
        print(f"Error: cannot read {args.image}")
        return 1

    sampler = LightProbeSampler.from_config(SamplerConfig(depth=args.depth, kind=KINDS[args.kind]))
    lights = sampler(image)

    rows = [
        (i, *map(float, light.direction), *map(float, light.diffuse), light.solid_angle)
        for i, light in enumerate(lights)
    ]
    ProgressDisplay().print_table(
        f"{len(lights)} lights",
        ("#", "dx", "dy", "dz", "r", "g", "b", "sr"),
        rows
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
