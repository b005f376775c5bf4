#!/usr/bin/env python3
"""
Build HDR environment maps from a capture manifest.

The manifest is a JSON file listing batches of bracketed exposures:

    {
      "K": [[fx, 0, cx], [0, fy, cy], [0, 0, 1]],
      "dist": [k1, k2, p1, p2, k3],
      "batches": [
        [{"image": "b0_e0.jpg", "R": [[...], [...], [...]], "exposure": 0.01}, ...],
        ...
      ]
    }

Usage:
    python build_environment.py capture.json -o output/
"""

import argparse
import json
import sys
from pathlib import Path

# Add package root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

import cv2
import numpy as np

from mobilear.config import CameraIntrinsics, EnvironmentConfig
from mobilear.environment import (
    EnvironmentBuilder,
    EnvironmentBuilderException,
    HDRFrame,
    build_radiance_map,
)
from mobilear.ui import ProgressDisplay, create_composite_callback


def parse_args():
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(description="Panoramic HDR environment builder")
    parser.add_argument("manifest", type=str, help="Capture manifest (JSON)")
    parser.add_argument("-o", "--output", type=str, default="output", help="Output directory")
    parser.add_argument("--width", type=int, default=2048, help="Panorama width")
    parser.add_argument("--height", type=int, default=1024, help="Panorama height")
    parser.add_argument("--no-blur-check", action="store_true", help="Accept blurry frames")
    return parser.parse_args()


def load_batches(manifest: dict, root: Path, K: np.ndarray):
    for batch in manifest["batches"]:
        frames = []
        for entry in batch:
            image = cv2.imread(str(root / entry["image"]))
            if image is None:
                raise FileNotFoundError(root / entry["image"])
            frames.append(HDRFrame(
                image=image,
                K=K,
                R=np.asarray(entry["R"], dtype=np.float64),
                exposure=float(entry["exposure"])
            ))
        yield frames


def main():
    args = parse_args()

    manifest_path = Path(args.manifest)
    with open(manifest_path) as f:
        manifest = json.load(f)

    K = np.asarray(manifest["K"], dtype=np.float64)
    intrinsics = CameraIntrinsics.from_matrix(K, np.asarray(manifest.get("dist", [0.0] * 5)))
    config = EnvironmentConfig(
        width=args.width,
        height=args.height,
        check_blur=not args.no_blur_check
    )
    builder = EnvironmentBuilder(config, intrinsics)

    for i, batch in enumerate(load_batches(manifest, manifest_path.parent, K)):
        try:
            builder.add_frames(batch)
        except EnvironmentBuilderException as e:
            print(f"    Batch {i} rejected: {e}")

    if builder.n_batches == 0:
        print("Error: no batch was accepted")
        return 1

    display = ProgressDisplay()
    panoramas = builder.composite(create_composite_callback(display))
    display.finish_stage()

    output = Path(args.output)
    output.mkdir(parents=True, exist_ok=True)
    for i, (image, exposure) in enumerate(panoramas):
        cv2.imwrite(str(output / f"environment_{i}.png"), image)
        print(f"    Saved exposure {exposure:g} to environment_{i}.png")

    if len(panoramas) > 1:
        radiance, _ = build_radiance_map(panoramas)
        cv2.imwrite(str(output / "environment.hdr"), radiance)
        print("    Saved radiance map to environment.hdr")
    return 0


if __name__ == "__main__":
    sys.exit(main())
