#!/usr/bin/env python3
"""
Calibrate camera intrinsics from a video of the asymmetric circle grid.

Usage:
    python calibrate_camera.py pattern.mp4
    python calibrate_camera.py pattern.mp4 --views 20 --step 10
"""

import argparse
import sys
from pathlib import Path

# Add package root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

import cv2
from tqdm import tqdm

from mobilear.config import DEFAULT_CONFIG, CalibrationPatternConfig
from mobilear.tracking import Calibrator
from mobilear.ui import ProgressDisplay


def parse_args():
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(description="Circle grid camera calibration")
    parser.add_argument("video", type=str, help="Input video showing the pattern")
    parser.add_argument("--views", type=int, default=DEFAULT_CONFIG.pattern.n_views,
                        help="Number of pattern views to collect")
    parser.add_argument("--step", type=int, default=5, help="Use every n-th frame")
    return parser.parse_args()


def main():
    args = parse_args()

    cap = cv2.VideoCapture(args.video)
    if not cap.isOpened():
        print(f"Error: cannot open {args.video}")
        return 1

    pattern = DEFAULT_CONFIG.pattern
    calibrator = Calibrator(CalibrationPatternConfig(
        pattern_size=pattern.pattern_size, spacing=pattern.spacing, n_views=args.views
    ))

    n_frames = int(cap.get(cv2.CAP_PROP_FRAME_COUNT))
    for index in tqdm(range(n_frames), desc="Collecting views", leave=False):
        ok, frame = cap.read()
        if not ok or calibrator.ready:
            break
        if index % args.step == 0:
            calibrator.add_frame(frame)
    cap.release()

    if not calibrator.ready:
        print(f"Error: found the pattern in {len(calibrator)} frames, {args.views} needed")
        return 1

    rms, intrinsics = calibrator.calibrate()
    ProgressDisplay().print_metrics({
        "rms": rms,
        "fx": intrinsics.fx, "fy": intrinsics.fy,
        "cx": intrinsics.cx, "cy": intrinsics.cy,
        "k1": intrinsics.k1, "k2": intrinsics.k2, "k3": intrinsics.k3,
        "p1": intrinsics.p1, "p2": intrinsics.p2,
    }, title="Calibration")
    return 0


if __name__ == "__main__":
    sys.exit(main())
