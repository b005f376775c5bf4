#!/usr/bin/env python3
"""
Track a camera through a video of ArUco markers.

Usage:
    python track_markers.py video.mp4 --fx 1000 --fy 1000 --cx 640 --cy 360
    python track_markers.py video.mp4 --calib   # circle grid instead of markers
"""

import argparse
import sys
from pathlib import Path

# Add package root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

import cv2
from tqdm import tqdm

from mobilear.config import DEFAULT_CONFIG, CameraIntrinsics, MarkerTrackerConfig
from mobilear.tracking import ArUcoTracker, CalibTracker, Tracker
from mobilear.ui import ProgressDisplay


def parse_args():
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(description="Marker based camera tracking")
    parser.add_argument("video", type=str, help="Input video")
    parser.add_argument("--fx", type=float, required=True, help="Focal length in x (pixels)")
    parser.add_argument("--fy", type=float, required=True, help="Focal length in y (pixels)")
    parser.add_argument("--cx", type=float, required=True, help="Principal point x")
    parser.add_argument("--cy", type=float, required=True, help="Principal point y")
    parser.add_argument("--marker-size", type=float, default=DEFAULT_CONFIG.markers.marker_size, help="Marker side length")
    parser.add_argument("--calib", action="store_true", help="Track an asymmetric circle grid")
    parser.add_argument("--no-background", action="store_true",
                        help="Run bundle adjustment inline instead of on a worker thread")
    return parser.parse_args()


def main():
    args = parse_args()

    cap = cv2.VideoCapture(args.video)
    if not cap.isOpened():
        print(f"Error: cannot open {args.video}")
        return 1

    fps = cap.get(cv2.CAP_PROP_FPS) or 30.0
    n_frames = int(cap.get(cv2.CAP_PROP_FRAME_COUNT))
    intrinsics = CameraIntrinsics(fx=args.fx, fy=args.fy, cx=args.cx, cy=args.cy)

    if args.calib:
        backend = CalibTracker(intrinsics, DEFAULT_CONFIG.pattern)
    else:
        config = MarkerTrackerConfig(marker_size=args.marker_size, background=not args.no_background)
        backend = ArUcoTracker(intrinsics, config)

    dt = 1.0 / fps
    rows = []
    tracked = 0
    with Tracker(backend, DEFAULT_CONFIG.tracker) as tracker:
        for index in tqdm(range(n_frames), desc="Tracking", leave=False):
            ok, frame = cap.read()
            if not ok:
                break
            if tracker.track_frame(frame, dt):
                tracked += 1
                p = tracker.get_position()
                rows.append((index, float(p[0]), float(p[1]), float(p[2])))

        if isinstance(backend, ArUcoTracker):
            backend.bundle_adjust()
            print(f"    {len(backend.markers())} markers, {len(backend.poses())} key poses")
    cap.release()

    display = ProgressDisplay()
    display.print_table("Camera positions", ("Frame", "x", "y", "z"), rows[-20:])
    display.print_metrics({"frames": n_frames, "tracked": tracked}, title="Tracking")
    return 0


if __name__ == "__main__":
    sys.exit(main())
