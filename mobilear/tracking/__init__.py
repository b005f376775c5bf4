"""Camera tracking against markers and calibration patterns."""

from .tracker import Tracker, TrackingResult, FrameTracker
from .marker_map import Marker, MarkerMap, PoseLog, PoseObservation, marker_grid
from .bundle_adjustment import MarkerBundleAdjuster, MarkerBundleResult
from .aruco import ArUcoTracker, MarkerDetector
from .calib import CalibTracker, Calibrator, circle_grid, find_circle_grid

__all__ = [
    "Tracker",
    "TrackingResult",
    "FrameTracker",
    "Marker",
    "MarkerMap",
    "PoseLog",
    "PoseObservation",
    "marker_grid",
    "MarkerBundleAdjuster",
    "MarkerBundleResult",
    "ArUcoTracker",
    "MarkerDetector",
    "CalibTracker",
    "Calibrator",
    "circle_grid",
    "find_circle_grid",
]
