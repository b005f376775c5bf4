"""
Calibration pattern tracking and camera calibration.

Single-shot pose estimation against an asymmetric circle grid, plus
intrinsic calibration from a series of views of the same grid. The
tracker keeps no state between frames.
"""

import numpy as np
import cv2
from typing import List, Optional, Tuple

from ..config import CalibrationPatternConfig, CameraIntrinsics
from ..geometry.rotation import matrix_to_quaternion, quaternion_conjugate
from .tracker import TrackingResult


def circle_grid(pattern_size=(4, 11), spacing: float = 4.0) -> np.ndarray:
    """
    World positions of the circles of an asymmetric grid.

    Args:
        pattern_size: (columns, rows) as passed to cv2.findCirclesGrid
        spacing: Distance unit of the grid

    Returns:
        (columns * rows, 3) array in detection order
    """
    cols, rows = pattern_size
    return np.array([
        [(2 * j + i % 2) * spacing, i * spacing, 0.0]
        for i in range(rows)
        for j in range(cols)
    ])


def find_circle_grid(frame: np.ndarray, pattern_size) -> Optional[np.ndarray]:
    """Detect the grid in a BGR or grayscale frame. Returns (N, 2) centres or None."""
    if frame.ndim == 3:
        frame = cv2.cvtColor(frame, cv2.COLOR_BGR2GRAY)
    found, centers = cv2.findCirclesGrid(
        frame,
        tuple(pattern_size),
        flags=cv2.CALIB_CB_ASYMMETRIC_GRID | cv2.CALIB_CB_CLUSTERING
    )
    if not found or centers is None:
        return None
    return centers.reshape(-1, 2).astype(np.float64)


class CalibTracker:
    """
    Calibration pattern tracking backend.
    """

    def __init__(self, intrinsics: CameraIntrinsics, config: Optional[CalibrationPatternConfig] = None):
        self.config = config or CalibrationPatternConfig()
        self.K = intrinsics.to_matrix()
        self.dist = intrinsics.distortion_coeffs()
        self.grid = circle_grid(self.config.pattern_size, self.config.spacing)

    def track_frame(self, frame: np.ndarray, dt: float) -> TrackingResult:
        centers = find_circle_grid(frame, self.config.pattern_size)
        if centers is None:
            return TrackingResult(tracked=False)

        ok, rvec, tvec = cv2.solvePnP(
            self.grid, centers, self.K, self.dist,
            flags=cv2.SOLVEPNP_EPNP
        )
        if not ok:
            return TrackingResult(tracked=False)

        R, _ = cv2.Rodrigues(rvec)
        t = tvec.ravel()
        return TrackingResult(
            tracked=True,
            q=quaternion_conjugate(matrix_to_quaternion(R)),
            t=-R.T @ t
        )

    def close(self):
        pass


class Calibrator:
    """
    Intrinsic camera calibration from circle grid views.
    """

    def __init__(self, config: Optional[CalibrationPatternConfig] = None):
        self.config = config or CalibrationPatternConfig()
        self.grid = circle_grid(self.config.pattern_size, self.config.spacing).astype(np.float32)
        self.image_points: List[np.ndarray] = []
        self.image_size: Optional[Tuple[int, int]] = None

    def __len__(self) -> int:
        return len(self.image_points)

    @property
    def progress(self) -> float:
        return min(1.0, len(self.image_points) / self.config.n_views)

    @property
    def ready(self) -> bool:
        return len(self.image_points) >= self.config.n_views

    def add_frame(self, frame: np.ndarray) -> bool:
        """
        Record the pattern seen in a frame.

        Args:
            frame: BGR or grayscale image

        Returns:
            True if the pattern was found and the view recorded

        Raises:
            ValueError: If the frame size differs from earlier views
        """
        size = (frame.shape[1], frame.shape[0])
        if self.image_size is not None and size != self.image_size:
            raise ValueError(f"Frame size {size} differs from calibration size {self.image_size}")
        if self.ready:
            return False

        centers = find_circle_grid(frame, self.config.pattern_size)
        if centers is None:
            return False
        self.image_size = size
        self.image_points.append(centers.astype(np.float32))
        return True

    def calibrate(self) -> Tuple[float, CameraIntrinsics]:
        """
        Estimate the camera matrix and distortion from the recorded views.

        Returns:
            (RMS reprojection error in pixels, calibrated intrinsics)

        Raises:
            RuntimeError: If fewer than config.n_views views were recorded
        """
        if not self.ready:
            raise RuntimeError(
                f"Calibration needs {self.config.n_views} views, {len(self.image_points)} recorded"
            )

        rms, K, dist, _, _ = cv2.calibrateCamera(
            [self.grid] * len(self.image_points),
            self.image_points,
            self.image_size,
            None,
            None
        )
        print(f"    Calibrated from {len(self.image_points)} views, RMS {rms:.3f}px")
        return float(rms), CameraIntrinsics.from_matrix(K, dist)
