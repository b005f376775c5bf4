"""
Tracker orchestration.

Fuses the poses reported by a frame tracking backend with inertial
measurements through the orientation and position filters.
"""

import numpy as np
from collections import deque
from dataclasses import dataclass
from typing import Optional, Protocol

from ..config import TrackerConfig
from ..filtering import EKFOrientation, EKFPosition
from ..geometry.rotation import (
    quaternion_average,
    quaternion_conjugate,
    quaternion_multiply,
    quaternion_rotate,
)


@dataclass
class TrackingResult:
    """Pose reported by a frame tracking backend."""
    tracked: bool
    q: Optional[np.ndarray] = None  # (4,) camera-to-world orientation
    t: Optional[np.ndarray] = None  # (3,) camera position in the world


class FrameTracker(Protocol):
    """Backend estimating the camera pose from a single frame."""

    def track_frame(self, frame: np.ndarray, dt: float) -> TrackingResult:
        ...

    def close(self) -> None:
        ...


class Tracker:
    """
    Visual-inertial tracker.

    Marker orientations live in the frame of the tracked markers while
    the filter runs in the frame of the inertial sensors. The relative
    rotation between the two is estimated as the average of the last
    observed offsets.
    """

    def __init__(
        self,
        backend: FrameTracker,
        config: Optional[TrackerConfig] = None,
        orientation_filter: Optional[EKFOrientation] = None,
        position_filter: Optional[EKFPosition] = None
    ):
        """
        Initialize the tracker.

        Args:
            backend: Frame tracking backend
            config: Fusion parameters
            orientation_filter: Orientation filter, created if None
            position_filter: Position filter, created if None
        """
        self.config = config or TrackerConfig()
        self.backend = backend
        self.kfr = orientation_filter or EKFOrientation()
        self.kfp = position_filter or EKFPosition()
        self.relative_poses = deque(maxlen=self.config.n_relative_poses)

    def track_frame(self, frame: np.ndarray, dt: float) -> bool:
        """
        Track a camera frame.

        Args:
            frame: Camera image
            dt: Time since the previous update

        Returns:
            Whether the backend found a pose
        """
        r = self.kfr.get_orientation()

        result = self.backend.track_frame(frame, dt)
        if not result.tracked:
            return False

        if self.relative_poses:
            relative = quaternion_average(list(self.relative_poses))
            self.kfr.update_marker(quaternion_multiply(result.q, relative), dt)
            self.kfp.update_marker(result.t, dt)

        self.relative_poses.append(quaternion_multiply(quaternion_conjugate(result.q), r))
        return True

    def track_sensor(self, q: np.ndarray, a: np.ndarray, w: np.ndarray, dt: float) -> bool:
        """
        Fuse an inertial sample.

        Args:
            q: (4,) device attitude
            a: (3,) accelerometer reading in g
            w: (3,) angular velocity
            dt: Time since the previous update
        """
        r = self.kfr.get_orientation()

        self.kfr.update_imu(q, w, dt)
        self.kfp.update_imu(quaternion_rotate(quaternion_conjugate(r), a) * self.config.gravity, dt)
        return True

    def get_position(self) -> np.ndarray:
        return self.kfp.get_position()

    def get_orientation(self) -> np.ndarray:
        return self.kfr.get_orientation()

    def close(self):
        """Release the backend."""
        self.backend.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
        return False
