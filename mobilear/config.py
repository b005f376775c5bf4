"""
Configuration dataclasses for the mobile AR core.
"""

from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Optional, Tuple

import numpy as np


@dataclass
class CameraIntrinsics:
    """Camera intrinsic parameters."""
    fx: float  # Focal length x (pixels)
    fy: float  # Focal length y (pixels)
    cx: float  # Principal point x
    cy: float  # Principal point y
    k1: float = 0.0  # Radial distortion
    k2: float = 0.0
    k3: float = 0.0
    p1: float = 0.0  # Tangential distortion
    p2: float = 0.0

    def to_matrix(self) -> np.ndarray:
        """Returns 3x3 intrinsic matrix K."""
        return np.array([
            [self.fx, 0.0, self.cx],
            [0.0, self.fy, self.cy],
            [0.0, 0.0, 1.0]
        ], dtype=np.float64)

    def distortion_coeffs(self) -> np.ndarray:
        """Returns distortion coefficients [k1, k2, p1, p2, k3]."""
        return np.array([self.k1, self.k2, self.p1, self.p2, self.k3], dtype=np.float64)

    @classmethod
    def from_matrix(cls, K: np.ndarray, dist: Optional[np.ndarray] = None) -> "CameraIntrinsics":
        """
        Build intrinsics from a 3x3 matrix and optional OpenCV distortion vector.

        Raises:
            ValueError: If K is not a valid pinhole intrinsic matrix
        """
        K = np.asarray(K, dtype=np.float64)
        if K.shape != (3, 3) or K[0, 0] <= 0 or K[1, 1] <= 0 or K[2, 2] != 1.0:
            raise ValueError(f"Malformed intrinsic matrix:\n{K}")
        d = np.zeros(5) if dist is None else np.asarray(dist, dtype=np.float64).ravel()
        d = np.concatenate([d, np.zeros(max(0, 5 - d.size))])
        return cls(
            fx=float(K[0, 0]), fy=float(K[1, 1]),
            cx=float(K[0, 2]), cy=float(K[1, 2]),
            k1=float(d[0]), k2=float(d[1]), p1=float(d[2]), p2=float(d[3]), k3=float(d[4])
        )


class BAMethod(Enum):
    """Objective used by the panorama bundle adjustment."""
    RAYS = auto()     # Pairwise alignment of world-rotated viewing rays
    POINTS = auto()   # Free 3D point per track, always solved with a linear loss
    VECTORS = auto()  # Unit direction per track on the sphere
    REPROJ = auto()   # Unit direction per track, pixel reprojection error


class SamplerKind(Enum):
    """Split strategy of the light probe sampler."""
    MEDIAN_CUT = auto()
    VARIANCE_CUT = auto()


@dataclass
class TrackerConfig:
    """Sensor fusion parameters shared by all tracker backends."""
    n_relative_poses: int = 50
    gravity: float = 980.665  # cm/s^2, marker units are centimetres


@dataclass
class MarkerTrackerConfig:
    """Parameters of the ArUco marker tracker and its bundle adjustment."""
    marker_size: float = 4.6
    dictionary: str = "DICT_6X6_250"
    # RANSAC PnP when two or more known markers are visible
    ransac_iterations: int = 100
    ransac_reprojection_error: float = 5.0
    ransac_confidence: float = 0.99
    # A pose is logged when it is at least this far from every logged pose
    min_pose_distance: float = 5.0
    min_pose_angle: float = 10.0  # degrees
    # Bundle adjustment
    ba_max_iterations: int = 30
    ba_tolerance: float = 1e-3
    huber_scale: float = 2.0  # pixels
    local_max_iterations: int = 10
    background: bool = True
    verbose: bool = False


@dataclass
class CalibrationPatternConfig:
    """Asymmetric circle grid used by the calibration tracker."""
    pattern_size: Tuple[int, int] = (4, 11)
    spacing: float = 4.0
    n_views: int = 32  # Pattern views collected before intrinsic calibration


@dataclass
class EnvironmentConfig:
    """Parameters of the panoramic environment builder."""
    # Frame checks
    undistort: bool = True
    check_blur: bool = True
    min_blur_threshold: float = 0.01
    blur_edge_threshold: float = 35.0
    max_features: int = 2000
    min_features: int = 100
    # Pairwise matching
    min_matches: int = 25
    max_hamming: float = 30.0
    max_rotation: float = 25.0  # degrees
    max_loop_rotation: float = 60.0  # degrees, near the start of the session
    rotation_sigma: float = 2.0  # degrees, gyroscope noise
    pixel_sigma: float = 8.0  # pixels
    gyro_confidence: float = 5.991  # chi-square, 2 dof, 95%
    gyro_gate_max_angle: float = 20.0  # degrees
    homography_threshold: float = 2.0
    min_inlier_ratio: float = 0.3
    # Global matching
    global_window: int = 4  # batches
    loop_window: int = 2  # batches
    bootstrap_batches: int = 5
    min_global_pairs: int = 3
    # Tracks and bundle adjustment
    variance_threshold: float = 4.0  # squared pixels
    ba_method: BAMethod = BAMethod.RAYS
    ba_max_iterations: int = 50
    ba_loss: str = "huber"
    ba_loss_scale: float = 0.01
    # Output panorama
    width: int = 2048
    height: int = 1024
    exposure_tolerance: float = 1e-6


@dataclass
class SamplerConfig:
    """Light probe sampling parameters."""
    depth: int = 4
    kind: SamplerKind = SamplerKind.MEDIAN_CUT


@dataclass
class MobileARConfig:
    """Complete configuration."""
    tracker: TrackerConfig = field(default_factory=TrackerConfig)
    markers: MarkerTrackerConfig = field(default_factory=MarkerTrackerConfig)
    pattern: CalibrationPatternConfig = field(default_factory=CalibrationPatternConfig)
    environment: EnvironmentConfig = field(default_factory=EnvironmentConfig)
    sampler: SamplerConfig = field(default_factory=SamplerConfig)


# Default configuration instance
DEFAULT_CONFIG = MobileARConfig()
