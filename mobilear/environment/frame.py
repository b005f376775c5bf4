"""
Frame containers for environment building.
"""

import numpy as np
from dataclasses import dataclass


@dataclass
class HDRFrame:
    """Frame as delivered by the capture layer."""
    image: np.ndarray  # (H, W, 3) BGR, uint8
    K: np.ndarray  # (3, 3) intrinsic matrix
    R: np.ndarray  # (3, 3) world-to-camera rotation from the gyroscope
    exposure: float  # Exposure time in seconds


@dataclass(frozen=True, eq=False)
class Frame:
    """Processed frame owned by an environment builder."""
    index: int  # Global frame index, dense over committed frames
    batch: int  # Index of the batch the frame arrived in
    exposure_index: int  # Position in the batch's exposure sequence
    exposure: float
    image: np.ndarray  # (H, W, 3) BGR, undistorted
    keypoints: np.ndarray  # (N, 2) float pixel coordinates
    descriptors: np.ndarray  # (N, 32) uint8 ORB descriptors
    K: np.ndarray  # (3, 3)
    R: np.ndarray  # (3, 3) world-to-camera

    def __len__(self):
        return self.keypoints.shape[0]
