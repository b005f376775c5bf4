"""
ORB feature extraction.
"""

import numpy as np
import cv2
from typing import Tuple


class FeatureExtractor:
    """
    Extract oriented binary keypoints and descriptors.
    """

    def __init__(self, max_features: int = 2000):
        self.max_features = max_features
        self.orb = cv2.ORB_create(nfeatures=max_features)

    def extract(self, gray: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """
        Detect keypoints and compute descriptors.

        Args:
            gray: (H, W) uint8 image

        Returns:
            keypoints: (N, 2) pixel coordinates
            descriptors: (N, 32) uint8
        """
        keypoints, descriptors = self.orb.detectAndCompute(gray, None)
        if descriptors is None or len(keypoints) == 0:
            return np.zeros((0, 2)), np.zeros((0, 32), dtype=np.uint8)

        pts = np.array([kp.pt for kp in keypoints], dtype=np.float64)
        return pts, descriptors
