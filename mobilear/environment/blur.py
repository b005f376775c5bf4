"""
Wavelet blur detection.

Edges are located on a three level Haar pyramid and classified by how
their strength changes across scales. Sharp images are dominated by
Dirac and abrupt step edges, blurred images by roof and gradual step
edges whose finest-scale response is weak.
"""

import numpy as np
from dataclasses import dataclass
from typing import Tuple


@dataclass
class BlurScore:
    """Edge statistics of an image."""
    per: float  # Fraction of Dirac and abrupt step edges
    blur: float  # Fraction of roof and gradual step edges that are blurred
    n_edges: int  # Number of edge blocks; zero means inconclusive


def _haar(ll: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """One Haar level. Returns (edge map, low-pass image)."""
    p00 = ll[0::2, 0::2]
    p01 = ll[0::2, 1::2]
    p10 = ll[1::2, 0::2]
    p11 = ll[1::2, 1::2]

    hh = (p00 + p11 - p10 - p01) * 0.5
    hl = (p00 + p10 - p11 - p01) * 0.5
    lh = (p00 + p01 - p10 - p11) * 0.5
    low = (p00 + p01 + p10 + p11) * 0.5
    return hh * hh + hl * hl + lh * lh, low


def _local_max(emap: np.ndarray, k: int) -> np.ndarray:
    h, w = emap.shape
    return emap.reshape(h // k, k, w // k, k).max(axis=(1, 3))


class BlurDetector:
    """
    Haar wavelet edge-type blur detector.
    """

    def __init__(self, threshold: float = 35.0):
        """
        Initialize the detector.

        Args:
            threshold: Minimum edge energy of an edge block
        """
        self.threshold = threshold

    def __call__(self, gray: np.ndarray) -> BlurScore:
        """
        Score a grayscale image.

        Args:
            gray: (H, W) image, at least 16x16

        Returns:
            BlurScore
        """
        if gray.ndim != 2:
            raise ValueError(f"Expected a grayscale image, got shape {gray.shape}")
        rows = (gray.shape[0] // 16) * 16
        cols = (gray.shape[1] // 16) * 16
        if rows == 0 or cols == 0:
            raise ValueError(f"Image too small for blur detection: {gray.shape}")

        ll = gray[:rows, :cols].astype(np.float32)
        maxima = []
        for window in (4, 2, 1):
            emap, ll = _haar(ll)
            maxima.append(_local_max(emap, window))
        e1, e2, e3 = maxima

        t = self.threshold
        edge = (e1 >= t) | (e2 >= t) | (e3 >= t)
        dirac = edge & (e1 > e2) & (e2 > e3)
        roof = edge & ~dirac & (((e1 < e2) & (e2 < e3)) | ((e1 < e2) & (e3 < e2)))
        blurred = roof & (e1 < t)

        n_edge = int(edge.sum())
        n_roof = int(roof.sum())
        return BlurScore(
            per=float(dirac.sum()) / n_edge if n_edge else 0.0,
            blur=float(blurred.sum()) / n_roof if n_roof else 0.0,
            n_edges=n_edge
        )
