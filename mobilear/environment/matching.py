"""
Robust pairwise matching between environment frames.

Brute-force Hamming matches are filtered in stages: relative gyroscope
rotation, descriptor distance, consistency with the gyroscope-predicted
image motion and finally a RANSAC homography. Frames share a camera
centre, so the homography K_t R_t R_q^T K_q^-1 explains all true
matches.
"""

import numpy as np
import cv2
from dataclasses import dataclass
from typing import Optional

from ..config import EnvironmentConfig
from ..geometry.rotation import rotation_angle
from .frame import Frame
from .graph import MatchGraph


@dataclass
class PairMatch:
    """Outcome of matching two frames."""
    train: int  # Frame index
    query: int  # Frame index
    matches: np.ndarray  # (M, 2) keypoint indices (train, query)
    angle: float  # Relative gyroscope rotation, radians
    stage: str  # 'ok' or the stage that rejected the pair

    @property
    def ok(self) -> bool:
        return self.stage == "ok"

    def to_graph(self) -> MatchGraph:
        graph = MatchGraph()
        for t, q in self.matches:
            graph.add_edge((self.train, int(t)), (self.query, int(q)))
        return graph


def _skew(v: np.ndarray) -> np.ndarray:
    """(N, 3) vectors to (N, 3, 3) cross-product matrices."""
    z = np.zeros(len(v))
    return np.stack([
        np.stack([z, -v[:, 2], v[:, 1]], axis=-1),
        np.stack([v[:, 2], z, -v[:, 0]], axis=-1),
        np.stack([-v[:, 1], v[:, 0], z], axis=-1),
    ], axis=1)


def gyro_consistency(
    train: Frame,
    query: Frame,
    train_pts: np.ndarray,
    query_pts: np.ndarray,
    rotation_sigma: float,
    pixel_sigma: float
) -> np.ndarray:
    """
    Mahalanobis distance of matches from their gyroscope prediction.

    Query points are mapped into the train image through the relative
    rotation. A small Gaussian rotation error with standard deviation
    rotation_sigma (radians) is propagated through the projection, and
    isotropic pixel noise is added.

    Returns:
        (M,) squared Mahalanobis distances, inf for points behind the camera
    """
    rel = train.R @ query.R.T
    homog = np.hstack([query_pts, np.ones((len(query_pts), 1))])
    rays = homog @ np.linalg.inv(query.K).T @ rel.T
    y = rays @ train.K.T

    z = y[:, 2]
    front = z > 1e-9
    z = np.where(front, z, 1.0)
    proj = y[:, :2] / z[:, None]

    # d proj / d y
    Jp = np.zeros((len(y), 2, 3))
    Jp[:, 0, 0] = 1.0 / z
    Jp[:, 1, 1] = 1.0 / z
    Jp[:, 0, 2] = -y[:, 0] / z ** 2
    Jp[:, 1, 2] = -y[:, 1] / z ** 2

    # Rotating the ray by a small delta moves it by -[ray]x delta
    J = Jp @ train.K @ -_skew(rays)
    cov = rotation_sigma ** 2 * J @ J.transpose(0, 2, 1) + pixel_sigma ** 2 * np.eye(2)

    d = train_pts - proj
    m = np.einsum("ni,ni->n", d, np.linalg.solve(cov, d[..., None])[..., 0])
    return np.where(front, m, np.inf)


class FeatureMatcher:
    """
    Pairwise matching and geometric filtering.
    """

    def __init__(self, config: Optional[EnvironmentConfig] = None):
        self.config = config or EnvironmentConfig()
        self.matcher = cv2.BFMatcher(cv2.NORM_HAMMING, crossCheck=True)

    def match_pair(self, train: Frame, query: Frame, loop: bool = False) -> PairMatch:
        """
        Match two frames.

        Args:
            train: Earlier frame
            query: New frame
            loop: Loosen the rotation limit to allow loop closure

        Returns:
            PairMatch; matches are only meaningful when ok
        """
        cfg = self.config
        empty = np.zeros((0, 2), dtype=np.int64)

        angle = rotation_angle(train.R @ query.R.T)
        limit = np.deg2rad(cfg.max_loop_rotation if loop else cfg.max_rotation)
        if angle > limit:
            return PairMatch(train.index, query.index, empty, angle, "rotation")

        if len(train) == 0 or len(query) == 0:
            return PairMatch(train.index, query.index, empty, angle, "matching")
        matches = self.matcher.match(query.descriptors, train.descriptors)
        if len(matches) < cfg.min_matches:
            return PairMatch(train.index, query.index, empty, angle, "matching")

        # Hamming gate relative to the best match
        matches = sorted(matches, key=lambda m: m.distance)
        cap = min(cfg.max_hamming, 5.0 * max(matches[0].distance, 1.0))
        matches = [m for m in matches if m.distance <= cap]
        if len(matches) < cfg.min_matches:
            return PairMatch(train.index, query.index, empty, angle, "hamming")

        idx = np.array([[m.trainIdx, m.queryIdx] for m in matches], dtype=np.int64)
        train_pts = train.keypoints[idx[:, 0]]
        query_pts = query.keypoints[idx[:, 1]]

        # Gyroscope drift makes the prediction unreliable at large angles
        if angle <= np.deg2rad(cfg.gyro_gate_max_angle):
            m = gyro_consistency(
                train, query, train_pts, query_pts,
                np.deg2rad(cfg.rotation_sigma), cfg.pixel_sigma
            )
            keep = m <= cfg.gyro_confidence
            idx, train_pts, query_pts = idx[keep], train_pts[keep], query_pts[keep]
            if len(idx) < cfg.min_matches:
                return PairMatch(train.index, query.index, empty, angle, "gyro")

        H, mask = cv2.findHomography(query_pts, train_pts, cv2.RANSAC, cfg.homography_threshold)
        if H is None or mask is None:
            return PairMatch(train.index, query.index, empty, angle, "homography")
        inliers = mask.ravel().astype(bool)
        required = max(cfg.min_matches, int(np.ceil(cfg.min_inlier_ratio * len(idx))))
        if inliers.sum() < required:
            return PairMatch(train.index, query.index, empty, angle, "homography")

        return PairMatch(train.index, query.index, idx[inliers], angle, "ok")

    def match(self, train: Frame, query: Frame, loop: bool = False) -> Optional[MatchGraph]:
        """Match two frames, returning their local match graph or None."""
        result = self.match_pair(train, query, loop)
        return result.to_graph() if result.ok else None
