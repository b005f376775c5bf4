"""
Shared marker map and pose log.

Both containers are index-stable arenas guarded by their own lock. They
only ever hand out copies, so the tracking path and the background
bundle adjustment never share mutable objects.
"""

import threading
import numpy as np
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from ..geometry.rotation import quaternion_angle, quaternion_to_matrix


def marker_grid(size: float) -> np.ndarray:
    """
    Corners of a square marker in its own frame, in detection order.

    Returns:
        (4, 3) array: top-left, top-right, bottom-right, bottom-left
    """
    h = size / 2.0
    return np.array([
        [-h, h, 0.0],
        [h, h, 0.0],
        [h, -h, 0.0],
        [-h, -h, 0.0],
    ])


@dataclass
class Marker:
    """A marker pose, mapping marker coordinates to world coordinates."""
    marker_id: int
    t: np.ndarray  # (3,) position
    q: np.ndarray  # (4,) orientation (w, x, y, z)

    def copy(self) -> "Marker":
        return Marker(self.marker_id, self.t.copy(), self.q.copy())

    def world_corners(self, grid: np.ndarray) -> np.ndarray:
        """Transform (4, 3) marker-frame corners into the world."""
        return grid @ quaternion_to_matrix(self.q).T + self.t


@dataclass
class PoseObservation:
    """A logged camera pose with the marker corners used to obtain it."""
    t: np.ndarray  # (3,) world-to-camera translation
    q: np.ndarray  # (4,) world-to-camera rotation
    observations: List[Tuple[int, np.ndarray]] = field(default_factory=list)

    @property
    def camera_center(self) -> np.ndarray:
        return -quaternion_to_matrix(self.q).T @ self.t

    def copy(self) -> "PoseObservation":
        return PoseObservation(
            self.t.copy(),
            self.q.copy(),
            [(i, c.copy()) for i, c in self.observations]
        )


class MarkerMap:
    """
    Lock-guarded map of marker poses.

    The first inserted marker is the reference and its pose is never
    updated.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._markers: List[Marker] = []
        self._index: Dict[int, int] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._markers)

    def __contains__(self, marker_id: int) -> bool:
        with self._lock:
            return marker_id in self._index

    @property
    def reference_id(self) -> Optional[int]:
        with self._lock:
            return self._markers[0].marker_id if self._markers else None

    def ids(self) -> List[int]:
        with self._lock:
            return [m.marker_id for m in self._markers]

    def insert(self, marker: Marker) -> bool:
        """Insert a copy of marker. Returns False if the id is already known."""
        with self._lock:
            if marker.marker_id in self._index:
                return False
            self._index[marker.marker_id] = len(self._markers)
            self._markers.append(marker.copy())
            return True

    def get(self, marker_id: int) -> Optional[Marker]:
        with self._lock:
            i = self._index.get(marker_id)
            return None if i is None else self._markers[i].copy()

    def snapshot(self) -> Dict[int, Marker]:
        with self._lock:
            return {m.marker_id: m.copy() for m in self._markers}

    def update(self, markers: Dict[int, Marker]) -> int:
        """
        Write back optimized poses.

        Unknown ids and the reference marker are skipped.

        Returns:
            Number of markers updated
        """
        n = 0
        with self._lock:
            for marker_id, marker in markers.items():
                i = self._index.get(marker_id)
                if i is None or i == 0:
                    continue
                self._markers[i] = Marker(marker_id, marker.t.copy(), marker.q.copy())
                n += 1
        return n


class PoseLog:
    """
    Lock-guarded, append-only log of camera poses.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._poses: List[PoseObservation] = []

    def __len__(self) -> int:
        with self._lock:
            return len(self._poses)

    def append(self, pose: PoseObservation) -> int:
        """Append a copy of pose and return its index."""
        with self._lock:
            self._poses.append(pose.copy())
            return len(self._poses) - 1

    def snapshot(self) -> List[PoseObservation]:
        with self._lock:
            return [p.copy() for p in self._poses]

    def update(self, poses: Dict[int, Tuple[np.ndarray, np.ndarray]]):
        """Write back optimized (t, q) extrinsics by log index."""
        with self._lock:
            for i, (t, q) in poses.items():
                if 0 <= i < len(self._poses):
                    self._poses[i].t = np.array(t, dtype=np.float64)
                    self._poses[i].q = np.array(q, dtype=np.float64)

    def is_novel(
        self,
        center: np.ndarray,
        q: np.ndarray,
        min_distance: float,
        min_angle: float
    ) -> bool:
        """
        Check whether a pose differs from every logged one.

        A pose is not novel if some logged pose is both closer than
        min_distance and rotated by less than min_angle (radians).
        """
        with self._lock:
            for pose in self._poses:
                close = np.linalg.norm(pose.camera_center - center) < min_distance
                if close and quaternion_angle(pose.q, q) < min_angle:
                    return False
        return True
