"""
Orientation and position filters.

Concrete extended Kalman filters fusing marker-derived poses with
inertial measurements. Quaternions are stored in (w, x, y, z) order.
"""

import numpy as np
from typing import Optional, Sequence, Tuple

from ..geometry import jet
from ..geometry.jet import Number
from ..geometry.rotation import quaternion_normalize
from .kalman import ExtendedKalmanFilter


def _hamilton(a: Sequence[Number], b: Sequence[Number]) -> Tuple[Number, ...]:
    """Hamilton product over generic numbers."""
    aw, ax, ay, az = a
    bw, bx, by, bz = b
    return (
        aw * bw - ax * bx - ay * by - az * bz,
        aw * bx + ax * bw + ay * bz - az * by,
        aw * by - ax * bz + ay * bw + az * bx,
        aw * bz + ax * by - ay * bx + az * bw,
    )


def _normalized(q: Sequence[Number]) -> Tuple[Number, ...]:
    n2 = q[0] * q[0] + q[1] * q[1] + q[2] * q[2] + q[3] * q[3]
    if n2 < 1e-12:
        return tuple(q)
    n = jet.sqrt(n2)
    return tuple(c / n for c in q)


class EKFOrientation:
    """
    Orientation filter.

    State: quaternion (4), angular velocity (3), angular acceleration (3).
    """

    def __init__(
        self,
        q: Optional[np.ndarray] = None,
        x: Optional[np.ndarray] = None,
        p: Optional[np.ndarray] = None,
        marker_noise: Optional[np.ndarray] = None,
        imu_noise: Optional[np.ndarray] = None
    ):
        """
        Initialize the filter.

        Args:
            q: (10, 10) process noise, defaults to diag(5e-2 x4, 1e-4 x6)
            x: (10,) initial state, defaults to the identity orientation at rest
            p: (10, 10) initial covariance, defaults to 10 I
            marker_noise: (4, 4) noise of marker quaternions
            imu_noise: (7, 7) noise of IMU quaternion and angular velocity
        """
        if q is None:
            q = np.diag([5e-2] * 4 + [1e-4] * 6)
        if x is None:
            x = np.zeros(10)
            x[0] = 1.0
        if p is None:
            p = np.eye(10) * 10.0

        self.marker_noise = np.eye(4) * 1e-2 if marker_noise is None else marker_noise
        self.imu_noise = np.eye(7) * 1e-2 if imu_noise is None else imu_noise
        self.kf = ExtendedKalmanFilter(q, x, p)

    @staticmethod
    def _transition(x, w, dt):
        rq = _normalized(x[0:4])
        rv = x[4:7]
        ra = x[7:10]

        r = [0.5 * (rv[i] * dt + ra[i] * dt * dt / 2.0) for i in range(3)]
        v = [rv[i] + ra[i] * dt for i in range(3)]
        dq = _hamilton((0.0, r[0], r[1], r[2]), rq)
        q = [x[i] + dq[i] for i in range(4)]

        out = q + v + list(ra)
        return [out[i] + w[i] for i in range(10)]

    @staticmethod
    def _measure_marker(x, w):
        q = _normalized(x[0:4])
        return [q[i] + w[i] for i in range(4)]

    @staticmethod
    def _measure_imu(x, w):
        z = list(_normalized(x[0:4])) + list(x[4:7])
        return [z[i] + w[i] for i in range(7)]

    def _align(self, q: np.ndarray) -> np.ndarray:
        # q and -q encode the same rotation, measure on the state's side
        q = np.asarray(q, dtype=np.float64)
        return -q if np.dot(q, self.kf.x[0:4]) < 0 else q

    def update_marker(self, q: np.ndarray, dt: float) -> np.ndarray:
        """Fuse an orientation derived from markers."""
        self.kf.update(self._transition, self._measure_marker, self._align(q), self.marker_noise, dt)
        return self.get_orientation()

    def update_imu(self, q: np.ndarray, w: np.ndarray, dt: float) -> np.ndarray:
        """Fuse the device attitude and angular velocity."""
        z = np.concatenate([self._align(q), np.asarray(w, dtype=np.float64)])
        self.kf.update(self._transition, self._measure_imu, z, self.imu_noise, dt)
        return self.get_orientation()

    def get_orientation(self) -> np.ndarray:
        """State quaternion, renormalized."""
        return quaternion_normalize(self.kf.x[0:4])

    @property
    def covariance(self) -> np.ndarray:
        return self.kf.covariance


class EKFPosition:
    """
    Position filter.

    State: position (3), velocity (3), acceleration (3).
    """

    def __init__(
        self,
        q: Optional[np.ndarray] = None,
        x: Optional[np.ndarray] = None,
        p: Optional[np.ndarray] = None,
        marker_noise: Optional[np.ndarray] = None,
        imu_noise: Optional[np.ndarray] = None
    ):
        if q is None:
            q = np.diag([5e-2] * 3 + [2e-1] * 3 + [5e-2] * 3)
        if x is None:
            x = np.zeros(9)
        if p is None:
            p = np.eye(9) * 10.0

        self.marker_noise = np.eye(3) * 5e-2 if marker_noise is None else marker_noise
        self.imu_noise = np.eye(3) * 5e-2 if imu_noise is None else imu_noise
        self.kf = ExtendedKalmanFilter(q, x, p)

    @staticmethod
    def _transition(x, w, dt):
        px = [x[i] + x[3 + i] * dt + x[6 + i] * dt * dt / 2.0 for i in range(3)]
        pv = [x[3 + i] + x[6 + i] * dt for i in range(3)]
        out = px + pv + list(x[6:9])
        return [out[i] + w[i] for i in range(9)]

    @staticmethod
    def _measure_position(x, w):
        return [x[i] + w[i] for i in range(3)]

    @staticmethod
    def _measure_acceleration(x, w):
        return [x[6 + i] + w[i] for i in range(3)]

    def update_marker(self, x: np.ndarray, dt: float) -> np.ndarray:
        """Fuse a position derived from markers."""
        self.kf.update(self._transition, self._measure_position, x, self.marker_noise, dt)
        return self.get_position()

    def update_imu(self, a: np.ndarray, dt: float) -> np.ndarray:
        """Fuse a world-frame acceleration."""
        self.kf.update(self._transition, self._measure_acceleration, a, self.imu_noise, dt)
        return self.get_position()

    def get_position(self) -> np.ndarray:
        return self.kf.x[0:3].copy()

    @property
    def covariance(self) -> np.ndarray:
        return self.kf.covariance
