"""
Quaternion and rotation utilities.

Quaternions are numpy arrays in (w, x, y, z) order. Conversions to and
from rotation matrices go through scipy's Rotation, which stores
quaternions scalar-last.
"""

import numpy as np
from typing import Sequence, Tuple
from scipy.spatial.transform import Rotation


IDENTITY = np.array([1.0, 0.0, 0.0, 0.0])


def quaternion_multiply(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    """Hamilton product a * b."""
    aw, ax, ay, az = a
    bw, bx, by, bz = b
    return np.array([
        aw * bw - ax * bx - ay * by - az * bz,
        aw * bx + ax * bw + ay * bz - az * by,
        aw * by - ax * bz + ay * bw + az * bx,
        aw * bz + ax * by - ay * bx + az * bw,
    ])


def quaternion_conjugate(q: np.ndarray) -> np.ndarray:
    """Inverse of a unit quaternion."""
    return np.array([q[0], -q[1], -q[2], -q[3]])


def quaternion_normalize(q: np.ndarray, eps: float = 1e-6) -> np.ndarray:
    """Normalize q, leaving it untouched when its norm is below eps."""
    q = np.asarray(q, dtype=np.float64)
    n = np.linalg.norm(q)
    if n < eps:
        return q.copy()
    return q / n


def quaternion_to_matrix(q: np.ndarray) -> np.ndarray:
    """Convert a (w, x, y, z) quaternion to a 3x3 rotation matrix."""
    w, x, y, z = q
    return Rotation.from_quat([x, y, z, w]).as_matrix()


def matrix_to_quaternion(R: np.ndarray) -> np.ndarray:
    """Convert a rotation matrix to a (w, x, y, z) quaternion with w >= 0."""
    x, y, z, w = Rotation.from_matrix(np.asarray(R, dtype=np.float64)).as_quat()
    q = np.array([w, x, y, z])
    return q if w >= 0 else -q


def rotvec_to_quaternion(r: np.ndarray) -> np.ndarray:
    """Convert an axis-angle vector to a quaternion."""
    x, y, z, w = Rotation.from_rotvec(np.asarray(r, dtype=np.float64)).as_quat()
    return np.array([w, x, y, z])


def quaternion_to_rotvec(q: np.ndarray) -> np.ndarray:
    """Convert a quaternion to an axis-angle vector."""
    w, x, y, z = q
    return Rotation.from_quat([x, y, z, w]).as_rotvec()


def quaternion_rotate(q: np.ndarray, v: np.ndarray) -> np.ndarray:
    """Rotate vector(s) v of shape (3,) or (N, 3) by q."""
    return np.asarray(v, dtype=np.float64) @ quaternion_to_matrix(q).T


def quaternion_average(quaternions: Sequence[np.ndarray]) -> np.ndarray:
    """
    Average a set of unit quaternions.

    Returns the unit quaternion maximizing sum((q_i . q)^2), the dominant
    eigenvector of sum(q_i q_i^T). The result does not depend on the sign
    of the inputs; it is returned in the hemisphere of the first one.

    Args:
        quaternions: Non-empty sequence of (4,) quaternions

    Returns:
        (4,) unit quaternion
    """
    if len(quaternions) == 0:
        raise ValueError("Cannot average an empty set of quaternions")

    Q = np.asarray(quaternions, dtype=np.float64).reshape(-1, 4)
    M = Q.T @ Q
    _, vecs = np.linalg.eigh(M)
    avg = vecs[:, -1]
    if np.dot(avg, Q[0]) < 0:
        avg = -avg
    return avg / np.linalg.norm(avg)


def quaternion_angle(a: np.ndarray, b: np.ndarray) -> float:
    """Angle in [0, pi] of the rotation taking a to b."""
    d = abs(float(np.dot(a, b))) / (np.linalg.norm(a) * np.linalg.norm(b))
    return 2.0 * float(np.arccos(np.clip(d, 0.0, 1.0)))


def rotation_angle(R: np.ndarray) -> float:
    """Angle in [0, pi] of a rotation matrix."""
    c = (np.trace(R) - 1.0) / 2.0
    return float(np.arccos(np.clip(c, -1.0, 1.0)))


def quaternion_plus(q: np.ndarray, delta: np.ndarray) -> np.ndarray:
    """Manifold update exp(delta) * q, staying on the unit sphere."""
    return quaternion_normalize(quaternion_multiply(rotvec_to_quaternion(delta), q))


def tangent_basis(v: np.ndarray) -> np.ndarray:
    """
    Orthonormal basis of the plane orthogonal to a unit vector.

    Returns:
        (3, 2) matrix whose columns span the tangent space at v
    """
    v = np.asarray(v, dtype=np.float64)
    v = v / np.linalg.norm(v)
    # Cross with the coordinate axis least aligned with v
    k = int(np.argmin(np.abs(v)))
    e = np.zeros(3)
    e[k] = 1.0
    b1 = np.cross(v, e)
    b1 /= np.linalg.norm(b1)
    b2 = np.cross(v, b1)
    return np.stack([b1, b2], axis=1)


def unit_vector_plus(v: np.ndarray, delta: np.ndarray) -> np.ndarray:
    """Move a unit vector along the geodesic given by a 2D tangent step."""
    step = tangent_basis(v) @ np.asarray(delta, dtype=np.float64)
    n = np.linalg.norm(step)
    if n < 1e-12:
        out = np.asarray(v, dtype=np.float64) + step
    else:
        out = np.cos(n) * v + np.sin(n) * step / n
    return out / np.linalg.norm(out)


def pixel_to_direction(x, y, width: int, height: int) -> np.ndarray:
    """
    World direction of continuous equirectangular pixel coordinates.

    Longitude runs left to right over [-pi, pi), latitude top to bottom
    over [pi/2, -pi/2]. The image centre looks down +z and the top row
    looks up (-y), matching the OpenCV camera convention.

    Returns:
        (..., 3) array of unit vectors
    """
    lon = 2.0 * np.pi * (np.asarray(x, dtype=np.float64) + 0.5) / width - np.pi
    lat = np.pi / 2.0 - np.pi * (np.asarray(y, dtype=np.float64) + 0.5) / height
    return np.stack([
        np.cos(lat) * np.sin(lon),
        -np.sin(lat),
        np.cos(lat) * np.cos(lon),
    ], axis=-1)


def equirect_directions(width: int, height: int) -> np.ndarray:
    """
    World directions of the pixel centres of an equirectangular image.

    Returns:
        (height, width, 3) array of unit vectors
    """
    x, y = np.meshgrid(np.arange(width), np.arange(height))
    return pixel_to_direction(x, y, width, height)


def direction_to_equirect(d: np.ndarray, width: int, height: int) -> Tuple[np.ndarray, np.ndarray]:
    """Inverse of equirect_directions: continuous pixel (x, y) of direction(s) d."""
    d = np.asarray(d, dtype=np.float64)
    d = d / np.linalg.norm(d, axis=-1, keepdims=True)
    lon = np.arctan2(d[..., 0], d[..., 2])
    lat = np.arcsin(np.clip(-d[..., 1], -1.0, 1.0))
    x = (lon + np.pi) * width / (2.0 * np.pi) - 0.5
    y = (np.pi / 2.0 - lat) * height / np.pi - 0.5
    return x, y
