"""Tests for rotation helpers and manifold updates."""

import numpy as np
import pytest
import torch

from mobilear.geometry import manifold
from mobilear.geometry.rotation import (
    IDENTITY,
    direction_to_equirect,
    equirect_directions,
    matrix_to_quaternion,
    pixel_to_direction,
    quaternion_angle,
    quaternion_average,
    quaternion_conjugate,
    quaternion_multiply,
    quaternion_plus,
    quaternion_rotate,
    quaternion_to_matrix,
    rotvec_to_quaternion,
    tangent_basis,
    unit_vector_plus,
)


class TestQuaternions:
    """Tests for quaternion algebra."""

    def test_matrix_roundtrip(self):
        """Matrix conversion keeps the rotation and a non-negative w."""
        q = rotvec_to_quaternion(np.array([0.3, -1.1, 0.4]))
        q2 = matrix_to_quaternion(quaternion_to_matrix(q))
        assert q2[0] >= 0
        assert quaternion_angle(q, q2) < 1e-9

    def test_multiply_matches_matrices(self):
        """Hamilton product composes rotations like matrix products."""
        a = rotvec_to_quaternion(np.array([0.2, 0.1, -0.5]))
        b = rotvec_to_quaternion(np.array([-0.7, 0.3, 0.2]))
        np.testing.assert_allclose(
            quaternion_to_matrix(quaternion_multiply(a, b)),
            quaternion_to_matrix(a) @ quaternion_to_matrix(b),
            atol=1e-12
        )

    def test_conjugate_inverts(self):
        """q * conj(q) is the identity."""
        q = rotvec_to_quaternion(np.array([1.0, 2.0, -0.5]))
        np.testing.assert_allclose(quaternion_multiply(q, quaternion_conjugate(q)), IDENTITY, atol=1e-12)

    def test_rotate_batch(self):
        """Rotating several vectors matches rotating each."""
        q = rotvec_to_quaternion(np.array([0.0, 0.0, np.pi / 2]))
        v = np.array([[1.0, 0.0, 0.0], [0.0, 1.0, 0.0]])
        np.testing.assert_allclose(quaternion_rotate(q, v), [[0.0, 1.0, 0.0], [-1.0, 0.0, 0.0]], atol=1e-12)

    def test_plus_stays_unit(self):
        """Manifold updates keep unit norm."""
        q = IDENTITY.copy()
        rng = np.random.default_rng(0)
        for _ in range(100):
            q = quaternion_plus(q, rng.normal(scale=0.5, size=3))
        assert np.linalg.norm(q) == pytest.approx(1.0, abs=1e-12)


class TestQuaternionAverage:
    """Tests for quaternion averaging."""

    def test_sign_invariant(self):
        """Flipping the sign of some inputs does not change the average."""
        qs = [rotvec_to_quaternion(np.array([0.1 * i, 0.05, -0.02 * i])) for i in range(5)]
        flipped = [q if i % 2 else -q for i, q in enumerate(qs)]
        a = quaternion_average(qs)
        b = quaternion_average(flipped)
        assert quaternion_angle(a, b) < 1e-9

    def test_symmetric_spread(self):
        """Rotations spread symmetrically around q average to q."""
        center = rotvec_to_quaternion(np.array([0.4, -0.2, 0.1]))
        offsets = [np.array([0.1, 0, 0]), np.array([-0.1, 0, 0]), np.array([0, 0.2, 0]), np.array([0, -0.2, 0])]
        qs = [quaternion_plus(center, d) for d in offsets]
        assert quaternion_angle(quaternion_average(qs), center) < 1e-3

    def test_empty_raises(self):
        """Averaging nothing is an error."""
        with pytest.raises(ValueError):
            quaternion_average([])


class TestUnitVectors:
    """Tests for unit vector tangent spaces."""

    def test_basis_orthonormal(self):
        """Tangent basis is orthonormal and orthogonal to v."""
        v = np.array([0.3, -0.4, 0.866])
        v /= np.linalg.norm(v)
        B = tangent_basis(v)
        np.testing.assert_allclose(B.T @ B, np.eye(2), atol=1e-12)
        np.testing.assert_allclose(v @ B, np.zeros(2), atol=1e-12)

    def test_plus_stays_unit(self):
        """Geodesic steps keep unit norm."""
        v = np.array([0.0, 0.0, 1.0])
        out = unit_vector_plus(v, np.array([0.5, -1.5]))
        assert np.linalg.norm(out) == pytest.approx(1.0)

    def test_plus_step_angle(self):
        """Step length equals the travelled angle."""
        v = np.array([1.0, 0.0, 0.0])
        out = unit_vector_plus(v, np.array([0.3, 0.0]))
        assert np.arccos(np.clip(out @ v, -1, 1)) == pytest.approx(0.3)


class TestTorchManifold:
    """Tests for the batched torch manifold operations."""

    def test_plus_stays_unit(self):
        """Batched updates keep unit norm, including zero steps."""
        q = torch.tensor([[1.0, 0.0, 0.0, 0.0]] * 3, dtype=torch.float64)
        delta = torch.tensor([[0.0, 0.0, 0.0], [1e-9, 0.0, 0.0], [0.5, -2.0, 1.0]], dtype=torch.float64)
        out = manifold.quaternion_plus(q, delta)
        np.testing.assert_allclose(out.norm(dim=-1).numpy(), np.ones(3), atol=1e-12)

    def test_matches_numpy(self):
        """Torch updates and rotations agree with numpy."""
        q = rotvec_to_quaternion(np.array([0.2, -0.4, 0.9]))
        delta = np.array([0.05, 0.1, -0.3])
        v = np.array([0.3, 1.0, -2.0])
        tq = manifold.quaternion_plus(torch.from_numpy(q)[None], torch.from_numpy(delta)[None])[0]
        assert quaternion_angle(tq.numpy(), quaternion_plus(q, delta)) < 1e-9
        rotated = manifold.quaternion_rotate(torch.from_numpy(q)[None], torch.from_numpy(v)[None])[0]
        np.testing.assert_allclose(rotated.numpy(), quaternion_rotate(q, v), atol=1e-12)

    def test_unit_vector_plus(self):
        """Batched unit vector updates stay on the sphere."""
        v = np.array([0.0, 1.0, 0.0])
        basis = torch.from_numpy(tangent_basis(v))[None]
        out = manifold.unit_vector_plus(
            torch.from_numpy(v)[None], basis, torch.tensor([[0.7, -0.2]], dtype=torch.float64)
        )
        assert float(out.norm()) == pytest.approx(1.0)
        np.testing.assert_allclose(out[0].numpy(), unit_vector_plus(v, np.array([0.7, -0.2])), atol=1e-12)


class TestEquirect:
    """Tests for the equirectangular mapping."""

    def test_centre_looks_forward(self):
        """The image centre looks down +z and the top looks up."""
        w, h = 64, 32
        np.testing.assert_allclose(pixel_to_direction(w / 2 - 0.5, h / 2 - 0.5, w, h), [0, 0, 1], atol=1e-12)
        assert pixel_to_direction(w / 2 - 0.5, 0, w, h)[1] < -0.99

    def test_inverse(self):
        """direction_to_equirect inverts the pixel directions."""
        d = equirect_directions(16, 8)
        x, y = direction_to_equirect(d, 16, 8)
        xs, ys = np.meshgrid(np.arange(16), np.arange(8))
        np.testing.assert_allclose(x, xs, atol=1e-9)
        np.testing.assert_allclose(y, ys, atol=1e-9)
