"""Tests for forward-mode differentiation."""

import numpy as np
import pytest

from mobilear.geometry import jet
from mobilear.geometry.jet import Jet


def numeric_jacobian(fn, x, eps=1e-6):
    x = np.asarray(x, dtype=np.float64)
    f0 = np.array(fn(list(x)), dtype=np.float64)
    J = np.zeros((f0.size, x.size))
    for i in range(x.size):
        xp, xm = x.copy(), x.copy()
        xp[i] += eps
        xm[i] -= eps
        J[:, i] = (np.array(fn(list(xp))) - np.array(fn(list(xm)))) / (2 * eps)
    return J


def composite(x):
    a, b, c = x
    return [
        jet.sin(a) * b - c / (1.0 + b * b),
        jet.exp(0.5 * a) + jet.sqrt(a * a + c * c),
        jet.acos(c / 4.0) - 2.0 / b,
        (a - c) ** 3 + jet.cos(a * c),
    ]


class TestJetArithmetic:
    """Tests for the arithmetic of dual numbers."""

    def test_product_rule(self):
        """Products differentiate with the product rule."""
        a = Jet.variable(3.0, 0, 2)
        b = Jet.variable(-2.0, 1, 2)
        out = a * b
        assert out.a == pytest.approx(-6.0)
        np.testing.assert_allclose(out.v, [-2.0, 3.0])

    def test_quotient_rule(self):
        """Quotients differentiate with the quotient rule."""
        a = Jet.variable(3.0, 0, 2)
        b = Jet.variable(2.0, 1, 2)
        out = a / b
        np.testing.assert_allclose(out.v, [0.5, -0.75])

    def test_reflected_operators(self):
        """Plain numbers on the left keep the derivative."""
        x = Jet.variable(2.0, 0, 1)
        np.testing.assert_allclose((1.0 - x).v, [-1.0])
        np.testing.assert_allclose((3.0 * x).v, [3.0])
        np.testing.assert_allclose((1.0 / x).v, [-0.25])
        np.testing.assert_allclose((5.0 + x).v, [1.0])

    def test_comparisons_use_value(self):
        """Comparisons ignore the tangent."""
        x = Jet(1.0, np.array([100.0]))
        assert x < 2.0
        assert x >= 1.0
        assert abs(Jet(-1.0, np.array([1.0]))).v[0] == -1.0

    def test_constant_has_zero_tangent(self):
        """Constants do not contribute derivatives."""
        c = Jet.constant(4.0, 3)
        np.testing.assert_array_equal(c.v, np.zeros(3))


class TestJacobian:
    """Tests for Jacobian evaluation."""

    @pytest.mark.parametrize("x", [
        [0.3, 1.5, 0.7],
        [-1.2, 0.8, -2.0],
        [2.0, -3.0, 1.0],
    ])
    def test_matches_finite_differences(self, x):
        """Jet Jacobians agree with central differences."""
        value, J = jet.jacobian(composite, x)
        np.testing.assert_allclose(value, composite(x), rtol=1e-12)
        np.testing.assert_allclose(J, numeric_jacobian(composite, x), rtol=1e-5, atol=1e-6)

    def test_shape(self):
        """Jacobian has one row per output and one column per input."""
        value, J = jet.jacobian(lambda x: [x[0] + x[1]], [1.0, 2.0])
        assert value.shape == (1,)
        assert J.shape == (1, 2)
        np.testing.assert_allclose(J, [[1.0, 1.0]])

    def test_constant_output(self):
        """Outputs independent of the inputs have zero rows."""
        _, J = jet.jacobian(lambda x: [1.0, x[0]], [2.0])
        np.testing.assert_allclose(J, [[0.0], [1.0]])
