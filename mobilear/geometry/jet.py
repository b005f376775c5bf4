"""
Forward-mode automatic differentiation.

A Jet carries a scalar value and a fixed-size tangent vector. Functions
written against plain floats and the elementary functions of this
module work unchanged on Jets, so evaluating them on Jets seeded with
unit tangents yields both their value and their Jacobian.
"""

import math
import numpy as np
from typing import Callable, Sequence, Tuple, Union


class Jet:
    """Dual number with an N-dimensional infinitesimal part."""

    __slots__ = ("a", "v")

    def __init__(self, a: float, v: np.ndarray):
        self.a = float(a)
        self.v = np.asarray(v, dtype=np.float64)

    @classmethod
    def constant(cls, a: float, n: int) -> "Jet":
        """Jet with zero derivative."""
        return cls(a, np.zeros(n))

    @classmethod
    def variable(cls, a: float, i: int, n: int) -> "Jet":
        """Jet seeded with the i-th unit tangent."""
        v = np.zeros(n)
        v[i] = 1.0
        return cls(a, v)

    def __repr__(self) -> str:
        return f"Jet({self.a!r}, {self.v!r})"

    def __add__(self, other):
        if isinstance(other, Jet):
            return Jet(self.a + other.a, self.v + other.v)
        return Jet(self.a + other, self.v)

    __radd__ = __add__

    def __sub__(self, other):
        if isinstance(other, Jet):
            return Jet(self.a - other.a, self.v - other.v)
        return Jet(self.a - other, self.v)

    def __rsub__(self, other):
        return Jet(other - self.a, -self.v)

    def __neg__(self):
        return Jet(-self.a, -self.v)

    def __pos__(self):
        return self

    def __mul__(self, other):
        if isinstance(other, Jet):
            return Jet(self.a * other.a, self.a * other.v + other.a * self.v)
        return Jet(self.a * other, self.v * other)

    __rmul__ = __mul__

    def __truediv__(self, other):
        if isinstance(other, Jet):
            s = self.a / other.a
            return Jet(s, (self.v - other.v * s) / other.a)
        return Jet(self.a / other, self.v / other)

    def __rtruediv__(self, other):
        s = other / self.a
        return Jet(s, -self.v * s / self.a)

    def __pow__(self, p: float):
        if isinstance(p, Jet):
            raise TypeError("Jet exponents are not supported")
        return Jet(self.a ** p, p * self.a ** (p - 1) * self.v)

    def __abs__(self):
        return -self if self.a < 0 else self

    # Comparisons only look at the scalar part
    def __lt__(self, other):
        return self.a < _scalar(other)

    def __le__(self, other):
        return self.a <= _scalar(other)

    def __gt__(self, other):
        return self.a > _scalar(other)

    def __ge__(self, other):
        return self.a >= _scalar(other)

    def __float__(self):
        return self.a


Number = Union[float, Jet]


def _scalar(x: Number) -> float:
    return x.a if isinstance(x, Jet) else float(x)


def sqrt(x: Number) -> Number:
    if isinstance(x, Jet):
        s = math.sqrt(x.a)
        return Jet(s, x.v / (2.0 * s))
    return math.sqrt(x)


def sin(x: Number) -> Number:
    if isinstance(x, Jet):
        return Jet(math.sin(x.a), math.cos(x.a) * x.v)
    return math.sin(x)


def cos(x: Number) -> Number:
    if isinstance(x, Jet):
        return Jet(math.cos(x.a), -math.sin(x.a) * x.v)
    return math.cos(x)


def acos(x: Number) -> Number:
    if isinstance(x, Jet):
        return Jet(math.acos(x.a), -x.v / math.sqrt(1.0 - x.a * x.a))
    return math.acos(x)


def exp(x: Number) -> Number:
    if isinstance(x, Jet):
        e = math.exp(x.a)
        return Jet(e, e * x.v)
    return math.exp(x)


def value(x: Number) -> float:
    """Scalar part of a Jet or float."""
    return _scalar(x)


def tangent(x: Number, n: int) -> np.ndarray:
    """Tangent part of a Jet, zero for plain numbers."""
    return x.v if isinstance(x, Jet) else np.zeros(n)


def jacobian(
    fn: Callable[[Sequence[Jet]], Sequence[Number]],
    x: Sequence[float]
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Evaluate a vector function and its Jacobian at x.

    Args:
        fn: Function mapping a sequence of numbers to a sequence of numbers
        x: Point of evaluation

    Returns:
        (value, J) with value of shape (M,) and J of shape (M, N)
    """
    n = len(x)
    out = fn([Jet.variable(xi, i, n) for i, xi in enumerate(x)])
    return (
        np.array([value(o) for o in out]),
        np.array([tangent(o, n) for o in out]).reshape(len(out), n),
    )
