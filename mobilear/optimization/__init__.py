"""Nonlinear least-squares solving."""

from .solver import LeastSquaresResult, solve_least_squares

__all__ = [
    "LeastSquaresResult",
    "solve_least_squares",
]
