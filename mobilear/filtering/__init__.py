"""Sensor fusion filters."""

from .kalman import ExtendedKalmanFilter
from .ekf import EKFOrientation, EKFPosition

__all__ = [
    "ExtendedKalmanFilter",
    "EKFOrientation",
    "EKFPosition",
]
