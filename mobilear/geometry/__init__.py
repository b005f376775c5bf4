"""Rotation utilities, forward-mode differentiation and manifold updates."""

from .jet import Jet, jacobian
from .rotation import (
    IDENTITY,
    quaternion_multiply,
    quaternion_conjugate,
    quaternion_normalize,
    quaternion_to_matrix,
    matrix_to_quaternion,
    rotvec_to_quaternion,
    quaternion_to_rotvec,
    quaternion_rotate,
    quaternion_average,
    quaternion_angle,
    rotation_angle,
    quaternion_plus,
    tangent_basis,
    unit_vector_plus,
    pixel_to_direction,
    equirect_directions,
    direction_to_equirect,
)

__all__ = [
    "Jet",
    "jacobian",
    "IDENTITY",
    "quaternion_multiply",
    "quaternion_conjugate",
    "quaternion_normalize",
    "quaternion_to_matrix",
    "matrix_to_quaternion",
    "rotvec_to_quaternion",
    "quaternion_to_rotvec",
    "quaternion_rotate",
    "quaternion_average",
    "quaternion_angle",
    "rotation_angle",
    "quaternion_plus",
    "tangent_basis",
    "unit_vector_plus",
    "pixel_to_direction",
    "equirect_directions",
    "direction_to_equirect",
]
