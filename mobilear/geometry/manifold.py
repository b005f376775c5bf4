"""
Differentiable manifold updates for the nonlinear solvers.

Batched torch versions of the quaternion and unit-vector plus operators.
All functions are smooth at a zero step so autograd Jacobians taken at
the linearization point are finite.
"""

import torch


def quaternion_multiply(a: torch.Tensor, b: torch.Tensor) -> torch.Tensor:
    """Hamilton product of (..., 4) quaternions in (w, x, y, z) order."""
    aw, ax, ay, az = a.unbind(-1)
    bw, bx, by, bz = b.unbind(-1)
    return torch.stack([
        aw * bw - ax * bx - ay * by - az * bz,
        aw * bx + ax * bw + ay * bz - az * by,
        aw * by - ax * bz + ay * bw + az * bx,
        aw * bz + ax * by - ay * bx + az * bw,
    ], dim=-1)


def quaternion_exp(delta: torch.Tensor) -> torch.Tensor:
    """Quaternion of the rotation vector delta (..., 3)."""
    theta2 = (delta * delta).sum(-1, keepdim=True)
    small = theta2 < 1e-8
    theta = torch.sqrt(torch.clamp(theta2, min=1e-12))
    half = 0.5 * theta

    w = torch.where(small, 1.0 - theta2 / 8.0, torch.cos(half))
    k = torch.where(small, 0.5 - theta2 / 48.0, torch.sin(half) / theta)
    return torch.cat([w, k * delta], dim=-1)


def quaternion_plus(q: torch.Tensor, delta: torch.Tensor) -> torch.Tensor:
    """Apply a tangent step: exp(delta) * q, renormalized."""
    out = quaternion_multiply(quaternion_exp(delta), q)
    return out / out.norm(dim=-1, keepdim=True)


def quaternion_rotate(q: torch.Tensor, v: torch.Tensor) -> torch.Tensor:
    """Rotate (..., 3) vectors by (..., 4) quaternions."""
    w = q[..., :1]
    u = q[..., 1:]
    t = 2.0 * torch.linalg.cross(u, v, dim=-1)
    return v + w * t + torch.linalg.cross(u, t, dim=-1)


def unit_vector_plus(v: torch.Tensor, basis: torch.Tensor, delta: torch.Tensor) -> torch.Tensor:
    """
    Move unit vectors along geodesics.

    Args:
        v: (..., 3) unit vectors at the linearization point
        basis: (..., 3, 2) tangent bases at v
        delta: (..., 2) tangent steps

    Returns:
        (..., 3) unit vectors
    """
    step = (basis * delta.unsqueeze(-2)).sum(-1)
    n2 = (step * step).sum(-1, keepdim=True)
    small = n2 < 1e-8
    n = torch.sqrt(torch.clamp(n2, min=1e-12))

    c = torch.where(small, 1.0 - n2 / 2.0, torch.cos(n))
    s = torch.where(small, 1.0 - n2 / 6.0, torch.sin(n) / n)
    out = c * v + s * step
    return out / out.norm(dim=-1, keepdim=True)
