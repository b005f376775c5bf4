"""
Bundle adjustment of marker and camera poses.

Jointly refines marker poses and logged camera extrinsics by minimizing
the reprojection error of the marker corners. The reference marker
fixes the gauge. Rotations are updated on the unit quaternion manifold.
"""

import numpy as np
import torch
from dataclasses import dataclass
from typing import Dict, Iterable, Optional, Sequence, Tuple

from ..geometry import manifold
from ..geometry.rotation import quaternion_plus
from ..optimization import solve_least_squares
from .marker_map import Marker, PoseObservation, marker_grid


@dataclass
class MarkerBundleResult:
    """Result of marker bundle adjustment."""
    markers: Dict[int, Marker]  # Optimized markers, by id
    poses: Dict[int, Tuple[np.ndarray, np.ndarray]]  # Optimized (t, q) extrinsics, by log index
    initial_error: float  # RMS corner reprojection error before
    final_error: float  # RMS corner reprojection error after
    n_observations: int
    n_iterations: int
    converged: bool


class MarkerBundleAdjuster:
    """
    Reprojection bundle adjustment over markers and camera poses.
    """

    def __init__(
        self,
        K: np.ndarray,
        marker_size: float = 4.6,
        max_iterations: int = 30,
        tolerance: float = 1e-3,
        huber_scale: float = 2.0,
        verbose: bool = False
    ):
        """
        Initialize the adjuster.

        Args:
            K: 3x3 intrinsic matrix of the undistorted corners
            marker_size: Side length of the markers
            max_iterations: Maximum number of function evaluations
            tolerance: Function and gradient tolerance
            huber_scale: Huber loss threshold in pixels
            verbose: Print solver progress
        """
        self.K = np.asarray(K, dtype=np.float64)
        self.grid = marker_grid(marker_size)
        self.max_iterations = max_iterations
        self.tolerance = tolerance
        self.huber_scale = huber_scale
        self.verbose = verbose

    def optimize(
        self,
        markers: Dict[int, Marker],
        poses: Sequence[PoseObservation],
        reference_id: Optional[int],
        fix_poses: bool = False,
        variable_markers: Optional[Iterable[int]] = None
    ) -> MarkerBundleResult:
        """
        Run bundle adjustment.

        Args:
            markers: Marker poses by id
            poses: Camera poses with their corner observations
            reference_id: Marker held fixed
            fix_poses: Hold all camera poses constant
            variable_markers: Ids to optimize, defaults to all known markers

        Returns:
            MarkerBundleResult with optimized copies
        """
        if variable_markers is None:
            variable_markers = markers.keys()
        variable = [m for m in variable_markers if m in markers and m != reference_id]

        # Parameter layout: 6 per variable marker, then 6 per pose
        marker_offset = {m: 6 * i for i, m in enumerate(variable)}
        n_params = 6 * len(variable)
        pose_offset = {}
        if not fix_poses:
            for i in range(len(poses)):
                pose_offset[i] = n_params
                n_params += 6

        qm0, tm0, qp0, tp0, obs = [], [], [], [], []
        marker_rows, pose_rows = [], []
        for i, pose in enumerate(poses):
            for marker_id, corners in pose.observations:
                marker = markers.get(marker_id)
                if marker is None:
                    continue
                qm0.append(marker.q)
                tm0.append(marker.t)
                qp0.append(pose.q)
                tp0.append(pose.t)
                obs.append(corners)
                mo = marker_offset.get(marker_id)
                po = pose_offset.get(i)
                marker_rows.append(np.arange(mo, mo + 6) if mo is not None else -np.ones(6, dtype=np.int64))
                pose_rows.append(np.arange(po, po + 6) if po is not None else -np.ones(6, dtype=np.int64))

        n_obs = len(obs)
        if n_obs == 0:
            return MarkerBundleResult(
                markers={m: markers[m].copy() for m in variable},
                poses={i: (p.t.copy(), p.q.copy()) for i, p in enumerate(poses)},
                initial_error=0.0, final_error=0.0,
                n_observations=0, n_iterations=0, converged=True
            )

        def as_tensor(a):
            return torch.from_numpy(np.asarray(a, dtype=np.float64))

        qm0_t, tm0_t = as_tensor(qm0), as_tensor(tm0)
        qp0_t, tp0_t = as_tensor(qp0), as_tensor(tp0)
        obs_t = as_tensor(obs).reshape(n_obs, 8)
        grid = as_tensor(self.grid).unsqueeze(0).expand(n_obs, 4, 3)
        fx, fy = self.K[0, 0], self.K[1, 1]
        cx, cy = self.K[0, 2], self.K[1, 2]

        def residual(dm: torch.Tensor, dp: torch.Tensor) -> torch.Tensor:
            qm = manifold.quaternion_plus(qm0_t, dm[:, 3:])
            tm = tm0_t + dm[:, :3]
            world = manifold.quaternion_rotate(qm.unsqueeze(1), grid) + tm.unsqueeze(1)

            qp = manifold.quaternion_plus(qp0_t, dp[:, 3:])
            tp = tp0_t + dp[:, :3]
            cam = manifold.quaternion_rotate(qp.unsqueeze(1), world) + tp.unsqueeze(1)

            u = fx * cam[..., 0] / cam[..., 2] + cx
            v = fy * cam[..., 1] / cam[..., 2] + cy
            return torch.stack([u, v], dim=-1).reshape(n_obs, 8) - obs_t

        result = solve_least_squares(
            residual,
            [np.stack(marker_rows), np.stack(pose_rows)],
            n_params,
            loss="huber",
            f_scale=self.huber_scale,
            max_nfev=self.max_iterations,
            ftol=self.tolerance,
            gtol=self.tolerance,
            verbose=self.verbose
        )

        out_markers = {}
        for m in variable:
            o = marker_offset[m]
            d = result.x[o:o + 6]
            out_markers[m] = Marker(m, markers[m].t + d[:3], quaternion_plus(markers[m].q, d[3:]))

        out_poses = {}
        for i, pose in enumerate(poses):
            o = pose_offset.get(i)
            if o is None:
                out_poses[i] = (pose.t.copy(), pose.q.copy())
            else:
                d = result.x[o:o + 6]
                out_poses[i] = (pose.t + d[:3], quaternion_plus(pose.q, d[3:]))

        n_corners = 4 * n_obs
        return MarkerBundleResult(
            markers=out_markers,
            poses=out_poses,
            initial_error=float(np.sqrt(2.0 * result.initial_cost / n_corners)),
            final_error=float(np.sqrt(2.0 * result.final_cost / n_corners)),
            n_observations=n_obs,
            n_iterations=result.n_iterations,
            converged=result.converged
        )
