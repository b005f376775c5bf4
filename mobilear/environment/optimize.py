"""
Global bundle adjustment of panorama frame orientations.

All frames share one camera centre, so only orientations are refined.
Several objective formulations are available; they differ in whether
tracks carry their own parameters and in which space residuals live.
"""

import numpy as np
import torch
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from ..config import BAMethod, EnvironmentConfig
from ..geometry import manifold
from ..geometry.rotation import (
    matrix_to_quaternion,
    quaternion_plus,
    quaternion_to_matrix,
    tangent_basis,
)
from ..optimization import solve_least_squares
from .frame import Frame
from .graph import Track


@dataclass
class GlobalBundleResult:
    """Result of the panorama bundle adjustment."""
    rotations: Dict[int, np.ndarray]  # Frame index to optimized world-to-camera rotation
    participating: List[int]  # Frames constrained by at least one track
    initial_cost: float
    final_cost: float
    n_iterations: int
    converged: bool


def _centre_weight(pts: np.ndarray, K: np.ndarray, shape) -> np.ndarray:
    """Weights falling from 1 at the principal point to 0.5 in the corners."""
    h, w = shape[:2]
    cx, cy = K[0, 2], K[1, 2]
    r_max = np.hypot(max(cx, w - cx), max(cy, h - cy))
    r = np.hypot(pts[:, 0] - cx, pts[:, 1] - cy)
    return 1.0 - 0.5 * (r / r_max) ** 2


class GlobalBundleAdjuster:
    """
    Orientation-only bundle adjustment over feature tracks.
    """

    def __init__(self, config: Optional[EnvironmentConfig] = None):
        self.config = config or EnvironmentConfig()

    def optimize(self, frames: Sequence[Frame], tracks: Sequence[Track]) -> GlobalBundleResult:
        """
        Refine frame orientations.

        The lowest-index participating frame fixes the gauge. Frames
        without any track keep their gyroscope orientation and are not
        reported as participating, unless no frame has tracks at all.

        Args:
            frames: Frames, indexed by Frame.index
            tracks: Tracks from group_matches

        Returns:
            GlobalBundleResult
        """
        by_index = {f.index: f for f in frames}
        participating = sorted({i for t in tracks for i in t.frames if i in by_index})
        if not participating:
            return GlobalBundleResult(
                rotations={f.index: f.R.copy() for f in frames},
                participating=[f.index for f in frames],
                initial_cost=0.0, final_cost=0.0, n_iterations=0, converged=True
            )

        gauge = participating[0]
        frame_offset = {f: 3 * i for i, f in enumerate(participating[1:])}
        n_frame_params = 3 * len(frame_offset)
        q0 = {f: matrix_to_quaternion(by_index[f].R) for f in participating}

        # Unprojected rays and centre weights per observation
        obs = []
        for ti, track in enumerate(tracks):
            for f, xy in track.observations:
                if f not in by_index:
                    continue
                frame = by_index[f]
                ray = np.linalg.inv(frame.K) @ np.array([xy[0], xy[1], 1.0])
                w = _centre_weight(np.asarray(xy)[None], frame.K, frame.image.shape)[0]
                obs.append((ti, f, xy, ray / np.linalg.norm(ray), w))

        method = self.config.ba_method
        if method == BAMethod.RAYS:
            result = self._solve_rays(obs, q0, frame_offset, n_frame_params)
        else:
            result = self._solve_tracks(method, obs, by_index, q0, frame_offset, n_frame_params)

        rotations = {f.index: f.R.copy() for f in frames}
        for f, o in frame_offset.items():
            rotations[f] = quaternion_to_matrix(quaternion_plus(q0[f], result.x[o:o + 3]))
        rotations[gauge] = by_index[gauge].R.copy()

        if not result.converged:
            print(f"    Global bundle adjustment stopped after {result.n_iterations} evaluations "
                  f"(cost {result.initial_cost:.4g} -> {result.final_cost:.4g})")

        return GlobalBundleResult(
            rotations=rotations,
            participating=participating,
            initial_cost=result.initial_cost,
            final_cost=result.final_cost,
            n_iterations=result.n_iterations,
            converged=result.converged
        )

    def _frame_block(self, frames: Sequence[int], frame_offset: Dict[int, int]) -> np.ndarray:
        fixed = -np.ones(3, dtype=np.int64)
        return np.stack([
            np.arange(frame_offset[f], frame_offset[f] + 3) if f in frame_offset else fixed
            for f in frames
        ])

    def _loss(self):
        cfg = self.config
        return cfg.ba_loss if cfg.ba_loss else "linear"

    def _solve_rays(self, obs, q0, frame_offset, n_params):
        """Pairwise ray alignment within each track."""
        by_track: Dict[int, list] = {}
        for o in obs:
            by_track.setdefault(o[0], []).append(o)

        pairs = []
        for items in by_track.values():
            for i in range(len(items)):
                for j in range(i + 1, len(items)):
                    pairs.append((items[i], items[j]))
        if not pairs:
            return solve_least_squares(lambda: None, [], n_params)

        def tensor(rows):
            return torch.from_numpy(np.asarray(rows, dtype=np.float64))

        qa = tensor([q0[a[1]] for a, _ in pairs])
        qb = tensor([q0[b[1]] for _, b in pairs])
        ra = tensor([a[3] for a, _ in pairs])
        rb = tensor([b[3] for _, b in pairs])
        w = tensor([a[4] * b[4] for a, b in pairs]).unsqueeze(-1)

        def residual(da: torch.Tensor, db: torch.Tensor) -> torch.Tensor:
            # Camera rays back to the world through the inverse rotation
            wa = manifold.quaternion_rotate(_conjugate(manifold.quaternion_plus(qa, da)), ra)
            wb = manifold.quaternion_rotate(_conjugate(manifold.quaternion_plus(qb, db)), rb)
            return w * (wa - wb)

        return solve_least_squares(
            residual,
            [self._frame_block([a[1] for a, _ in pairs], frame_offset),
             self._frame_block([b[1] for _, b in pairs], frame_offset)],
            n_params,
            loss=self._loss(),
            f_scale=self.config.ba_loss_scale,
            max_nfev=self.config.ba_max_iterations
        )

    def _solve_tracks(self, method, obs, by_index, q0, frame_offset, n_frame_params):
        """Objectives with per-track parameters."""
        cfg = self.config
        used = sorted({o[0] for o in obs})
        track_dim = 3 if method == BAMethod.POINTS else 2
        track_offset = {t: n_frame_params + track_dim * i for i, t in enumerate(used)}
        n_params = n_frame_params + track_dim * len(used)

        # Initial track directions: mean of the world rays
        sums = {t: np.zeros(3) for t in used}
        for ti, f, _, ray, _ in obs:
            sums[ti] += by_index[f].R.T @ ray
        d0 = {t: s / np.linalg.norm(s) for t, s in sums.items()}

        def tensor(rows):
            return torch.from_numpy(np.asarray(rows, dtype=np.float64))

        q = tensor([q0[o[1]] for o in obs])
        rays = tensor([o[3] for o in obs])
        w = tensor([o[4] for o in obs]).unsqueeze(-1)
        d = tensor([d0[o[0]] for o in obs])
        basis = tensor([tangent_basis(d0[o[0]]) for o in obs])
        xy = tensor([o[2] for o in obs])
        K = tensor([by_index[o[1]].K for o in obs])

        frame_block = self._frame_block([o[1] for o in obs], frame_offset)
        track_block = np.stack([np.arange(track_offset[o[0]], track_offset[o[0]] + track_dim) for o in obs])

        def residual(df: torch.Tensor, dt: torch.Tensor) -> torch.Tensor:
            qf = manifold.quaternion_plus(q, df)
            if method == BAMethod.POINTS:
                world = manifold.quaternion_rotate(_conjugate(qf), rays)
                return w * (world - (d + dt))

            direction = manifold.unit_vector_plus(d, basis, dt)
            if method == BAMethod.VECTORS:
                world = manifold.quaternion_rotate(_conjugate(qf), rays)
                return w * (world - direction)

            # Reprojection of the track direction, in pixels
            cam = manifold.quaternion_rotate(qf, direction)
            pix = (K @ cam.unsqueeze(-1)).squeeze(-1)
            return w * (pix[:, :2] / pix[:, 2:3] - xy)

        loss = self._loss()
        f_scale = cfg.ba_loss_scale
        if method == BAMethod.REPROJ:
            f_scale *= float(np.mean([by_index[o[1]].K[0, 0] for o in obs]))
        elif method == BAMethod.POINTS:
            # Free points are solved without a robust loss
            loss = "linear"

        return solve_least_squares(
            residual,
            [frame_block, track_block],
            n_params,
            loss=loss,
            f_scale=f_scale,
            max_nfev=cfg.ba_max_iterations
        )


def _conjugate(q: torch.Tensor) -> torch.Tensor:
    return q * torch.tensor([1.0, -1.0, -1.0, -1.0], dtype=q.dtype)
