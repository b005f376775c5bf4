"""
Extended Kalman filter engine.

The filter is parameterized by a state transition f(x, w, dt) and a
measurement function h(x, w) written over generic numbers. Jacobians
with respect to the state and the noise inputs are obtained by
evaluating the functions on Jets, so models never hand-derive them.
"""

import numpy as np
from typing import Callable, List, Sequence, Tuple

from ..geometry.jet import Jet, Number, value, tangent


Transition = Callable[[Sequence[Number], Sequence[Number], float], Sequence[Number]]
Measurement = Callable[[Sequence[Number], Sequence[Number]], Sequence[Number]]


def _linearize(
    fn: Callable[[List[Jet], List[Jet]], Sequence[Number]],
    x: np.ndarray,
    noise_dim: int
) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Evaluate fn(x, 0) and its Jacobians with respect to x and the noise.

    Returns:
        (value, J_x, J_w)
    """
    n = x.shape[0]
    size = n + noise_dim
    xs = [Jet.variable(x[i], i, size) for i in range(n)]
    ws = [Jet.variable(0.0, n + i, size) for i in range(noise_dim)]

    out = fn(xs, ws)
    y = np.array([value(o) for o in out])
    J = np.array([tangent(o, size) for o in out]).reshape(len(out), size)
    return y, J[:, :n], J[:, n:]


class ExtendedKalmanFilter:
    """
    Fixed-size extended Kalman filter.
    """

    def __init__(self, q: np.ndarray, x: np.ndarray, p: np.ndarray):
        """
        Initialize the filter.

        Args:
            q: (WN, WN) process noise covariance
            x: (N,) initial state
            p: (N, N) initial state covariance
        """
        self.q = np.asarray(q, dtype=np.float64)
        self.x = np.asarray(x, dtype=np.float64).copy()
        self.p = np.asarray(p, dtype=np.float64).copy()

        n = self.x.shape[0]
        if self.p.shape != (n, n):
            raise ValueError(f"Covariance shape {self.p.shape} does not match state size {n}")
        if self.q.ndim != 2 or self.q.shape[0] != self.q.shape[1]:
            raise ValueError(f"Process noise must be square, got {self.q.shape}")

    @property
    def state(self) -> np.ndarray:
        return self.x.copy()

    @property
    def covariance(self) -> np.ndarray:
        return self.p.copy()

    def predict(self, transition: Transition, dt: float):
        """Propagate the state and covariance through the transition."""
        x, F, WF = _linearize(
            lambda xs, ws: transition(xs, ws, dt), self.x, self.q.shape[0]
        )
        if x.shape != self.x.shape:
            raise RuntimeError("State transition changed the state size")

        self.x = x
        self.p = F @ self.p @ F.T + WF @ self.q @ WF.T

    def correct(self, measure: Measurement, z: np.ndarray, r: np.ndarray):
        """Fuse a measurement z with noise covariance r."""
        z = np.asarray(z, dtype=np.float64)
        r = np.asarray(r, dtype=np.float64)

        zp, H, WH = _linearize(measure, self.x, r.shape[0])
        if zp.shape != z.shape:
            raise ValueError(f"Measurement of shape {z.shape}, model predicts {zp.shape}")

        S = H @ self.p @ H.T + WH @ r @ WH.T
        K = np.linalg.solve(S, H @ self.p).T

        self.x = self.x + K @ (z - zp)
        self.p = (np.eye(self.x.shape[0]) - K @ H) @ self.p

    def update(
        self,
        transition: Transition,
        measure: Measurement,
        z: np.ndarray,
        r: np.ndarray,
        dt: float
    ) -> np.ndarray:
        """
        One predict and update cycle.

        Args:
            transition: f(x, w, dt) returning the next state
            measure: h(x, w) returning the predicted measurement
            z: Measured values
            r: Measurement noise covariance, sized by the noise inputs of h
            dt: Time step

        Returns:
            Updated state
        """
        self.predict(transition, dt)
        self.correct(measure, z, r)
        return self.state
