"""
Block-sparse nonlinear least squares.

Residuals are written as batched torch functions of parameter blocks.
Each residual row depends only on its own gathered blocks, so the
Jacobian is assembled from one backward pass per residual dimension
and handed to scipy's trust-region solver as a sparse matrix.
"""

import numpy as np
import torch
from dataclasses import dataclass
from typing import Callable, List, Sequence

from scipy.optimize import least_squares
from scipy.sparse import coo_matrix


@dataclass
class LeastSquaresResult:
    """Result of a least-squares solve."""
    x: np.ndarray  # Optimized tangent offsets
    initial_cost: float  # 0.5 * sum of squared residuals at x = 0
    final_cost: float  # 0.5 * sum of squared residuals at the solution
    n_iterations: int  # Number of function evaluations
    converged: bool  # Whether a tolerance was met within the budget
    message: str


ResidualFn = Callable[..., torch.Tensor]


def solve_least_squares(
    residual_fn: ResidualFn,
    blocks: Sequence[np.ndarray],
    n_params: int,
    loss: str = "linear",
    f_scale: float = 1.0,
    max_nfev: int = 50,
    ftol: float = 1e-6,
    gtol: float = 1e-6,
    xtol: float = 1e-8,
    verbose: bool = False
) -> LeastSquaresResult:
    """
    Minimize the sum of squared residuals over tangent offsets.

    Parameters are offsets from a linearization point, so the solve
    starts at zero. Each block is an (M, k) array of indices into the
    parameter vector; an index of -1 holds that entry at zero.

    Args:
        residual_fn: Called with one (M, k_b) float64 tensor per block,
            returns (M, D) residuals
        blocks: Index arrays, all with the same number of rows M
        n_params: Size of the parameter vector
        loss: Robust loss understood by scipy ('linear', 'huber', 'cauchy', ...)
        f_scale: Soft margin of the robust loss
        max_nfev: Maximum number of function evaluations
        ftol: Relative cost tolerance
        gtol: Gradient tolerance
        xtol: Step tolerance
        verbose: Print solver progress

    Returns:
        LeastSquaresResult
    """
    blocks = [np.asarray(b, dtype=np.int64) for b in blocks]
    n_rows = blocks[0].shape[0] if blocks else 0
    if any(b.shape[0] != n_rows for b in blocks):
        raise ValueError("All parameter blocks must have the same number of rows")

    index_tensors = [torch.from_numpy(b) for b in blocks]

    def gather(x: np.ndarray) -> List[torch.Tensor]:
        # Index -1 lands on the trailing zero
        ext = torch.from_numpy(np.concatenate([x, [0.0]]))
        return [ext[idx] for idx in index_tensors]

    def fun(x: np.ndarray) -> np.ndarray:
        with torch.no_grad():
            r = residual_fn(*gather(x))
        return r.reshape(-1).numpy().astype(np.float64)

    def jac(x: np.ndarray):
        gathered = [g.clone().requires_grad_(True) for g in gather(x)]
        r = residual_fn(*gathered)
        n_dims = r.shape[1]

        rows, cols, vals = [], [], []
        for d in range(n_dims):
            grads = torch.autograd.grad(
                r[:, d].sum(), gathered, retain_graph=d + 1 < n_dims, allow_unused=True
            )
            for idx, g in zip(blocks, grads):
                if g is None:
                    continue
                g = g.detach().numpy()
                mask = idx >= 0
                m, _ = np.nonzero(mask)
                rows.append(m * n_dims + d)
                cols.append(idx[mask])
                vals.append(g[mask])

        shape = (n_rows * n_dims, n_params)
        if not rows:
            return coo_matrix(shape).tocsr()
        # Duplicate entries sum, which is the chain rule for shared parameters
        return coo_matrix(
            (np.concatenate(vals), (np.concatenate(rows), np.concatenate(cols))),
            shape=shape
        ).tocsr()

    # Tiny problems break the subspace trust-region step; solve them densely
    dense = n_params < 3

    x0 = np.zeros(n_params)
    r0 = fun(x0) if n_rows > 0 else np.zeros(0)
    initial_cost = 0.5 * float(r0 @ r0)

    if n_params == 0 or r0.size == 0:
        return LeastSquaresResult(
            x=x0, initial_cost=initial_cost, final_cost=initial_cost,
            n_iterations=0, converged=True, message="Nothing to optimize"
        )

    result = least_squares(
        fun, x0, jac=(lambda x: jac(x).toarray()) if dense else jac,
        method="trf",
        tr_solver="exact" if dense else None,
        loss=loss,
        f_scale=f_scale,
        x_scale="jac",
        max_nfev=max_nfev,
        ftol=ftol,
        gtol=gtol,
        xtol=xtol,
        verbose=2 if verbose else 0
    )

    return LeastSquaresResult(
        x=result.x,
        initial_cost=initial_cost,
        final_cost=0.5 * float(result.fun @ result.fun),
        n_iterations=int(result.nfev),
        converged=result.status > 0,
        message=str(result.message)
    )
