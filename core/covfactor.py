"""Covariance-factor helpers.

A relative covariance factor ``λ`` is stored per grouping term as a square
lower-triangular ``float64`` array.  ``inds`` holds, for each term, the flat
(row-major) positions of the lower triangle that are driven by ``θ``, in the
order the entries appear in ``θ``.  Concatenating the per-term lengths of
``inds`` gives the length of ``θ``.
"""
from __future__ import annotations

from typing import List, Sequence

import numpy as np

from .errors import StructuralMismatch

__all__ = [
    "lower_tri_inds",
    "theta_length",
    "check_theta",
    "copy_factors",
    "install_factors",
    "row_sigmas",
    "row_correlations",
]


def lower_tri_inds(q: int) -> np.ndarray:
    """Flat row-major positions of a ``q×q`` lower triangle in column-major order.

    For ``q=2`` this is ``[0, 2, 3]``: ``(0,0), (1,0), (1,1)``.
    """

    q = int(q)
    out = [i * q + j for j in range(q) for i in range(j, q)]
    return np.asarray(out, dtype=np.intp)


def theta_length(inds: Sequence[np.ndarray]) -> int:
    return int(sum(len(ix) for ix in inds))


def check_theta(theta: np.ndarray, inds: Sequence[np.ndarray]) -> np.ndarray:
    """Return ``theta`` as a float vector or raise if it does not fit ``inds``."""

    th = np.asarray(theta, dtype=float).reshape(-1)
    k = theta_length(inds)
    if th.size != k:
        raise StructuralMismatch(
            f"theta has length {th.size} but the index map spans {k} positions"
        )
    return th


def copy_factors(lambdas: Sequence[np.ndarray]) -> List[np.ndarray]:
    """Fresh writable copies of the factor templates (scratch buffers)."""

    return [np.array(lam, dtype=float, copy=True) for lam in lambdas]


def install_factors(
    scratch: Sequence[np.ndarray], inds: Sequence[np.ndarray], theta: np.ndarray
) -> Sequence[np.ndarray]:
    """Overwrite ``scratch`` in place with the factors encoded by ``theta``.

    Every factor is zeroed, then each term's positions receive consecutive
    values of ``theta``; the running offset carries across terms.
    """

    if len(scratch) != len(inds):
        raise StructuralMismatch(
            f"{len(scratch)} factor templates but {len(inds)} index sequences"
        )
    th = check_theta(theta, inds)
    offset = 0
    for lam, ix in zip(scratch, inds):
        flat = lam.reshape(-1)
        flat.fill(0.0)
        m = len(ix)
        flat[np.asarray(ix, dtype=np.intp)] = th[offset : offset + m]
        offset += m
    return scratch


def row_sigmas(lam: np.ndarray, sigma: float = 1.0) -> np.ndarray:
    """Standard deviations ``σ·‖row_j‖`` for every row of ``lam``."""

    return float(sigma) * np.linalg.norm(np.asarray(lam, dtype=float), axis=1)


def row_correlations(lam: np.ndarray) -> np.ndarray:
    """Correlation matrix implied by the rows of ``lam``.

    Rows are normalized independently.  An all-zero row (singular fit) has no
    direction, so every correlation involving it is NaN.
    """

    lam = np.asarray(lam, dtype=float)
    norms = np.linalg.norm(lam, axis=1)
    with np.errstate(invalid="ignore", divide="ignore"):
        unit = lam / norms[:, None]
    return unit @ unit.T
