"""Dense linear mixed-effects model fitted by profiled maximum likelihood.

The model is ``y = Xβ + ZΛu + ε`` with spherical ``u ~ N(0, σ²I)`` and
``ε ~ N(0, σ²I)``.  For a given ``θ`` the relative covariance factor ``Λ`` is
fixed and ``β``/``u`` solve a penalized least-squares problem; the profiled
deviance ``log|L|² + n(1 + log(2π·pwrss/n))`` is then minimized over ``θ``
with ``scipy.optimize.minimize`` under the box constraints ``θ ≥ lowerbd``.

Everything is dense, which keeps the implementation short and is adequate
for the moderately sized problems the bootstrap tests and CLI handle.
"""
from __future__ import annotations

from dataclasses import dataclass, field
import logging
from typing import Dict, List, Mapping, Optional, Sequence

import numpy as np
import pandas as pd
from scipy.linalg import cho_factor, cho_solve
from scipy.optimize import minimize

from core.covfactor import (
    check_theta,
    install_factors,
    lower_tri_inds,
    row_correlations,
    row_sigmas,
)
from core.errors import StructuralMismatch
from .model import MixedModel

log = logging.getLogger(__name__)

# diagonal θ entries below this are snapped onto the zero bound after a fit
THETA_ZERO_TOL = 1e-5

__all__ = ["RandomEffectsTerm", "LinearMixedModel", "from_frame", "THETA_ZERO_TOL"]


@dataclass
class RandomEffectsTerm:
    """Random effects of one grouping factor.

    ``codes`` assigns each observation to a level ``0..nlevels-1``; ``z`` holds
    the ``q`` raw random-effect columns (``n×q``).
    """

    name: str
    codes: np.ndarray
    z: np.ndarray
    cnames: List[str]
    levels: List = field(default_factory=list)

    def __post_init__(self):
        self.codes = np.asarray(self.codes, dtype=np.intp).reshape(-1)
        z = np.asarray(self.z, dtype=float)
        self.z = z.reshape(-1, 1) if z.ndim == 1 else z
        self.cnames = [str(c) for c in self.cnames]
        if self.z.shape[0] != self.codes.size:
            raise StructuralMismatch(
                f"term {self.name!r}: {self.z.shape[0]} rows in z but {self.codes.size} codes"
            )
        if self.z.shape[1] != len(self.cnames):
            raise StructuralMismatch(
                f"term {self.name!r}: {self.z.shape[1]} columns but {len(self.cnames)} names"
            )
        if not self.levels:
            self.levels = list(range(int(self.codes.max()) + 1 if self.codes.size else 0))

    @property
    def q(self) -> int:
        return int(self.z.shape[1])

    @property
    def nlevels(self) -> int:
        return len(self.levels)

    def nrand(self) -> int:
        return self.nlevels * self.q

    def inds(self) -> np.ndarray:
        return lower_tri_inds(self.q)

    def lowerbd(self) -> np.ndarray:
        q = self.q
        return np.array([0.0 if i % (q + 1) == 0 else -np.inf for i in self.inds()])

    def initial_theta(self) -> np.ndarray:
        return np.where(self.lowerbd() == 0.0, 1.0, 0.0)

    def full_z(self) -> np.ndarray:
        """Dense ``n × (nlevels·q)`` model matrix, columns grouped by level."""

        n, q = self.z.shape
        out = np.zeros((n, self.nrand()), dtype=float)
        rows = np.arange(n)
        for j in range(q):
            out[rows, self.codes * q + j] = self.z[:, j]
        return out

    def add_unscaled(self, y: np.ndarray, lam: np.ndarray, u: np.ndarray) -> None:
        """Add ``Z_i Λ_i u`` to ``y`` in place."""

        b = u.reshape(self.nlevels, self.q) @ lam.T
        y += np.sum(self.z * b[self.codes], axis=1)


class LinearMixedModel(MixedModel):
    """Linear mixed model with one or more random-effects terms."""

    def __init__(
        self,
        y,
        X,
        terms: Sequence[RandomEffectsTerm],
        fixef_names: Optional[Sequence[str]] = None,
        *,
        optimizer: str = "L-BFGS-B",
        maxiter: int = 1000,
    ):
        self.y = np.array(y, dtype=float).reshape(-1)
        X = np.asarray(X, dtype=float)
        self.X = X.reshape(-1, 1) if X.ndim == 1 else X.copy()
        if self.X.shape[0] != self.y.size:
            raise StructuralMismatch(f"X has {self.X.shape[0]} rows, y has {self.y.size}")
        if not terms:
            raise ValueError("a mixed model needs at least one random-effects term")
        self.terms = list(terms)
        for t in self.terms:
            if t.codes.size != self.y.size:
                raise StructuralMismatch(f"term {t.name!r} covers {t.codes.size} of {self.y.size} rows")
        names = [t.name for t in self.terms]
        if len(set(names)) != len(names):
            raise ValueError(f"grouping factor names must be unique, got {names}")
        p = self.X.shape[1]
        self.fixef_names = (
            [str(s) for s in fixef_names] if fixef_names is not None else [f"x{j}" for j in range(p)]
        )
        if len(self.fixef_names) != p:
            raise StructuralMismatch(f"{len(self.fixef_names)} names for {p} fixed-effect columns")

        self.Z = np.hstack([t.full_z() for t in self.terms])
        self.lambdas = [np.eye(t.q) for t in self.terms]
        self.inds = [t.inds() for t in self.terms]
        self.lowerbd = np.concatenate([t.lowerbd() for t in self.terms])
        self.fcnames: Dict[str, List[str]] = {t.name: list(t.cnames) for t in self.terms}
        self.optimizer = optimizer
        self.maxiter = int(maxiter)
        self.optsum: Dict[str, object] = {
            "initial": np.concatenate([t.initial_theta() for t in self.terms]),
            "final": None,
            "fmin": np.nan,
            "feval": 0,
            "returnvalue": None,
        }
        self._theta = np.array(self.optsum["initial"], dtype=float)
        self._state: Optional[Dict[str, object]] = None
        self._set_theta(self._theta)

    # ------------------------------------------------------------------
    # Penalized least squares
    # ------------------------------------------------------------------
    def _set_theta(self, theta) -> np.ndarray:
        th = check_theta(theta, self.inds)
        install_factors(self.lambdas, self.inds, th)
        self._theta = th.copy()
        return self._theta

    def _big_lambda(self) -> np.ndarray:
        blocks = [np.kron(np.eye(t.nlevels), lam) for t, lam in zip(self.terms, self.lambdas)]
        size = sum(b.shape[0] for b in blocks)
        out = np.zeros((size, size), dtype=float)
        off = 0
        for b in blocks:
            m = b.shape[0]
            out[off : off + m, off : off + m] = b
            off += m
        return out

    def _pls(self, theta) -> Dict[str, object]:
        """Solve the penalized least-squares problem at ``theta``."""

        self._set_theta(theta)
        X, y = self.X, self.y
        n = y.size
        ZL = self.Z @ self._big_lambda()
        A = ZL.T @ ZL
        A[np.diag_indices_from(A)] += 1.0
        L = cho_factor(A, lower=True)
        B = ZL.T @ X
        AinvB = cho_solve(L, B)
        Ainvc = cho_solve(L, ZL.T @ y)
        S = X.T @ X - B.T @ AinvB
        SL = cho_factor(S, lower=True)
        beta = cho_solve(SL, X.T @ y - B.T @ Ainvc)
        u = Ainvc - AinvB @ beta
        fitted = X @ beta + ZL @ u
        resid = y - fitted
        pwrss = float(resid @ resid + u @ u)
        logdet = 2.0 * float(np.sum(np.log(np.diag(L[0]))))
        objective = logdet + n * (1.0 + np.log(2.0 * np.pi * pwrss / n))
        return {
            "theta": self._theta.copy(),
            "beta": beta,
            "u": u,
            "fitted": fitted,
            "pwrss": pwrss,
            "objective": float(objective),
            "S": S,
        }

    def deviance(self, theta) -> float:
        """Profiled ML deviance at ``theta`` (``np.inf`` where the PLS breaks down)."""

        try:
            return float(self._pls(theta)["objective"])
        except np.linalg.LinAlgError:
            return np.inf

    # ------------------------------------------------------------------
    # Fitting
    # ------------------------------------------------------------------
    def fit(self) -> "LinearMixedModel":
        x0 = np.asarray(self.optsum["initial"], dtype=float)
        bounds = [(lb if np.isfinite(lb) else None, None) for lb in self.lowerbd]
        res = minimize(
            self.deviance,
            x0,
            method=self.optimizer,
            bounds=bounds,
            options={"maxiter": self.maxiter},
        )
        if not np.isfinite(res.fun):
            raise RuntimeError(f"optimizer returned a non-finite deviance: {res.message}")
        if not res.success:
            log.debug("optimizer stopped early: %s", res.message)
        theta = np.asarray(res.x, dtype=float).copy()
        snap = (self.lowerbd == 0.0) & (theta < THETA_ZERO_TOL)
        theta[snap] = 0.0
        self._state = self._pls(theta)
        self.optsum.update(
            final=theta.copy(),
            fmin=float(self._state["objective"]),
            feval=int(getattr(res, "nfev", 0)),
            returnvalue=str(res.message),
        )
        return self

    def refit(self, y=None) -> "LinearMixedModel":
        """Re-optimize from the initial θ, optionally for a new response."""

        if y is not None:
            y = np.asarray(y, dtype=float).reshape(-1)
            if y.size != self.y.size:
                raise StructuralMismatch(f"response of length {y.size}, expected {self.y.size}")
            self.y[:] = y
        return self.fit()

    def simulate(self, rng: np.random.Generator, beta=None, sigma=None, theta=None) -> "LinearMixedModel":
        """Overwrite the response with a draw from the model.

        Draw order: ``nobs`` residual normals, then ``nlevels·q`` spherical
        random-effect normals per term.
        """

        beta = self.coef() if beta is None else np.asarray(beta, dtype=float)
        if beta.size != self.X.shape[1]:
            raise StructuralMismatch(f"beta has length {beta.size}, expected {self.X.shape[1]}")
        if theta is not None:
            self._set_theta(theta)
        sigma = 1.0 if sigma is None else float(sigma)
        y = rng.standard_normal(self.y.size)
        for term, lam in zip(self.terms, self.lambdas):
            term.add_unscaled(y, lam, rng.standard_normal(term.nrand()))
        y *= sigma
        y += self.X @ beta
        self.y[:] = y
        self._state = None
        return self

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------
    def _fitted_state(self) -> Dict[str, object]:
        if self._state is None:
            raise RuntimeError("model has not been fitted to its current response")
        return self._state

    @property
    def isfitted(self) -> bool:
        return self._state is not None

    @property
    def theta(self) -> np.ndarray:
        return self._theta.copy()

    def coef(self) -> np.ndarray:
        return np.asarray(self._fitted_state()["beta"], dtype=float).copy()

    @property
    def beta(self) -> np.ndarray:
        return self.coef()

    @property
    def objective(self) -> float:
        return float(self._fitted_state()["objective"])

    @property
    def sigma(self) -> float:
        return float(np.sqrt(self._fitted_state()["pwrss"] / self.nobs))

    @property
    def nobs(self) -> int:
        return int(self.y.size)

    @property
    def response(self) -> np.ndarray:
        return self.y

    def nrand(self) -> List[int]:
        return [t.nrand() for t in self.terms]

    def fitted(self) -> np.ndarray:
        return np.asarray(self._fitted_state()["fitted"], dtype=float).copy()

    def residuals(self) -> np.ndarray:
        return self.y - self.fitted()

    def vcov(self, corr: bool = False) -> np.ndarray:
        """Covariance (or correlation) matrix of the fixed-effect estimates."""

        S = np.asarray(self._fitted_state()["S"], dtype=float)
        V = self.sigma ** 2 * np.linalg.inv(S)
        if corr:
            sd = np.sqrt(np.diag(V))
            V = V / np.outer(sd, sd)
        return V

    def stderror(self) -> np.ndarray:
        return np.sqrt(np.diag(self.vcov()))

    def dof(self) -> int:
        return int(self.X.shape[1] + self._theta.size + 1)

    def dof_residual(self) -> int:
        return self.nobs - self.dof()

    def cond(self) -> List[float]:
        """Condition numbers of the λ factors."""

        return [float(np.linalg.cond(lam)) for lam in self.lambdas]

    def sigmas(self) -> Dict[str, Dict[str, float]]:
        """Per-term random-effect standard deviations."""

        sig = self.sigma
        return {
            grp: dict(zip(cols, (float(v) for v in row_sigmas(lam, sig))))
            for (grp, cols), lam in zip(self.fcnames.items(), self.lambdas)
        }

    def sigmarhos(self) -> Dict[str, Dict[str, Mapping]]:
        """Per-term standard deviations and within-term correlations."""

        out = {}
        sds = self.sigmas()
        for (grp, cols), lam in zip(self.fcnames.items(), self.lambdas):
            rho = row_correlations(lam)
            pairs = {
                f"{cols[k]}, {cols[j]}": float(rho[j, k])
                for j in range(len(cols))
                for k in range(j)
            }
            out[grp] = {"σ": sds[grp], "ρ": pairs}
        return out


def from_frame(
    df: pd.DataFrame,
    response: str,
    fixed: Sequence[str] = (),
    groups: Sequence[str] = (),
    slopes: Optional[Mapping[str, Sequence[str]]] = None,
    **kwargs,
) -> LinearMixedModel:
    """Build an unfitted model from named columns of ``df``.

    The fixed part is an intercept plus the numeric ``fixed`` columns.  Every
    grouping column in ``groups`` gets a random intercept plus the random
    slopes listed for it in ``slopes``.
    """

    if not groups:
        raise ValueError("at least one grouping column is required")
    slopes = dict(slopes or {})
    n = len(df)
    y = df[response].to_numpy(dtype=float)
    X = np.column_stack([np.ones(n)] + [df[c].to_numpy(dtype=float) for c in fixed])
    fixef_names = ["(Intercept)"] + [str(c) for c in fixed]
    terms = []
    for g in groups:
        codes, levels = pd.factorize(df[g], sort=True)
        cols = list(slopes.get(g, ()))
        z = np.column_stack([np.ones(n)] + [df[c].to_numpy(dtype=float) for c in cols])
        terms.append(
            RandomEffectsTerm(
                name=str(g),
                codes=codes,
                z=z,
                cnames=["(Intercept)"] + [str(c) for c in cols],
                levels=list(levels),
            )
        )
    return LinearMixedModel(y, X, terms, fixef_names, **kwargs)
