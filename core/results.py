"""Replicate fit records and the bootstrap result container."""
from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from .covfactor import copy_factors, install_factors, theta_length
from .errors import StructuralMismatch
from .intervals import shortestcovint_table
from . import tidy

__all__ = ["FitRecord", "BootstrapResult", "install_theta", "issingular"]


def _frozen(arr, dtype=float) -> np.ndarray:
    out = np.array(arr, dtype=dtype, copy=True)
    out.flags.writeable = False
    return out


@dataclass(frozen=True, eq=False)
class FitRecord:
    """Compact summary of one bootstrap refit.

    ``beta`` maps coefficient names to estimates in model order; ``se`` is
    aligned with it positionally.  ``sigma`` is ``None`` for models without a
    dispersion parameter.
    """

    objective: float
    sigma: Optional[float]
    beta: Mapping[str, float]
    se: np.ndarray
    theta: np.ndarray

    def __post_init__(self):
        object.__setattr__(self, "objective", float(self.objective))
        if self.sigma is not None:
            object.__setattr__(self, "sigma", float(self.sigma))
        object.__setattr__(
            self, "beta", MappingProxyType({str(k): float(v) for k, v in self.beta.items()})
        )
        object.__setattr__(self, "se", _frozen(self.se))
        object.__setattr__(self, "theta", _frozen(self.theta))
        if self.se.size != len(self.beta):
            raise StructuralMismatch(
                f"se has length {self.se.size} but beta has {len(self.beta)} coefficients"
            )


@dataclass(frozen=True, eq=False)
class BootstrapResult:
    """Replicate fits plus the static covariance structure of the original model.

    ``lambdas`` is a read-only snapshot of the original model's factors; it is
    never overwritten.  Summaries that need the factor of replicate ``i`` work
    on scratch copies obtained from :meth:`install_theta`.
    """

    fits: Tuple[FitRecord, ...]
    lambdas: Tuple[np.ndarray, ...]
    inds: Tuple[np.ndarray, ...]
    lowerbd: np.ndarray
    fcnames: Mapping[str, Tuple[str, ...]]
    _fixef_names: Tuple[str, ...] = field(default=(), repr=False)

    def __post_init__(self):
        object.__setattr__(self, "fits", tuple(self.fits))
        object.__setattr__(self, "lambdas", tuple(_frozen(lam) for lam in self.lambdas))
        object.__setattr__(self, "inds", tuple(_frozen(ix, np.intp) for ix in self.inds))
        object.__setattr__(self, "lowerbd", _frozen(self.lowerbd))
        object.__setattr__(
            self,
            "fcnames",
            MappingProxyType({str(g): tuple(str(c) for c in cols) for g, cols in self.fcnames.items()}),
        )
        if len(self.lambdas) != len(self.inds):
            raise StructuralMismatch(
                f"{len(self.lambdas)} factor templates but {len(self.inds)} index sequences"
            )
        if len(self.fcnames) != len(self.lambdas):
            raise StructuralMismatch(
                f"{len(self.fcnames)} grouping factors named for {len(self.lambdas)} terms"
            )
        for (grp, cols), lam in zip(self.fcnames.items(), self.lambdas):
            if len(cols) != lam.shape[0]:
                raise StructuralMismatch(
                    f"group {grp!r} names {len(cols)} columns but its factor is {lam.shape}"
                )
        k = theta_length(self.inds)
        if self.lowerbd.size != k:
            raise StructuralMismatch(f"lowerbd has length {self.lowerbd.size}, expected {k}")
        for i, rec in enumerate(self.fits, start=1):
            if rec.theta.size != k:
                raise StructuralMismatch(f"replicate {i}: theta length {rec.theta.size}, expected {k}")
        if not self._fixef_names and self.fits:
            object.__setattr__(self, "_fixef_names", tuple(self.fits[0].beta.keys()))

    @classmethod
    def from_model(cls, fits: Sequence[FitRecord], model: Any) -> "BootstrapResult":
        """Assemble a container from ``fits`` and the structure of ``model``."""

        inds = [np.asarray(ix, dtype=np.intp) for ix in model.inds]
        k = theta_length(inds)
        return cls(
            fits=tuple(fits),
            lambdas=tuple(copy_factors(model.lambdas)),
            inds=tuple(inds),
            lowerbd=np.asarray(model.lowerbd, dtype=float)[:k],
            fcnames=dict(model.fcnames),
            _fixef_names=tuple(model.fixef_names),
        )

    # ------------------------------------------------------------------
    # Per-replicate columns
    # ------------------------------------------------------------------
    def __len__(self) -> int:
        return len(self.fits)

    @property
    def fixef_names(self) -> Tuple[str, ...]:
        return self._fixef_names

    @property
    def objective(self) -> np.ndarray:
        return np.array([r.objective for r in self.fits], dtype=float)

    @property
    def sigma(self) -> List[Optional[float]]:
        return [r.sigma for r in self.fits]

    @property
    def theta(self) -> np.ndarray:
        k = self.lowerbd.size
        if not self.fits:
            return np.empty((0, k), dtype=float)
        return np.vstack([r.theta for r in self.fits])

    @property
    def se(self) -> np.ndarray:
        if not self.fits:
            return np.empty((0, len(self._fixef_names)), dtype=float)
        return np.vstack([r.se for r in self.fits])

    # ------------------------------------------------------------------
    # Derived views
    # ------------------------------------------------------------------
    def install_theta(self, i: int, scratch: Optional[List[np.ndarray]] = None) -> List[np.ndarray]:
        """Write replicate ``i``'s θ (1-based) into ``scratch`` and return it.

        Without ``scratch`` fresh copies of the templates are allocated.
        """

        if not 1 <= int(i) <= len(self.fits):
            raise IndexError(f"replicate {i} out of range 1..{len(self.fits)}")
        if scratch is None:
            scratch = copy_factors(self.lambdas)
        install_factors(scratch, self.inds, self.fits[int(i) - 1].theta)
        return scratch

    def issingular(self) -> np.ndarray:
        return issingular(self)

    @property
    def beta(self) -> pd.DataFrame:
        return tidy.tidy_beta(self)

    @property
    def coefpvalues(self) -> pd.DataFrame:
        return tidy.coefpvalues(self)

    @property
    def sigmas(self) -> pd.DataFrame:
        return tidy.tidy_sigmas(self)

    @property
    def allpars(self) -> pd.DataFrame:
        return tidy.allpars(self)

    def shortestcovint(self, level: float = 0.95) -> pd.DataFrame:
        return shortestcovint_table(self.allpars, level)

    def summary(self) -> Dict[str, Any]:
        return {
            "n": len(self.fits),
            "n_singular": int(np.sum(self.issingular())),
            "fixef": list(self._fixef_names),
            "groups": {g: list(c) for g, c in self.fcnames.items()},
        }


def install_theta(
    result: BootstrapResult, i: int, scratch: Optional[List[np.ndarray]] = None
) -> List[np.ndarray]:
    """Functional alias of :meth:`BootstrapResult.install_theta`."""

    return result.install_theta(i, scratch)


def issingular(result: BootstrapResult) -> np.ndarray:
    """Per-replicate flag: any θ entry sits exactly on its lower bound.

    Exact equality is intended; refits snap small diagonal values to zero.
    """

    lb = result.lowerbd
    return np.array([bool(np.any(r.theta == lb)) for r in result.fits], dtype=bool)
