"""Model contract consumed by the bootstrap driver.

The driver never looks inside the estimation machinery.  It needs a model
that can report its parameters and covariance structure, overwrite its
response with a simulated one, and re-optimize in place.
"""
from __future__ import annotations

import copy
from typing import Dict, List, Optional, Sequence

import numpy as np


class MixedModel:
    """Abstract mixed-effects model.

    Subclasses provide the structural attributes (``lambdas``, ``inds``,
    ``lowerbd``, ``fcnames``, ``fixef_names``) and implement :meth:`simulate`
    and :meth:`refit`.
    """

    #: fixed-effect coefficient names, in the order of :meth:`coef`
    fixef_names: List[str]
    #: one lower-triangular relative covariance factor per grouping term
    lambdas: List[np.ndarray]
    #: flat row-major positions of each factor driven by ``theta``
    inds: List[np.ndarray]
    #: box-constraint lower bounds of ``theta``
    lowerbd: np.ndarray
    #: grouping factor name -> random-effect column names
    fcnames: Dict[str, List[str]]

    # --- parameter views -------------------------------------------------
    def coef(self) -> np.ndarray:
        raise NotImplementedError

    @property
    def sigma(self) -> Optional[float]:
        raise NotImplementedError

    @property
    def theta(self) -> np.ndarray:
        raise NotImplementedError

    @property
    def objective(self) -> float:
        raise NotImplementedError

    def stderror(self) -> np.ndarray:
        raise NotImplementedError

    @property
    def nobs(self) -> int:
        raise NotImplementedError

    def nrand(self) -> Sequence[int]:
        """Random-effect draw count per grouping term."""

        raise NotImplementedError

    # --- collaborators -------------------------------------------------
    def simulate(self, rng: np.random.Generator, beta, sigma, theta) -> "MixedModel":
        raise NotImplementedError

    def refit(self) -> "MixedModel":
        raise NotImplementedError

    def copy(self) -> "MixedModel":
        return copy.deepcopy(self)

    # --- shared helpers --------------------------------------------------
    @property
    def dispersion_parameter(self) -> bool:
        return self.sigma is not None

    def ndraws(self) -> int:
        """Normal draws one simulation consumes: random effects plus residuals."""

        return int(sum(self.nrand())) + int(self.nobs)

    def issingular(self, theta=None) -> bool:
        th = self.theta if theta is None else np.asarray(theta, dtype=float)
        return bool(np.any(np.asarray(self.lowerbd, dtype=float) == th))


def simulate(rng: np.random.Generator, model: MixedModel, *, beta, sigma, theta) -> MixedModel:
    """Overwrite ``model``'s response with a draw from the given parameters."""

    return model.simulate(rng, beta, sigma, theta)


def refit(model: MixedModel) -> MixedModel:
    """Re-optimize ``model`` in place for its current response."""

    return model.refit()


__all__ = ["MixedModel", "simulate", "refit"]
