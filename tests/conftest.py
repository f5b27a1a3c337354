from pathlib import Path
import sys

import numpy as np
import pandas as pd
import pytest

# ensure project root importable
sys.path.append(str(Path(__file__).resolve().parents[1]))

from core.covfactor import lower_tri_inds  # noqa: E402
from fit.model import MixedModel  # noqa: E402


# deterministic RNG fixture
@pytest.fixture
def rng():
    return np.random.default_rng(123)


class ToyModel(MixedModel):
    """Cheap stand-in for a mixed model.

    ``simulate`` stores the raw draws as the response and ``refit`` derives
    every reported quantity from them deterministically, so a record pins
    down exactly which random stream produced it.
    """

    def __init__(self, nobs=6, nlevels=3, sigma=1.5, fail=False):
        self.fixef_names = ["(Intercept)", "x"]
        self.lambdas = [np.array([[1.0, 0.0], [0.5, 2.0]])]
        self.inds = [lower_tri_inds(2)]
        self.lowerbd = np.array([0.0, -np.inf, 0.0])
        self.fcnames = {"g": ["(Intercept)", "x"]}
        self._nobs = nobs
        self._nlevels = nlevels
        self._sigma = sigma
        self.fail = fail
        self.y = np.arange(float(nobs))
        self._beta = np.array([1.0, 0.5])
        self._theta = np.array([1.0, 0.5, 2.0])
        self.n_simulated = 0
        self.n_refit = 0

    def coef(self):
        return self._beta.copy()

    @property
    def sigma(self):
        return self._sigma

    @property
    def theta(self):
        return self._theta.copy()

    @property
    def objective(self):
        return float(self.y @ self.y)

    def stderror(self):
        return np.array([1.0, 2.0])

    @property
    def nobs(self):
        return self._nobs

    def nrand(self):
        return [2 * self._nlevels]

    def simulate(self, rng, beta, sigma, theta):
        scale = 1.0 if sigma is None else sigma
        self.y = beta[0] + scale * rng.standard_normal(self.ndraws())
        self._theta = np.asarray(theta, dtype=float).copy()
        self.n_simulated += 1
        return self

    def refit(self):
        if self.fail:
            raise FloatingPointError("penalized least squares broke down")
        self.n_refit += 1
        self._beta = np.array([self.y.mean(), self.y[:3].mean()])
        self._theta = np.array([abs(self.y[0]), self.y[1], abs(self.y[2])])
        return self


@pytest.fixture
def toy_model():
    return ToyModel


def make_grouped_frame(seed=7, n_groups=12, n_per=8, sigma=0.5, sd_int=1.0, sd_slope=0.3):
    """Random-intercept/random-slope data with known parameters."""

    gen = np.random.default_rng(seed)
    days = np.tile(np.arange(n_per, dtype=float), n_groups)
    subj = np.repeat([f"S{i:02d}" for i in range(n_groups)], n_per)
    b0 = np.repeat(gen.normal(0.0, sd_int, n_groups), n_per)
    b1 = np.repeat(gen.normal(0.0, sd_slope, n_groups), n_per)
    y = 2.0 + 0.5 * days + b0 + b1 * days + gen.normal(0.0, sigma, days.size)
    return pd.DataFrame({"subj": subj, "days": days, "y": y})


@pytest.fixture
def grouped_frame():
    return make_grouped_frame()


@pytest.fixture
def many_cpus(monkeypatch):
    """Let worker requests above one reach the thread pool on small runners."""

    from infra import performance

    monkeypatch.setattr(performance, "cpu_count", lambda: 8)
    return 8
