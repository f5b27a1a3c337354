"""Tidy (long-format) views over a bootstrap result.

Every extractor takes a :class:`core.results.BootstrapResult` and returns a
``pandas.DataFrame``.  Iterations are numbered from 1.  Factor values for a
replicate are installed into a scratch copy owned by the extractor call, so
the extractors never touch shared state.
"""
from __future__ import annotations

from typing import Any, List

import numpy as np
import pandas as pd
from scipy.stats import norm

from .covfactor import copy_factors, row_correlations, row_sigmas

__all__ = ["allpars", "tidy_beta", "coefpvalues", "tidy_sigmas"]

ALLPARS_COLUMNS = ["iter", "type", "group", "name", "value"]
BETA_COLUMNS = ["iter", "coefname", "beta"]
PVALUE_COLUMNS = ["iter", "coefname", "beta", "se", "z", "p"]
SIGMA_COLUMNS = ["iter", "group", "column", "sigma"]


def _dispersion(rec) -> float:
    return 1.0 if rec.sigma is None else float(rec.sigma)


def allpars(result: Any) -> pd.DataFrame:
    """All parameters of every replicate in columns ``iter, type, group, name, value``.

    Per replicate the rows are: one ``β`` row per coefficient, then for each
    grouping term one ``σ`` row per random-effect column followed by the
    ``ρ`` rows pairing it with every earlier column, and finally the residual
    ``σ`` row when the model has a dispersion parameter.
    """

    rows: List[tuple] = []
    scratch = copy_factors(result.lambdas)
    groups = list(result.fcnames.items())
    for i, rec in enumerate(result.fits, start=1):
        sigma = _dispersion(rec)
        for name, value in rec.beta.items():
            rows.append((i, "β", None, name, value))
        result.install_theta(i, scratch)
        for (grp, cols), lam in zip(groups, scratch):
            sds = row_sigmas(lam, sigma)
            rho = row_correlations(lam)
            for j, cname in enumerate(cols):
                rows.append((i, "σ", grp, cname, float(sds[j])))
                for k in range(j):
                    rows.append((i, "ρ", grp, f"{cols[k]}, {cname}", float(rho[j, k])))
        if rec.sigma is not None:
            rows.append((i, "σ", "residual", None, float(rec.sigma)))
    df = pd.DataFrame.from_records(rows, columns=ALLPARS_COLUMNS)
    df["value"] = df["value"].astype(float)
    return df


def tidy_beta(result: Any) -> pd.DataFrame:
    """Fixed-effect estimates as ``iter, coefname, beta``."""

    rows = [
        (i, name, value)
        for i, rec in enumerate(result.fits, start=1)
        for name, value in rec.beta.items()
    ]
    df = pd.DataFrame.from_records(rows, columns=BETA_COLUMNS)
    df["beta"] = df["beta"].astype(float)
    return df


def coefpvalues(result: Any) -> pd.DataFrame:
    """Wald z statistics with two-sided normal p-values per replicate."""

    rows = []
    for i, rec in enumerate(result.fits, start=1):
        for (name, beta), se in zip(rec.beta.items(), rec.se):
            se = float(se)
            with np.errstate(divide="ignore", invalid="ignore"):
                z = np.float64(beta) / np.float64(se)
            rows.append((i, name, beta, se, float(z), float(2.0 * norm.sf(abs(z)))))
    df = pd.DataFrame.from_records(rows, columns=PVALUE_COLUMNS)
    for col in PVALUE_COLUMNS[2:]:
        df[col] = df[col].astype(float)
    return df


def tidy_sigmas(result: Any) -> pd.DataFrame:
    """Random-effect standard deviations as ``iter, group, column, sigma``."""

    rows = []
    scratch = copy_factors(result.lambdas)
    groups = list(result.fcnames.items())
    for i, rec in enumerate(result.fits, start=1):
        result.install_theta(i, scratch)
        sigma = _dispersion(rec)
        for (grp, cols), lam in zip(groups, scratch):
            for cname, sd in zip(cols, row_sigmas(lam, sigma)):
                rows.append((i, grp, cname, float(sd)))
    df = pd.DataFrame.from_records(rows, columns=SIGMA_COLUMNS)
    df["sigma"] = df["sigma"].astype(float)
    return df
