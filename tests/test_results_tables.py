import numpy as np
import pandas as pd
import pytest

from core.covfactor import lower_tri_inds
from core.errors import StructuralMismatch
from core.results import BootstrapResult, FitRecord, install_theta, issingular


def _record(theta, sigma=2.0, beta=(2.0, 0.5), se=(1.0, 0.25)):
    return FitRecord(
        objective=10.0,
        sigma=sigma,
        beta={"(Intercept)": beta[0], "days": beta[1]},
        se=np.asarray(se),
        theta=np.asarray(theta, float),
    )


def _result(records):
    return BootstrapResult(
        fits=records,
        lambdas=[np.eye(2)],
        inds=[lower_tri_inds(2)],
        lowerbd=np.array([0.0, -np.inf, 0.0]),
        fcnames={"subj": ["(Intercept)", "days"]},
    )


def test_allpars_row_counts_one_term_two_columns():
    res = _result([_record([1.0, 0.5, 2.0])])
    df = res.allpars
    assert list(df.columns) == ["iter", "type", "group", "name", "value"]
    p = 2
    assert len(df) == p + 2 + 1 + 1
    assert (df["type"] == "β").sum() == p
    assert (df["type"] == "σ").sum() == 3
    assert (df["type"] == "ρ").sum() == 1
    assert df["iter"].unique().tolist() == [1]


def test_allpars_values():
    res = _result([_record([1.0, 0.5, 2.0], sigma=2.0)])
    df = res.allpars
    sig = df[(df["type"] == "σ") & (df["group"] == "subj")]
    np.testing.assert_allclose(sig["value"], [2.0, 2.0 * np.sqrt(4.25)])
    rho = df[df["type"] == "ρ"].iloc[0]
    assert rho["name"] == "(Intercept), days"
    assert rho["value"] == pytest.approx(0.5 / np.sqrt(4.25))
    resid = df.iloc[-1]
    assert resid["group"] == "residual"
    assert resid["name"] is None
    assert resid["value"] == 2.0
    beta = df[df["type"] == "β"]
    assert beta["group"].isna().all()
    assert beta["name"].tolist() == ["(Intercept)", "days"]


def test_allpars_without_dispersion():
    res = _result([_record([1.0, 0.5, 2.0], sigma=None)])
    df = res.allpars
    assert len(df) == 2 + 2 + 1
    assert "residual" not in df["group"].dropna().tolist()
    sig = df[df["type"] == "σ"]
    np.testing.assert_allclose(sig["value"], [1.0, np.sqrt(4.25)])


def test_coefpvalues_z_and_p():
    res = _result([_record([1.0, 0.0, 1.0], beta=(2.0, -3.0), se=(1.0, 1.5))])
    df = res.coefpvalues
    assert list(df.columns) == ["iter", "coefname", "beta", "se", "z", "p"]
    first = df.iloc[0]
    assert first["z"] == pytest.approx(2.0)
    assert first["p"] == pytest.approx(0.0455, abs=1e-4)
    second = df.iloc[1]
    assert second["z"] == pytest.approx(-2.0)
    assert second["p"] == pytest.approx(first["p"])


def test_tidy_beta_and_sigmas():
    res = _result([_record([1.0, 0.0, 1.0]), _record([2.0, 0.0, 3.0], sigma=0.5)])
    beta = res.beta
    assert list(beta.columns) == ["iter", "coefname", "beta"]
    assert beta["iter"].tolist() == [1, 1, 2, 2]
    sig = res.sigmas
    assert list(sig.columns) == ["iter", "group", "column", "sigma"]
    np.testing.assert_allclose(sig["sigma"], [2.0, 2.0, 1.0, 1.5])
    assert sig["column"].tolist() == ["(Intercept)", "days"] * 2


def test_summaries_leave_templates_untouched():
    res = _result([_record([3.0, 1.0, 4.0])])
    res.allpars
    res.sigmas
    np.testing.assert_array_equal(res.lambdas[0], np.eye(2))
    with pytest.raises(ValueError):
        res.lambdas[0][0, 0] = 5.0


def test_install_theta_uses_scratch():
    res = _result([_record([1.0, 0.5, 2.0]), _record([3.0, 0.0, 1.0])])
    scratch = res.install_theta(1)
    np.testing.assert_array_equal(scratch[0], [[1.0, 0.0], [0.5, 2.0]])
    again = res.install_theta(2, scratch)
    assert again is scratch
    np.testing.assert_array_equal(scratch[0], [[3.0, 0.0], [0.0, 1.0]])
    with pytest.raises(IndexError):
        res.install_theta(3)


def test_issingular_exact_bound():
    res = _result([_record([0.0, 0.3, 1.0]), _record([1.0, 0.3, 1.0]), _record([1.0, -2.0, 0.0])])
    assert issingular(res).tolist() == [True, False, True]
    assert res.issingular().tolist() == [True, False, True]


def test_records_are_immutable():
    rec = _record([1.0, 0.5, 2.0])
    with pytest.raises(ValueError):
        rec.theta[0] = 0.0
    with pytest.raises(TypeError):
        rec.beta["days"] = 1.0


def test_theta_length_mismatch_is_rejected():
    with pytest.raises(StructuralMismatch):
        _result([_record([1.0, 2.0])])


def test_shortestcovint_table_per_parameter(rng):
    recs = [
        _record([1.0 + rng.random(), rng.normal(), 1.0 + rng.random()], sigma=1.0 + rng.random())
        for _ in range(40)
    ]
    res = _result(recs)
    tbl = res.shortestcovint(0.9)
    assert list(tbl.columns) == ["type", "group", "name", "lower", "upper"]
    assert len(tbl) == 6
    assert tbl["type"].tolist() == ["β", "β", "σ", "σ", "ρ", "σ"]
    assert tbl.iloc[0]["group"] is None
    assert tbl.iloc[-1]["group"] == "residual"
    assert tbl.iloc[-1]["name"] is None
    assert (tbl["lower"] <= tbl["upper"]).all()


def test_empty_result_tables():
    res = _result([])
    assert len(res) == 0
    assert res.allpars.empty
    assert list(res.allpars.columns) == ["iter", "type", "group", "name", "value"]
    assert res.theta.shape == (0, 3)
    assert res.issingular().size == 0
    assert isinstance(res.coefpvalues, pd.DataFrame)


def test_summary_and_functional_install():
    res = _result([_record([0.0, 0.3, 1.0]), _record([1.0, 0.3, 1.0])])
    info = res.summary()
    assert info["n"] == 2
    assert info["n_singular"] == 1
    assert info["fixef"] == ["(Intercept)", "days"]
    assert info["groups"] == {"subj": ["(Intercept)", "days"]}
    scratch = install_theta(res, 2)
    np.testing.assert_array_equal(scratch[0], [[1.0, 0.0], [0.3, 1.0]])
