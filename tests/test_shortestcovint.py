import math

import numpy as np
import pytest

from core.errors import InvalidArgument
from core.intervals import shortestcovint


def test_uniform_half_level_width():
    v = np.arange(1, 11, dtype=float)
    lo, hi = shortestcovint(v, 0.5)
    assert (lo, hi) == (1.0, 5.0)
    assert hi - lo == 4.0


def test_unsorted_input_matches_sorted():
    v = np.array([7.0, 3.0, 10.0, 1.0, 5.0, 2.0, 9.0, 4.0, 8.0, 6.0])
    assert shortestcovint(v, 0.5) == shortestcovint(np.sort(v), 0.5)


def test_picks_densest_window_first_on_ties():
    v = [0.0, 10.0, 11.0, 12.0, 13.0, 30.0]
    # window of 3: widths 11, 2, 2, 18 -> first minimum
    assert shortestcovint(v, 0.5) == (10.0, 12.0)


def test_non_finite_ends_are_skipped():
    v = [-np.inf, 1, 2, 3, 4, 5, 6, 7, 8, np.nan]
    assert shortestcovint(v, 0.5) == (1.0, 5.0)


def test_short_finite_span_returns_full_range():
    lo, hi = shortestcovint([np.nan, np.nan, 2.0, 1.0], 0.9)
    assert lo == 1.0
    assert math.isnan(hi)


@pytest.mark.parametrize("level", [0.0, 1.0, -0.1, 1.5])
def test_level_out_of_range(level):
    with pytest.raises(InvalidArgument):
        shortestcovint([1.0, 2.0, 3.0], level)


def test_empty_sample_rejected():
    with pytest.raises(InvalidArgument):
        shortestcovint([], 0.95)


def test_interval_covers_required_count(rng):
    v = rng.gamma(2.0, 1.5, size=257)
    for level in (0.5, 0.8, 0.95):
        lo, hi = shortestcovint(v, level)
        inside = np.sum((v >= lo) & (v <= hi))
        assert inside >= math.ceil(v.size * level)


def test_interval_is_minimal(rng):
    v = np.sort(rng.normal(size=101))
    lo, hi = shortestcovint(v, 0.9)
    ilen = math.ceil(v.size * 0.9)
    widths = v[ilen - 1 :] - v[: v.size - ilen + 1]
    assert hi - lo == pytest.approx(widths.min())
