"""Shortest coverage intervals for bootstrap samples."""
from __future__ import annotations

import math
from typing import Tuple

import numpy as np
import pandas as pd

from .errors import InvalidArgument

__all__ = ["shortestcovint", "shortestcovint_table"]


def shortestcovint(values, level: float = 0.95) -> Tuple[float, float]:
    """Return the shortest interval containing ``level`` of ``values``.

    The window holds ``ceil(len(values) * level)`` consecutive sorted values.
    Non-finite values are skipped at the two ends of the sorted order only.
    When fewer finite values remain than the window needs, the full observed
    range is returned.  Ties resolve to the leftmost window.
    """

    if not (0.0 < float(level) < 1.0):
        raise InvalidArgument(f"level = {level} should be in (0,1)")
    vv = np.sort(np.asarray(values, dtype=float).reshape(-1))
    n = vv.size
    if n == 0:
        raise InvalidArgument("cannot compute a coverage interval of an empty sample")
    ilen = int(math.ceil(n * float(level)))

    finite = np.flatnonzero(np.isfinite(vv))
    if finite.size == 0:
        return float(vv[0]), float(vv[-1])
    start, stop = int(finite[0]), int(finite[-1])
    if stop < start + ilen - 1:
        return float(vv[0]), float(vv[-1])

    lo = vv[start : stop + 2 - ilen]
    hi = vv[start + ilen - 1 : stop + 1]
    i = start + int(np.argmin(hi - lo))
    return float(vv[i]), float(vv[i + ilen - 1])


def _matches(col: pd.Series, key) -> np.ndarray:
    if key is None:
        return col.isna().to_numpy()
    return (col.notna() & (col == key)).to_numpy()


def shortestcovint_table(allpars: pd.DataFrame, level: float = 0.95) -> pd.DataFrame:
    """One shortest interval per distinct ``(type, group, name)`` of ``allpars``.

    Missing ``group``/``name`` entries form their own category.  Rows come out
    in order of first appearance.
    """

    if not (0.0 < float(level) < 1.0):
        raise InvalidArgument(f"level = {level} should be in (0,1)")

    def _key(v):
        return None if v is None or (isinstance(v, float) and math.isnan(v)) else v

    keys = dict.fromkeys(
        (t, _key(g), _key(nm))
        for t, g, nm in zip(allpars["type"], allpars["group"], allpars["name"])
    )
    rows = []
    values = allpars["value"].to_numpy(dtype=float)
    for t, g, nm in keys:
        idx = (
            (allpars["type"] == t).to_numpy()
            & _matches(allpars["group"], g)
            & _matches(allpars["name"], nm)
        )
        lower, upper = shortestcovint(values[idx], level)
        rows.append({"type": t, "group": g, "name": nm, "lower": lower, "upper": upper})
    return pd.DataFrame(rows, columns=["type", "group", "name", "lower", "upper"])
