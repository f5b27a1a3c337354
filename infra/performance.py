"""Parallel execution knobs for bootstrap runs.

Worker counts of ``0`` or ``1`` run sequentially; larger requests are
bounded by the hardware parallelism and the number of replicates.
Replicate refits are small dense linear-algebra problems, so parallel runs
clamp BLAS/OpenMP pools to one thread per worker to avoid oversubscription.
"""

from __future__ import annotations

from contextlib import contextmanager
import logging
import os
from typing import Optional

try:  # pragma: no cover - optional import
    from threadpoolctl import ThreadpoolController
except Exception:  # pragma: no cover - threadpoolctl not available
    ThreadpoolController = None

log = logging.getLogger(__name__)

_BLAS_ENV_KEYS = ("MKL_NUM_THREADS", "OPENBLAS_NUM_THREADS", "OMP_NUM_THREADS")

_UNC_WORKERS = 0
_TPCTL_NOTED = False


def note_tpctl_absence_once() -> None:
    """Log a single debug note when threadpoolctl is unavailable."""

    global _TPCTL_NOTED
    if not _TPCTL_NOTED:
        log.debug("threadpoolctl not available; BLAS clamp relies on env vars only.")
        _TPCTL_NOTED = True


def set_unc_workers(n: int) -> None:
    """Set the worker count used when a bootstrap call passes ``workers=None``."""

    global _UNC_WORKERS
    _UNC_WORKERS = max(0, int(n))


def get_unc_workers() -> int:
    return _UNC_WORKERS


def cpu_count() -> int:
    return max(1, os.cpu_count() or 1)


def clamp_workers(requested: Optional[int], n_tasks: int) -> int:
    """Number of workers to use for ``n_tasks`` replicates.

    ``None``/``0``/``1`` run sequentially.  Larger requests are bounded by the
    hardware parallelism and by the number of tasks.
    """

    try:
        req = int(requested or 0)
    except (TypeError, ValueError):
        req = 0
    if req <= 1:
        return 1
    return max(1, min(req, cpu_count(), max(1, int(n_tasks))))


@contextmanager
def blas_limit_ctx(threads: int | None):
    """Limit BLAS/OpenMP threadpools within the scope.

    ``None`` or ``<=0`` ⇒ no clamp (leave libraries as-is).
    """

    if threads is None or int(threads) <= 0:
        yield
        return
    threads = int(threads)

    prev_env = {k: os.environ.get(k) for k in _BLAS_ENV_KEYS}
    limiter = None
    try:
        if ThreadpoolController is not None:  # pragma: no branch - optional
            limiter = ThreadpoolController().limit(limits=threads)
        else:
            note_tpctl_absence_once()
        for key in _BLAS_ENV_KEYS:
            os.environ[key] = str(threads)
        yield
    finally:
        if limiter is not None:
            limiter.restore_original_limits()
        for key, value in prev_env.items():
            if value is None:
                os.environ.pop(key, None)
            else:
                os.environ[key] = value


@contextmanager
def blas_single_thread_ctx():
    """Limit BLAS/OpenMP libraries to a single thread within the context."""

    with blas_limit_ctx(1):
        yield


__all__ = [
    "set_unc_workers",
    "get_unc_workers",
    "cpu_count",
    "clamp_workers",
    "blas_limit_ctx",
    "blas_single_thread_ctx",
    "note_tpctl_absence_once",
]
