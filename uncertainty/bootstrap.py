"""Parametric bootstrap of fitted mixed-effects models.

Each replicate simulates a response from target parameters, refits a working
copy of the model and keeps a compact :class:`core.results.FitRecord`.
Replicates run sequentially or on a thread pool; in both cases the records
come back in replicate order and, with a jumpable generator, are identical
regardless of the worker count.
"""
from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor, as_completed
import logging
import queue
import time
from typing import Callable, List, Optional

import numpy as np
from tqdm.auto import tqdm

from core.covfactor import check_theta
from core.errors import InvalidArgument, ReplicateFailure, StructuralMismatch
from core.results import BootstrapResult, FitRecord
from fit.model import MixedModel, refit, simulate
from infra import performance
from . import streams

log = logging.getLogger(__name__)

_UNSET = object()

__all__ = ["parametricbootstrap", "extract_record"]


def extract_record(model: MixedModel, fixef_names) -> FitRecord:
    """Summarize a refitted ``model`` as a :class:`FitRecord`."""

    beta = np.asarray(model.coef(), dtype=float)
    if beta.size != len(fixef_names):
        raise StructuralMismatch(f"refit produced {beta.size} coefficients, expected {len(fixef_names)}")
    return FitRecord(
        objective=model.objective,
        sigma=model.sigma,
        beta=dict(zip(fixef_names, beta)),
        se=np.asarray(model.stderror(), dtype=float),
        theta=np.asarray(model.theta, dtype=float),
    )


def parametricbootstrap(
    rng,
    n: int,
    model: MixedModel,
    *,
    beta=None,
    sigma=_UNSET,
    theta=None,
    workers: Optional[int] = 0,
    show_progress: bool = False,
    progress_cb: Optional[Callable[[str], None]] = None,
) -> BootstrapResult:
    """Perform ``n`` parametric bootstrap refits of ``model``.

    Parameters
    ----------
    rng:
        Random source.  A ``numpy.random.Generator`` whose bit generator
        supports ``advance`` gets one precomputed stream per replicate; other
        generators are shared behind a lock.  Integers and ``SeedSequence``
        objects seed a PCG64 generator.
    n:
        Number of replicates (``>= 0``).
    model:
        Fitted model.  It is never modified; replicates run on copies.
    beta, sigma, theta:
        Parameters to simulate from; default to the model's estimates.
        ``sigma=None`` means the model has no dispersion parameter.
    workers:
        ``0``/``1`` run sequentially; larger values use that many threads,
        bounded by the hardware parallelism.  ``None`` takes the process-wide
        default from :func:`infra.performance.set_unc_workers`.
    show_progress:
        Draw a ``tqdm`` progress bar.
    progress_cb:
        Optional callable receiving ``"Bootstrap: i/n"`` pulses.

    Raises
    ------
    ReplicateFailure
        When any replicate's simulate or refit fails; no partial result is
        returned.
    """

    try:
        n = int(n)
    except (TypeError, ValueError):
        raise InvalidArgument(f"n must be an integer, got {n!r}") from None
    if n < 0:
        raise InvalidArgument(f"n must be >= 0, got {n}")
    gen = streams.as_generator(rng)

    fixef_names = tuple(model.fixef_names)
    beta = np.array(model.coef() if beta is None else beta, dtype=float).reshape(-1)
    if beta.size != len(fixef_names):
        raise StructuralMismatch(f"beta has length {beta.size}, model has {len(fixef_names)} coefficients")
    theta = check_theta(model.theta if theta is None else theta, model.inds).copy()
    if sigma is _UNSET:
        sigma = model.sigma
    if sigma is not None:
        sigma = float(sigma)

    if workers is None:
        workers = performance.get_unc_workers()
    work = model.copy()
    n_workers = performance.clamp_workers(workers, n)
    source = streams.select_streams(gen, n, work.ndraws(), workers=n_workers)
    log.info(
        "parametric bootstrap: n=%d workers=%d streams=%s", n, n_workers, source.strategy
    )

    # one working model per worker, handed out through a queue
    slots: "queue.SimpleQueue[MixedModel]" = queue.SimpleQueue()
    slots.put(work)
    for _ in range(n_workers - 1):
        slots.put(work.copy())

    fits: List[Optional[FitRecord]] = [None] * n

    def _one(index: int) -> int:
        mod = slots.get()
        try:
            with source.draws(index) as draw_rng:
                simulate(draw_rng, mod, beta=beta, sigma=sigma, theta=theta)
            refit(mod)
            fits[index - 1] = extract_record(mod, fixef_names)
        except Exception as exc:
            raise ReplicateFailure(index, exc) from exc
        finally:
            slots.put(mod)
        return index

    pulse_step = max(1, n // 20)
    next_pulse_at = 0
    last_pulse_t = time.monotonic()

    def _pulse(done_i: int) -> None:
        nonlocal next_pulse_at, last_pulse_t
        if progress_cb is None:
            return
        if done_i >= next_pulse_at or done_i == n or (time.monotonic() - last_pulse_t) > 0.5:
            progress_cb(f"Bootstrap: {done_i}/{n}")
            last_pulse_t = time.monotonic()
            next_pulse_at = done_i + pulse_step

    t0 = time.time()
    bar = tqdm(total=n, desc=f"Bootstrap ({n} fits)", unit="fit", disable=not show_progress)
    try:
        if n_workers <= 1:
            for index in range(1, n + 1):
                _one(index)
                bar.update(1)
                _pulse(index)
        else:
            with performance.blas_single_thread_ctx():
                ex = ThreadPoolExecutor(max_workers=n_workers)
                try:
                    futs = [ex.submit(_one, index) for index in range(1, n + 1)]
                    for done_cnt, fut in enumerate(as_completed(futs), start=1):
                        fut.result()
                        bar.update(1)
                        _pulse(done_cnt)
                finally:
                    ex.shutdown(wait=True, cancel_futures=True)
    except ReplicateFailure as exc:
        log.error("bootstrap aborted: %s", exc)
        raise
    finally:
        bar.close()

    log.info("parametric bootstrap finished: %d fits in %.2fs", n, time.time() - t0)
    return BootstrapResult.from_model(fits, model)
