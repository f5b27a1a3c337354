"""Random-number streams for bootstrap replicates.

Two strategies hand a replicate the generator it simulates from:

* ``JumpedStreamPool``: the base bit generator supports ``advance`` (PCG64,
  PCG64DXSM, Philox).  Replicate ``i`` (1-based) gets a private generator
  whose state is the base state advanced by ``i × spacing`` jump units, with
  ``spacing = ceil(total_draws / 2)``.  A jump unit spans ``2**32`` outputs
  so the extra outputs taken by ziggurat rejections never reach the next
  stream.  No locking is needed and the result does not depend on
  scheduling.
* ``SharedLockedStream``: any other generator.  One generator is shared and
  replicates take the lock strictly in index order, so replicate ``i`` always
  receives the same chunk of the stream whatever the worker count.
"""
from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
import logging
import math
import threading
from typing import Iterator, List, Tuple, Union

import numpy as np

from core.errors import InvalidArgument

log = logging.getLogger(__name__)

# advance() steps per jump unit; a PCG64 step yields one 64-bit output
JUMP_UNIT_STEPS = 2**32

RngLike = Union[np.random.Generator, np.random.SeedSequence, int]

__all__ = [
    "JUMP_UNIT_STEPS",
    "as_generator",
    "is_jumpable",
    "stream_spacing",
    "SharedLockedStream",
    "JumpedStreamPool",
    "select_streams",
]


def as_generator(rng: RngLike) -> np.random.Generator:
    """Normalize ``rng`` to a ``numpy.random.Generator``.

    Integers and ``SeedSequence`` objects seed a fresh PCG64 generator.  There
    is no implicit global default: ``None`` is rejected.
    """

    if isinstance(rng, np.random.Generator):
        return rng
    if rng is None:
        raise InvalidArgument("an explicit random source is required (Generator, SeedSequence or int)")
    if isinstance(rng, (np.random.SeedSequence, int, np.integer)) and not isinstance(rng, bool):
        return np.random.Generator(np.random.PCG64(rng))
    raise InvalidArgument(f"unsupported random source of type {type(rng).__name__}")


def is_jumpable(rng: np.random.Generator) -> bool:
    return callable(getattr(rng.bit_generator, "advance", None))


def stream_spacing(total_draws: int) -> int:
    """Jump units between consecutive replicate streams."""

    total_draws = int(total_draws)
    if total_draws < 0:
        raise InvalidArgument(f"total_draws must be >= 0, got {total_draws}")
    return max(1, math.ceil(total_draws / 2))


class SharedLockedStream:
    """A single generator shared by all workers behind a non-reentrant lock.

    Replicates are admitted in index order ``1, 2, ...``; a replicate that
    arrives early waits until every lower index has drawn.  Tasks are handed
    to workers first-in first-out, so the waiting replicate's predecessors
    are always running or done.
    """

    strategy = "shared"

    def __init__(self, rng: np.random.Generator):
        self.rng = rng
        self._lock = threading.Lock()
        self._turn = threading.Condition(self._lock)
        self._next_index = 1

    @contextmanager
    def draws(self, index: int) -> Iterator[np.random.Generator]:
        """Hold the lock while the caller draws for replicate ``index``."""

        index = int(index)
        with self._turn:
            self._turn.wait_for(lambda: self._next_index == index)
            try:
                yield self.rng
            finally:
                # a failed draw still hands the turn on
                self._next_index += 1
                self._turn.notify_all()


class JumpedStreamPool:
    """Precomputed independent generators, one per replicate."""

    strategy = "jumped"

    def __init__(self, rng: np.random.Generator, n: int, total_draws: int, workers: int = 1):
        if not is_jumpable(rng):
            raise InvalidArgument(
                f"{type(rng.bit_generator).__name__} does not support advance(); use SharedLockedStream"
            )
        self.n = int(n)
        self.spacing = stream_spacing(total_draws)
        self._bg_type = type(rng.bit_generator)
        self._base_state = rng.bit_generator.state
        indices = range(1, self.n + 1)
        if workers > 1 and self.n > 1:
            with ThreadPoolExecutor(max_workers=int(workers)) as ex:
                self.streams: List[np.random.Generator] = list(ex.map(self._make, indices))
        else:
            self.streams = [self._make(i) for i in indices]

    def _make(self, index: int) -> np.random.Generator:
        bg = self._bg_type()
        bg.state = self._base_state
        bg.advance(self.offset(index) * JUMP_UNIT_STEPS)
        return np.random.Generator(bg)

    def offset(self, index: int) -> int:
        """Jump units between the base state and replicate ``index``'s stream."""

        return int(index) * self.spacing

    def ranges(self) -> List[Tuple[int, int]]:
        """Half-open ``[start, stop)`` jump-unit range reserved for each replicate."""

        return [(self.offset(i), self.offset(i) + self.spacing) for i in range(1, self.n + 1)]

    def stream(self, index: int) -> np.random.Generator:
        return self.streams[int(index) - 1]

    @contextmanager
    def draws(self, index: int) -> Iterator[np.random.Generator]:
        yield self.stream(index)


def select_streams(
    rng: RngLike, n: int, total_draws: int, workers: int = 1
) -> Union[JumpedStreamPool, SharedLockedStream]:
    """Pick the jumped pool when ``rng`` supports it, else the shared stream."""

    gen = as_generator(rng)
    if is_jumpable(gen):
        pool = JumpedStreamPool(gen, n, total_draws, workers=workers)
        log.debug("jumped streams: n=%d spacing=%d", pool.n, pool.spacing)
        return pool
    log.debug("shared locked stream for %s", type(gen.bit_generator).__name__)
    return SharedLockedStream(gen)
