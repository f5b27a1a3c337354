"""Exception types raised by the bootstrap engine."""
from __future__ import annotations

from typing import Optional


class InvalidArgument(ValueError):
    """Raised when a caller passes a value outside the accepted domain."""


class StructuralMismatch(ValueError):
    """Raised when a parameter vector disagrees with the model's index map."""


class ReplicateFailure(RuntimeError):
    """A simulate/refit cycle failed; the whole bootstrap run is void.

    ``index`` is the 1-based replicate number. The originating exception is
    chained as ``__cause__``.
    """

    def __init__(self, index: int, cause: Optional[BaseException] = None):
        self.index = int(index)
        self.cause = cause
        if cause is None:
            msg = f"bootstrap replicate {self.index} failed"
        else:
            msg = f"bootstrap replicate {self.index} failed: {type(cause).__name__}: {cause}"
        super().__init__(msg)


__all__ = ["InvalidArgument", "StructuralMismatch", "ReplicateFailure"]
