"""Core data structures and summaries for Mixboot.

This package exposes the main core modules so that callers can simply
``from core import results, tidy, intervals`` without needing to know the
submodule structure.
"""

from . import covfactor, errors, intervals, results, tidy
from .errors import InvalidArgument, ReplicateFailure, StructuralMismatch
from .results import BootstrapResult, FitRecord, install_theta, issingular
from .intervals import shortestcovint

__all__ = [
    "covfactor",
    "errors",
    "intervals",
    "results",
    "tidy",
    "BootstrapResult",
    "FitRecord",
    "InvalidArgument",
    "ReplicateFailure",
    "StructuralMismatch",
    "install_theta",
    "issingular",
    "shortestcovint",
]
