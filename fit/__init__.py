"""Model interface for Mixboot.

``model`` declares what the bootstrap driver needs from a mixed model;
``lmm`` provides the dense linear mixed model used by the CLI and tests.
"""
from __future__ import annotations

from . import lmm, model
from .lmm import LinearMixedModel, RandomEffectsTerm, from_frame
from .model import MixedModel, refit, simulate

__all__ = [
    "lmm",
    "model",
    "LinearMixedModel",
    "MixedModel",
    "RandomEffectsTerm",
    "from_frame",
    "refit",
    "simulate",
]
