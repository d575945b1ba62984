from __future__ import annotations

from torch import nn

from .base import BuildResult, Plain, Scope


class Dropout(Plain):
    """Zeroes a random ``rate`` fraction of activations during training."""

    def __init__(self, rate: float) -> None:
        super().__init__()
        if not 0.0 <= rate < 1.0:
            raise ValueError("Dropout rate must be in [0, 1)")
        self.rate = rate

    def describe(self) -> str:
        return f"Dropout(rate:{self.rate})"

    def _build(self, scope: Scope, in_shape):
        return BuildResult(in_shape, nn.Dropout(self.rate))
