from __future__ import annotations

from torch import nn

from branchnet.errors import ShapeError

from .base import BuildResult, Plain, Scope, dim_check


class Dense(Plain):
    """Fully connected layer on ``[batch, features]`` inputs."""

    def __init__(self, units: int, bias: bool = True) -> None:
        super().__init__()
        if units <= 0:
            raise ValueError("Dense units must be positive")
        self.units = units
        self.bias = bias
        self.in_features = None

    def describe(self) -> str:
        return f"Dense(in:{self.in_features}, out:{self.units})"

    def _build(self, scope: Scope, in_shape):
        dim_check(self, in_shape, 2)
        if in_shape[1] is None:
            raise ShapeError(f"The layer {self} needs a known feature dimension")
        self.in_features = in_shape[1]
        linear = nn.Linear(self.in_features, self.units, bias=self.bias)
        return BuildResult((in_shape[0], self.units), linear)
