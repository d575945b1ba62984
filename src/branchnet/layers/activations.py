from __future__ import annotations

from typing import Callable, Dict

from torch import nn

from .base import BuildResult, Plain, Scope

ACTIVATIONS: Dict[str, Callable[[], nn.Module]] = {
    "relu": nn.ReLU,
    "sigmoid": nn.Sigmoid,
    "tanh": nn.Tanh,
    # feature/channel axis for both [batch, features] and NCHW inputs
    "softmax": lambda: nn.Softmax(dim=1),
    "gelu": nn.GELU,
    "silu": nn.SiLU,
    "elu": nn.ELU,
    "leaky_relu": nn.LeakyReLU,
}


class Activation(Plain):
    def __init__(self, name: str) -> None:
        super().__init__()
        name = name.lower()
        if name not in ACTIVATIONS:
            raise ValueError(f"Unsupported activation '{name}'")
        self.name = name

    def describe(self) -> str:
        return f"Activation({self.name})"

    def _build(self, scope: Scope, in_shape):
        return BuildResult(in_shape, ACTIVATIONS[self.name]())
