from __future__ import annotations

import math
from typing import Sequence, Tuple

import torch
from torch import nn

from branchnet.errors import ShapeError

from .base import BuildResult, Plain, Scope


class BatchReshape(nn.Module):
    def __init__(self, shape: Tuple[int, ...]) -> None:
        super().__init__()
        self.shape = shape

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        return x.reshape(x.size(0), *self.shape)


class Reshape(Plain):
    """Reshape every sample; ``shape`` excludes the batch dimension and may hold one -1."""

    def __init__(self, shape: Sequence[int]) -> None:
        super().__init__()
        self.shape = tuple(int(d) for d in shape)
        if sum(1 for d in self.shape if d == -1) > 1:
            raise ValueError("Reshape accepts at most one -1 dimension")
        if any(d == 0 or d < -1 for d in self.shape):
            raise ValueError("Reshape dimensions must be positive or -1")

    def describe(self) -> str:
        return f"Reshape(shape:{list(self.shape)})"

    def _build(self, scope: Scope, in_shape):
        sample = in_shape[1:]
        target = self.shape
        if all(d is not None for d in sample):
            total = math.prod(sample)
            known = math.prod(d for d in target if d != -1)
            if -1 in target:
                if total % known != 0:
                    raise ShapeError(f"Cannot reshape {list(sample)} into {list(target)}")
                target = tuple(total // known if d == -1 else d for d in target)
            elif known != total:
                raise ShapeError(f"Cannot reshape {list(sample)} into {list(target)}")
        out_shape = (in_shape[0],) + tuple(None if d == -1 else d for d in target)
        return BuildResult(out_shape, BatchReshape(self.shape))


class Flatten(Plain):
    def _build(self, scope: Scope, in_shape):
        sample = in_shape[1:]
        if not sample:
            raise ShapeError(f"The layer {self} needs at least one non-batch dimension")
        features = None if any(d is None for d in sample) else math.prod(sample)
        return BuildResult((in_shape[0], features), nn.Flatten())
