from __future__ import annotations

from typing import List, Optional

import torch
from torch import nn

from branchnet.errors import ShapeError
from branchnet.ir.types import Shape, format_shape

from .base import BuildResult, Join, Scope


def _dims_agree(a: Optional[int], b: Optional[int]) -> bool:
    return a is None or b is None or a == b


def _merge_dim(a: Optional[int], b: Optional[int]) -> Optional[int]:
    return a if a is not None else b


class ConcatMerge(nn.Module):
    def __init__(self, axis: int) -> None:
        super().__init__()
        self.axis = axis

    def forward(self, inputs: List[torch.Tensor]) -> torch.Tensor:
        return torch.cat(inputs, dim=self.axis)


class SumMerge(nn.Module):
    def forward(self, inputs: List[torch.Tensor]) -> torch.Tensor:
        out = inputs[0]
        for value in inputs[1:]:
            out = out + value
        return out


class Concat(Join):
    """Concatenate branch outputs along ``axis`` (default: the feature/channel axis)."""

    def __init__(self, axis: int = 1, arity: Optional[int] = None) -> None:
        super().__init__()
        self.axis = axis
        self.arity = arity

    def describe(self) -> str:
        return f"Concat(axis:{self.axis})"

    def _build_join(self, scope: Scope, in_shapes: List[Shape]):
        rank = len(in_shapes[0])
        axis = self.axis if self.axis >= 0 else rank + self.axis
        if not 0 < axis < rank:
            raise ShapeError(f"Concat axis {self.axis} is invalid for rank {rank} inputs")
        out = list(in_shapes[0])
        for shape in in_shapes[1:]:
            if len(shape) != rank:
                raise ShapeError(
                    f"Concat inputs must share a rank, got {format_shape(in_shapes[0])} and {format_shape(shape)}"
                )
            for i, dim in enumerate(shape):
                if i == axis:
                    out[i] = None if out[i] is None or dim is None else out[i] + dim
                elif not _dims_agree(out[i], dim):
                    raise ShapeError(
                        f"Concat inputs differ outside axis {axis}: {format_shape(in_shapes[0])} vs {format_shape(shape)}"
                    )
                else:
                    out[i] = _merge_dim(out[i], dim)
        return BuildResult(tuple(out), ConcatMerge(axis))


class Add(Join):
    """Element-wise sum of branch outputs; all shapes must agree."""

    def __init__(self, arity: Optional[int] = None) -> None:
        super().__init__()
        self.arity = arity

    def _build_join(self, scope: Scope, in_shapes: List[Shape]):
        out = list(in_shapes[0])
        for shape in in_shapes[1:]:
            if len(shape) != len(out) or not all(_dims_agree(a, b) for a, b in zip(out, shape)):
                raise ShapeError(
                    f"Add inputs must share a shape, got {format_shape(in_shapes[0])} and {format_shape(shape)}"
                )
            out = [_merge_dim(a, b) for a, b in zip(out, shape)]
        return BuildResult(tuple(out), SumMerge())
