"""Layer specifications: the values a model is declared with before compilation.

A model is a flat list of ``LayerSpec`` values. There are four kinds:

* ``Plain`` layers transform one tensor into another (dense, conv, ...).
* ``BranchOpen`` / ``BranchClose`` markers delimit one parallel branch.
* ``Join`` layers merge the outputs of all branches of a group into one.

Example::

    layers = [
        Dense(16),
        BranchOpen(), Dense(8), BranchClose(),
        BranchOpen(), Dense(4), BranchClose(),
        Concat(),
    ]

Writing a custom plain layer means subclassing ``Plain`` and implementing
``_build``; the transform it returns must be an ``nn.Module`` whose
parameters belong to that layer only::

    class AddValue(Plain):
        def __init__(self, value: float) -> None:
            super().__init__()
            self.value = value

        def describe(self) -> str:
            return f"AddValue({self.value})"

        def _build(self, scope, in_shape):
            return BuildResult(in_shape, AddConstant(self.value))
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import ClassVar, List, Literal, Optional, Sequence

import torch
from torch import nn

from branchnet.errors import ShapeError
from branchnet.ir.types import Shape, format_shape

LayerKind = Literal["plain", "open", "close", "join"]


@dataclass(frozen=True)
class Scope:
    """Build-time context: module naming, device and dtype for new parameters."""

    name: str = "model"
    device: Optional[torch.device] = None
    dtype: Optional[torch.dtype] = None
    seed: Optional[int] = None

    def sub(self, name: str) -> "Scope":
        return Scope(f"{self.name}/{name}", self.device, self.dtype, self.seed)

    def place(self, module: nn.Module) -> nn.Module:
        if self.device is not None or self.dtype is not None:
            module = module.to(device=self.device, dtype=self.dtype)
        return module


@dataclass
class BuildResult:
    out_shape: Shape
    transform: nn.Module
    params: List[nn.Parameter] = field(default_factory=list)


class LayerSpec:
    kind: ClassVar[LayerKind] = "plain"

    def __init__(self) -> None:
        self.params: List[nn.Parameter] = []
        self.built = False

    def describe(self) -> str:
        return type(self).__name__

    def __str__(self) -> str:
        return self.describe()

    def __repr__(self) -> str:
        return self.describe()

    def is_branch_marker(self) -> bool:
        return self.kind in ("open", "close")

    def is_join(self) -> bool:
        return self.kind == "join"

    def opens_branch(self) -> bool:
        raise NotImplementedError(f"opens_branch called on non-branch layer {self}")

    def build(self, scope: Scope, in_shape: Shape) -> BuildResult:
        raise NotImplementedError(f"Layer {self} does not implement build; it cannot be used as a plain layer")

    def build_join(self, scope: Scope, in_shapes: Sequence[Shape]) -> BuildResult:
        raise NotImplementedError(f"Layer {self} does not implement build_join; use a join layer to merge branches")

    def _mark_built(self, result: BuildResult) -> BuildResult:
        if not result.params:
            result.params = list(result.transform.parameters())
        self.params = list(result.params)
        self.built = True
        return result


class Plain(LayerSpec):
    kind = "plain"

    def build(self, scope: Scope, in_shape: Shape) -> BuildResult:
        if self.built:
            raise RuntimeError(f"Layer {self} has already been built")
        result = self._build(scope, tuple(in_shape))
        result.transform = scope.place(result.transform)
        return self._mark_built(result)

    def _build(self, scope: Scope, in_shape: Shape) -> BuildResult:
        raise NotImplementedError(f"Please implement `_build` for layer {self}")


class Join(LayerSpec):
    kind = "join"
    arity: Optional[int] = None

    def build_join(self, scope: Scope, in_shapes: Sequence[Shape]) -> BuildResult:
        if self.built:
            raise RuntimeError(f"Layer {self} has already been built")
        result = self._build_join(scope, [tuple(s) for s in in_shapes])
        result.transform = scope.place(result.transform)
        return self._mark_built(result)

    def _build_join(self, scope: Scope, in_shapes: List[Shape]) -> BuildResult:
        raise NotImplementedError(f"Please implement `_build_join` for join layer {self}")


class BranchOpen(LayerSpec):
    kind = "open"

    def opens_branch(self) -> bool:
        return True


class BranchClose(LayerSpec):
    kind = "close"

    def opens_branch(self) -> bool:
        return False


def dim_check(layer: LayerSpec, in_shape: Shape, dims: int) -> None:
    if len(in_shape) != dims:
        raise ShapeError(
            f"The input shape for the layer {layer} should have {dims} dimensions "
            f"but has {len(in_shape)} ({format_shape(in_shape)})"
        )


def branch(*chains: Sequence[LayerSpec], join: LayerSpec) -> List[LayerSpec]:
    """Expand parallel chains and their join into the flat marker sequence."""
    layers: List[LayerSpec] = []
    for chain in chains:
        layers.append(BranchOpen())
        layers.extend(chain)
        layers.append(BranchClose())
    layers.append(join)
    return layers
