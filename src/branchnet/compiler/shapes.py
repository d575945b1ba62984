from __future__ import annotations

from typing import List, Sequence

from branchnet.ir.types import Shape
from branchnet.layers.base import BuildResult, LayerSpec, Scope


class ShapeState:
    """Stack of current output shapes: the trunk slot plus one slot per live branch."""

    def __init__(self, input_shape: Sequence) -> None:
        self._slots: List[Shape] = [tuple(input_shape)]

    @property
    def depth(self) -> int:
        return len(self._slots)

    @property
    def top(self) -> Shape:
        return self._slots[-1]

    def __getitem__(self, index: int) -> Shape:
        return self._slots[index]

    def snapshot(self) -> List[Shape]:
        return list(self._slots)

    def advance(self, spec: LayerSpec, index: int, scope: Scope) -> BuildResult:
        result = spec.build(scope, self._slots[index])
        self._slots[index] = tuple(result.out_shape)
        return result

    def open_branch(self, base_index: int) -> int:
        self._slots.append(self._slots[base_index])
        return len(self._slots) - 1

    def close_join(self, join: LayerSpec, indices: Sequence[int], scope: Scope) -> BuildResult:
        if not indices:
            raise ValueError("close_join needs at least one branch slot")
        parent = indices[0] - 1
        if parent < 0:
            raise ValueError("the trunk slot cannot be joined")
        result = join.build_join(scope, [self._slots[i] for i in indices])
        for index in sorted(indices, reverse=True):
            del self._slots[index]
        self._slots[parent] = tuple(result.out_shape)
        return result
