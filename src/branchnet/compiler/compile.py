from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

import torch
from torch import nn

from branchnet.errors import CompileError, StructuralError
from branchnet.ir.types import Node, Shape, Trace, as_shape
from branchnet.layers.base import LayerSpec, Scope

from .branches import BranchStack, Chain
from .shapes import ShapeState


class BranchGroup(nn.Module):
    """Runs every branch chain on the same input and merges the results in branch order."""

    def __init__(self, chains: Sequence[Chain], join: nn.Module) -> None:
        super().__init__()
        self.branches = nn.ModuleList([nn.Sequential(OrderedDict(chain)) for chain in chains])
        self.join = join

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        outputs = [branch(x) for branch in self.branches]
        return self.join(outputs)


class ExecutableGraph(nn.Sequential):
    """The compiled forward pass: trunk steps interleaved with branch groups."""


def make_branch(chains: Sequence[Chain], join: nn.Module) -> BranchGroup:
    return BranchGroup(chains, join)


@dataclass
class CompiledGraph:
    graph: ExecutableGraph
    parameters: List[nn.Parameter]
    input_shape: Shape
    output_shape: Shape
    nodes: Trace = field(default_factory=list)
    device: Optional[torch.device] = None
    dtype: Optional[torch.dtype] = None

    @property
    def n_params(self) -> int:
        return sum(p.numel() for p in self.parameters)


def _step_name(position: int, layer: LayerSpec) -> str:
    return f"{position}_{type(layer).__name__.lower()}"


def _count(params: Sequence[nn.Parameter]) -> int:
    return sum(p.numel() for p in params)


class Compiler:
    """Single left-to-right pass over a layer list.

    Plain layers are built against the shape of the innermost open branch
    (or the trunk) and appended to that branch's chain. A ``BranchOpen``
    starts a new group, or a sibling branch when the innermost group has all
    of its branches closed. A ``BranchClose`` only ends the current branch;
    the group stays on the stack until a join consumes it.
    """

    def __init__(self, input_shape: Sequence, scope: Optional[Scope] = None) -> None:
        self.input_shape = as_shape(input_shape)
        self.scope = scope or Scope()
        self.reset()

    @property
    def shapes(self) -> ShapeState:
        return self._shapes

    @property
    def branches(self) -> BranchStack:
        return self._branches

    @property
    def trunk(self) -> Chain:
        return self._trunk

    def reset(self) -> None:
        self._trunk: Chain = []
        self._shapes = ShapeState(self.input_shape)
        self._branches = BranchStack()
        self._params: List[nn.Parameter] = []
        self._nodes: Trace = []

    def compile(self, layers: Sequence[LayerSpec]) -> CompiledGraph:
        if self.scope.seed is None:
            return self._compile(layers)
        with torch.random.fork_rng(devices=[]):
            torch.manual_seed(self.scope.seed)
            return self._compile(layers)

    def _compile(self, layers: Sequence[LayerSpec]) -> CompiledGraph:
        self.reset()
        for position, layer in enumerate(layers):
            self.step(position, layer)
        return self.finish()

    def step(self, position: int, layer: LayerSpec) -> None:
        try:
            self._dispatch(position, layer)
        except CompileError as err:
            located = err.at(position, layer.describe())
            if located is err:
                raise
            raise located from err
        except NotImplementedError as err:
            raise NotImplementedError(f"layer #{position} ({layer.describe()}): {err}") from err
        self._params.extend(layer.params)

    def finish(self) -> CompiledGraph:
        frame = self._branches.top
        if frame is not None:
            raise StructuralError(
                "branch group was opened here but never joined",
                position=frame.position,
                layer=frame.layer,
            )

        return CompiledGraph(
            graph=ExecutableGraph(OrderedDict(self._trunk)),
            parameters=list(self._params),
            input_shape=self.input_shape,
            output_shape=self._shapes.top,
            nodes=list(self._nodes),
            device=self.scope.device,
            dtype=self.scope.dtype,
        )

    def _dispatch(self, position: int, layer: LayerSpec) -> None:
        if layer.is_branch_marker():
            if layer.opens_branch():
                self._open(position, layer)
            else:
                self._close(position, layer)
        elif layer.is_join():
            self._join(position, layer)
        else:
            self._plain(position, layer)

    def _active_chain(self) -> Chain:
        chain = self._branches.active_chain()
        return self._trunk if chain is None else chain

    def _plain(self, position: int, layer: LayerSpec) -> None:
        if self._branches.awaiting_join:
            raise StructuralError(
                "a layer cannot follow a branch close before the group is joined"
            )
        name = _step_name(position, layer)
        index = self._shapes.depth - 1
        in_shape = self._shapes[index]
        result = self._shapes.advance(layer, index, self.scope.sub(name))
        self._active_chain().append((name, result.transform))
        self._nodes.append(
            Node(
                position=position,
                kind="plain",
                description=layer.describe(),
                depth=len(self._branches),
                in_shapes=[in_shape],
                out_shape=tuple(result.out_shape),
                n_params=_count(result.params),
            )
        )

    def _open(self, position: int, layer: LayerSpec) -> None:
        frame = self._branches.top
        if frame is None or not frame.awaiting_join:
            frame = self._branches.push(self._shapes.depth - 1, position, layer.describe())
        slot = self._shapes.open_branch(frame.parent_index)
        self._branches.start_branch(slot)
        self._nodes.append(
            Node(
                position=position,
                kind="open",
                description=layer.describe(),
                depth=len(self._branches),
                in_shapes=[self._shapes[frame.parent_index]],
                out_shape=self._shapes[slot],
            )
        )

    def _close(self, position: int, layer: LayerSpec) -> None:
        frame = self._branches.top
        if frame is None or not frame.open:
            raise StructuralError("branch close without a matching open branch")
        self._branches.close_branch()
        self._nodes.append(
            Node(
                position=position,
                kind="close",
                description=layer.describe(),
                depth=len(self._branches),
                in_shapes=[self._shapes.top],
                out_shape=self._shapes.top,
            )
        )

    def _join(self, position: int, layer: LayerSpec) -> None:
        frame = self._branches.top
        if frame is None:
            raise StructuralError("join without an open branch group")
        if frame.open:
            raise StructuralError(
                f"join reached while branch {len(frame.chains)} of the group opened at "
                f"layer #{frame.position} is still open"
            )
        arity = getattr(layer, "arity", None)
        if arity is not None and arity != len(frame.chains):
            raise StructuralError(
                f"join expects {arity} branches but the group has {len(frame.chains)}"
            )
        name = _step_name(position, layer)
        in_shapes = [self._shapes[slot] for slot in frame.slots]
        result = self._shapes.close_join(layer, frame.slots, self.scope.sub(name))
        self._branches.pop()
        depth = len(self._branches)
        self._active_chain().append((name, make_branch(frame.chains, result.transform)))
        self._nodes.append(
            Node(
                position=position,
                kind="join",
                description=layer.describe(),
                depth=depth,
                in_shapes=in_shapes,
                out_shape=tuple(result.out_shape),
                n_params=_count(result.params),
            )
        )


def compile_layers(
    layers: Sequence[LayerSpec],
    input_shape: Sequence,
    *,
    scope: Optional[Scope] = None,
) -> CompiledGraph:
    return Compiler(input_shape, scope).compile(layers)
