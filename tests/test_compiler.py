from __future__ import annotations

from typing import List

import pytest
import torch

from branchnet.compiler import BranchGroup, Compiler, compile_layers
from branchnet.errors import ShapeError, StructuralError
from branchnet.layers import (
    Activation,
    Add,
    BranchClose,
    BranchOpen,
    Concat,
    Conv2d,
    Dense,
    Dropout,
    LayerSpec,
    Scope,
    branch,
)


class RecordingConcat(Concat):
    def __init__(self) -> None:
        super().__init__()
        self.seen: List[tuple] = []

    def _build_join(self, scope, in_shapes):
        self.seen = list(in_shapes)
        return super()._build_join(scope, in_shapes)


def _nested_layers() -> List[LayerSpec]:
    return [
        Dense(8),
        BranchOpen(),
        Dense(6),
        BranchOpen(),
        Dense(2),
        BranchClose(),
        BranchOpen(),
        Dense(3),
        BranchClose(),
        Concat(),
        BranchClose(),
        BranchOpen(),
        Dense(5),
        BranchClose(),
        Concat(),
        Dense(1),
    ]


def test_single_dense_layer() -> None:
    dense = Dense(10)
    compiled = compile_layers([dense], (None, 5))
    assert compiled.output_shape == (None, 10)
    assert len(compiled.parameters) == 2
    assert [id(p) for p in compiled.parameters] == [id(p) for p in dense.params]
    out = compiled.graph(torch.randn(3, 5))
    assert out.shape == (3, 10)


def test_two_branches_concat_in_declaration_order() -> None:
    join = RecordingConcat()
    layers = [
        BranchOpen(),
        Dense(3),
        BranchClose(),
        BranchOpen(),
        Dense(6),
        BranchClose(),
        join,
    ]
    compiled = compile_layers(layers, (None, 4))
    assert join.seen == [(None, 3), (None, 6)]
    assert compiled.output_shape == (None, 9)
    assert compiled.nodes[-1].in_shapes == [(None, 3), (None, 6)]
    out = compiled.graph(torch.randn(2, 4))
    assert out.shape == (2, 9)


def _dense_out(layer: Dense, x: torch.Tensor) -> torch.Tensor:
    weight, bias = layer.params
    return x @ weight.T + bias


def test_branch_outputs_are_merged_in_order() -> None:
    first, second = Dense(3), Dense(6)
    compiled = compile_layers(branch([first], [second], join=Concat()), (None, 4))
    x = torch.randn(5, 4)
    with torch.no_grad():
        out = compiled.graph(x)
        expected = torch.cat([_dense_out(first, x), _dense_out(second, x)], dim=1)
    assert torch.allclose(out, expected, atol=1e-6)


def test_join_while_branch_still_open_is_structural_error() -> None:
    layers = [BranchOpen(), Dense(3), Add()]
    with pytest.raises(StructuralError) as info:
        compile_layers(layers, (None, 4))
    assert info.value.position == 2
    assert "still open" in str(info.value)


def test_single_closed_branch_is_a_valid_join() -> None:
    layers = [BranchOpen(), Dense(3), BranchClose(), Add()]
    compiled = compile_layers(layers, (None, 4))
    assert compiled.output_shape == (None, 3)
    assert compiled.graph(torch.randn(2, 4)).shape == (2, 3)


def test_conv_rejects_rank_two_input() -> None:
    with pytest.raises(ShapeError) as info:
        compile_layers([Conv2d(4, (3, 3), (1, 1))], (None, 100))
    assert info.value.position == 0
    assert "layer #0" in str(info.value)
    assert "4 dimensions" in str(info.value)


def test_shape_error_appends_no_transform() -> None:
    conv = Conv2d(4)
    compiler = Compiler((None, 5))
    with pytest.raises(ShapeError):
        compiler.compile([Dense(4), conv])
    assert [name for name, _ in compiler.trunk] == ["0_dense"]
    assert not conv.built
    assert conv.params == []


def test_shape_error_inside_branch_reports_position() -> None:
    layers = [Dense(4), BranchOpen(), Conv2d(2), BranchClose(), Concat()]
    with pytest.raises(ShapeError) as info:
        compile_layers(layers, (None, 5))
    assert info.value.position == 2


def test_unmatched_open_is_structural_error() -> None:
    layers = [Dense(4), BranchOpen(), Dense(2), BranchClose()]
    with pytest.raises(StructuralError) as info:
        compile_layers(layers, (None, 5))
    assert info.value.position == 1
    assert "never joined" in str(info.value)


def test_unclosed_open_is_structural_error() -> None:
    with pytest.raises(StructuralError):
        compile_layers([BranchOpen(), Dense(2)], (None, 5))


def test_join_without_group_is_structural_error() -> None:
    with pytest.raises(StructuralError) as info:
        compile_layers([Dense(2), Concat()], (None, 5))
    assert info.value.position == 1


def test_close_without_open_is_structural_error() -> None:
    with pytest.raises(StructuralError):
        compile_layers([BranchClose()], (None, 5))


def test_close_before_inner_join_is_structural_error() -> None:
    layers = [BranchOpen(), BranchOpen(), BranchClose(), BranchClose()]
    with pytest.raises(StructuralError) as info:
        compile_layers(layers, (None, 5))
    assert info.value.position == 3


def test_layer_between_close_and_join_is_structural_error() -> None:
    layers = [BranchOpen(), Dense(2), BranchClose(), Dense(2), Concat()]
    with pytest.raises(StructuralError) as info:
        compile_layers(layers, (None, 5))
    assert info.value.position == 3


def test_join_arity_mismatch_is_structural_error() -> None:
    layers = branch([Dense(2)], [Dense(2)], join=Add(arity=3))
    with pytest.raises(StructuralError) as info:
        compile_layers(layers, (None, 5))
    assert "expects 3 branches" in str(info.value)


def test_add_join_rejects_mismatched_shapes() -> None:
    layers = branch([Dense(3)], [Dense(4)], join=Add())
    with pytest.raises(ShapeError) as info:
        compile_layers(layers, (None, 5))
    assert info.value.position == 6


def test_spec_without_build_raises_not_implemented() -> None:
    with pytest.raises(NotImplementedError) as info:
        compile_layers([Dense(3), LayerSpec()], (None, 5))
    assert "layer #1" in str(info.value)


def test_nested_branches_shapes_and_structure() -> None:
    layers = _nested_layers()
    compiled = compile_layers(layers, (None, 8))
    assert compiled.output_shape == (None, 1)
    # inner branches start from the outer branch's shape, siblings from the group entry
    assert layers[4].in_features == 6
    assert layers[7].in_features == 6
    assert layers[12].in_features == 8

    graph = compiled.graph
    assert len(graph) == 3
    group = graph[1]
    assert isinstance(group, BranchGroup)
    assert len(group.branches) == 2
    assert isinstance(group.branches[0][1], BranchGroup)
    assert graph(torch.randn(3, 8)).shape == (3, 1)


def test_parameter_order_follows_declaration() -> None:
    layers = _nested_layers()
    compiled = compile_layers(layers, (None, 8))
    expected = [p for layer in layers for p in layer.params]
    assert len(compiled.parameters) == 2 * 6
    assert [id(p) for p in compiled.parameters] == [id(p) for p in expected]


def test_compiling_twice_is_deterministic() -> None:
    first = compile_layers(_nested_layers(), (None, 8), scope=Scope(seed=7))
    second = compile_layers(_nested_layers(), (None, 8), scope=Scope(seed=7))
    assert first.output_shape == second.output_shape
    assert [n.out_shape for n in first.nodes] == [n.out_shape for n in second.nodes]
    assert [tuple(p.shape) for p in first.parameters] == [tuple(p.shape) for p in second.parameters]
    for a, b in zip(first.parameters, second.parameters):
        assert torch.equal(a, b)


def test_join_collapses_group_to_parent_depth() -> None:
    compiler = Compiler((None, 4))
    layers = [Dense(4), BranchOpen(), Dense(3), BranchClose(), BranchOpen(), Dense(6), BranchClose()]
    for position, layer in enumerate(layers):
        compiler.step(position, layer)
    assert compiler.shapes.depth == 3
    assert compiler.shapes.snapshot() == [(None, 4), (None, 3), (None, 6)]
    compiler.step(len(layers), Concat())
    # both branch slots are gone; the merged shape replaces the trunk slot
    assert compiler.shapes.depth == 1
    assert compiler.shapes.top == (None, 9)
    assert len(compiler.trunk) == 2
    assert len(compiler.branches) == 0


def test_layers_cannot_be_built_twice() -> None:
    layers = [Dense(3)]
    compile_layers(layers, (None, 4))
    with pytest.raises(RuntimeError):
        compile_layers(layers, (None, 4))


def test_trace_records_depth_and_params() -> None:
    layers = [Dense(4), BranchOpen(), Dropout(0.2), Activation("relu"), BranchClose(), Concat()]
    compiled = compile_layers(layers, (None, 3))
    kinds = [node.kind for node in compiled.nodes]
    assert kinds == ["plain", "open", "plain", "plain", "close", "join"]
    assert compiled.nodes[0].n_params == 3 * 4 + 4
    assert compiled.nodes[2].depth == 1
    assert compiled.nodes[-1].depth == 0
    assert compiled.n_params == 16


def test_empty_layer_list_is_identity() -> None:
    compiled = compile_layers([], (None, 3))
    x = torch.randn(2, 3)
    assert compiled.output_shape == (None, 3)
    assert torch.equal(compiled.graph(x), x)
    assert compiled.parameters == []
