from __future__ import annotations

from typing import Iterable, List, Tuple

from branchnet.errors import DSLValidationError

from .models import JOIN_KINDS, DSLConfig, LayerConfig, ModelSpec, TrainConfig

REQUIRED_FIELDS = {
    "dense": ("units",),
    "conv2d": ("out_channels",),
    "transpose_conv2d": ("out_channels",),
    "resize2d": ("size",),
    "dropout": ("rate",),
    "activation": ("activation",),
    "reshape": ("shape",),
    "parallel": ("branches", "join"),
}


def _iter_layers(layers: List[LayerConfig], prefix: str = "layers") -> Iterable[Tuple[str, LayerConfig]]:
    for index, layer in enumerate(layers):
        where = f"{prefix}[{index}]"
        yield where, layer
        if layer.branches:
            for b, chain in enumerate(layer.branches):
                yield from _iter_layers(chain, f"{where}.branches[{b}]")
        if layer.join is not None:
            yield f"{where}.join", layer.join


def _validate_required_fields(model: ModelSpec) -> None:
    for where, layer in _iter_layers(model.layers):
        for name in REQUIRED_FIELDS.get(layer.kind, ()):
            if getattr(layer, name) is None:
                raise DSLValidationError(f"{where}: kind={layer.kind} requires '{name}'")


def _validate_parallel(model: ModelSpec) -> None:
    for where, layer in _iter_layers(model.layers):
        if layer.kind != "parallel":
            if layer.branches is not None or layer.join is not None:
                raise DSLValidationError(f"{where}: only kind=parallel may declare 'branches' or 'join'")
            continue
        if not layer.branches:
            raise DSLValidationError(f"{where}: parallel requires at least one branch")
        if layer.join is not None and layer.join.kind not in JOIN_KINDS:
            raise DSLValidationError(
                f"{where}: parallel join must be one of {list(JOIN_KINDS)}, got '{layer.join.kind}'"
            )


def _validate_pairs(model: ModelSpec) -> None:
    for where, layer in _iter_layers(model.layers):
        for name in ("kernel", "strides", "dilations", "size"):
            value = getattr(layer, name)
            if isinstance(value, list) and len(value) != 2:
                raise DSLValidationError(f"{where}: '{name}' must be a scalar or a pair")


def _validate_reshape(model: ModelSpec) -> None:
    for where, layer in _iter_layers(model.layers):
        if layer.kind != "reshape" or layer.shape is None:
            continue
        if sum(1 for d in layer.shape if d == -1) > 1:
            raise DSLValidationError(f"{where}: reshape accepts at most one -1")
        if any(d == 0 or d < -1 for d in layer.shape):
            raise DSLValidationError(f"{where}: reshape dimensions must be positive or -1")


def _validate_markers(model: ModelSpec) -> None:
    # full structural checks happen at compile time; catch plain imbalance early
    opens = 0
    closes = 0
    joins = 0
    for index, layer in enumerate(model.layers):
        if layer.kind == "branch_open":
            opens += 1
        elif layer.kind == "branch_close":
            closes += 1
            if closes > opens:
                raise DSLValidationError(f"layers[{index}]: branch_close without a matching branch_open")
        elif layer.kind in JOIN_KINDS:
            joins += 1
    if opens != closes:
        raise DSLValidationError(f"{opens} branch_open markers but {closes} branch_close markers")
    if opens and not joins:
        raise DSLValidationError("branches are opened but never joined")


def _validate_input_shape(model: ModelSpec) -> None:
    if not model.input_shape:
        raise DSLValidationError("input_shape must have at least one dimension")
    for dim in model.input_shape:
        if dim is not None and dim <= 0:
            raise DSLValidationError("input_shape dimensions must be positive or null")


def _validate_train(train: TrainConfig) -> None:
    betas = train.optimizer.betas
    if betas is not None:
        if len(betas) != 2 or not all(0.0 <= b < 1.0 for b in betas):
            raise DSLValidationError("optimizer betas must be two numbers in [0, 1)")
    if train.optimizer.momentum and train.optimizer.kind in ("adam", "adamw"):
        raise DSLValidationError(f"optimizer '{train.optimizer.kind}' does not take 'momentum'")


def run_additional_checks(cfg: DSLConfig) -> None:
    model = cfg.model
    _validate_input_shape(model)
    _validate_required_fields(model)
    _validate_parallel(model)
    _validate_pairs(model)
    _validate_reshape(model)
    _validate_markers(model)
    _validate_train(cfg.train)
