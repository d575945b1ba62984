from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

import torch

from branchnet.dsl.models import DSLConfig, LayerConfig, OptimConfig
from branchnet.errors import DSLValidationError
from branchnet.layers import (
    Activation,
    Add,
    BranchClose,
    BranchOpen,
    Concat,
    Conv2d,
    Dense,
    Dropout,
    Flatten,
    LayerSpec,
    Reshape,
    Resize2D,
    Scope,
    TransposeConv2d,
    UpSampling2D,
    branch,
)
from branchnet.train import Model, build_loss, build_optimizer
from branchnet.train.model import compile_model

from .utils import summarize_layers

DTYPES = {"float32": torch.float32, "float64": torch.float64}


def _conv_kwargs(layer: LayerConfig) -> dict:
    kwargs: dict = {}
    if layer.kernel is not None:
        kwargs["kernel"] = layer.kernel
    if layer.strides is not None:
        kwargs["strides"] = layer.strides
    if layer.padding is not None:
        kwargs["padding"] = layer.padding
    if layer.dilations is not None:
        kwargs["dilations"] = layer.dilations
    return kwargs


def build_layer(layer: LayerConfig) -> List[LayerSpec]:
    """Turn one config entry into layer specs; ``parallel`` expands to markers plus its join."""
    kind = layer.kind
    if kind == "dense":
        return [Dense(layer.units, bias=True if layer.bias is None else layer.bias)]
    if kind == "conv2d":
        return [Conv2d(layer.out_channels, **_conv_kwargs(layer))]
    if kind == "transpose_conv2d":
        return [TransposeConv2d(layer.out_channels, **_conv_kwargs(layer))]
    if kind == "upsampling2d":
        size = layer.size if layer.size is not None else 2.0
        return [UpSampling2D(size, interpolation=layer.interpolation or "nearest")]
    if kind == "resize2d":
        size = layer.size if isinstance(layer.size, list) else [layer.size, layer.size]
        return [Resize2D([int(s) for s in size], interpolation=layer.interpolation or "nearest")]
    if kind == "dropout":
        return [Dropout(layer.rate)]
    if kind == "activation":
        return [Activation(layer.activation)]
    if kind == "reshape":
        return [Reshape(layer.shape)]
    if kind == "flatten":
        return [Flatten()]
    if kind == "branch_open":
        return [BranchOpen()]
    if kind == "branch_close":
        return [BranchClose()]
    if kind == "concat":
        return [Concat(axis=1 if layer.axis is None else layer.axis, arity=layer.arity)]
    if kind == "add":
        return [Add(arity=layer.arity)]
    if kind == "parallel":
        chains = [build_layers_from(chain) for chain in layer.branches or []]
        joins = build_layer(layer.join)
        return branch(*chains, join=joins[0])
    raise DSLValidationError(f"Unsupported layer kind '{kind}'")


def build_layers_from(layers: List[LayerConfig]) -> List[LayerSpec]:
    specs: List[LayerSpec] = []
    for layer in layers:
        specs.extend(build_layer(layer))
    return specs


def build_layers(cfg: DSLConfig) -> List[LayerSpec]:
    return build_layers_from(cfg.model.layers)


def _optimizer_factory(cfg: OptimConfig):
    def factory(parameters):
        return build_optimizer(
            parameters,
            cfg.kind,
            lr=cfg.lr,
            weight_decay=cfg.weight_decay,
            momentum=cfg.momentum,
            betas=cfg.betas,
        )

    return factory


def build_scope(cfg: DSLConfig) -> Scope:
    spec = cfg.model
    return Scope(
        name="model",
        device=torch.device(spec.device) if spec.device else None,
        dtype=DTYPES[spec.dtype] if spec.dtype else None,
        seed=spec.seed,
    )


@dataclass
class BuildMetadata:
    input_shape: Tuple[Optional[int], ...]
    output_shape: Tuple[Optional[int], ...]
    n_layers: int
    n_params: int
    extras: Optional[Dict[str, object]] = None


def build_model(
    cfg: DSLConfig, *, restore: Optional[bool] = None
) -> Tuple[Model, BuildMetadata]:
    train = cfg.train
    checkpoint = train.checkpoint
    kwargs: dict = {}
    if checkpoint is not None:
        kwargs["path"] = checkpoint.path
        kwargs["checkpoint_every"] = checkpoint.every
    do_restore = restore if restore is not None else bool(checkpoint and checkpoint.restore)

    layers = build_layers(cfg)
    model = compile_model(
        layers,
        build_loss(train.loss),
        _optimizer_factory(train.optimizer),
        cfg.model.input_shape,
        restore=do_restore,
        scope=build_scope(cfg),
        **kwargs,
    )
    extras = summarize_layers(layers)
    extras["n_params"] = model.compiled.n_params
    meta = BuildMetadata(
        input_shape=model.input_shape,
        output_shape=model.output_shape,
        n_layers=len(layers),
        n_params=model.compiled.n_params,
        extras=extras,
    )
    return model, meta
