from __future__ import annotations

from typing import List, Literal, Optional, Union

from pydantic import BaseModel, Field

LayerKind = Literal[
    "dense",
    "conv2d",
    "transpose_conv2d",
    "upsampling2d",
    "resize2d",
    "dropout",
    "activation",
    "reshape",
    "flatten",
    "branch_open",
    "branch_close",
    "concat",
    "add",
    "parallel",
]

JOIN_KINDS = ("concat", "add")
MARKER_KINDS = ("branch_open", "branch_close")


class LayerConfig(BaseModel):
    kind: LayerKind
    # dense
    units: Optional[int] = Field(default=None, ge=1)
    bias: Optional[bool] = None
    # conv2d / transpose_conv2d
    out_channels: Optional[int] = Field(default=None, ge=1)
    kernel: Optional[Union[int, List[int]]] = None
    strides: Optional[Union[int, List[int]]] = None
    padding: Optional[Literal["same", "valid"]] = None
    dilations: Optional[Union[int, List[int]]] = None
    # upsampling2d / resize2d
    size: Optional[Union[float, List[float]]] = None
    interpolation: Optional[Literal["area", "bicubic", "bilinear", "nearest"]] = None
    # dropout
    rate: Optional[float] = Field(default=None, ge=0.0, lt=1.0)
    # activation
    activation: Optional[
        Literal["relu", "sigmoid", "tanh", "softmax", "gelu", "silu", "elu", "leaky_relu"]
    ] = None
    # reshape
    shape: Optional[List[int]] = None
    # concat / add
    axis: Optional[int] = None
    arity: Optional[int] = Field(default=None, ge=1)
    # parallel
    branches: Optional[List[List[LayerConfig]]] = None
    join: Optional[LayerConfig] = None


class ModelSpec(BaseModel):
    input_shape: List[Optional[int]]
    layers: List[LayerConfig]
    seed: Optional[int] = None
    dtype: Optional[Literal["float32", "float64"]] = None
    device: Optional[str] = None


class OptimConfig(BaseModel):
    kind: Literal["sgd", "adam", "adamw", "rmsprop"] = "adam"
    lr: float = Field(default=1e-3, gt=0.0)
    weight_decay: float = Field(default=0.0, ge=0.0)
    momentum: float = Field(default=0.0, ge=0.0)
    betas: Optional[List[float]] = None


class CheckpointConfig(BaseModel):
    path: str = "checkpoints/model.ckpt"
    restore: bool = False
    every: Optional[int] = Field(default=None, ge=1)


class TrainConfig(BaseModel):
    loss: Literal["mse", "mae", "cross_entropy", "bce", "bce_logits", "huber"] = "mse"
    optimizer: OptimConfig = Field(default_factory=OptimConfig)
    epochs: int = Field(default=1, ge=1)
    batch_size: Optional[int] = Field(default=None, ge=1)
    shuffle: bool = False
    checkpoint: Optional[CheckpointConfig] = None


class DSLConfig(BaseModel):
    model: ModelSpec
    train: TrainConfig = Field(default_factory=TrainConfig)


LayerConfig.model_rebuild()
