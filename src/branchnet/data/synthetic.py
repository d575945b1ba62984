from __future__ import annotations

import math
from typing import Optional, Sequence, Tuple

import torch


def _concrete(shape: Sequence[Optional[int]], samples: int) -> Tuple[int, ...]:
    rest = tuple(shape[1:])
    if any(d is None for d in rest):
        raise ValueError(f"Cannot sample data for a shape with unknown dimensions: {list(shape)}")
    return (samples,) + rest


def create_synthetic_dataset(
    input_shape: Sequence[Optional[int]],
    output_shape: Sequence[Optional[int]],
    samples: int = 64,
    *,
    task: str = "regression",
    seed: int = 0,
) -> Tuple[torch.Tensor, torch.Tensor]:
    """Random inputs with targets from a fixed random linear map, so a model can fit them."""
    if samples <= 0:
        raise ValueError("samples must be positive")
    generator = torch.Generator().manual_seed(seed)
    x = torch.randn(_concrete(input_shape, samples), generator=generator)
    out = _concrete(output_shape, samples)
    in_features = math.prod(x.shape[1:])
    out_features = math.prod(out[1:])
    projection = torch.randn(in_features, out_features, generator=generator) / math.sqrt(in_features)
    y = (x.reshape(samples, -1) @ projection).reshape(out)
    if task == "regression":
        return x, y
    if task == "classification":
        if len(out) != 2:
            raise ValueError("classification targets need a [batch, classes] output shape")
        return x, y.argmax(dim=1)
    raise ValueError(f"Unsupported task '{task}'")
