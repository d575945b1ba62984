from __future__ import annotations

from typing import Optional, Sequence

import torch
from torch import nn


def build_optimizer(
    parameters: Sequence[nn.Parameter],
    kind: str = "adam",
    *,
    lr: float = 1e-3,
    weight_decay: float = 0.0,
    momentum: float = 0.0,
    betas: Optional[Sequence[float]] = None,
) -> torch.optim.Optimizer:
    # keep the collected order: optimizer state is keyed by parameter position
    params = list(parameters)
    if not params:
        raise ValueError("The model has no trainable parameters to optimize")
    kind = kind.lower()
    if kind == "sgd":
        return torch.optim.SGD(params, lr=lr, momentum=momentum, weight_decay=weight_decay)
    if kind == "adam":
        return torch.optim.Adam(params, lr=lr, betas=tuple(betas or (0.9, 0.999)), weight_decay=weight_decay)
    if kind == "adamw":
        return torch.optim.AdamW(params, lr=lr, betas=tuple(betas or (0.9, 0.999)), weight_decay=weight_decay)
    if kind == "rmsprop":
        return torch.optim.RMSprop(params, lr=lr, momentum=momentum, weight_decay=weight_decay)
    raise ValueError(f"Unsupported optimizer '{kind}'")
