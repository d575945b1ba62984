from __future__ import annotations

from typing import Callable, Dict

from torch import nn

LOSSES: Dict[str, Callable[[], nn.Module]] = {
    "mse": nn.MSELoss,
    "mae": nn.L1Loss,
    "cross_entropy": nn.CrossEntropyLoss,
    "bce": nn.BCELoss,
    "bce_logits": nn.BCEWithLogitsLoss,
    "huber": nn.HuberLoss,
}


def build_loss(name: str) -> nn.Module:
    key = name.lower()
    if key not in LOSSES:
        raise ValueError(f"Unsupported loss '{name}'")
    return LOSSES[key]()
