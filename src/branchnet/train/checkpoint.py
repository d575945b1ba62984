from __future__ import annotations

import pickle
from pathlib import Path
from typing import Optional, Sequence, Union

import torch
from torch import nn

from branchnet.errors import CheckpointError

CHECKPOINT_FORMAT = 1


def save_checkpoint(
    path: Union[str, Path],
    parameters: Sequence[nn.Parameter],
    optimizer: Optional[torch.optim.Optimizer] = None,
    epoch: int = 0,
) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    payload = {
        "format": CHECKPOINT_FORMAT,
        "epoch": int(epoch),
        "parameters": [p.detach().cpu().clone() for p in parameters],
        "optimizer": optimizer.state_dict() if optimizer is not None else None,
    }
    torch.save(payload, path)
    return path


def load_checkpoint(
    path: Union[str, Path],
    parameters: Sequence[nn.Parameter],
    optimizer: Optional[torch.optim.Optimizer] = None,
) -> int:
    """Restore ``parameters`` (and optimizer state) in place; returns the saved epoch."""
    path = Path(path)
    if not path.exists():
        raise CheckpointError(f"Checkpoint '{path}' does not exist")
    try:
        payload = torch.load(path, map_location="cpu", weights_only=True)
    except (OSError, RuntimeError, EOFError, ValueError, pickle.UnpicklingError) as exc:
        raise CheckpointError(f"Checkpoint '{path}' could not be read: {exc}") from exc

    if not isinstance(payload, dict) or payload.get("format") != CHECKPOINT_FORMAT:
        raise CheckpointError(f"Checkpoint '{path}' has an unknown format")
    saved = payload.get("parameters") or []
    if len(saved) != len(parameters):
        raise CheckpointError(
            f"Checkpoint '{path}' holds {len(saved)} parameters but the model has {len(parameters)}"
        )
    for index, (param, value) in enumerate(zip(parameters, saved)):
        if tuple(value.shape) != tuple(param.shape):
            raise CheckpointError(
                f"Checkpoint parameter {index} has shape {tuple(value.shape)}, "
                f"expected {tuple(param.shape)}"
            )

    with torch.no_grad():
        for param, value in zip(parameters, saved):
            param.copy_(value.to(device=param.device, dtype=param.dtype))

    state = payload.get("optimizer")
    if optimizer is not None and state is not None:
        try:
            optimizer.load_state_dict(state)
        except (ValueError, KeyError) as exc:
            raise CheckpointError(f"Optimizer state in '{path}' does not match: {exc}") from exc
    return int(payload.get("epoch", 0))
