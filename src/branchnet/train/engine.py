"""Thin execution layer between ``Model`` and torch."""

from __future__ import annotations

from typing import Iterator, List, Optional, Sequence, Tuple

import torch
from torch import nn


def run_forward(graph: nn.Module, inputs: torch.Tensor, *, training: bool) -> torch.Tensor:
    graph.train(training)
    with torch.set_grad_enabled(training):
        return graph(inputs)


def place_batch(
    tensor: torch.Tensor,
    *,
    device: Optional[torch.device] = None,
    dtype: Optional[torch.dtype] = None,
) -> torch.Tensor:
    """Move a batch next to the parameters; integer targets keep their dtype."""
    if dtype is not None and tensor.is_floating_point():
        return tensor.to(device=device, dtype=dtype)
    if device is not None:
        return tensor.to(device=device)
    return tensor


def compute_gradients(
    loss: torch.Tensor, parameters: Sequence[nn.Parameter]
) -> List[Optional[torch.Tensor]]:
    """Gradients of ``loss`` in the order of ``parameters``; ``None`` for frozen or unused ones."""
    trainable = [p for p in parameters if p.requires_grad]
    grads = iter(torch.autograd.grad(loss, trainable, allow_unused=True)) if trainable else iter(())
    return [next(grads) if p.requires_grad else None for p in parameters]


def apply_update(
    optimizer: torch.optim.Optimizer,
    parameters: Sequence[nn.Parameter],
    gradients: Sequence[Optional[torch.Tensor]],
) -> None:
    if len(parameters) != len(gradients):
        raise ValueError("one gradient per parameter is required")
    for param, grad in zip(parameters, gradients):
        param.grad = None if grad is None else grad.detach()
    optimizer.step()


def iter_batches(
    inputs: torch.Tensor,
    targets: Optional[torch.Tensor],
    batch_size: Optional[int] = None,
    *,
    shuffle: bool = False,
    generator: Optional[torch.Generator] = None,
) -> Iterator[Tuple[torch.Tensor, Optional[torch.Tensor]]]:
    total = inputs.size(0)
    if targets is not None and targets.size(0) != total:
        raise ValueError(
            f"inputs and targets disagree on sample count ({total} vs {targets.size(0)})"
        )
    if batch_size is not None and batch_size <= 0:
        raise ValueError("batch_size must be positive")
    size = batch_size or max(total, 1)
    if shuffle:
        order = torch.randperm(total, generator=generator)
    else:
        order = torch.arange(total)
    for start in range(0, total, size):
        idx = order[start : start + size].to(inputs.device)
        yield inputs[idx], (None if targets is None else targets[idx.to(targets.device)])
