from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Union

import torch
from torch import nn

from branchnet.compiler import CompiledGraph, compile_layers
from branchnet.ir.types import Shape, format_shape
from branchnet.layers.base import LayerSpec, Scope

from .checkpoint import load_checkpoint, save_checkpoint
from .engine import apply_update, compute_gradients, iter_batches, place_batch, run_forward
from .losses import build_loss
from .optim import build_optimizer

LossFn = Callable[[torch.Tensor, torch.Tensor], torch.Tensor]
OptimFactory = Callable[[List[nn.Parameter]], torch.optim.Optimizer]

DEFAULT_CHECKPOINT = "checkpoints/model.ckpt"


@dataclass
class FitResult:
    loss_history: list[float]
    epochs: int
    batches: int
    elapsed: float
    metadata: dict


class Model:
    """A compiled graph bound to its loss, optimizer and checkpoint location.

    ``fit`` and ``eval``/``predict`` share one lock, so a forward pass never
    overlaps an optimizer update of the same parameters.
    """

    def __init__(
        self,
        compiled: CompiledGraph,
        loss: LossFn,
        optimizer: Optional[torch.optim.Optimizer],
        *,
        path: Union[str, Path] = DEFAULT_CHECKPOINT,
        restore: bool = False,
        checkpoint_every: Optional[int] = None,
    ) -> None:
        if checkpoint_every is not None and checkpoint_every <= 0:
            raise ValueError("checkpoint_every must be positive")
        self.compiled = compiled
        self.graph = compiled.graph
        self.parameters: List[nn.Parameter] = list(compiled.parameters)
        self.loss = loss
        self.optimizer = optimizer
        self.path = Path(path)
        self.checkpoint_every = checkpoint_every
        self.epoch = 0
        self._lock = threading.RLock()
        if restore:
            self.epoch = load_checkpoint(self.path, self.parameters, self.optimizer)

    @property
    def input_shape(self) -> Shape:
        return self.compiled.input_shape

    @property
    def output_shape(self) -> Shape:
        return self.compiled.output_shape

    def fit(
        self,
        inputs: torch.Tensor,
        targets: torch.Tensor,
        epochs: int = 1,
        *,
        batch_size: Optional[int] = None,
        shuffle: bool = False,
        generator: Optional[torch.Generator] = None,
        verbose: bool = False,
    ) -> FitResult:
        if epochs <= 0:
            raise ValueError("epochs must be positive")
        if self.optimizer is None:
            raise RuntimeError("The model has no trainable parameters to fit")
        if inputs.size(0) == 0:
            raise ValueError("fit needs at least one sample")

        loss_history: list[float] = []
        batches = 0
        start = time.perf_counter()
        for _ in range(epochs):
            total = 0.0
            seen = 0
            for x, y in iter_batches(inputs, targets, batch_size, shuffle=shuffle, generator=generator):
                x, y = self._place(x), self._place(y)
                # autograd stays on under a caller's no_grad
                with self._lock, torch.enable_grad():
                    predictions = run_forward(self.graph, x, training=True)
                    loss = self.loss(predictions, y)
                    gradients = compute_gradients(loss, self.parameters)
                    apply_update(self.optimizer, self.parameters, gradients)
                total += float(loss.detach().cpu().item()) * x.size(0)
                seen += x.size(0)
                batches += 1
            self.epoch += 1
            epoch_loss = total / max(seen, 1)
            loss_history.append(epoch_loss)
            if verbose:
                print(f"[branchnet] epoch {self.epoch}: loss={epoch_loss:.6f}", flush=True)
            if self.checkpoint_every and self.epoch % self.checkpoint_every == 0:
                saved = self.save()
                if verbose:
                    print(f"[branchnet] checkpoint written to {saved}", flush=True)

        elapsed = max(time.perf_counter() - start, 1e-6)
        metadata = {
            "n_params": self.compiled.n_params,
            "input_shape": format_shape(self.input_shape),
            "output_shape": format_shape(self.output_shape),
        }
        if loss_history:
            metadata.update(
                {
                    "loss_start": loss_history[0],
                    "loss_final": loss_history[-1],
                    "loss_delta": loss_history[0] - loss_history[-1],
                }
            )
        return FitResult(
            loss_history=loss_history,
            epochs=epochs,
            batches=batches,
            elapsed=elapsed,
            metadata=metadata,
        )

    def eval(self, inputs: torch.Tensor, targets: torch.Tensor, *, batch_size: Optional[int] = None) -> float:
        """Mean loss over all samples; ``nan`` when there are none."""
        total = 0.0
        seen = 0
        for x, y in iter_batches(inputs, targets, batch_size):
            x, y = self._place(x), self._place(y)
            with self._lock:
                predictions = run_forward(self.graph, x, training=False)
                loss = self.loss(predictions, y)
            total += float(loss.cpu().item()) * x.size(0)
            seen += x.size(0)
        if seen == 0:
            return float("nan")
        return total / seen

    def predict(self, inputs: torch.Tensor, *, batch_size: Optional[int] = None) -> torch.Tensor:
        outputs = []
        for x, _ in iter_batches(inputs, None, batch_size):
            x = self._place(x)
            with self._lock:
                outputs.append(run_forward(self.graph, x, training=False))
        if not outputs:
            # zero samples: run the empty batch through so the trailing dims are right
            with self._lock:
                return run_forward(self.graph, self._place(inputs), training=False)
        return torch.cat(outputs, dim=0)

    def _place(self, tensor: torch.Tensor) -> torch.Tensor:
        return place_batch(tensor, device=self.compiled.device, dtype=self.compiled.dtype)

    def save(self, path: Optional[Union[str, Path]] = None) -> Path:
        with self._lock:
            return save_checkpoint(path or self.path, self.parameters, self.optimizer, self.epoch)

    def summary(self) -> str:
        lines = []
        for node in self.compiled.nodes:
            indent = "  " * node.depth
            out = format_shape(node.out_shape) if node.out_shape is not None else "-"
            lines.append(f"{node.position:>3} {indent}{node.description} -> {out}")
        lines.append(f"trainable parameters: {self.compiled.n_params}")
        return "\n".join(lines)

    def __str__(self) -> str:
        return self.summary()


def _resolve_loss(loss: Union[str, LossFn]) -> LossFn:
    return build_loss(loss) if isinstance(loss, str) else loss


def _resolve_optimizer(
    optim: Union[str, OptimFactory, None], parameters: List[nn.Parameter]
) -> Optional[torch.optim.Optimizer]:
    if not parameters:
        return None
    if optim is None or isinstance(optim, str):
        return build_optimizer(parameters, optim or "adam")
    return optim(parameters)


def compile_model(
    layers: Sequence[LayerSpec],
    loss: Union[str, LossFn],
    optim: Union[str, OptimFactory, None],
    input_shape: Sequence,
    *,
    path: Union[str, Path] = DEFAULT_CHECKPOINT,
    restore: bool = False,
    scope: Optional[Scope] = None,
    checkpoint_every: Optional[int] = None,
) -> Model:
    """Compile ``layers`` and bind the result to a loss and an optimizer.

    Example::

        layers = [Dense(10), Activation("softmax")]
        model = compile_model(layers, "mse", "adam", (None, 5))
        model.fit(x, y, epochs=5)
    """
    compiled = compile_layers(layers, input_shape, scope=scope)
    optimizer = _resolve_optimizer(optim, compiled.parameters)
    return Model(
        compiled,
        _resolve_loss(loss),
        optimizer,
        path=path,
        restore=restore,
        checkpoint_every=checkpoint_every,
    )
