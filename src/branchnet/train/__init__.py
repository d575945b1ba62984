from .checkpoint import load_checkpoint, save_checkpoint
from .losses import build_loss
from .model import FitResult, Model, compile_model
from .optim import build_optimizer

__all__ = [
    "FitResult",
    "Model",
    "build_loss",
    "build_optimizer",
    "compile_model",
    "load_checkpoint",
    "save_checkpoint",
]
