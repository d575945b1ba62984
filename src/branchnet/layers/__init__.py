from .activations import ACTIVATIONS, Activation
from .base import (
    BranchClose,
    BranchOpen,
    BuildResult,
    Join,
    LayerSpec,
    Plain,
    Scope,
    branch,
    dim_check,
)
from .conv2d import Conv2d, Resize2D, TransposeConv2d, UpSampling2D
from .dense import Dense
from .dropout import Dropout
from .joins import Add, Concat
from .reshape import Flatten, Reshape

__all__ = [
    "ACTIVATIONS",
    "Activation",
    "Add",
    "BranchClose",
    "BranchOpen",
    "BuildResult",
    "Concat",
    "Conv2d",
    "Dense",
    "Dropout",
    "Flatten",
    "Join",
    "LayerSpec",
    "Plain",
    "Reshape",
    "Resize2D",
    "Scope",
    "TransposeConv2d",
    "UpSampling2D",
    "branch",
    "dim_check",
]
