from branchnet.compiler import CompiledGraph, ExecutableGraph, compile_layers
from branchnet.errors import (
    BranchNetError,
    CheckpointError,
    CompileError,
    DSLValidationError,
    ShapeError,
    StructuralError,
)
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
    Reshape,
    Resize2D,
    Scope,
    TransposeConv2d,
    UpSampling2D,
    branch,
)
from branchnet.train import FitResult, Model, compile_model

__version__ = "0.1.0"

__all__ = [
    "Activation",
    "Add",
    "BranchClose",
    "BranchNetError",
    "BranchOpen",
    "CheckpointError",
    "CompileError",
    "CompiledGraph",
    "Concat",
    "Conv2d",
    "DSLValidationError",
    "Dense",
    "Dropout",
    "ExecutableGraph",
    "FitResult",
    "Flatten",
    "Model",
    "Reshape",
    "Resize2D",
    "Scope",
    "ShapeError",
    "StructuralError",
    "TransposeConv2d",
    "UpSampling2D",
    "branch",
    "compile_layers",
    "compile_model",
]
