from .branches import BranchStack, Frame
from .compile import (
    BranchGroup,
    CompiledGraph,
    Compiler,
    ExecutableGraph,
    compile_layers,
    make_branch,
)
from .shapes import ShapeState

__all__ = [
    "BranchGroup",
    "BranchStack",
    "CompiledGraph",
    "Compiler",
    "ExecutableGraph",
    "Frame",
    "ShapeState",
    "compile_layers",
    "make_branch",
]
