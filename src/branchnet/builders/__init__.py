from .layers_torch import BuildMetadata, build_layer, build_layers, build_model, build_scope
from .utils import summarize_layers

__all__ = [
    "BuildMetadata",
    "build_layer",
    "build_layers",
    "build_model",
    "build_scope",
    "summarize_layers",
]
