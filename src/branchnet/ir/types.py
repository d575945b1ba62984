from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Literal, Optional, Tuple


Shape = Tuple[Optional[int], ...]  # None marks an unknown (batch) dimension


def as_shape(dims) -> Shape:
    return tuple(None if d is None or d < 0 else int(d) for d in dims)


def format_shape(shape: Shape) -> str:
    return "[" + ", ".join("batch" if d is None else str(d) for d in shape) + "]"


@dataclass
class Node:
    position: int
    kind: Literal["plain", "open", "close", "join"]
    description: str
    depth: int
    in_shapes: List[Shape] = field(default_factory=list)
    out_shape: Optional[Shape] = None
    n_params: int = 0


Trace = List[Node]
