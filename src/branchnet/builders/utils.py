from __future__ import annotations

from collections import Counter
from typing import Dict, List

from branchnet.layers.base import LayerSpec


def summarize_layers(layers: List[LayerSpec]) -> Dict[str, object]:
    """
    Produce lightweight architecture metadata (used for logging and analysis).
    """
    counter: Counter = Counter()
    groups = 0
    branches = 0
    depth = 0
    max_depth = 0
    awaiting_join = False

    for layer in layers:
        if layer.is_branch_marker():
            if layer.opens_branch():
                branches += 1
                if not awaiting_join:
                    groups += 1
                    depth += 1
                    max_depth = max(max_depth, depth)
                awaiting_join = False
            else:
                awaiting_join = True
            continue
        if layer.is_join():
            depth = max(depth - 1, 0)
            awaiting_join = False
        counter[type(layer).__name__] += 1

    return {
        "layer_counts": dict(counter),
        "branch_groups": groups,
        "branches": branches,
        "max_depth": max_depth,
    }
