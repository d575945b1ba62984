from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from torch import nn

Step = Tuple[str, nn.Module]
Chain = List[Step]


@dataclass
class Frame:
    """One branch group: sibling chains opened since the group started."""

    parent_index: int
    position: int
    layer: str = ""
    chains: List[Chain] = field(default_factory=list)
    slots: List[int] = field(default_factory=list)
    open: bool = False

    @property
    def awaiting_join(self) -> bool:
        return bool(self.chains) and not self.open


class BranchStack:
    def __init__(self) -> None:
        self._frames: List[Frame] = []

    def __len__(self) -> int:
        return len(self._frames)

    @property
    def top(self) -> Optional[Frame]:
        return self._frames[-1] if self._frames else None

    @property
    def awaiting_join(self) -> bool:
        top = self.top
        return top is not None and top.awaiting_join

    def push(self, parent_index: int, position: int, layer: str = "") -> Frame:
        frame = Frame(parent_index=parent_index, position=position, layer=layer)
        self._frames.append(frame)
        return frame

    def pop(self) -> Frame:
        if not self._frames:
            raise IndexError("pop from empty branch stack")
        return self._frames.pop()

    def start_branch(self, slot: int) -> Chain:
        frame = self._frames[-1]
        if frame.open:
            raise RuntimeError("the current branch must be closed before a sibling starts")
        chain: Chain = []
        frame.chains.append(chain)
        frame.slots.append(slot)
        frame.open = True
        return chain

    def close_branch(self) -> None:
        self._frames[-1].open = False

    def active_chain(self) -> Optional[Chain]:
        """The chain of the innermost open branch, or ``None`` on the trunk."""
        top = self.top
        if top is None:
            return None
        if not top.open:
            raise RuntimeError("no branch is open in the innermost group")
        return top.chains[-1]
