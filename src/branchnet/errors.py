from __future__ import annotations

from typing import Optional


class BranchNetError(Exception):
    """Base class for all errors raised by branchnet."""


class CompileError(BranchNetError):
    def __init__(
        self,
        message: str,
        *,
        position: Optional[int] = None,
        layer: Optional[str] = None,
    ) -> None:
        self.message = message
        self.position = position
        self.layer = layer
        super().__init__(self._format())

    def _format(self) -> str:
        if self.position is None:
            return self.message
        where = f"layer #{self.position}"
        if self.layer:
            where += f" ({self.layer})"
        return f"{where}: {self.message}"

    def at(self, position: int, layer: str) -> "CompileError":
        """Return a copy of this error located at ``position``."""
        if self.position is not None:
            return self
        return type(self)(self.message, position=position, layer=layer)


class ShapeError(CompileError):
    pass


class StructuralError(CompileError):
    pass


class CheckpointError(BranchNetError):
    pass


class DSLValidationError(BranchNetError):
    pass
