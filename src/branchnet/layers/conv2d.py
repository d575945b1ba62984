"""Image layers on NCHW tensors: convolution, transposed convolution and resizing.

Padding follows the usual "same"/"valid" convention: with "same" the output
spatial size is ``ceil(in / stride)`` (or ``in * stride`` when transposed),
with "valid" no padding is applied at all.
"""

from __future__ import annotations

from typing import Literal, Optional, Tuple

import torch
import torch.nn.functional as F
from torch import nn

from branchnet.errors import ShapeError

from .base import BuildResult, Plain, Scope, dim_check

Padding = Literal["same", "valid"]
Interpolation = Literal["area", "bicubic", "bilinear", "nearest"]

INTERPOLATIONS = ("area", "bicubic", "bilinear", "nearest")


def _pair(value) -> Tuple[int, int]:
    if isinstance(value, int):
        return (value, value)
    first, second = value
    return (int(first), int(second))


def _check_padding(padding: str) -> str:
    padding = padding.lower()
    if padding not in ("same", "valid"):
        raise ValueError(f"Unsupported padding '{padding}' (expected 'same' or 'valid')")
    return padding


def _check_interpolation(interpolation: str) -> str:
    interpolation = interpolation.lower()
    if interpolation not in INTERPOLATIONS:
        raise ValueError(f"Unsupported interpolation '{interpolation}'")
    return interpolation


def _effective_kernel(kernel: int, dilation: int) -> int:
    return (kernel - 1) * dilation + 1


def _same_pad(size: int, kernel: int, stride: int) -> Tuple[int, int]:
    out = (size + stride - 1) // stride
    total = max((out - 1) * stride + kernel - size, 0)
    return total // 2, total - total // 2


class SamePadConv2d(nn.Module):
    def __init__(
        self,
        in_channels: int,
        out_channels: int,
        kernel: Tuple[int, int],
        stride: Tuple[int, int],
        dilation: Tuple[int, int],
        padding: str,
    ) -> None:
        super().__init__()
        self.conv = nn.Conv2d(in_channels, out_channels, kernel, stride=stride, dilation=dilation)
        self.padding = padding
        self.effective = (
            _effective_kernel(kernel[0], dilation[0]),
            _effective_kernel(kernel[1], dilation[1]),
        )

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        if self.padding == "same":
            top, bottom = _same_pad(x.size(2), self.effective[0], self.conv.stride[0])
            left, right = _same_pad(x.size(3), self.effective[1], self.conv.stride[1])
            x = F.pad(x, (left, right, top, bottom))
        return self.conv(x)


class SameCropConvTranspose2d(nn.Module):
    def __init__(
        self,
        in_channels: int,
        out_channels: int,
        kernel: Tuple[int, int],
        stride: Tuple[int, int],
        dilation: Tuple[int, int],
        padding: str,
    ) -> None:
        super().__init__()
        self.conv = nn.ConvTranspose2d(
            in_channels, out_channels, kernel, stride=stride, dilation=dilation
        )
        self.padding = padding

    @staticmethod
    def _fit(x: torch.Tensor, dim: int, target: int) -> torch.Tensor:
        size = x.size(dim)
        if size > target:
            start = (size - target) // 2
            return x.narrow(dim, start, target)
        if size < target:
            missing = target - size
            pad = [0, 0, 0, 0]
            # F.pad lists the last dimension first
            slot = 0 if dim == 3 else 2
            pad[slot + 1] = missing
            return F.pad(x, tuple(pad))
        return x

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        height, width = x.size(2), x.size(3)
        y = self.conv(x)
        if self.padding == "same":
            y = self._fit(y, 2, height * self.conv.stride[0])
            y = self._fit(y, 3, width * self.conv.stride[1])
        return y


class Conv2d(Plain):
    def __init__(
        self,
        out_channels: int,
        kernel=(3, 3),
        strides=(1, 1),
        padding: Padding = "same",
        dilations=(1, 1),
    ) -> None:
        super().__init__()
        self.in_channels: Optional[int] = None
        self.out_channels = out_channels
        self.kernel = _pair(kernel)
        self.strides = _pair(strides)
        self.padding = _check_padding(padding)
        self.dilations = _pair(dilations)

    def describe(self) -> str:
        return (
            f"{type(self).__name__}(in:{self.in_channels}, out:{self.out_channels}, "
            f"kernel:{list(self.kernel)}, strides:{list(self.strides)})"
        )

    def _spatial(self, size: Optional[int], axis: int) -> Optional[int]:
        if size is None:
            return None
        stride = self.strides[axis]
        if self.padding == "same":
            return (size + stride - 1) // stride
        effective = _effective_kernel(self.kernel[axis], self.dilations[axis])
        out = (size - effective + stride) // stride
        if out <= 0:
            raise ShapeError(
                f"Kernel of {self} does not fit spatial size {size} with 'valid' padding"
            )
        return out

    def _check_input(self, in_shape) -> int:
        dim_check(self, in_shape, 4)
        if in_shape[1] is None:
            raise ShapeError(f"The layer {self} needs a known channel dimension")
        return in_shape[1]

    def _build(self, scope: Scope, in_shape):
        self.in_channels = self._check_input(in_shape)
        out_shape = (
            in_shape[0],
            self.out_channels,
            self._spatial(in_shape[2], 0),
            self._spatial(in_shape[3], 1),
        )
        module = SamePadConv2d(
            self.in_channels,
            self.out_channels,
            self.kernel,
            self.strides,
            self.dilations,
            self.padding,
        )
        return BuildResult(out_shape, module)


class TransposeConv2d(Conv2d):
    def _spatial(self, size: Optional[int], axis: int) -> Optional[int]:
        if size is None:
            return None
        stride = self.strides[axis]
        if self.padding == "same":
            return size * stride
        effective = _effective_kernel(self.kernel[axis], self.dilations[axis])
        return size * stride + effective - stride

    def _build(self, scope: Scope, in_shape):
        self.in_channels = self._check_input(in_shape)
        out_shape = (
            in_shape[0],
            self.out_channels,
            self._spatial(in_shape[2], 0),
            self._spatial(in_shape[3], 1),
        )
        module = SameCropConvTranspose2d(
            self.in_channels,
            self.out_channels,
            self.kernel,
            self.strides,
            self.dilations,
            self.padding,
        )
        return BuildResult(out_shape, module)


class Interpolate(nn.Module):
    def __init__(
        self,
        mode: str,
        size: Optional[Tuple[int, int]] = None,
        scale: Optional[Tuple[float, float]] = None,
    ) -> None:
        super().__init__()
        self.mode = mode
        self.size = size
        self.scale = scale

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        size = self.size
        if size is None:
            size = (int(x.size(2) * self.scale[0]), int(x.size(3) * self.scale[1]))
        align = False if self.mode in ("bilinear", "bicubic") else None
        return F.interpolate(x, size=size, mode=self.mode, align_corners=align)


class UpSampling2D(Plain):
    """Resize by a (height, width) multiple of the input size."""

    def __init__(self, size=(2.0, 2.0), interpolation: Interpolation = "nearest") -> None:
        super().__init__()
        first, second = (size, size) if isinstance(size, (int, float)) else size
        self.size = (float(first), float(second))
        if min(self.size) <= 0:
            raise ValueError("UpSampling2D size multiples must be positive")
        self.interpolation = _check_interpolation(interpolation)

    def describe(self) -> str:
        return f"UpSampling2D(size:{list(self.size)}, interpolation:{self.interpolation})"

    def _build(self, scope: Scope, in_shape):
        dim_check(self, in_shape, 4)
        height, width = in_shape[2], in_shape[3]
        out_shape = (
            in_shape[0],
            in_shape[1],
            None if height is None else int(height * self.size[0]),
            None if width is None else int(width * self.size[1]),
        )
        return BuildResult(out_shape, Interpolate(self.interpolation, scale=self.size))


class Resize2D(Plain):
    """Resize to a fixed (height, width)."""

    def __init__(self, size, interpolation: Interpolation = "nearest") -> None:
        super().__init__()
        self.size = _pair(size)
        if min(self.size) <= 0:
            raise ValueError("Resize2D size must be positive")
        self.interpolation = _check_interpolation(interpolation)

    def describe(self) -> str:
        return f"Resize2D(size:{list(self.size)}, interpolation:{self.interpolation})"

    def _build(self, scope: Scope, in_shape):
        dim_check(self, in_shape, 4)
        out_shape = (in_shape[0], in_shape[1], self.size[0], self.size[1])
        return BuildResult(out_shape, Interpolate(self.interpolation, size=self.size))
