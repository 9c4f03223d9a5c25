"""Data conversion transforms for detection images."""

from __future__ import annotations

from typing import Any

import torch
from torchvision.transforms import v2


class ToFloat32Tensor(v2.Transform):
    """Convert PIL images or integer tensors to float32 RGB tensors.

    Wraps ``v2.ToImage`` + ``v2.ToDtype`` and normalizes the channel count:
    grayscale is broadcast to three channels and an alpha channel is dropped.

    Args:
        scale: If ``True`` (default), scale integer pixel values into
            ``[0.0, 1.0]``.
    """

    def __init__(self, scale: bool = True) -> None:
        super().__init__()
        self._to_image = v2.ToImage()
        self._to_dtype = v2.ToDtype(torch.float32, scale=scale)

    def forward(self, *inputs: Any) -> Any:
        img = self._to_dtype(self._to_image(inputs[0]))
        if img.shape[-3] == 1:
            img = img.expand(3, -1, -1)
        elif img.shape[-3] == 4:
            img = img[:3]
        return img.as_subclass(torch.Tensor)
