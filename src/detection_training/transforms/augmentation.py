"""Image augmentation engines and the pipeline stage that drives them.

Annotations are kept in normalized coordinates, so the bundled augmenter only
applies operations that leave them valid: photometric changes and resizing of
the whole image.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable, Sequence

import torch
from loguru import logger
from torchvision.transforms import v2

from detection_training.config import DetectionConfig
from detection_training.streams.base import Transform
from detection_training.transforms.conversion import ToFloat32Tensor
from detection_training.types import DataBatch, InputBatch, LabeledImage

# Ratio between network input size and final feature map size (darknet-yolo).
DEFAULT_DOWNSAMPLE = 32


class ImageAugmenter(ABC):
    """Turns a batch of labeled images into one dense image tensor."""

    @abstractmethod
    def prepare_images(self, examples: Sequence[LabeledImage]) -> torch.Tensor:
        """Return a float tensor of shape (B, H, W, C) aligned with ``examples``."""


class ResizeAugmenter(ImageAugmenter):
    """Resizes every image to a fixed size, with optional photometric jitter.

    Args:
        output_height: Height of the produced images in pixels.
        output_width: Width of the produced images in pixels.
        photometric: Optional transform applied to each (C, H, W) float image
            before resizing, e.g. ``v2.ColorJitter``.  Must not move pixels.
    """

    def __init__(
        self,
        output_height: int,
        output_width: int,
        photometric: Callable[[torch.Tensor], torch.Tensor] | None = None,
    ) -> None:
        if output_height < 1 or output_width < 1:
            raise ValueError(
                f"output size must be positive, got {output_height}x{output_width}"
            )
        self.output_height = output_height
        self.output_width = output_width
        self.photometric = photometric
        self._to_tensor = ToFloat32Tensor()
        self._resize = v2.Resize((output_height, output_width), antialias=True)

    @classmethod
    def from_config(
        cls,
        config: DetectionConfig,
        downsample: int = DEFAULT_DOWNSAMPLE,
        photometric: Callable[[torch.Tensor], torch.Tensor] | None = None,
    ) -> ResizeAugmenter:
        """Size images so the network's final feature map matches ``config``."""
        return cls(
            output_height=config.output_height * downsample,
            output_width=config.output_width * downsample,
            photometric=photometric,
        )

    def prepare_images(self, examples: Sequence[LabeledImage]) -> torch.Tensor:
        images = []
        for example in examples:
            img = self._to_tensor(example.image)
            if self.photometric is not None:
                img = self.photometric(img)
            images.append(self._resize(img).as_subclass(torch.Tensor))
        if not images:
            return torch.empty(0, self.output_height, self.output_width, 3)
        return torch.stack(images).permute(0, 2, 3, 1).contiguous()


class DataAugmenter(Transform[DataBatch, InputBatch]):
    """Pipeline stage wrapping an :class:`ImageAugmenter`.

    The augmenter only produces pixels; the batch's original annotations are
    carried forward untouched, as is its ``iteration_id``.
    """

    def __init__(self, augmenter: ImageAugmenter) -> None:
        self._augmenter = augmenter

    def invoke(self, value: DataBatch) -> InputBatch:
        images = self._augmenter.prepare_images(value.examples)
        if images.shape[0] != len(value.examples):
            raise ValueError(
                f"{type(self._augmenter).__name__} returned {images.shape[0]} "
                f"images for a batch of {len(value.examples)}"
            )
        logger.debug(
            f"DataAugmenter: batch {value.iteration_id} -> {tuple(images.shape)}"
        )
        return InputBatch(
            iteration_id=value.iteration_id,
            images=images,
            annotations=tuple(example.annotations for example in value.examples),
        )
