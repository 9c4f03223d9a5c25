"""Value types passed between the stages of the training pipeline.

Every batch carries the ``iteration_id`` assigned by the source adapter so
that a loss or progress value can be correlated with the images it came from.
Batches are frozen; annotations are tuples of frozen models and are only ever
carried forward.
"""

from __future__ import annotations

from dataclasses import dataclass, field

import torch
from PIL import Image

from detection_training.config import DetectionConfig
from detection_training.schemas.annotation import ImageAnnotation

Annotations = tuple[ImageAnnotation, ...]


@dataclass(frozen=True)
class LabeledImage:
    """One raw image (PIL or CHW tensor) with its annotations."""

    image: Image.Image | torch.Tensor
    annotations: Annotations = ()


@dataclass(frozen=True)
class DataBatch:
    """One batch of raw, possibly annotated, images."""

    iteration_id: int
    examples: tuple[LabeledImage, ...]


@dataclass(frozen=True)
class InputBatch:
    """One batch of model-agnostic data, post-augmentation/resizing.

    images: Float tensor of shape (B, H, W, C), values in [0, 1].
    annotations: The raw annotations from the DataBatch, one tuple per image.
    """

    iteration_id: int
    images: torch.Tensor
    annotations: tuple[Annotations, ...]


@dataclass(frozen=True)
class EncodedInputBatch:
    """One batch of data in a model-specific format.

    The raw annotations are kept so predictions can be evaluated against them.
    """

    iteration_id: int
    images: torch.Tensor
    labels: torch.Tensor
    annotations: tuple[Annotations, ...]


@dataclass(frozen=True)
class TrainingOutputBatch:
    """Raw output of one forward/backward step."""

    iteration_id: int
    loss: torch.Tensor


@dataclass(frozen=True)
class TrainingProgress:
    """The output conveyed to the user."""

    iteration_id: int
    smoothed_loss: float


@dataclass(frozen=True)
class Checkpoint:
    """Everything needed to reconstruct a model (optimizer state excluded)."""

    config: DetectionConfig
    weights: dict[str, torch.Tensor] = field(default_factory=dict)
