"""Pydantic frozen configuration models for detection_training."""

from __future__ import annotations

import math

from pydantic import BaseModel, model_validator

# Used when DetectionConfig.batch_size is left at -1.
DEFAULT_BATCH_SIZE = 32


class DetectionConfig(BaseModel, frozen=True):
    """Model-agnostic object-detection training parameters.

    ``-1`` is a sentinel: ``max_iterations`` is then computed heuristically,
    ``batch_size`` automatically, and ``num_classes`` is left for the data
    source to decide.  Frozen: no mutation after creation; use
    :meth:`resolved` to fill in sentinels.
    """

    max_iterations: int = -1
    batch_size: int = -1
    # Height/width of the final feature map (darknet-yolo: 13x13 for 416x416).
    output_height: int = 13
    output_width: int = 13
    num_classes: int = -1

    @model_validator(mode="after")
    def _check_values(self) -> DetectionConfig:
        for name in ("max_iterations", "batch_size", "num_classes"):
            value = getattr(self, name)
            if value == 0 or value < -1:
                raise ValueError(f"{name} must be positive or -1, got {value}")
        if self.output_height < 1 or self.output_width < 1:
            raise ValueError(
                f"output size must be positive, got "
                f"{self.output_height}x{self.output_width}"
            )
        return self

    def resolved(self, **updates: int) -> DetectionConfig:
        """Return a validated copy with the given fields replaced."""
        return DetectionConfig(**{**self.model_dump(), **updates})


def compute_batch_size(config: DetectionConfig) -> int:
    """Batch size to train with; ``DEFAULT_BATCH_SIZE`` when unset."""
    if config.batch_size > 0:
        return config.batch_size
    return DEFAULT_BATCH_SIZE


def compute_max_iterations(num_examples: int, batch_size: int) -> int:
    """Heuristic training length for a dataset of ``num_examples`` images.

    Grows with the square root of the dataset size and is rounded to the
    nearest thousand, never below 1000.
    """
    if num_examples < 1:
        raise ValueError(f"num_examples must be positive, got {num_examples}")
    raw = 5000 * math.sqrt(num_examples) / batch_size
    return 1000 * max(1, round(raw / 1000))
