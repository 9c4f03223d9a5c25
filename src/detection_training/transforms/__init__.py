"""Image augmentation for object-detection training.

``ResizeAugmenter`` is the default augmentation engine; ``DataAugmenter`` is
the pipeline stage that drives any :class:`ImageAugmenter`.
"""

from detection_training.transforms.augmentation import (
    DataAugmenter,
    ImageAugmenter,
    ResizeAugmenter,
)
from detection_training.transforms.conversion import ToFloat32Tensor

__all__ = [
    "DataAugmenter",
    "ImageAugmenter",
    "ResizeAugmenter",
    "ToFloat32Tensor",
]
