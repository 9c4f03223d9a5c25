"""Object-detection annotation schemas."""

from detection_training.schemas.annotation import BoundingBox, ImageAnnotation

__all__ = [
    "BoundingBox",
    "ImageAnnotation",
]
