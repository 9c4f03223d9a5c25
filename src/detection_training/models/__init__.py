"""Object-detection model implementations."""

from detection_training.models.base import ComputeStage, Model
from detection_training.models.yolo import (
    YOLO_ANCHORS,
    TinyDarknet,
    YOLOComputeStage,
    YOLOEncoder,
    encode_annotations,
)

__all__ = [
    "YOLO_ANCHORS",
    "ComputeStage",
    "Model",
    "TinyDarknet",
    "YOLOComputeStage",
    "YOLOEncoder",
    "encode_annotations",
]
