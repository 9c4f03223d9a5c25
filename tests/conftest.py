"""Shared pytest fixtures for detection_training tests."""

import json
from collections.abc import Callable
from pathlib import Path

import pytest
import torch
from PIL import Image

from detection_training.config import DetectionConfig
from detection_training.schemas.annotation import BoundingBox, ImageAnnotation
from detection_training.types import LabeledImage


@pytest.fixture()
def make_examples() -> Callable[..., list[LabeledImage]]:
    """Factory for in-memory labeled images.

    Image ``i`` is a uint8 CHW tensor filled with ``i`` and carries one box of
    class ``i % num_classes`` centred in the image.
    """

    def _make(
        n: int, height: int = 48, width: int = 64, num_classes: int = 3
    ) -> list[LabeledImage]:
        examples = []
        for i in range(n):
            image = torch.full((3, height, width), i % 256, dtype=torch.uint8)
            box = BoundingBox(x=0.25, y=0.25, width=0.5, height=0.5)
            examples.append(
                LabeledImage(
                    image=image,
                    annotations=(
                        ImageAnnotation(identifier=i % num_classes, bounding_box=box),
                    ),
                )
            )
        return examples

    return _make


@pytest.fixture()
def small_config() -> DetectionConfig:
    """2x2 feature map (64x64 input), 3 classes, batch size 2."""
    return DetectionConfig(
        max_iterations=10,
        batch_size=2,
        output_height=2,
        output_width=2,
        num_classes=3,
    )


@pytest.fixture()
def tmp_detection_dataset(tmp_path: Path) -> Path:
    """Minimal JSONL-annotated object-detection dataset.

    Structure:
    - ``part_a/annotations.jsonl`` with 3 images
    - ``part_b/annotations.jsonl`` with 2 images, including the only "zebra"
    Default classes are therefore ["cat", "dog", "zebra"].

    Boxes use pixel coordinates with the centre as ``x``/``y``.
    """
    specs = {
        "part_a": [("cat", 20, 10), ("dog", 30, 20), ("cat", 40, 30)],
        "part_b": [("dog", 10, 10), ("zebra", 50, 40)],
    }
    for part, rows in specs.items():
        part_dir = tmp_path / part
        part_dir.mkdir()
        lines = []
        for i, (label, cx, cy) in enumerate(rows):
            fname = f"img_{i:02d}.png"
            Image.new("RGB", (80, 60), color=(i * 40, 100, 150)).save(part_dir / fname)
            lines.append(
                json.dumps(
                    {
                        "image": fname,
                        "annotations": [
                            {
                                "label": label,
                                "coordinates": {
                                    "x": cx,
                                    "y": cy,
                                    "width": 16,
                                    "height": 12,
                                },
                            }
                        ],
                    }
                )
            )
        (part_dir / "annotations.jsonl").write_text("\n".join(lines) + "\n")
    return tmp_path
