"""Unit tests for detection_training.config, .types and .schemas."""

import dataclasses

import pytest
import torch
from pydantic import ValidationError

from detection_training.config import (
    DEFAULT_BATCH_SIZE,
    DetectionConfig,
    compute_batch_size,
    compute_max_iterations,
)
from detection_training.schemas.annotation import BoundingBox, ImageAnnotation
from detection_training.types import Checkpoint, DataBatch, TrainingProgress


class TestDetectionConfig:
    def test_defaults(self) -> None:
        cfg = DetectionConfig()
        assert cfg.max_iterations == -1
        assert cfg.batch_size == -1
        assert cfg.output_height == 13
        assert cfg.output_width == 13
        assert cfg.num_classes == -1

    def test_frozen_raises_on_mutation(self) -> None:
        cfg = DetectionConfig()
        with pytest.raises(ValidationError):
            cfg.batch_size = 64  # type: ignore[misc]

    @pytest.mark.parametrize("field", ["max_iterations", "batch_size", "num_classes"])
    def test_zero_rejected(self, field: str) -> None:
        with pytest.raises(ValidationError, match=field):
            DetectionConfig(**{field: 0})

    def test_negative_other_than_sentinel_rejected(self) -> None:
        with pytest.raises(ValidationError):
            DetectionConfig(batch_size=-2)

    def test_output_size_must_be_positive(self) -> None:
        with pytest.raises(ValidationError, match="output size"):
            DetectionConfig(output_height=0)

    def test_resolved_returns_new_validated_copy(self) -> None:
        cfg = DetectionConfig(num_classes=4)
        resolved = cfg.resolved(batch_size=8, max_iterations=100)
        assert resolved.batch_size == 8
        assert resolved.max_iterations == 100
        assert resolved.num_classes == 4
        assert cfg.batch_size == -1
        with pytest.raises(ValidationError):
            cfg.resolved(batch_size=0)


class TestHeuristics:
    def test_batch_size_explicit(self) -> None:
        assert compute_batch_size(DetectionConfig(batch_size=7)) == 7

    def test_batch_size_automatic(self) -> None:
        assert compute_batch_size(DetectionConfig()) == DEFAULT_BATCH_SIZE

    def test_max_iterations_minimum(self) -> None:
        assert compute_max_iterations(1, 32) == 1000

    def test_max_iterations_grows_with_dataset(self) -> None:
        # 5000 * sqrt(10000) / 32 = 15625 -> rounded to 16000
        assert compute_max_iterations(10000, 32) == 16000

    def test_max_iterations_rounded_to_thousands(self) -> None:
        assert compute_max_iterations(4000, 16) % 1000 == 0

    def test_max_iterations_rejects_empty_dataset(self) -> None:
        with pytest.raises(ValueError, match="num_examples"):
            compute_max_iterations(0, 32)


class TestAnnotationSchema:
    def test_box_center(self) -> None:
        box = BoundingBox(x=0.1, y=0.2, width=0.4, height=0.2)
        assert box.center == pytest.approx((0.3, 0.3))

    def test_from_center_pixels_normalizes(self) -> None:
        box = BoundingBox.from_center_pixels(40, 30, 20, 10, image_width=80, image_height=60)
        assert box.x == pytest.approx(30 / 80)
        assert box.y == pytest.approx(25 / 60)
        assert box.width == pytest.approx(20 / 80)
        assert box.height == pytest.approx(10 / 60)

    def test_from_center_pixels_clips_to_image(self) -> None:
        box = BoundingBox.from_center_pixels(0, 0, 20, 20, image_width=100, image_height=100)
        assert box.x == 0.0
        assert box.y == 0.0
        assert box.width == pytest.approx(0.1)

    def test_out_of_range_rejected(self) -> None:
        with pytest.raises(ValidationError):
            BoundingBox(x=1.5, y=0.0, width=0.1, height=0.1)

    def test_annotation_frozen(self) -> None:
        ann = ImageAnnotation(
            identifier=1, bounding_box=BoundingBox(x=0, y=0, width=0.5, height=0.5)
        )
        assert ann.confidence == 1.0
        with pytest.raises(ValidationError):
            ann.identifier = 2  # type: ignore[misc]


class TestValueTypes:
    def test_batches_are_frozen(self) -> None:
        batch = DataBatch(iteration_id=1, examples=())
        with pytest.raises(dataclasses.FrozenInstanceError):
            batch.iteration_id = 2  # type: ignore[misc]

    def test_progress_fields(self) -> None:
        progress = TrainingProgress(iteration_id=3, smoothed_loss=0.5)
        assert progress.iteration_id == 3
        assert progress.smoothed_loss == 0.5

    def test_checkpoint_defaults_to_empty_weights(self) -> None:
        ckpt = Checkpoint(config=DetectionConfig(num_classes=2))
        assert ckpt.weights == {}
        ckpt2 = Checkpoint(config=ckpt.config, weights={"w": torch.ones(2)})
        assert torch.equal(ckpt2.weights["w"], torch.ones(2))
