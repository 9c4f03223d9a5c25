"""Darknet-YOLO style compute stage: label encoding, network and training step."""

from __future__ import annotations

import threading
from collections.abc import Sequence
from typing import Any

import torch
from loguru import logger
from torch import nn

from detection_training.config import DetectionConfig
from detection_training.losses import YOLOLoss
from detection_training.models.base import ComputeStage
from detection_training.streams.base import Transform
from detection_training.streams.publishers import CallbackPublisher, Publisher
from detection_training.types import (
    Annotations,
    Checkpoint,
    EncodedInputBatch,
    InputBatch,
    TrainingOutputBatch,
)
from detection_training.utils.hydra import register

# Three aspect ratios (1:2, 1:1, 2:1) at five scales, in grid cells.
YOLO_ANCHORS: tuple[tuple[float, float], ...] = tuple(
    (scale * w, scale * h)
    for scale in (0.25, 0.5, 1.0, 2.0, 4.0)
    for w, h in ((0.5, 1.0), (1.0, 1.0), (1.0, 0.5))
)


def encode_annotations(
    annotations: Annotations,
    output_height: int,
    output_width: int,
    anchors: Sequence[tuple[float, float]],
    num_classes: int,
) -> torch.Tensor:
    """Encode one image's boxes as a ``(H, W, A, 5 + C)`` label grid.

    Each box is assigned to the cell containing its centre and to the anchor
    whose shape overlaps it best.  Zero-area boxes are ignored.
    """
    labels = torch.zeros(output_height, output_width, len(anchors), 5 + num_classes)
    anchor_wh = torch.tensor(anchors, dtype=torch.float32)
    anchor_area = anchor_wh[:, 0] * anchor_wh[:, 1]
    for ann in annotations:
        if ann.identifier >= num_classes:
            raise ValueError(
                f"Annotation class {ann.identifier} out of range for "
                f"{num_classes} classes"
            )
        box = ann.bounding_box
        if box.width <= 0 or box.height <= 0:
            continue
        center_x, center_y = box.center
        grid_x, grid_y = center_x * output_width, center_y * output_height
        col = min(int(grid_x), output_width - 1)
        row = min(int(grid_y), output_height - 1)
        w, h = box.width * output_width, box.height * output_height

        inter = torch.clamp(anchor_wh[:, 0], max=w) * torch.clamp(anchor_wh[:, 1], max=h)
        iou = inter / (anchor_area + w * h - inter)
        anchor = int(iou.argmax())

        cell = labels[row, col, anchor]
        cell.zero_()
        cell[0] = grid_x - col
        cell[1] = grid_y - row
        cell[2] = w
        cell[3] = h
        cell[4] = 1.0
        cell[5 + ann.identifier] = 1.0
    return labels


class YOLOEncoder(Transform[InputBatch, EncodedInputBatch]):
    """Adds YOLO label grids to an augmented batch."""

    def __init__(
        self,
        config: DetectionConfig,
        anchors: Sequence[tuple[float, float]] = YOLO_ANCHORS,
    ) -> None:
        self.config = config
        self.anchors = tuple(anchors)

    def invoke(self, value: InputBatch) -> EncodedInputBatch:
        labels = [
            encode_annotations(
                annotations,
                self.config.output_height,
                self.config.output_width,
                self.anchors,
                self.config.num_classes,
            )
            for annotations in value.annotations
        ]
        if labels:
            label_batch = torch.stack(labels)
        else:
            label_batch = torch.zeros(
                0,
                self.config.output_height,
                self.config.output_width,
                len(self.anchors),
                5 + self.config.num_classes,
            )
        return EncodedInputBatch(
            iteration_id=value.iteration_id,
            images=value.images,
            labels=label_batch,
            annotations=value.annotations,
        )


def _conv_block(in_channels: int, out_channels: int, stride: int) -> nn.Sequential:
    return nn.Sequential(
        nn.Conv2d(in_channels, out_channels, 3, stride=stride, padding=1, bias=False),
        nn.BatchNorm2d(out_channels),
        nn.LeakyReLU(0.1),
    )


class TinyDarknet(nn.Module):
    """Small darknet-style backbone with a YOLO head.

    Five stride-2 stages reduce the input by 32; a 1x1 convolution predicts
    ``A * (5 + C)`` values per cell.  Output layout is ``(B, H, W, A, 5 + C)``.

    Args:
        num_anchors: Anchors per cell.
        num_classes: Number of object classes.
        width: Channels of the first stage; doubled at every later stage.
    """

    def __init__(self, num_anchors: int, num_classes: int, width: int = 16) -> None:
        super().__init__()
        self.num_anchors = num_anchors
        self.num_classes = num_classes
        self.out_channels = num_anchors * (5 + num_classes)

        layers: list[nn.Module] = []
        channels = 3
        for stage in range(5):
            out = width * 2**stage
            layers.append(_conv_block(channels, out, stride=2))
            layers.append(_conv_block(out, out, stride=1))
            channels = out
        self.backbone = nn.Sequential(*layers)
        self.head = nn.Conv2d(channels, self.out_channels, 1)

    def forward(self, images: torch.Tensor) -> torch.Tensor:
        out = self.head(self.backbone(images))
        b, _, h, w = out.shape
        out = out.view(b, self.num_anchors, 5 + self.num_classes, h, w)
        return out.permute(0, 3, 4, 1, 2).contiguous()


@register(
    group="stage",
    name="yolo",
    partial=True,
    learning_rate=1e-3,
    momentum=0.9,
    weight_decay=5e-4,
    width=16,
    device="cpu",
)
class YOLOComputeStage(ComputeStage):
    """Trains a YOLO network with one SGD step per batch.

    The training step and weight snapshots share a lock, so a checkpoint
    reflects exactly the steps completed before it was taken.

    Args:
        config: Model configuration; ``num_classes`` must be set.
        network: Network producing ``(B, H, W, A, 5 + C)`` predictions and
            exposing ``out_channels``.  Defaults to :class:`TinyDarknet`.
        anchors: Anchor sizes in grid cells.
        learning_rate: SGD learning rate.
        momentum: SGD momentum.
        weight_decay: SGD weight decay.
        width: Base width of the default network.
        device: Device to train on.
    """

    def __init__(
        self,
        config: DetectionConfig,
        network: nn.Module | None = None,
        anchors: Sequence[tuple[float, float]] = YOLO_ANCHORS,
        learning_rate: float = 1e-3,
        momentum: float = 0.9,
        weight_decay: float = 5e-4,
        width: int = 16,
        device: str = "cpu",
    ) -> None:
        if config.num_classes < 1:
            raise ValueError(
                f"num_classes must be set before building a model, got {config.num_classes}"
            )
        self.config = config
        self.anchors = tuple(tuple(anchor) for anchor in anchors)
        self.device = torch.device(device)

        if network is None:
            network = TinyDarknet(len(self.anchors), config.num_classes, width=width)
        expected = len(self.anchors) * (5 + config.num_classes)
        out_channels = getattr(network, "out_channels", None)
        if out_channels != expected:
            raise ValueError(
                f"Network predicts {out_channels} channels per cell, expected "
                f"{expected} for {len(self.anchors)} anchors and "
                f"{config.num_classes} classes"
            )
        self.network = network.to(self.device)
        self.loss_fn = YOLOLoss(self.anchors).to(self.device)
        self.optimizer = torch.optim.SGD(
            self.network.parameters(),
            lr=learning_rate,
            momentum=momentum,
            weight_decay=weight_decay,
        )
        self.encoder = YOLOEncoder(config, self.anchors)
        self.step_count = 0
        self._lock = threading.Lock()

    @classmethod
    def from_checkpoint(cls, checkpoint: Checkpoint, **kwargs: Any) -> YOLOComputeStage:
        """Rebuild a stage with the configuration and weights of ``checkpoint``."""
        stage = cls(checkpoint.config, **kwargs)
        stage.network.load_state_dict(checkpoint.weights)
        return stage

    def as_training_batch_publisher(
        self, augmented_data: Publisher[InputBatch]
    ) -> Publisher[TrainingOutputBatch]:
        return augmented_data.map(self.encoder).map(self.train_step)

    def as_checkpoint_publisher(self) -> Publisher[Checkpoint]:
        return CallbackPublisher(self.checkpoint)

    def train_step(self, batch: EncodedInputBatch) -> TrainingOutputBatch:
        """Run one forward/backward pass and optimizer update."""
        images = batch.images.permute(0, 3, 1, 2).to(self.device)
        labels = batch.labels.to(self.device)
        with self._lock:
            self.network.train()
            self.optimizer.zero_grad()
            predictions = self.network(images)
            if predictions.shape != labels.shape:
                raise ValueError(
                    f"Network output {tuple(predictions.shape)} does not match "
                    f"labels {tuple(labels.shape)}; check output_height/width"
                )
            loss = self.loss_fn(predictions, labels)
            loss.mean().backward()
            self.optimizer.step()
            self.step_count += 1
        return TrainingOutputBatch(iteration_id=batch.iteration_id, loss=loss.detach())

    def checkpoint(self) -> Checkpoint:
        """Snapshot the current configuration and weights (on CPU)."""
        with self._lock:
            weights = {
                name: tensor.detach().cpu().clone()
                for name, tensor in self.network.state_dict().items()
            }
            step = self.step_count
        logger.debug(f"Checkpoint taken after {step} training step(s)")
        return Checkpoint(config=self.config, weights=weights)
