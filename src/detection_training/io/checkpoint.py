"""Checkpoint persistence using ``torch.save``."""

from __future__ import annotations

from pathlib import Path

import torch
from loguru import logger

from detection_training.config import DetectionConfig
from detection_training.types import Checkpoint


class CheckpointWriter:
    """Write checkpoints as ``checkpoint_{iteration:06d}.pt`` inside ``output_dir``.

    ``checkpoint_latest.pt`` is rewritten alongside every checkpoint.
    """

    def __init__(self, output_dir: Path | str) -> None:
        self.output_dir = Path(output_dir)
        self.output_dir.mkdir(parents=True, exist_ok=True)

    def write(self, checkpoint: Checkpoint, iteration_id: int) -> Path:
        """Write a single checkpoint to disk. Returns the output path."""
        payload = {
            "config": checkpoint.config.model_dump(),
            "weights": checkpoint.weights,
            "iteration_id": iteration_id,
        }
        out_path = self.output_dir / f"checkpoint_{iteration_id:06d}.pt"
        torch.save(payload, out_path)
        torch.save(payload, self.latest_path)
        logger.info(f"Saved checkpoint to {out_path}")
        return out_path

    @property
    def latest_path(self) -> Path:
        return self.output_dir / "checkpoint_latest.pt"


def load_checkpoint(path: Path | str) -> Checkpoint:
    """Read a checkpoint written by :class:`CheckpointWriter`."""
    payload = torch.load(Path(path), map_location="cpu", weights_only=True)
    config = DetectionConfig.model_validate(payload["config"])
    logger.info(f"Loaded checkpoint from {path}")
    return Checkpoint(config=config, weights=dict(payload["weights"]))
