"""Converts raw training output into user-visible progress updates."""

from __future__ import annotations

from loguru import logger

from detection_training.streams.base import Transform
from detection_training.types import TrainingOutputBatch, TrainingProgress

DEFAULT_SMOOTHING_DECAY = 0.9


class ProgressUpdater(Transform[TrainingOutputBatch, TrainingProgress]):
    """Exponential moving average of the per-batch loss.

    ``smoothed = decay * smoothed + (1 - decay) * batch_loss``, where
    ``batch_loss`` is the mean of the batch's loss tensor.  Without an initial
    value the first batch loss seeds the average.

    Batches must arrive one at a time in increasing ``iteration_id`` order;
    the recurrence is order dependent and the accumulator is not locked.

    Args:
        smoothed_loss: Starting value of the average, e.g. from a resumed run.
        decay: Weight of the previous average, in ``[0, 1)``.
    """

    def __init__(
        self,
        smoothed_loss: float | None = None,
        decay: float = DEFAULT_SMOOTHING_DECAY,
    ) -> None:
        if not 0.0 <= decay < 1.0:
            raise ValueError(f"decay must be in [0, 1), got {decay}")
        self.smoothed_loss = smoothed_loss
        self.decay = decay

    def invoke(self, value: TrainingOutputBatch) -> TrainingProgress:
        # .item() waits for the loss if the compute stage is still running.
        batch_loss = float(value.loss.detach().float().mean().item())
        if self.smoothed_loss is None:
            self.smoothed_loss = batch_loss
        else:
            self.smoothed_loss = (
                self.decay * self.smoothed_loss + (1.0 - self.decay) * batch_loss
            )
        logger.debug(
            f"Iteration {value.iteration_id}: loss={batch_loss:.4f} "
            f"smoothed={self.smoothed_loss:.4f}"
        )
        return TrainingProgress(
            iteration_id=value.iteration_id, smoothed_loss=self.smoothed_loss
        )
