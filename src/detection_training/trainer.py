"""Drives a :class:`Model` pipeline until the target iteration count.

The trainer resolves the configuration once, fans the training outputs out to
a raw-loss recorder and the progress transform, and pulls checkpoints from the
model's checkpoint publisher at a fixed interval and at the end of the run.
"""

from __future__ import annotations

import dataclasses
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

from loguru import logger
from pydantic import BaseModel, Field

from detection_training.config import (
    DetectionConfig,
    compute_batch_size,
    compute_max_iterations,
)
from detection_training.data.source import DataSource
from detection_training.io.checkpoint import CheckpointWriter
from detection_training.models.base import Model
from detection_training.progress import DEFAULT_SMOOTHING_DECAY, ProgressUpdater
from detection_training.reporting import ProgressReporter, print_model_info
from detection_training.streams.base import UNBOUNDED, Subscriber, Subscription
from detection_training.types import Checkpoint, TrainingOutputBatch, TrainingProgress

# (num_examples, batch_size) -> max_iterations
IterationsPolicy = Callable[[int, int], int]


class TrainerConfig(BaseModel, frozen=True):
    """Settings of the training loop itself, separate from the model config.

    ``checkpoint_interval=0`` disables periodic checkpoints; a final checkpoint
    is always taken.
    """

    checkpoint_interval: int = Field(default=0, ge=0)
    smoothing_decay: float = Field(default=DEFAULT_SMOOTHING_DECAY, ge=0.0, lt=1.0)
    checkpoint_dir: str | None = None
    report_interval: int = Field(default=10, ge=1)


@dataclass
class TrainingResult:
    """Everything a finished (or exhausted) run produced."""

    config: DetectionConfig
    progress: list[TrainingProgress] = field(default_factory=list)
    raw_losses: list[float] = field(default_factory=list)
    checkpoint: Checkpoint | None = None
    checkpoint_paths: list[Path] = field(default_factory=list)


def resolve_config(
    config: DetectionConfig,
    num_examples: int,
    iterations_policy: IterationsPolicy = compute_max_iterations,
) -> DetectionConfig:
    """Fill in ``batch_size`` and ``max_iterations`` when left at -1.

    ``iterations_policy`` is called at most once, and only when
    ``max_iterations`` is -1 and there is at least one example.
    """
    batch_size = compute_batch_size(config)
    max_iterations = config.max_iterations
    if max_iterations == -1 and num_examples == 0:
        logger.warning("No training examples; leaving max_iterations unresolved")
    elif max_iterations == -1:
        max_iterations = iterations_policy(num_examples, batch_size)
        logger.info(
            f"Setting max_iterations to {max_iterations} for {num_examples} "
            f"examples at batch size {batch_size}"
        )
    return config.resolved(batch_size=batch_size, max_iterations=max_iterations)


class _LossRecorder(Subscriber[TrainingOutputBatch]):
    """Records the mean raw loss of every training output."""

    def __init__(self) -> None:
        self.losses: list[float] = []
        self._subscription: Subscription | None = None

    def on_subscribe(self, subscription: Subscription) -> None:
        self._subscription = subscription
        subscription.request(UNBOUNDED)

    def on_next(self, value: TrainingOutputBatch) -> None:
        self.losses.append(float(value.loss.detach().float().mean().item()))

    def on_complete(self) -> None:
        pass

    def on_error(self, error: Exception) -> None:
        # The progress stream receives the same error and raises it.
        pass

    def cancel(self) -> None:
        if self._subscription is not None:
            self._subscription.cancel()


class DetectionTrainer:
    """Runs training of ``model`` and reports progress.

    Args:
        model: The model whose pipeline is trained.
        config: Model configuration; -1 sentinels are resolved in :meth:`fit`.
        trainer_config: Loop settings (checkpointing, smoothing, reporting).
        iterations_policy: Heuristic used when ``max_iterations`` is -1.
        reporter: Progress reporter; defaults to a rich console reporter.
    """

    def __init__(
        self,
        model: Model,
        config: DetectionConfig,
        trainer_config: TrainerConfig | None = None,
        iterations_policy: IterationsPolicy = compute_max_iterations,
        reporter: ProgressReporter | None = None,
    ) -> None:
        stage_config = getattr(model.stage, "config", None)
        if isinstance(stage_config, DetectionConfig):
            for name in ("num_classes", "output_height", "output_width"):
                if getattr(stage_config, name) != getattr(config, name):
                    raise ValueError(
                        f"{name} mismatch: model has {getattr(stage_config, name)}, "
                        f"trainer config has {getattr(config, name)}"
                    )
        self.model = model
        self.config = config
        self.trainer_config = trainer_config or TrainerConfig()
        self.iterations_policy = iterations_policy
        self.reporter = reporter or ProgressReporter(self.trainer_config.report_interval)

    def fit(self, source: DataSource, offset: int = 0) -> TrainingResult:
        """Train on ``source`` until ``max_iterations`` or until it runs out.

        Args:
            source: Training data; consumed by the pipeline.
            offset: Iterations completed by a previous run.  Iteration ids
                continue from ``offset + 1`` and count towards
                ``max_iterations``.
        """
        resolved = resolve_config(self.config, source.num_examples, self.iterations_policy)
        logger.info(f"Training configuration: {resolved.model_dump()}")
        result = TrainingResult(config=resolved)

        network = getattr(self.model.stage, "network", None)
        if network is not None:
            print_model_info(network, self.reporter.console)

        writer = None
        if self.trainer_config.checkpoint_dir is not None:
            writer = CheckpointWriter(self.trainer_config.checkpoint_dir)
        interval = self.trainer_config.checkpoint_interval

        outputs = self.model.as_training_batch_publisher(
            source, resolved.batch_size, offset
        ).multicast()
        recorder = _LossRecorder()
        outputs.subscribe(recorder)
        updater = ProgressUpdater(decay=self.trainer_config.smoothing_decay)
        progress_stream = outputs.map(updater).as_iterator()
        checkpoints = self.model.as_checkpoint_publisher().as_iterator()

        def save(checkpoint: Checkpoint, iteration_id: int) -> Checkpoint:
            checkpoint = dataclasses.replace(checkpoint, config=resolved)
            if writer is not None:
                result.checkpoint_paths.append(writer.write(checkpoint, iteration_id))
            return checkpoint

        saved_id: int | None = None
        try:
            if not source.has_next():
                logger.warning("Training data is empty; nothing to train")
            elif offset >= resolved.max_iterations:
                logger.warning(
                    f"Offset {offset} already reaches max_iterations "
                    f"{resolved.max_iterations}; nothing to train"
                )
            else:
                self.reporter.start(resolved.max_iterations)
                outputs.connect()
                for update in progress_stream:
                    result.progress.append(update)
                    self.reporter.report(update)
                    if update.iteration_id >= resolved.max_iterations:
                        break
                    if interval and update.iteration_id % interval == 0:
                        result.checkpoint = save(next(checkpoints), update.iteration_id)
                        saved_id = update.iteration_id
                else:
                    logger.info(
                        f"Training data exhausted after {len(result.progress)} iteration(s)"
                    )

            # The last periodic checkpoint already covers a run ending on an interval.
            if result.progress and result.progress[-1].iteration_id != saved_id:
                last_id = result.progress[-1].iteration_id
                result.checkpoint = save(next(checkpoints), last_id)
        finally:
            progress_stream.close()
            recorder.cancel()
            checkpoints.close()

        result.raw_losses = list(recorder.losses)
        self.reporter.finish(result.progress)
        return result
