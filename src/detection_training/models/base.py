"""Model-agnostic half of the object-detection training pipeline."""

from __future__ import annotations

from abc import ABC, abstractmethod

from detection_training.data.iterator import DataIterator
from detection_training.data.source import DataSource
from detection_training.streams.publishers import IteratorPublisher, Publisher
from detection_training.transforms.augmentation import DataAugmenter, ImageAugmenter
from detection_training.types import Checkpoint, InputBatch, TrainingOutputBatch


class ComputeStage(ABC):
    """The model-specific capabilities a :class:`Model` plugs in.

    Implementations encode augmented inputs into whatever their network
    expects, run one training step per batch, and can snapshot their weights.
    """

    @abstractmethod
    def as_training_batch_publisher(
        self, augmented_data: Publisher[InputBatch]
    ) -> Publisher[TrainingOutputBatch]:
        """Chain encoding and one training step per batch onto ``augmented_data``.

        Every output batch must carry the ``iteration_id`` of its input batch.
        """

    @abstractmethod
    def as_checkpoint_publisher(self) -> Publisher[Checkpoint]:
        """Publisher emitting a :class:`Checkpoint` for each requested value.

        Must stay usable independently of any training publisher, and must
        never expose a partially applied training step.
        """


class Model:
    """Builds the model-agnostic front of the training pipeline.

    Source -> :class:`DataAugmenter` -> ``stage``.  The model owns its
    augmenter for its lifetime; everything model-specific lives in ``stage``.

    Args:
        augmenter: Augmentation engine shared by every pipeline this model builds.
        stage: Encode + compute + checkpoint implementation.
    """

    def __init__(self, augmenter: ImageAugmenter, stage: ComputeStage) -> None:
        self._augmenter = DataAugmenter(augmenter)
        self.stage = stage

    def as_training_batch_publisher(
        self, training_data: DataSource, batch_size: int, offset: int = 0
    ) -> Publisher[TrainingOutputBatch]:
        """Return a publisher of training outputs for ``training_data``.

        Args:
            training_data: Source of labeled images, consumed by the pipeline.
            batch_size: Images per batch.
            offset: Batches already consumed in a previous run; the first
                batch has ``iteration_id == offset + 1``.
        """
        batches = IteratorPublisher(DataIterator(training_data, batch_size, offset))
        augmented = batches.map(self._augmenter)
        return self.stage.as_training_batch_publisher(augmented)

    def as_checkpoint_publisher(self) -> Publisher[Checkpoint]:
        """Return a publisher that can be used to request checkpoints."""
        return self.stage.as_checkpoint_publisher()
