"""Annotated-image data sources consumed by the training pipeline.

A data source hands out labeled images on demand and answers whether more are
available.  ``repeat=True`` turns a finite collection into an endless stream
of epochs, reshuffled each time when ``shuffle=True``.
"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from collections.abc import Sequence
from pathlib import Path

import numpy as np
from loguru import logger
from PIL import Image

from detection_training.data.utils import find_annotation_files
from detection_training.schemas.annotation import BoundingBox, ImageAnnotation
from detection_training.types import LabeledImage
from detection_training.utils.hydra import register


class DataSource(ABC):
    """Random-access source of labeled images."""

    @property
    @abstractmethod
    def num_examples(self) -> int:
        """Number of distinct examples (one epoch)."""

    @abstractmethod
    def has_next(self) -> bool:
        """Whether at least one more example is available."""

    @abstractmethod
    def next_batch(self, batch_size: int) -> list[LabeledImage]:
        """Return up to ``batch_size`` examples.

        Raises:
            RuntimeError: If called while :meth:`has_next` is false.
        """


class IndexedDataSource(DataSource):
    """Epoch, shuffle and repeat bookkeeping over an indexable collection.

    Subclasses implement :meth:`_load` to materialize the example at an index.

    Args:
        num_examples: Size of the underlying collection.
        repeat: Start a new epoch instead of running out.
        shuffle: Visit examples in a random order, drawn anew every epoch.
        seed: Seed for the shuffling generator.
    """

    def __init__(
        self,
        num_examples: int,
        *,
        repeat: bool = False,
        shuffle: bool = False,
        seed: int | None = None,
    ) -> None:
        self._num_examples = num_examples
        self.repeat = repeat
        self.shuffle = shuffle
        self._rng = np.random.default_rng(seed)
        self.epoch = 0
        self._position = 0
        self._order = self._epoch_order()

    @property
    def num_examples(self) -> int:
        return self._num_examples

    def has_next(self) -> bool:
        if self._num_examples == 0:
            return False
        return self.repeat or self._position < len(self._order)

    def next_batch(self, batch_size: int) -> list[LabeledImage]:
        if not self.has_next():
            raise RuntimeError(f"{type(self).__name__} is exhausted")
        batch: list[LabeledImage] = []
        while len(batch) < batch_size:
            if self._position == len(self._order):
                if not self.repeat:
                    break
                self._start_epoch()
            batch.append(self._load(int(self._order[self._position])))
            self._position += 1
        return batch

    def _epoch_order(self) -> np.ndarray:
        if self.shuffle:
            return self._rng.permutation(self._num_examples)
        return np.arange(self._num_examples)

    def _start_epoch(self) -> None:
        self.epoch += 1
        self._position = 0
        self._order = self._epoch_order()
        logger.debug(f"{type(self).__name__}: starting epoch {self.epoch}")

    @abstractmethod
    def _load(self, index: int) -> LabeledImage: ...


class InMemoryDataSource(IndexedDataSource):
    """Data source over an in-memory sequence of labeled images."""

    def __init__(
        self,
        examples: Sequence[LabeledImage],
        *,
        repeat: bool = False,
        shuffle: bool = False,
        seed: int | None = None,
    ) -> None:
        self._examples = list(examples)
        super().__init__(
            len(self._examples), repeat=repeat, shuffle=shuffle, seed=seed
        )

    def _load(self, index: int) -> LabeledImage:
        return self._examples[index]


@register(
    group="data", name="jsonl", root="???", repeat=False, shuffle=False, seed=None
)
class AnnotatedImageDataSource(IndexedDataSource):
    """Data source for JSONL-annotated object-detection images.

    Recursively discovers all ``annotations.jsonl`` files under ``root``.
    Each line describes one image::

        {"image": "img_000.jpg",
         "annotations": [{"label": "dog",
                          "coordinates": {"x": 40, "y": 30,
                                          "width": 20, "height": 16}}]}

    Coordinates are in pixels with ``x``/``y`` the centre of the box.  Image
    paths are resolved relative to each annotation file's directory.  Images
    are decoded lazily, when their batch is requested.

    Args:
        root: Directory to search recursively for annotation files.
        class_labels: Ordered class names; index in this list is the
            annotation identifier.  Defaults to the sorted set of labels found.
            Annotations with labels outside this list are skipped.
    """

    def __init__(
        self,
        root: Path | str,
        class_labels: Sequence[str] | None = None,
        *,
        repeat: bool = False,
        shuffle: bool = False,
        seed: int | None = None,
    ) -> None:
        self.root = Path(root)
        self._records: list[tuple[Path, list[dict]]] = []

        ann_files = find_annotation_files(self.root)
        for ann_path in ann_files:
            with open(ann_path) as f:
                for line in f:
                    line = line.strip()
                    if not line:
                        continue
                    record = json.loads(line)
                    self._records.append(
                        (ann_path.parent / record["image"], record.get("annotations", []))
                    )

        if class_labels is None:
            class_labels = sorted(
                {ann["label"] for _, anns in self._records for ann in anns}
            )
        self.class_labels = list(class_labels)
        self.class_to_idx = {label: i for i, label in enumerate(self.class_labels)}

        skipped = sum(
            1
            for _, anns in self._records
            for ann in anns
            if ann["label"] not in self.class_to_idx
        )
        if skipped:
            logger.warning(
                f"Skipping {skipped} annotation(s) with unknown labels under {self.root}"
            )
        logger.debug(
            f"AnnotatedImageDataSource: {len(self._records)} images, "
            f"{len(self.class_labels)} classes from {len(ann_files)} "
            f"annotation file(s) under {self.root}"
        )
        super().__init__(
            len(self._records), repeat=repeat, shuffle=shuffle, seed=seed
        )

    @property
    def num_classes(self) -> int:
        return len(self.class_labels)

    def _load(self, index: int) -> LabeledImage:
        img_path, raw_annotations = self._records[index]
        img = Image.open(img_path).convert("RGB")
        annotations = []
        for ann in raw_annotations:
            identifier = self.class_to_idx.get(ann["label"])
            if identifier is None:
                continue
            coords = ann["coordinates"]
            box = BoundingBox.from_center_pixels(
                coords["x"],
                coords["y"],
                coords["width"],
                coords["height"],
                image_width=img.width,
                image_height=img.height,
            )
            annotations.append(ImageAnnotation(identifier=identifier, bounding_box=box))
        return LabeledImage(image=img, annotations=tuple(annotations))
