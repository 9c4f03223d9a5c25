"""Adapter exposing a :class:`DataSource` as an :class:`Iterator` of batches."""

from __future__ import annotations

from loguru import logger

from detection_training.data.source import DataSource
from detection_training.streams.base import Iterator
from detection_training.types import DataBatch


class DataIterator(Iterator[DataBatch]):
    """Produces numbered :class:`DataBatch` values from a data source.

    Args:
        source: The data source to wrap.  Owned by the iterator from now on.
        batch_size: Number of images requested from ``source`` per batch.
        offset: Number of batches already consumed by a previous run.  The
            first batch produced has ``iteration_id == offset + 1``.  The
            source itself is not rewound or fast-forwarded.
    """

    def __init__(self, source: DataSource, batch_size: int, offset: int = 0) -> None:
        if batch_size < 1:
            raise ValueError(f"batch_size must be positive, got {batch_size}")
        if offset < 0:
            raise ValueError(f"offset must be non-negative, got {offset}")
        self._source = source
        self.batch_size = batch_size
        # Next ID starts at 1, not 0, by default.
        self.last_iteration_id = offset

    def has_next(self) -> bool:
        return self._source.has_next()

    def next(self) -> DataBatch:
        """Fetch the next batch.  Must not be called once ``has_next()`` is false."""
        examples = self._source.next_batch(self.batch_size)
        self.last_iteration_id += 1
        logger.debug(
            f"DataIterator: batch {self.last_iteration_id} "
            f"with {len(examples)} image(s)"
        )
        return DataBatch(iteration_id=self.last_iteration_id, examples=tuple(examples))
