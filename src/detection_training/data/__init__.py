"""Data pipeline for detection_training."""

from detection_training.data.iterator import DataIterator
from detection_training.data.source import (
    AnnotatedImageDataSource,
    DataSource,
    IndexedDataSource,
    InMemoryDataSource,
)

__all__ = [
    "AnnotatedImageDataSource",
    "DataIterator",
    "DataSource",
    "InMemoryDataSource",
    "IndexedDataSource",
]
