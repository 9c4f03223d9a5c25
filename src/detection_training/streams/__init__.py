"""Composable stream operators used to assemble the training pipeline."""

from detection_training.streams.base import (
    UNBOUNDED,
    FunctionTransform,
    Iterator,
    Subscriber,
    Subscription,
    Transform,
)
from detection_training.streams.publishers import (
    CallbackPublisher,
    IteratorPublisher,
    MapPublisher,
    MulticastPublisher,
    Publisher,
    SubscriberIterator,
)

__all__ = [
    "UNBOUNDED",
    "CallbackPublisher",
    "FunctionTransform",
    "Iterator",
    "IteratorPublisher",
    "MapPublisher",
    "MulticastPublisher",
    "Publisher",
    "Subscriber",
    "SubscriberIterator",
    "Subscription",
    "Transform",
]
