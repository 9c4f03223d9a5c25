"""Abstract stream primitives: iterators, transforms, subscribers, subscriptions.

Values flow from a :class:`~detection_training.streams.publishers.Publisher`
to its subscribers only in response to demand signalled through a
:class:`Subscription`.  Delivery is synchronous, in order, and one value at a
time per subscriber.
"""

from __future__ import annotations

import sys
from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Generic, TypeVar

T = TypeVar("T")
U = TypeVar("U")

# Demand that never runs out.
UNBOUNDED = sys.maxsize


def add_demand(current: int, extra: int) -> int:
    """Add demand, saturating at :data:`UNBOUNDED`."""
    if current >= UNBOUNDED - extra:
        return UNBOUNDED
    return current + extra


def check_demand(demand: int) -> None:
    if demand < 1:
        raise ValueError(f"demand must be at least 1, got {demand}")


class Iterator(ABC, Generic[T]):
    """A pull-based source of values."""

    @abstractmethod
    def has_next(self) -> bool:
        """Whether :meth:`next` may be called."""

    @abstractmethod
    def next(self) -> T:
        """Produce the next value.  Only valid while :meth:`has_next` is true."""


class Transform(ABC, Generic[T, U]):
    """Maps one input value to one output value, optionally keeping state."""

    @abstractmethod
    def invoke(self, value: T) -> U:
        """Process a single value."""

    def __call__(self, value: T) -> U:
        return self.invoke(value)


class FunctionTransform(Transform[T, U]):
    """Stateless :class:`Transform` around a plain callable."""

    def __init__(self, fn: Callable[[T], U]) -> None:
        self._fn = fn

    def invoke(self, value: T) -> U:
        return self._fn(value)


class Subscription(ABC):
    """The link between one publisher and one subscriber."""

    @property
    @abstractmethod
    def is_cancelled(self) -> bool: ...

    @abstractmethod
    def request(self, demand: int) -> None:
        """Signal that the subscriber can accept ``demand`` more values."""

    @abstractmethod
    def cancel(self) -> None:
        """Stop delivery.  Idempotent."""


class Subscriber(ABC, Generic[T]):
    """Receives values and exactly one terminal signal from a publisher."""

    @abstractmethod
    def on_subscribe(self, subscription: Subscription) -> None: ...

    @abstractmethod
    def on_next(self, value: T) -> None: ...

    @abstractmethod
    def on_complete(self) -> None: ...

    @abstractmethod
    def on_error(self, error: Exception) -> None: ...
