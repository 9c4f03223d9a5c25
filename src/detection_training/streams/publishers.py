"""Publisher implementations and operators.

``IteratorPublisher`` turns a pull-based :class:`Iterator` into a stream,
``MapPublisher`` applies a :class:`Transform` per value,
``CallbackPublisher`` produces a fresh value per request (used for
checkpoints) and ``MulticastPublisher`` shares one upstream between several
subscribers.  ``SubscriberIterator`` adapts any publisher back into a plain
Python iterator.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections import deque
from collections.abc import Callable
from typing import Any, Generic

from loguru import logger

from detection_training.streams.base import (
    UNBOUNDED,
    FunctionTransform,
    Iterator,
    Subscriber,
    Subscription,
    T,
    Transform,
    U,
    add_demand,
    check_demand,
)


class Publisher(ABC, Generic[T]):
    """A stream of values that subscribers attach to."""

    @abstractmethod
    def subscribe(self, subscriber: Subscriber[T]) -> None:
        """Attach ``subscriber``; it receives ``on_subscribe`` first."""

    def map(self, transform: Transform[T, U] | Callable[[T], U]) -> Publisher[U]:
        if not isinstance(transform, Transform):
            transform = FunctionTransform(transform)
        return MapPublisher(self, transform)

    def multicast(self) -> MulticastPublisher[T]:
        return MulticastPublisher(self)

    def as_iterator(self) -> SubscriberIterator[T]:
        iterator: SubscriberIterator[T] = SubscriberIterator()
        self.subscribe(iterator)
        return iterator


class _DrainingSubscription(Subscription):
    """Subscription that emits values in a loop while demand remains.

    Re-entrant ``request`` calls made from inside ``on_next`` only add demand;
    the outer loop delivers the extra values, so the call stack stays flat.
    """

    def __init__(self, subscriber: Subscriber[Any]) -> None:
        self._subscriber = subscriber
        self._demand = 0
        self._draining = False
        self._cancelled = False

    @property
    def is_cancelled(self) -> bool:
        return self._cancelled

    def request(self, demand: int) -> None:
        check_demand(demand)
        if self._cancelled:
            return
        self._demand = add_demand(self._demand, demand)
        if self._draining:
            return
        self._draining = True
        try:
            while self._demand > 0 and not self._cancelled:
                if not self._emit_one():
                    break
        finally:
            self._draining = False

    def cancel(self) -> None:
        self._cancelled = True

    def _deliver(self, value: Any) -> None:
        if self._demand != UNBOUNDED:
            self._demand -= 1
        self._subscriber.on_next(value)

    def _fail(self, error: Exception) -> None:
        self._cancelled = True
        self._subscriber.on_error(error)

    def _complete(self) -> None:
        self._cancelled = True
        self._subscriber.on_complete()

    @abstractmethod
    def _emit_one(self) -> bool:
        """Deliver one value; return ``False`` once the stream has terminated."""


class _IteratorSubscription(_DrainingSubscription):
    def __init__(self, subscriber: Subscriber[Any], iterator: Iterator[Any]) -> None:
        super().__init__(subscriber)
        self._iterator = iterator

    def _emit_one(self) -> bool:
        try:
            if not self._iterator.has_next():
                self._complete()
                return False
            value = self._iterator.next()
        except Exception as e:
            logger.error(f"{type(self._iterator).__name__} failed: {e!r}")
            self._fail(e)
            return False
        self._deliver(value)
        return True


class IteratorPublisher(Publisher[T]):
    """Publishes the values of an :class:`Iterator` until it is exhausted.

    Subscribers share the iterator: each value goes to exactly one of them.
    """

    def __init__(self, iterator: Iterator[T]) -> None:
        self._iterator = iterator

    def subscribe(self, subscriber: Subscriber[T]) -> None:
        subscriber.on_subscribe(_IteratorSubscription(subscriber, self._iterator))


class _CallbackSubscription(_DrainingSubscription):
    def __init__(self, subscriber: Subscriber[Any], callback: Callable[[], Any]) -> None:
        super().__init__(subscriber)
        self._callback = callback

    def _emit_one(self) -> bool:
        try:
            value = self._callback()
        except Exception as e:
            logger.error(f"Publisher callback failed: {e!r}")
            self._fail(e)
            return False
        self._deliver(value)
        return True


class CallbackPublisher(Publisher[T]):
    """Calls ``callback`` once per requested value.  Never completes.

    Every subscriber gets its own subscription, so the publisher can be shared
    freely and outlives any particular consumer.  Request finite demand only.
    """

    def __init__(self, callback: Callable[[], T]) -> None:
        self._callback = callback

    def subscribe(self, subscriber: Subscriber[T]) -> None:
        subscriber.on_subscribe(_CallbackSubscription(subscriber, self._callback))


class _MapSubscriber(Subscriber[T], Subscription, Generic[T, U]):
    def __init__(self, downstream: Subscriber[U], transform: Transform[T, U]) -> None:
        self._downstream = downstream
        self._transform = transform
        self._upstream: Subscription | None = None
        self._cancelled = False

    @property
    def is_cancelled(self) -> bool:
        return self._cancelled

    def request(self, demand: int) -> None:
        check_demand(demand)
        if not self._cancelled and self._upstream is not None:
            self._upstream.request(demand)

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        if self._upstream is not None:
            self._upstream.cancel()

    def on_subscribe(self, subscription: Subscription) -> None:
        self._upstream = subscription
        self._downstream.on_subscribe(self)

    def on_next(self, value: T) -> None:
        if self._cancelled:
            return
        try:
            result = self._transform(value)
        except Exception as e:
            logger.error(f"{type(self._transform).__name__} failed: {e!r}")
            self.cancel()
            self._downstream.on_error(e)
            return
        self._downstream.on_next(result)

    def on_complete(self) -> None:
        if not self._cancelled:
            self._cancelled = True
            self._downstream.on_complete()

    def on_error(self, error: Exception) -> None:
        if not self._cancelled:
            self._cancelled = True
            self._downstream.on_error(error)


class MapPublisher(Publisher[U], Generic[T, U]):
    """Applies a :class:`Transform` to each upstream value, in order."""

    def __init__(self, upstream: Publisher[T], transform: Transform[T, U]) -> None:
        self._upstream = upstream
        self._transform = transform

    def subscribe(self, subscriber: Subscriber[U]) -> None:
        self._upstream.subscribe(_MapSubscriber(subscriber, self._transform))


class _MulticastSubscription(Subscription, Generic[T]):
    def __init__(self, parent: MulticastPublisher[T], subscriber: Subscriber[T]) -> None:
        self._parent = parent
        self._subscriber = subscriber
        self._buffer: deque[T] = deque()
        self._terminal: Exception | bool = False
        self._demand = 0
        self._cancelled = False
        self._draining = False

    @property
    def is_cancelled(self) -> bool:
        return self._cancelled

    @property
    def unmet_demand(self) -> int:
        if self._demand == UNBOUNDED:
            return UNBOUNDED
        return max(0, self._demand - len(self._buffer))

    def request(self, demand: int) -> None:
        check_demand(demand)
        if self._cancelled:
            return
        self._demand = add_demand(self._demand, demand)
        self._drain()
        self._parent._request_upstream()

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        self._buffer.clear()
        self._parent._remove(self)

    def push(self, value: T) -> None:
        self._buffer.append(value)
        self._drain()

    def terminate(self, error: Exception | None) -> None:
        self._terminal = error if error is not None else True
        self._drain()

    def _drain(self) -> None:
        if self._draining:
            return
        self._draining = True
        try:
            while self._buffer and self._demand > 0 and not self._cancelled:
                if self._demand != UNBOUNDED:
                    self._demand -= 1
                self._subscriber.on_next(self._buffer.popleft())
            if self._terminal is not False and not self._buffer and not self._cancelled:
                self._cancelled = True
                if isinstance(self._terminal, Exception):
                    self._subscriber.on_error(self._terminal)
                else:
                    self._subscriber.on_complete()
        finally:
            self._draining = False


class MulticastPublisher(Publisher[T], Subscriber[T]):
    """Shares a single upstream subscription between many subscribers.

    Every upstream value reaches every subscriber.  Nothing is requested from
    upstream until :meth:`connect` is called, so all subscribers can attach
    first; afterwards upstream demand follows the slowest subscriber.  When the
    last subscriber cancels, the upstream subscription is cancelled too.
    """

    def __init__(self, upstream: Publisher[T]) -> None:
        self._upstream_publisher = upstream
        self._upstream: Subscription | None = None
        self._subscriptions: list[_MulticastSubscription[T]] = []
        self._outstanding = 0
        self._connected = False
        self._terminal: Exception | bool = False

    def subscribe(self, subscriber: Subscriber[T]) -> None:
        subscription = _MulticastSubscription(self, subscriber)
        subscriber.on_subscribe(subscription)
        if self._terminal is not False:
            subscription.terminate(
                self._terminal if isinstance(self._terminal, Exception) else None
            )
            return
        if not subscription.is_cancelled:
            self._subscriptions.append(subscription)

    def connect(self) -> None:
        """Subscribe to upstream and start honouring demand."""
        if self._connected:
            return
        self._connected = True
        self._upstream_publisher.subscribe(self)
        self._request_upstream()

    def on_subscribe(self, subscription: Subscription) -> None:
        self._upstream = subscription

    def on_next(self, value: T) -> None:
        if self._outstanding != UNBOUNDED:
            self._outstanding = max(0, self._outstanding - 1)
        for subscription in list(self._subscriptions):
            subscription.push(value)

    def on_complete(self) -> None:
        self._finish(None)

    def on_error(self, error: Exception) -> None:
        self._finish(error)

    def _finish(self, error: Exception | None) -> None:
        self._terminal = error if error is not None else True
        subscriptions, self._subscriptions = self._subscriptions, []
        for subscription in subscriptions:
            subscription.terminate(error)

    def _remove(self, subscription: _MulticastSubscription[T]) -> None:
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)
        if not self._subscriptions and self._upstream is not None:
            self._upstream.cancel()

    def _request_upstream(self) -> None:
        if not self._connected or self._upstream is None or not self._subscriptions:
            return
        if self._terminal is not False:
            return
        target = min(s.unmet_demand for s in self._subscriptions)
        if target == UNBOUNDED:
            if self._outstanding != UNBOUNDED:
                self._outstanding = UNBOUNDED
                self._upstream.request(UNBOUNDED)
            return
        needed = target - self._outstanding
        if needed > 0:
            self._outstanding += needed
            self._upstream.request(needed)


class SubscriberIterator(Subscriber[T]):
    """Pulls values from a synchronous publisher one ``next()`` at a time.

    An error terminating the stream is re-raised in the consumer.  Use
    :meth:`close` (or a ``with`` block) to cancel the stream early.
    """

    def __init__(self) -> None:
        self._subscription: Subscription | None = None
        self._values: deque[T] = deque()
        self._error: Exception | None = None
        self._done = False

    def on_subscribe(self, subscription: Subscription) -> None:
        self._subscription = subscription

    def on_next(self, value: T) -> None:
        self._values.append(value)

    def on_complete(self) -> None:
        self._done = True

    def on_error(self, error: Exception) -> None:
        self._error = error
        self._done = True

    def __iter__(self) -> SubscriberIterator[T]:
        return self

    def __next__(self) -> T:
        if not self._values and not self._done:
            if self._subscription is None:
                raise RuntimeError("SubscriberIterator is not subscribed")
            self._subscription.request(1)
        if self._values:
            return self._values.popleft()
        if self._error is not None:
            error, self._error = self._error, None
            raise error
        if not self._done:
            raise RuntimeError("Publisher did not deliver the requested value")
        raise StopIteration

    def close(self) -> None:
        self._done = True
        self._values.clear()
        if self._subscription is not None:
            self._subscription.cancel()

    def __enter__(self) -> SubscriberIterator[T]:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()
