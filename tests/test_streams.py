"""Tests for the stream primitives in detection_training.streams."""

from __future__ import annotations

import pytest

from detection_training.streams import (
    UNBOUNDED,
    CallbackPublisher,
    FunctionTransform,
    Iterator,
    IteratorPublisher,
    MulticastPublisher,
    Subscriber,
    Subscription,
    Transform,
)


class _RangeIterator(Iterator[int]):
    """Yields 0..n-1, optionally failing when asked for ``fail_at``."""

    def __init__(self, n: int, fail_at: int | None = None) -> None:
        self.n = n
        self.fail_at = fail_at
        self.position = 0

    def has_next(self) -> bool:
        return self.position < self.n

    def next(self) -> int:
        if self.position == self.fail_at:
            raise OSError("disk on fire")
        value = self.position
        self.position += 1
        return value


class _Recorder(Subscriber[int]):
    """Collects everything it receives; requests ``initial`` on subscribe."""

    def __init__(self, initial: int = 0) -> None:
        self.initial = initial
        self.values: list[int] = []
        self.completed = False
        self.error: Exception | None = None
        self.subscription: Subscription | None = None

    def on_subscribe(self, subscription: Subscription) -> None:
        self.subscription = subscription
        if self.initial:
            subscription.request(self.initial)

    def on_next(self, value: int) -> None:
        self.values.append(value)

    def on_complete(self) -> None:
        self.completed = True

    def on_error(self, error: Exception) -> None:
        self.error = error


class _Doubler(Transform[int, int]):
    def __init__(self) -> None:
        self.calls = 0

    def invoke(self, value: int) -> int:
        self.calls += 1
        return value * 2


class TestIteratorPublisher:
    def test_delivers_only_requested_values(self) -> None:
        recorder = _Recorder()
        IteratorPublisher(_RangeIterator(5)).subscribe(recorder)
        assert recorder.values == []
        recorder.subscription.request(2)
        assert recorder.values == [0, 1]
        assert not recorder.completed

    def test_completes_when_iterator_exhausted(self) -> None:
        recorder = _Recorder(initial=10)
        IteratorPublisher(_RangeIterator(3)).subscribe(recorder)
        assert recorder.values == [0, 1, 2]
        assert recorder.completed
        assert recorder.error is None

    def test_iterator_error_terminates_stream(self) -> None:
        recorder = _Recorder(initial=10)
        IteratorPublisher(_RangeIterator(5, fail_at=2)).subscribe(recorder)
        assert recorder.values == [0, 1]
        assert isinstance(recorder.error, OSError)
        assert not recorder.completed

    def test_cancel_stops_delivery(self) -> None:
        recorder = _Recorder()
        IteratorPublisher(_RangeIterator(5)).subscribe(recorder)
        recorder.subscription.request(1)
        recorder.subscription.cancel()
        recorder.subscription.request(3)
        assert recorder.values == [0]
        assert recorder.subscription.is_cancelled

    def test_reentrant_request_does_not_recurse(self) -> None:
        class _Greedy(_Recorder):
            def on_next(self, value: int) -> None:
                super().on_next(value)
                self.subscription.request(1)

        recorder = _Greedy(initial=1)
        IteratorPublisher(_RangeIterator(2000)).subscribe(recorder)
        assert len(recorder.values) == 2000
        assert recorder.completed

    def test_invalid_demand_rejected(self) -> None:
        recorder = _Recorder()
        IteratorPublisher(_RangeIterator(1)).subscribe(recorder)
        with pytest.raises(ValueError, match="demand"):
            recorder.subscription.request(0)


class TestMapPublisher:
    def test_transform_applied_in_order(self) -> None:
        doubler = _Doubler()
        recorder = _Recorder(initial=10)
        IteratorPublisher(_RangeIterator(4)).map(doubler).subscribe(recorder)
        assert recorder.values == [0, 2, 4, 6]
        assert doubler.calls == 4
        assert recorder.completed

    def test_accepts_plain_callable(self) -> None:
        recorder = _Recorder(initial=10)
        IteratorPublisher(_RangeIterator(3)).map(lambda v: v + 1).subscribe(recorder)
        assert recorder.values == [1, 2, 3]

    def test_chained_maps(self) -> None:
        recorder = _Recorder(initial=10)
        (
            IteratorPublisher(_RangeIterator(3))
            .map(FunctionTransform(lambda v: v * 10))
            .map(lambda v: v + 1)
            .subscribe(recorder)
        )
        assert recorder.values == [1, 11, 21]

    def test_transform_error_fails_stream_and_cancels_upstream(self) -> None:
        iterator = _RangeIterator(10)

        def _boom(value: int) -> int:
            if value == 1:
                raise ValueError("bad batch")
            return value

        recorder = _Recorder(initial=10)
        IteratorPublisher(iterator).map(_boom).subscribe(recorder)
        assert recorder.values == [0]
        assert isinstance(recorder.error, ValueError)
        # Nothing beyond the failing value was pulled from the iterator.
        assert iterator.position == 2

    def test_upstream_error_forwarded(self) -> None:
        recorder = _Recorder(initial=10)
        IteratorPublisher(_RangeIterator(5, fail_at=0)).map(_Doubler()).subscribe(recorder)
        assert isinstance(recorder.error, OSError)


class TestCallbackPublisher:
    def test_each_request_calls_callback(self) -> None:
        counter = iter(range(100))
        recorder = _Recorder()
        CallbackPublisher(lambda: next(counter)).subscribe(recorder)
        recorder.subscription.request(3)
        assert recorder.values == [0, 1, 2]
        assert not recorder.completed

    def test_subscribers_are_independent(self) -> None:
        calls: list[int] = []
        publisher = CallbackPublisher(lambda: calls.append(1) or len(calls))
        first, second = _Recorder(), _Recorder()
        publisher.subscribe(first)
        publisher.subscribe(second)
        first.subscription.request(2)
        second.subscription.request(1)
        first.subscription.cancel()
        second.subscription.request(1)
        assert first.values == [1, 2]
        assert second.values == [3, 4]

    def test_callback_error_terminates(self) -> None:
        def _fail() -> int:
            raise RuntimeError("snapshot failed")

        recorder = _Recorder(initial=1)
        CallbackPublisher(_fail).subscribe(recorder)
        assert isinstance(recorder.error, RuntimeError)


class TestMulticastPublisher:
    def test_nothing_flows_before_connect(self) -> None:
        multicast = MulticastPublisher(IteratorPublisher(_RangeIterator(3)))
        recorder = _Recorder(initial=5)
        multicast.subscribe(recorder)
        assert recorder.values == []
        multicast.connect()
        assert recorder.values == [0, 1, 2]
        assert recorder.completed

    def test_every_subscriber_sees_every_value(self) -> None:
        multicast = IteratorPublisher(_RangeIterator(4)).multicast()
        a, b = _Recorder(initial=UNBOUNDED), _Recorder(initial=UNBOUNDED)
        multicast.subscribe(a)
        multicast.subscribe(b)
        multicast.connect()
        assert a.values == b.values == [0, 1, 2, 3]
        assert a.completed and b.completed

    def test_demand_follows_slowest_subscriber(self) -> None:
        iterator = _RangeIterator(10)
        multicast = IteratorPublisher(iterator).multicast()
        fast, slow = _Recorder(initial=UNBOUNDED), _Recorder()
        multicast.subscribe(fast)
        multicast.subscribe(slow)
        multicast.connect()
        assert fast.values == []
        slow.subscription.request(2)
        assert fast.values == [0, 1]
        assert slow.values == [0, 1]
        assert iterator.position == 2

    def test_error_fans_out(self) -> None:
        multicast = IteratorPublisher(_RangeIterator(3, fail_at=1)).multicast()
        a, b = _Recorder(initial=UNBOUNDED), _Recorder(initial=UNBOUNDED)
        multicast.subscribe(a)
        multicast.subscribe(b)
        multicast.connect()
        assert isinstance(a.error, OSError)
        assert a.error is b.error

    def test_late_subscriber_gets_terminal_signal(self) -> None:
        multicast = IteratorPublisher(_RangeIterator(1)).multicast()
        multicast.subscribe(_Recorder(initial=UNBOUNDED))
        multicast.connect()
        late = _Recorder()
        multicast.subscribe(late)
        assert late.completed

    def test_last_cancel_cancels_upstream(self) -> None:
        iterator = _RangeIterator(10)
        multicast = IteratorPublisher(iterator).multicast()
        a = _Recorder()
        multicast.subscribe(a)
        multicast.connect()
        a.subscription.request(1)
        a.subscription.cancel()
        b = _Recorder(initial=5)
        multicast.subscribe(b)
        assert iterator.position == 1
        assert b.values == []


class TestSubscriberIterator:
    def test_iterates_all_values(self) -> None:
        assert list(IteratorPublisher(_RangeIterator(4)).as_iterator()) == [0, 1, 2, 3]

    def test_pulls_lazily(self) -> None:
        iterator = _RangeIterator(10)
        values = IteratorPublisher(iterator).as_iterator()
        assert next(values) == 0
        assert iterator.position == 1

    def test_reraises_stream_error(self) -> None:
        values = IteratorPublisher(_RangeIterator(5, fail_at=2)).as_iterator()
        assert next(values) == 0
        assert next(values) == 1
        with pytest.raises(OSError, match="disk on fire"):
            next(values)

    def test_close_cancels(self) -> None:
        iterator = _RangeIterator(10)
        with IteratorPublisher(iterator).as_iterator() as values:
            next(values)
        assert list(values) == []
        assert iterator.position == 1
