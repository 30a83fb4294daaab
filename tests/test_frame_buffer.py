import threading

import numpy as np
import pytest

from lowlatvideo.frame_buffer import FrameBuffer


def _frame(value, shape=(4, 6, 3)):
    return np.full(shape, value, dtype=np.uint8)


def test_default_capacity_matches_phase2_buffer():
    buffer = FrameBuffer(10)
    assert buffer.capacity == 10
    assert FrameBuffer().capacity == 10
    assert buffer.empty
    assert not buffer.full
    assert len(buffer) == 0


def test_invalid_capacity_rejected():
    with pytest.raises(ValueError):
        FrameBuffer(0)


def test_fifo_order():
    buffer = FrameBuffer(5)
    for value in (1, 2, 3):
        assert buffer.push(_frame(value))
    popped = [int(buffer.pop()[0, 0, 0]) for _ in range(3)]
    assert popped == [1, 2, 3]
    assert buffer.empty


def test_non_blocking_push_when_full_returns_false():
    buffer = FrameBuffer(2)
    assert buffer.push(_frame(1), blocking=False)
    assert buffer.push(_frame(2), blocking=False)
    assert buffer.full
    assert buffer.push(_frame(3), blocking=False) is False
    assert len(buffer) == 2
    assert int(buffer.pop()[0, 0, 0]) == 1


def test_non_blocking_pop_when_empty_returns_none():
    buffer = FrameBuffer(3)
    assert buffer.pop(blocking=False) is None


def test_push_copies_the_frame():
    buffer = FrameBuffer(3)
    frame = _frame(7)
    buffer.push(frame)
    frame[:] = 0
    popped = buffer.pop()
    assert np.array_equal(popped, _frame(7))
    assert int(popped[0, 0, 0]) == 7


def test_empty_frame_rejected():
    buffer = FrameBuffer(3)
    with pytest.raises(ValueError):
        buffer.push(np.empty((0, 0, 3), dtype=np.uint8))
    with pytest.raises(ValueError):
        buffer.push(None)
    assert buffer.empty


def test_clear_empties_and_allows_reuse():
    buffer = FrameBuffer(2)
    buffer.push(_frame(1))
    buffer.push(_frame(2))
    buffer.clear()
    assert len(buffer) == 0
    assert buffer.pop(blocking=False) is None
    assert buffer.push(_frame(9), blocking=False)
    assert int(buffer.pop()[0, 0, 0]) == 9


def test_blocking_push_waits_for_room():
    buffer = FrameBuffer(1)
    buffer.push(_frame(1))
    producer = threading.Thread(target=buffer.push, args=(_frame(2),))
    producer.start()
    producer.join(timeout=0.1)
    assert producer.is_alive()
    assert int(buffer.pop()[0, 0, 0]) == 1
    producer.join(timeout=2.0)
    assert not producer.is_alive()
    assert int(buffer.pop(blocking=False)[0, 0, 0]) == 2


def test_blocking_pop_waits_for_frame():
    buffer = FrameBuffer(2)
    result = []
    consumer = threading.Thread(target=lambda: result.append(buffer.pop()))
    consumer.start()
    consumer.join(timeout=0.1)
    assert consumer.is_alive()
    buffer.push(_frame(5))
    consumer.join(timeout=2.0)
    assert not consumer.is_alive()
    assert int(result[0][0, 0, 0]) == 5


def test_clear_wakes_blocked_producer():
    buffer = FrameBuffer(1)
    buffer.push(_frame(1))
    producer = threading.Thread(target=buffer.push, args=(_frame(2),))
    producer.start()
    producer.join(timeout=0.1)
    assert producer.is_alive()
    buffer.clear()
    producer.join(timeout=2.0)
    assert not producer.is_alive()
    assert int(buffer.pop(blocking=False)[0, 0, 0]) == 2


def test_producer_consumer_threads_preserve_order():
    buffer = FrameBuffer(3)
    count = 60
    received = []

    def produce():
        for value in range(count):
            buffer.push(_frame(value))

    def consume():
        for _ in range(count):
            received.append(int(buffer.pop()[0, 0, 0]))

    threads = [threading.Thread(target=produce), threading.Thread(target=consume)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=5.0)
    assert not any(thread.is_alive() for thread in threads)
    assert received == list(range(count))
    assert buffer.empty