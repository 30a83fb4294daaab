"""A thread-safe bounded FIFO of video frames."""

from __future__ import annotations

import threading
from collections import deque

import numpy as np


class FrameBuffer:
    """Bounded FIFO for handing frames from a producer thread to a consumer.

    Frames are copied on push, so the producer may reuse its array.
    """

    def __init__(self, capacity: int = 10) -> None:
        if capacity < 1:
            raise ValueError(f"buffer capacity must be positive, got {capacity}")
        self._capacity = capacity
        self._frames: deque[np.ndarray] = deque()
        self._lock = threading.Lock()
        self._not_empty = threading.Condition(self._lock)
        self._not_full = threading.Condition(self._lock)

    def push(self, frame: np.ndarray, blocking: bool = True) -> bool:
        """Add a copy of ``frame``.

        When the buffer is full, waits for room if ``blocking`` and otherwise
        returns False. Raises ValueError for an empty frame.
        """
        if frame is None or np.asarray(frame).size == 0:
            raise ValueError("cannot push an empty frame to the buffer")
        stored = np.array(frame, copy=True)
        with self._not_full:
            if len(self._frames) >= self._capacity:
                if not blocking:
                    return False
                self._not_full.wait_for(lambda: len(self._frames) < self._capacity)
            self._frames.append(stored)
            self._not_empty.notify()
        return True

    def pop(self, blocking: bool = True) -> np.ndarray | None:
        """Remove and return the oldest frame.

        When the buffer is empty, waits for a frame if ``blocking`` and
        otherwise returns None.
        """
        with self._not_empty:
            if not self._frames:
                if not blocking:
                    return None
                self._not_empty.wait_for(lambda: bool(self._frames))
            frame = self._frames.popleft()
            self._not_full.notify()
        return frame

    def __len__(self) -> int:
        with self._lock:
            return len(self._frames)

    @property
    def empty(self) -> bool:
        """True when no frames are held."""
        return len(self) == 0

    @property
    def full(self) -> bool:
        """True when the buffer holds ``capacity`` frames."""
        return len(self) >= self._capacity

    @property
    def capacity(self) -> int:
        """Maximum number of frames held at once."""
        return self._capacity

    def clear(self) -> None:
        """Drop every frame and wake producers waiting for room."""
        with self._lock:
            self._frames.clear()
            self._not_full.notify_all()