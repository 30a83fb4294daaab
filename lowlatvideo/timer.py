"""Named event timing with a per-event history of durations."""

from __future__ import annotations

import sys
import threading
import time
import warnings
from dataclasses import dataclass, field
from statistics import fmean
from typing import Callable, TextIO


@dataclass
class _EventTiming:
    start_time: float | None = None
    durations: list[float] = field(default_factory=list)


class Timer:
    """Records how long named events take, in milliseconds.

    Durations of every completed start/stop pair are kept so that the last,
    average, minimum and maximum can be reported. Safe to share between threads.
    """

    def __init__(self, clock: Callable[[], float] = time.perf_counter) -> None:
        self._clock = clock
        self._events: dict[str, _EventTiming] = {}
        self._lock = threading.Lock()

    def start(self, event_name: str) -> None:
        """Start (or restart) timing ``event_name``."""
        now = self._clock()
        with self._lock:
            self._events.setdefault(event_name, _EventTiming()).start_time = now

    def stop(self, event_name: str) -> None:
        """Stop timing ``event_name`` and record the elapsed time.

        Stopping an event that was never started issues a RuntimeWarning and
        records nothing.
        """
        end = self._clock()
        with self._lock:
            event = self._events.get(event_name)
            if event is not None and event.start_time is not None:
                event.durations.append((end - event.start_time) * 1000.0)
                event.start_time = None
                return
        warnings.warn(
            f"Trying to stop timer for non-started event: {event_name}",
            RuntimeWarning,
            stacklevel=2,
        )

    def duration(self, event_name: str) -> float | None:
        """Most recent duration of ``event_name`` in ms, or None if none recorded."""
        with self._lock:
            event = self._events.get(event_name)
            if event is None or not event.durations:
                return None
            return event.durations[-1]

    def average_duration(self, event_name: str) -> float | None:
        """Mean duration of ``event_name`` in ms, or None if none recorded."""
        with self._lock:
            event = self._events.get(event_name)
            if event is None or not event.durations:
                return None
            return fmean(event.durations)

    def reset(self) -> None:
        """Forget every event."""
        with self._lock:
            self._events.clear()

    def format_stats(self) -> str:
        """Return a table of statistics for every event with recorded durations."""
        with self._lock:
            snapshot = {
                name: list(event.durations)
                for name, event in self._events.items()
                if event.durations
            }

        header = " | ".join(
            [
                f"{'Event':>25}",
                f"{'Last (ms)':>10}",
                f"{'Avg (ms)':>10}",
                f"{'Min (ms)':>10}",
                f"{'Max (ms)':>10}",
                f"{'Count':>10}",
            ]
        )
        lines = ["", "=== Timer Statistics ===", header, "-" * 80]
        for name in sorted(snapshot):
            durations = snapshot[name]
            lines.append(
                " | ".join(
                    [
                        f"{name:>25}",
                        f"{durations[-1]:>10.3f}",
                        f"{fmean(durations):>10.3f}",
                        f"{min(durations):>10.3f}",
                        f"{max(durations):>10.3f}",
                        f"{len(durations):>10}",
                    ]
                )
            )
        lines.append("")
        return "\n".join(lines) + "\n"

    def print_stats(self, file: TextIO | None = None) -> None:
        """Write the statistics table to ``file`` (standard output by default)."""
        print(self.format_stats(), end="", file=file if file is not None else sys.stdout)