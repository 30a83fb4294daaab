"""On-screen rendering of frames with an optional performance overlay."""

from __future__ import annotations

import functools
import logging
import os
import threading
import time
from typing import Callable

import numpy as np
from PIL import Image, ImageDraw, ImageFont

os.environ.setdefault("PYGAME_HIDE_SUPPORT_PROMPT", "1")
import pygame  # noqa: E402

from .timer import Timer  # noqa: E402

logger = logging.getLogger(__name__)

Color = tuple[int, int, int]


@functools.lru_cache(maxsize=1)
def _font():
    return ImageFont.load_default()


def draw_text(
    frame: np.ndarray, text: str, origin: tuple[int, int], color: Color = (0, 255, 0)
) -> np.ndarray:
    """Draw ``text`` on ``frame`` in place with its baseline starting at ``origin``.

    ``color`` is given in the frame's channel order (BGR for colour frames).
    The frame must be uint8 with one, three or four channels. Returns the frame.
    """
    if frame.dtype != np.uint8 or not (
        frame.ndim == 2 or (frame.ndim == 3 and frame.shape[2] in (3, 4))
    ):
        raise ValueError("text can only be drawn on uint8 gray, BGR or BGRA frames")
    if frame.ndim == 2:
        image = Image.fromarray(np.ascontiguousarray(frame))
        b, g, r = color
        fill: int | tuple[int, int, int] = int(round(0.114 * b + 0.587 * g + 0.299 * r))
    else:
        image = Image.fromarray(np.ascontiguousarray(frame[..., :3]))
        fill = tuple(int(c) for c in color[:3])
    draw = ImageDraw.Draw(image)
    font = _font()
    x, y = origin
    bottom = draw.textbbox((0, 0), text, font=font)[3]
    draw.text((x, y - bottom), text, fill=fill, font=font)
    if frame.ndim == 2:
        frame[...] = np.asarray(image)
    else:
        frame[..., :3] = np.asarray(image)
    return frame


def _frame_interval(fps: int) -> float:
    """Frame interval in seconds, truncated to whole microseconds."""
    return int(1_000_000.0 / fps) / 1_000_000.0


def _to_rgb(frame: np.ndarray) -> np.ndarray:
    if frame.dtype != np.uint8:
        frame = np.clip(frame, 0, 255).astype(np.uint8)
    if frame.ndim == 2:
        return np.stack([frame, frame, frame], axis=-1)
    if frame.shape[2] == 1:
        return np.repeat(frame, 3, axis=2)
    return frame[..., 2::-1]


class Display:
    """Shows frames in a window, optionally limiting the rate and drawing metrics."""

    def __init__(
        self,
        width: int = 1920,
        height: int = 1080,
        *,
        clock: Callable[[], float] = time.perf_counter,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._width = width
        self._height = height
        self._window_name = ""
        self._show_metrics = True
        self._vsync_enabled = False
        self._max_fps = 60
        self._frame_interval = _frame_interval(self._max_fps)
        self._clock = clock
        self._sleep = sleep
        self._timer = Timer()
        self._last_render_time = 0.0
        self._current_fps = 0.0
        now = clock()
        self._next_frame_time = now
        self._last_frame_time = now
        self._lock = threading.Lock()
        self._screen = None

    def initialize(self, window_name: str = "Video Output") -> None:
        """Open the window; raises RuntimeError if no window can be created."""
        self._window_name = window_name
        try:
            pygame.display.init()
            self._screen = pygame.display.set_mode((self._width, self._height), pygame.RESIZABLE)
            pygame.display.set_caption(window_name)
        except pygame.error as exc:
            self._screen = None
            raise RuntimeError(f"failed to initialize display: {exc}") from exc
        logger.info("Display initialized: %dx%d @ %d FPS", self._width, self._height, self._max_fps)

    def render_frame(self, frame: np.ndarray) -> None:
        """Show ``frame`` (BGR or gray), scaled to the window.

        Raises ValueError for an empty frame and RuntimeError when the window
        is not open or drawing fails.
        """
        if frame is None or np.asarray(frame).size == 0:
            raise ValueError("cannot render an empty frame")
        array = np.asarray(frame)
        with self._lock:
            if self._screen is None:
                raise RuntimeError("display not initialized")
            self._limit_frame_rate()
            self._timer.start("render")
            try:
                shown = array
                if self._show_metrics:
                    shown = np.array(array, copy=True)
                    self._draw_performance_overlay(shown)
                self._blit(shown)
            except pygame.error as exc:
                self._timer.stop("render")
                raise RuntimeError(f"error rendering frame: {exc}") from exc
            self._timer.stop("render")
            self._last_render_time = self._timer.duration("render") or 0.0
            self._update_fps()

    def show_performance_metrics(self, show: bool) -> None:
        """Turn the metrics overlay on or off."""
        self._show_metrics = show

    def cleanup(self) -> None:
        """Close the window if it is open."""
        if self._screen is not None:
            self._screen = None
            pygame.display.quit()

    def set_vsync(self, enabled: bool) -> None:
        """Turn frame-rate limiting to ``max_fps`` on or off."""
        self._vsync_enabled = enabled
        logger.info("VSync %s", "enabled" if enabled else "disabled")

    def set_max_frame_rate(self, fps: int) -> None:
        """Set the maximum frame rate; zero or less means unlimited."""
        self._max_fps = fps if fps > 0 else 0
        if self._max_fps > 0:
            self._frame_interval = _frame_interval(self._max_fps)
        logger.info(
            "Display max framerate set to %s", self._max_fps if self._max_fps > 0 else "unlimited"
        )

    def poll_key(self, timeout_ms: int = 1) -> int:
        """Wait up to ``timeout_ms`` for a key press and return its code, or -1.

        A timeout of zero or less checks once without waiting.
        """
        if self._screen is None:
            raise RuntimeError("display not initialized")
        deadline = time.monotonic() + max(timeout_ms, 0) / 1000.0
        while True:
            pygame.event.pump()
            for event in pygame.event.get(pygame.KEYDOWN):
                return int(event.key)
            if time.monotonic() >= deadline:
                return -1
            time.sleep(0.002)

    @property
    def window_name(self) -> str:
        return self._window_name

    @property
    def show_metrics(self) -> bool:
        return self._show_metrics

    @property
    def vsync_enabled(self) -> bool:
        return self._vsync_enabled

    @property
    def max_fps(self) -> int:
        """Maximum frame rate; 0 means unlimited."""
        return self._max_fps

    @property
    def frame_interval(self) -> float:
        """Minimum time between frames in seconds when limiting is on."""
        return self._frame_interval

    @property
    def last_render_time(self) -> float:
        """Duration of the last render in milliseconds."""
        return self._last_render_time

    @property
    def current_fps(self) -> float:
        """Smoothed display frame rate."""
        return self._current_fps

    def _blit(self, frame: np.ndarray) -> None:
        rgb = np.ascontiguousarray(_to_rgb(frame).swapaxes(0, 1))
        surface = pygame.surfarray.make_surface(rgb)
        target = self._screen.get_size()
        if surface.get_size() != target:
            surface = pygame.transform.scale(surface, target)
        self._screen.blit(surface, (0, 0))
        pygame.display.flip()
        pygame.event.pump()

    def _draw_performance_overlay(self, frame: np.ndarray) -> None:
        rows, cols = frame.shape[:2]
        top, left = max(rows - 80, 0), 10
        frame[top : max(rows - 10, 0), left : min(left + 300, cols)] = 0
        fps_text = f"Display FPS: {self._current_fps:.1f}"
        render_text = f"Render time: {self._last_render_time:.2f} ms"
        if frame.dtype == np.uint8 and (frame.ndim == 2 or frame.shape[2] in (3, 4)):
            draw_text(frame, fps_text, (20, rows - 50), (0, 255, 0))
            draw_text(frame, render_text, (20, rows - 20), (0, 255, 0))

    def _update_fps(self) -> None:
        now = self._clock()
        elapsed_ms = (now - self._last_frame_time) * 1000.0
        if elapsed_ms > 0:
            instantaneous = 1000.0 / elapsed_ms
            self._current_fps = self._current_fps * 0.7 + instantaneous * 0.3
        self._last_frame_time = now

    def _limit_frame_rate(self) -> None:
        if self._max_fps <= 0 or not self._vsync_enabled:
            return
        now = self._clock()
        if now < self._next_frame_time:
            self._sleep(self._next_frame_time - now)
        self._next_frame_time = self._clock() + self._frame_interval