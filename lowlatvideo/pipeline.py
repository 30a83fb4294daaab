"""A capture, upscale and display pipeline running on background threads."""

from __future__ import annotations

import dataclasses
import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable

import numpy as np

from .camera import Camera
from .display import Display
from .frame_buffer import FrameBuffer
from .timer import Timer
from .upscaler import Algorithm, Upscaler

logger = logging.getLogger(__name__)


class PipelineError(RuntimeError):
    """Raised when the pipeline cannot be initialized or started."""


@dataclass
class PipelineConfig:
    """Settings for every stage of the pipeline."""

    camera_index: int = 0
    video_source: str = ""
    camera_width: int = 1280
    camera_height: int = 720
    camera_fps: int = 60

    target_width: int = 1920
    target_height: int = 1080
    upscale_algorithm: Algorithm = Algorithm.BILINEAR
    use_gpu: bool = True

    buffer_size: int = 5

    window_name: str = "Video Output"
    show_metrics: bool = True
    enable_vsync: bool = False
    max_display_fps: int = 60

    measure_latency: bool = True


class Pipeline:
    """Connects a camera, a frame buffer, an upscaler and a display.

    Frames are captured on one thread, then upscaled and rendered on another.
    """

    def __init__(
        self,
        config: PipelineConfig | None = None,
        *,
        camera_factory: Callable[[int | str], Camera] | None = None,
        display_factory: Callable[[int, int], Display] | None = None,
        list_cameras: Callable[[], list[int]] | None = None,
    ) -> None:
        self._config = dataclasses.replace(config) if config is not None else PipelineConfig()
        self._camera_factory = camera_factory if camera_factory is not None else Camera
        self._display_factory = display_factory if display_factory is not None else Display
        self._list_cameras = (
            list_cameras if list_cameras is not None else Camera.list_available_cameras
        )

        self._camera = None
        self._buffer: FrameBuffer | None = None
        self._upscaler: Upscaler | None = None
        self._display = None

        self._timer = Timer()
        self._latency = 0.0
        self._fps = 0.0
        self._frame_counter = 0
        self._last_fps_update = time.perf_counter()
        self._perf_lock = threading.Lock()

        self._running = threading.Event()
        self._wake = threading.Event()
        self._threads: list[threading.Thread] = []

    @property
    def config(self) -> PipelineConfig:
        return self._config

    @property
    def timer(self) -> Timer:
        """Timer holding the per-stage durations."""
        return self._timer

    def initialize(self, source: int | str | None = None) -> None:
        """Create and set up every component.

        ``source`` is a camera index or a video file path; None (or a negative
        index) keeps the configured source. Raises PipelineError on failure.
        """
        if isinstance(source, str):
            self._config.video_source = source
        elif source is not None and source >= 0:
            self._config.camera_index = source
            self._config.video_source = ""

        self._init_camera()
        self._init_upscaler()
        self._init_display()

        try:
            self._buffer = FrameBuffer(self._config.buffer_size)
        except ValueError as exc:
            raise PipelineError(f"error creating frame buffer: {exc}") from exc
        logger.info("Frame buffer initialized with size %d", self._config.buffer_size)

        self._timer.reset()
        with self._perf_lock:
            self._latency = 0.0
            self._fps = 0.0
            self._frame_counter = 0
            self._last_fps_update = time.perf_counter()
        logger.info("Pipeline initialized successfully")

    def start(self) -> None:
        """Start the pipeline threads; does nothing if already running."""
        if self._camera is None or self._upscaler is None or self._display is None or self._buffer is None:
            raise PipelineError("cannot start: pipeline not fully initialized")
        if self._running.is_set():
            logger.info("Pipeline is already running")
            return
        if not self._camera.is_opened():
            raise PipelineError("camera is not opened, cannot start pipeline")

        self._wake.clear()
        self._running.set()
        self._threads = [
            threading.Thread(target=loop, name=name, daemon=True)
            for name, loop in (
                ("capture", self._capture_loop),
                ("processing", self._processing_loop),
                ("display", self._display_loop),
            )
        ]
        for thread in self._threads:
            thread.start()
        logger.info("Pipeline started with %d frame buffer", self._config.buffer_size)

    def stop(self) -> None:
        """Stop the threads, wait for them and empty the buffer."""
        self._running.clear()
        self._wake.set()
        current = threading.current_thread()
        for thread in self._threads:
            if thread is not current:
                thread.join()
        self._threads = []
        if self._buffer is not None:
            self._buffer.clear()
        logger.info("Pipeline stopped")

    def is_running(self) -> bool:
        """Whether the pipeline threads are running."""
        return self._running.is_set()

    def wait_for_key(self, key: int | str = "q") -> bool:
        """Wait while running for a key press.

        Returns True and stops the pipeline when ``key`` is pressed, False when
        another key is pressed or the pipeline stops by itself.
        """
        code = ord(key) if isinstance(key, str) else key
        while self.is_running():
            pressed = self._display.poll_key(100)
            if pressed == code:
                self.stop()
                return True
            if pressed >= 0:
                return False
        return False

    def latency(self) -> float:
        """Smoothed processing-to-display latency in milliseconds."""
        with self._perf_lock:
            return self._latency

    def fps(self) -> float:
        """Frames captured per second, measured over the last second."""
        with self._perf_lock:
            return self._fps

    def set_target_resolution(self, width: int, height: int) -> None:
        """Set the upscaling target used by the next ``initialize``."""
        if self.is_running():
            raise RuntimeError("cannot change resolution while pipeline is running")
        self._config.target_width = width
        self._config.target_height = height

    def set_buffer_size(self, size: int) -> None:
        """Set the buffer capacity used by the next ``initialize``."""
        if self.is_running():
            raise RuntimeError("cannot change buffer size while pipeline is running")
        self._config.buffer_size = size

    def set_display_options(self, show_metrics: bool) -> None:
        """Turn the display's metrics overlay on or off."""
        self._config.show_metrics = show_metrics
        if self._display is not None:
            self._display.show_performance_metrics(show_metrics)

    def print_performance_stats(self) -> None:
        """Print latency, frame rate and per-stage timings to standard output."""
        print()
        print("=== Pipeline Performance ===")
        print(f"End-to-end latency: {self.latency():.2f} ms")
        print(f"Effective FPS: {self.fps():.1f}")
        self._timer.print_stats()

    def _init_camera(self) -> None:
        config = self._config
        if config.video_source:
            logger.info("Using video file: %s", config.video_source)
            source: int | str = config.video_source
        else:
            available = self._list_cameras()
            if not available:
                raise PipelineError("No cameras detected!")
            if config.camera_index not in available:
                logger.info(
                    "Camera index %d not available; using %d instead",
                    config.camera_index,
                    available[0],
                )
                config.camera_index = available[0]
            source = config.camera_index
        try:
            camera = self._camera_factory(source)
            camera.initialize(config.camera_width, config.camera_height, config.camera_fps)
        except (RuntimeError, OSError, TypeError, ValueError) as exc:
            raise PipelineError(f"failed to initialize camera/video source: {exc}") from exc
        self._camera = camera
        logger.info(
            "Source initialized successfully at %dx%d @ %s FPS",
            camera.width,
            camera.height,
            camera.fps,
        )

    def _init_upscaler(self) -> None:
        config = self._config
        upscaler = Upscaler(config.upscale_algorithm, config.use_gpu)
        try:
            upscaler.initialize(config.target_width, config.target_height)
        except ValueError as exc:
            raise PipelineError(f"failed to initialize upscaler: {exc}") from exc
        self._upscaler = upscaler
        logger.info(
            "Upscaler initialized with algorithm: %s, using %s",
            upscaler.algorithm_name(),
            "GPU" if upscaler.use_gpu else "CPU",
        )

    def _init_display(self) -> None:
        config = self._config
        try:
            display = self._display_factory(config.target_width, config.target_height)
            display.initialize(config.window_name)
        except RuntimeError as exc:
            raise PipelineError(f"failed to initialize display: {exc}") from exc
        display.show_performance_metrics(config.show_metrics)
        display.set_vsync(config.enable_vsync)
        display.set_max_frame_rate(config.max_display_fps)
        self._display = display
        logger.info("Display initialized at %dx%d", config.target_width, config.target_height)

    def _capture_loop(self) -> None:
        dropped = 0
        while self._running.is_set():
            self._timer.start("capture")
            frame = self._camera.get_frame()
            if frame is None or np.asarray(frame).size == 0:
                if not self._camera.is_opened():
                    logger.info("End of video file reached")
                    self._running.clear()
                    break
                time.sleep(0.001)
                continue
            self._timer.stop("capture")

            self._timer.start("buffer_push")
            pushed = self._buffer.push(frame, blocking=False)
            self._timer.stop("buffer_push")
            if not pushed:
                dropped += 1
                if dropped % 10 == 0:
                    logger.warning("Dropped %d frames due to full buffer", dropped)

            with self._perf_lock:
                self._frame_counter += 1
                now = time.perf_counter()
                elapsed = now - self._last_fps_update
                if elapsed >= 1.0:
                    self._fps = self._frame_counter / elapsed
                    self._frame_counter = 0
                    self._last_fps_update = now

    def _processing_loop(self) -> None:
        while self._running.is_set():
            self._timer.start("buffer_pop")
            frame = self._buffer.pop(blocking=False)
            self._timer.stop("buffer_pop")
            if frame is None:
                time.sleep(0.001)
                continue

            process_time = time.perf_counter()
            self._timer.start("upscale")
            try:
                output = self._upscaler.upscale(frame)
            except (ValueError, RuntimeError) as exc:
                self._timer.stop("upscale")
                logger.error("Failed to upscale frame: %s", exc)
                continue
            self._timer.stop("upscale")

            try:
                self._display.render_frame(output)
            except (ValueError, RuntimeError) as exc:
                logger.error("Failed to render frame: %s", exc)

            if self._config.measure_latency:
                latency = (time.perf_counter() - process_time) * 1000.0
                with self._perf_lock:
                    self._latency = self._latency * 0.9 + latency * 0.1

    def _display_loop(self) -> None:
        # Rendering happens on the processing thread; this one only idles until stopped.
        while self._running.is_set():
            self._wake.wait(0.1)