"""Command-line video processor: capture, upscale, display and optional recording."""

from __future__ import annotations

import logging
import signal
import subprocess
import sys
import threading
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from pathlib import Path

import numpy as np
from PIL import Image

from .camera import Camera
from .display import Display, draw_text
from .frame_buffer import FrameBuffer
from .timer import Timer
from .upscaler import Algorithm, Upscaler

logger = logging.getLogger(__name__)

_GREEN = (0, 255, 0)
_RED = (0, 0, 255)
_WINDOW_NAME = "Video Feed"
_USAGE = "[camera_index|video_file_path] [--output filename] [--record]"


class VideoWriter:
    """Encodes BGR frames into a video file through an ffmpeg child process."""

    def __init__(
        self,
        path: str | Path,
        fps: float,
        size: tuple[int, int],
        *,
        command: Sequence[str] | None = None,
    ) -> None:
        width, height = size
        if width <= 0 or height <= 0:
            raise ValueError(f"invalid frame size: {width}x{height}")
        self._path = str(path)
        self._size = (width, height)
        self._fps = fps
        self.frames_written = 0
        if command is None:
            command = (
                "ffmpeg", "-v", "error", "-y",
                "-f", "rawvideo", "-pix_fmt", "bgr24",
                "-s", f"{width}x{height}", "-r", f"{fps:g}", "-i", "-",
                "-c:v", "libx264", "-pix_fmt", "yuv420p", self._path,
            )
        self._process: subprocess.Popen | None = subprocess.Popen(
            list(command),
            stdin=subprocess.PIPE,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
        )

    @property
    def path(self) -> str:
        return self._path

    @property
    def size(self) -> tuple[int, int]:
        """Frame (width, height)."""
        return self._size

    @property
    def fps(self) -> float:
        return self._fps

    @property
    def is_opened(self) -> bool:
        return self._process is not None

    def write(self, frame: np.ndarray) -> None:
        """Append one BGR uint8 frame of the writer's size."""
        process = self._process
        if process is None or process.stdin is None:
            raise RuntimeError("video writer is closed")
        array = np.asarray(frame)
        width, height = self._size
        if array.dtype != np.uint8 or array.shape != (height, width, 3):
            raise ValueError(
                f"expected a {width}x{height} BGR uint8 frame, got shape {array.shape} "
                f"and type {array.dtype}"
            )
        try:
            process.stdin.write(np.ascontiguousarray(array).tobytes())
        except (BrokenPipeError, OSError) as exc:
            self.release()
            raise RuntimeError(f"video encoder stopped: {exc}") from exc
        self.frames_written += 1

    def release(self) -> None:
        """Finish the file and wait for the encoder; safe to call twice."""
        process, self._process = self._process, None
        if process is None:
            return
        if process.stdin is not None:
            try:
                process.stdin.close()
            except OSError:
                pass
        process.wait()

    def __enter__(self) -> VideoWriter:
        return self

    def __exit__(self, *args) -> None:
        self.release()


WriterFactory = Callable[[str, float, tuple[int, int]], VideoWriter]


def _running_event() -> threading.Event:
    event = threading.Event()
    event.set()
    return event


@dataclass
class AppState:
    """Settings from the command line and state shared between the worker threads.

    ``display`` may hold an already initialized display for the display loop;
    when it is None the loop opens its own window.
    """

    source: int | str | None = None
    output_filename: str = "output.mp4"
    save_video: bool = False
    running: threading.Event = field(default_factory=_running_event, repr=False)
    frames_captured: int = 0
    frames_processed: int = 0
    frames_displayed: int = 0
    frames_dropped: int = 0
    writer: VideoWriter | None = field(default=None, repr=False)
    writer_factory: WriterFactory = field(default=VideoWriter, repr=False)
    display: Display | None = field(default=None, repr=False, compare=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    @property
    def writer_initialized(self) -> bool:
        return self.writer is not None

    def _increment(self, counter: str) -> int:
        with self._lock:
            value = getattr(self, counter) + 1
            setattr(self, counter, value)
            return value

    def release_writer(self) -> bool:
        """Close the video file if one was opened; returns whether one was."""
        if self.writer is None:
            return False
        self.writer.release()
        return True


def is_camera_index(text: str) -> bool:
    """Whether ``text`` names a camera index rather than a file path."""
    return bool(text) and text.isascii() and text.isdigit()


def parse_args(argv: Sequence[str]) -> AppState:
    """Build the application state from command-line arguments.

    ``--output``/``-o`` takes the next argument as the output file,
    ``--record``/``-r`` starts recording at once, and any other argument is the
    source: a camera index when it is all digits, otherwise a video file.
    """
    state = AppState()
    args = iter(argv)
    for arg in args:
        if arg in ("--output", "-o"):
            value = next(args, None)
            if value is not None:
                state.output_filename = value
        elif arg in ("--record", "-r"):
            state.save_video = True
        else:
            state.source = int(arg) if is_camera_index(arg) else arg
    return state


def _log_dropped(count: int) -> None:
    if count % 10 == 0:
        logger.warning("Dropped %d frames due to full buffer", count)


def capture_loop(camera: Camera, buffer: FrameBuffer, timer: Timer, state: AppState) -> None:
    """Read frames from ``camera`` into ``buffer`` until stopped or the source ends.

    Frames are dropped while the buffer is at least 80% full.
    """
    logger.info("Capture thread started")
    start = time.perf_counter()
    frame_counter = 0
    while state.running.is_set():
        timer.start("acquisition")
        frame = camera.get_frame()
        timer.stop("acquisition")

        if frame is None or np.asarray(frame).size == 0:
            logger.error("Failed to get frame from source")
            time.sleep(0.005)
            if not camera.is_opened():
                logger.info("End of video file reached")
                state.running.clear()
                break
            continue

        frame_counter += 1
        now = time.perf_counter()
        elapsed = now - start
        if elapsed >= 1.0:
            logger.info("Source capture rate: %.2f FPS", frame_counter / elapsed)
            frame_counter = 0
            start = now

        if len(buffer) < buffer.capacity * 0.8:
            timer.start("buffer_push")
            pushed = buffer.push(frame, blocking=False)
            timer.stop("buffer_push")
            if pushed:
                state._increment("frames_captured")
            else:
                _log_dropped(state._increment("frames_dropped"))
        else:
            _log_dropped(state._increment("frames_dropped"))
            time.sleep(0.005)
    logger.info("Capture thread finished")


def _can_draw(frame: np.ndarray) -> bool:
    return frame.dtype == np.uint8 and (
        frame.ndim == 2 or (frame.ndim == 3 and frame.shape[2] in (3, 4))
    )


def processing_loop(
    input_buffer: FrameBuffer,
    output_buffer: FrameBuffer,
    upscaler: Upscaler,
    timer: Timer,
    state: AppState,
) -> None:
    """Upscale frames from ``input_buffer``, add a status overlay and pass them on."""
    logger.info("Processing thread started")
    while state.running.is_set():
        timer.start("buffer_pop")
        frame = input_buffer.pop(blocking=False)
        timer.stop("buffer_pop")
        if frame is None:
            time.sleep(0.001)
            continue

        timer.start("upscale")
        try:
            processed = np.array(upscaler.upscale(frame), copy=True)
        except (ValueError, RuntimeError) as exc:
            timer.stop("upscale")
            logger.error("Failed to upscale frame: %s", exc)
            continue
        timer.stop("upscale")

        timer.start("text_overlay")
        if _can_draw(processed):
            average = timer.average_duration("upscale")
            fps = int(1000.0 / average) if average else 0
            draw_text(processed, f"FPS: {fps}", (20, 30), _GREEN)
            draw_text(
                processed,
                f"Buffer: {len(input_buffer)}/{input_buffer.capacity}",
                (20, 60),
                _GREEN,
            )
            draw_text(processed, f"Dropped: {state.frames_dropped}", (20, 90), _GREEN)
            if state.save_video:
                draw_text(processed, "RECORDING", (processed.shape[1] - 200, 30), _RED)
        timer.stop("text_overlay")

        timer.start("output_push")
        output_buffer.push(processed, blocking=False)
        timer.stop("output_push")

        processed_count = state._increment("frames_processed")
        if processed_count % 100 == 0:
            logger.info("Processed %d frames\n%s", processed_count, timer.format_stats())
    logger.info("Processing thread finished")


def _start_writer(state: AppState, frame: np.ndarray, fps: float) -> None:
    try:
        path = Path(state.output_filename).absolute()
        path.parent.mkdir(parents=True, exist_ok=True)
        state.output_filename = str(path)
        logger.info("Creating video file: %s", path)
        rows, cols = frame.shape[:2]
        writer = state.writer_factory(str(path), fps, (cols, rows))
    except (OSError, ValueError) as exc:
        logger.error("Error creating video writer: %s", exc)
        state.save_video = False
        return
    if not writer.is_opened:
        logger.error("Failed to create video writer")
        state.save_video = False
        return
    state.writer = writer
    logger.info(
        "Video recording started: %s (%dx%d @ %g FPS)", path, cols, rows, fps
    )


def _save_snapshot(frame: np.ndarray) -> str:
    filename = f"snapshot_{time.time_ns()}.jpg"
    array = np.ascontiguousarray(frame)
    if array.ndim == 3 and array.shape[2] >= 3:
        array = np.ascontiguousarray(array[..., 2::-1])
    Image.fromarray(array).save(filename)
    return filename


def display_loop(buffer: FrameBuffer, timer: Timer, fps: float, state: AppState) -> None:
    """Show frames from ``buffer``, record them if asked, and handle keys.

    Uses ``state.display`` when set, otherwise opens its own window.
    Keys: ``q`` quits, ``r`` toggles recording, ``s`` saves a snapshot.
    """
    logger.info("Display thread started")
    display = state.display
    if display is None:
        display = Display(1280, 720)
        try:
            display.initialize(_WINDOW_NAME)
        except RuntimeError as exc:
            logger.error("%s", exc)
            state.running.clear()
            return
        display.show_performance_metrics(False)

    output_fps = fps if fps > 0 else 30.0
    try:
        while state.running.is_set():
            timer.start("display_pop")
            frame = buffer.pop(blocking=False)
            timer.stop("display_pop")
            if frame is None:
                time.sleep(0.001)
                continue

            if state.save_video and not state.writer_initialized and frame.size:
                _start_writer(state, frame, output_fps)

            if state.save_video and state.writer is not None and frame.size:
                timer.start("video_write")
                try:
                    state.writer.write(frame)
                except (ValueError, RuntimeError) as exc:
                    logger.error("Failed to write frame: %s", exc)
                timer.stop("video_write")

            timer.start("display_show")
            try:
                display.render_frame(frame)
            except (ValueError, RuntimeError) as exc:
                logger.error("Failed to render frame: %s", exc)
            timer.stop("display_show")
            state._increment("frames_displayed")

            key = display.poll_key(1)
            if key == ord("q"):
                state.running.clear()
                break
            if key == ord("r"):
                state.save_video = not state.save_video
                if not state.save_video:
                    logger.info("Video recording paused")
                elif state.writer_initialized:
                    logger.info("Video recording resumed")
                else:
                    logger.info("Video recording will start with the next frame")
            elif key == ord("s"):
                logger.info("Snapshot saved to %s", _save_snapshot(frame))
    finally:
        if state.release_writer():
            logger.info("Video recording finished and saved to: %s", state.output_filename)
        display.cleanup()
    logger.info("Display thread finished")


def _open_source(state: AppState, program: str) -> Camera | None:
    if isinstance(state.source, str):
        return Camera(state.source)
    available = Camera.list_available_cameras()
    if not available:
        print(
            "No cameras detected! Please connect a camera or provide a video file path.",
            file=sys.stderr,
        )
        print(f"Usage: {program} {_USAGE}", file=sys.stderr)
        return None
    camera_id = available[0]
    if state.source is not None:
        camera_id = state.source
        if camera_id not in available:
            print(f"Camera index {camera_id} not available.")
            print(f"Using camera index {available[0]} instead.")
            camera_id = available[0]
    return Camera(camera_id)


def _install_signal_handlers(state: AppState) -> dict[int, object]:
    if threading.current_thread() is not threading.main_thread():
        return {}

    def handler(signum, _frame):
        print(f"Interrupt signal ({signum}) received.")
        state.running.clear()
        time.sleep(0.5)
        if state.release_writer():
            print(f"Video saved to: {state.output_filename}")
        sys.exit(signum)

    previous = {}
    for signum in (signal.SIGINT, signal.SIGTERM):
        previous[signum] = signal.signal(signum, handler)
    return previous


def main(argv: Sequence[str] | None = None) -> int:
    """Run the video processor; returns the process exit status."""
    logging.basicConfig(level=logging.INFO, format="%(message)s")
    args = list(sys.argv[1:] if argv is None else argv)
    program = Path(sys.argv[0]).name if sys.argv and sys.argv[0] else "lowlatvideo"
    print("Low-Latency Video Processing System")

    state = parse_args(args)
    if state.save_video:
        print("Recording will start automatically")
    if isinstance(state.source, str):
        print(f"Using video file: {state.source}")
    elif state.source is not None:
        print(f"Using camera index: {state.source}")

    previous_handlers = _install_signal_handlers(state)
    try:
        return _run(state, program)
    finally:
        for signum, handler in previous_handlers.items():
            signal.signal(signum, handler)


def _run(state: AppState, program: str) -> int:
    source = _open_source(state, program)
    if source is None:
        return 1

    try:
        source.initialize(640, 480, 60)
    except RuntimeError as exc:
        print(f"Error: Could not initialize with preferred settings: {exc}", file=sys.stderr)
        print("Trying with default settings...", file=sys.stderr)
        try:
            source.initialize()
        except RuntimeError as exc:
            print(f"Error: Could not initialize with default settings: {exc}", file=sys.stderr)
            return 1

    with source:
        print(
            f"Source initialized successfully at {source.width}x{source.height} "
            f"@ {source.fps:g} FPS"
        )

        upscaler = Upscaler(Algorithm.BILINEAR, True)
        try:
            upscaler.initialize(1920, 1080)
        except ValueError as exc:
            print(f"Error: Could not initialize upscaler: {exc}", file=sys.stderr)
            return 1
        print(
            f"Upscaler initialized with algorithm: {upscaler.algorithm_name()}, "
            f"using {'GPU' if upscaler.use_gpu else 'CPU'}"
        )

        raw_buffer = FrameBuffer(20)
        processed_buffer = FrameBuffer(10)
        print("Frame buffers initialized with sizes 20 and 10")
        timer = Timer()

        print("Starting pipeline threads...")
        threads = [
            threading.Thread(
                target=capture_loop, args=(source, raw_buffer, timer, state), daemon=True
            ),
            threading.Thread(
                target=processing_loop,
                args=(raw_buffer, processed_buffer, upscaler, timer, state),
                daemon=True,
            ),
            threading.Thread(
                target=display_loop, args=(processed_buffer, timer, source.fps, state), daemon=True
            ),
        ]
        for thread in threads:
            thread.start()
        print("Pipeline running. Press 'q' in the video window to quit.")
        print("Press 'r' to toggle recording, 's' to take a snapshot.")
        for thread in threads:
            thread.join()

    if state.release_writer():
        print(f"Video saved to: {state.output_filename}")

    print()
    print("=== Final Statistics ===")
    print(f"Total frames captured:  {state.frames_captured}")
    print(f"Total frames processed: {state.frames_processed}")
    print(f"Total frames displayed: {state.frames_displayed}")
    print(f"Total frames dropped:   {state.frames_dropped}")
    timer.print_stats()
    return 0


if __name__ == "__main__":
    sys.exit(main())