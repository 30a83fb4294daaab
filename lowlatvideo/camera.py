"""Video sources: V4L2 cameras and video files decoded by external programs."""

from __future__ import annotations

import logging
import os
import re
import subprocess
import threading
from dataclasses import dataclass
from fractions import Fraction
from typing import Callable, Protocol

import numpy as np

logger = logging.getLogger(__name__)

FORMATS = ("MJPG", "H264", "YUYV")
_MAX_CAMERAS = 10
_BGR_SINK = "videoconvert ! video/x-raw,format=BGR ! fdsink fd=1 sync=false"
_FFMPEG_RAW_OUTPUT = ("-an", "-f", "rawvideo", "-pix_fmt", "bgr24", "-")
_SIZE_PATTERN = re.compile(r"Width/Height\s*:\s*(\d+)\s*/\s*(\d+)")


class CameraError(RuntimeError):
    """Raised when a video source cannot be opened."""


@dataclass(frozen=True)
class CaptureSpec:
    """A command that writes raw BGR frames of a known size to its stdout."""

    name: str
    command: tuple[str, ...]
    width: int
    height: int
    fps: int


class Capture(Protocol):
    def read(self) -> np.ndarray | None: ...

    def is_opened(self) -> bool: ...

    def release(self) -> None: ...


CaptureOpener = Callable[[CaptureSpec], Capture]


def _device(index: int) -> str:
    return f"/dev/video{index}"


def _run(command: list[str]) -> str | None:
    """Run ``command`` and return its standard output, or None if it failed."""
    try:
        result = subprocess.run(
            command, capture_output=True, text=True, check=False, timeout=10
        )
    except (OSError, subprocess.SubprocessError):
        return None
    if result.returncode != 0:
        return None
    return result.stdout


def query_formats(camera_index: int) -> frozenset[str]:
    """Return which of MJPG, H264 and YUYV the camera lists among its formats."""
    output = _run(
        ["v4l2-ctl", f"--device={_device(camera_index)}", "--list-formats-ext"]
    )
    if output is None:
        return frozenset()
    return frozenset(name for name in FORMATS if name in output)


def _native_size(camera_index: int) -> tuple[int, int] | None:
    output = _run(["v4l2-ctl", f"--device={_device(camera_index)}", "--get-fmt-video"])
    if output is None:
        return None
    match = _SIZE_PATTERN.search(output)
    if match is None:
        return None
    return int(match.group(1)), int(match.group(2))


def _probe_video(path: str) -> tuple[int, int, int] | None:
    output = _run(
        [
            "ffprobe",
            "-v",
            "error",
            "-select_streams",
            "v:0",
            "-show_entries",
            "stream=width,height,r_frame_rate",
            "-of",
            "csv=p=0",
            path,
        ]
    )
    if output is None:
        return None
    lines = [line.strip() for line in output.splitlines() if line.strip()]
    if not lines:
        return None
    fields = lines[0].split(",")
    if len(fields) < 3:
        return None
    try:
        width, height = int(fields[0]), int(fields[1])
        rate = Fraction(fields[2])
    except (ValueError, ZeroDivisionError):
        return None
    if width <= 0 or height <= 0:
        return None
    return width, height, int(rate)


def _gst(pipeline: str) -> tuple[str, ...]:
    return ("gst-launch-1.0", "-q", *pipeline.split())


def _camera_specs(
    index: int,
    width: int,
    height: int,
    fps: int,
    formats: frozenset[str],
    native: tuple[int, int] | None,
) -> list[CaptureSpec]:
    device = _device(index)
    source = f"v4l2src device={device}"
    sized = f"width={width},height={height}"
    rate = f"framerate={fps}/1"

    def spec(name: str, command: tuple[str, ...], size=(width, height)) -> CaptureSpec:
        return CaptureSpec(name, command, size[0], size[1], fps)

    specs = []
    if "MJPG" in formats:
        specs.append(
            spec("MJPG format", _gst(f"{source} ! image/jpeg,{sized},{rate} ! jpegdec ! {_BGR_SINK}"))
        )
    if "H264" in formats:
        specs.append(
            spec(
                "H264 format",
                _gst(f"{source} ! video/x-h264,{sized},{rate} ! h264parse ! avdec_h264 ! {_BGR_SINK}"),
            )
        )
    if "YUYV" in formats:
        specs.append(
            spec("YUYV format", _gst(f"{source} ! video/x-raw,format=YUY2,{sized},{rate} ! {_BGR_SINK}"))
        )
    specs.append(spec("Generic raw format", _gst(f"{source} ! video/x-raw,{sized} ! {_BGR_SINK}")))
    specs.append(
        spec(
            "Optimized raw format",
            _gst(
                f"{source} ! video/x-raw,{sized} ! queue max-size-buffers=5 leaky=downstream ! {_BGR_SINK}"
            ),
        )
    )
    if native is not None:
        specs.append(spec("Minimal constraints", _gst(f"{source} ! {_BGR_SINK}"), native))

    specs.append(
        spec(
            "FFmpeg v4l2",
            (
                "ffmpeg", "-v", "error", "-nostdin", "-f", "v4l2",
                "-video_size", f"{width}x{height}", "-framerate", str(fps),
                "-i", device, *_FFMPEG_RAW_OUTPUT,
            ),
        )
    )
    if native is not None:
        specs.append(
            spec(
                "FFmpeg v4l2 native",
                (
                    "ffmpeg", "-v", "error", "-nostdin", "-f", "v4l2",
                    "-video_size", f"{native[0]}x{native[1]}",
                    "-i", device, *_FFMPEG_RAW_OUTPUT,
                ),
                native,
            )
        )
    return specs


def _file_specs(path: str, width: int, height: int, fps: int) -> tuple[CaptureSpec, CaptureSpec]:
    ffmpeg = CaptureSpec(
        "FFmpeg",
        ("ffmpeg", "-v", "error", "-nostdin", "-i", path, *_FFMPEG_RAW_OUTPUT),
        width,
        height,
        fps,
    )
    gstreamer = CaptureSpec(
        "GStreamer",
        (
            "gst-launch-1.0", "-q", "filesrc", f"location={path}", "!", "decodebin", "!",
            *_BGR_SINK.split(),
        ),
        width,
        height,
        fps,
    )
    return ffmpeg, gstreamer


class _ProcessCapture:
    """Reads fixed-size BGR frames from a child process's standard output."""

    def __init__(self, spec: CaptureSpec) -> None:
        self._shape = (spec.height, spec.width, 3)
        self._frame_bytes = spec.width * spec.height * 3
        self._process: subprocess.Popen | None = subprocess.Popen(
            list(spec.command),
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.DEVNULL,
        )

    def is_opened(self) -> bool:
        return self._process is not None

    def read(self) -> np.ndarray | None:
        process = self._process
        if process is None or process.stdout is None:
            return None
        data = process.stdout.read(self._frame_bytes)
        if len(data) < self._frame_bytes:
            self.release()
            return None
        return np.frombuffer(data, dtype=np.uint8).reshape(self._shape).copy()

    def release(self) -> None:
        process, self._process = self._process, None
        if process is None:
            return
        if process.poll() is None:
            process.terminate()
            try:
                process.wait(timeout=2)
            except subprocess.TimeoutExpired:
                process.kill()
                process.wait()
        if process.stdout is not None:
            process.stdout.close()


class Camera:
    """A camera (by index) or a video file (by path) delivering BGR frames."""

    def __init__(self, source: int | str = 0, *, open_capture: CaptureOpener | None = None) -> None:
        if isinstance(source, bool) or not isinstance(source, (int, str)):
            raise TypeError("source must be a camera index or a video file path")
        self._is_file = isinstance(source, str)
        self._camera_index = -1 if self._is_file else int(source)
        self._video_source = source if self._is_file else ""
        self._open = open_capture if open_capture is not None else _ProcessCapture
        self._capture: Capture | None = None
        self._width = 0
        self._height = 0
        self._fps = 0
        self._initialized = False
        self._lock = threading.Lock()

    @staticmethod
    def list_available_cameras() -> list[int]:
        """Indices of the video devices among the first ten that can be opened."""
        available = []
        for index in range(_MAX_CAMERAS):
            try:
                fd = os.open(_device(index), os.O_RDONLY | getattr(os, "O_NONBLOCK", 0))
            except OSError:
                continue
            os.close(fd)
            logger.info("Camera %d is available", index)
            available.append(index)
        return available

    def initialize(self, width: int = 1280, height: int = 720, fps: int = 60) -> None:
        """Open the source; raises CameraError if no method works."""
        self.close()
        with self._lock:
            if self._is_file:
                self._open_file()
            else:
                self._open_camera(width, height, fps)
            self._initialized = True

    def get_frame(self) -> np.ndarray | None:
        """Return the next frame, or None when none could be read.

        Raises RuntimeError before ``initialize``.
        """
        with self._lock:
            if not self._initialized:
                raise RuntimeError("camera not initialized")
            capture = self._capture
            if capture is None or not capture.is_opened():
                return None
            frame = capture.read()
            if frame is None or frame.size == 0:
                if not capture.is_opened():
                    self._capture = None
                return None
            return frame

    def is_opened(self) -> bool:
        """Whether the source is open."""
        capture = self._capture
        return capture is not None and capture.is_opened()

    def close(self) -> None:
        """Release the source."""
        with self._lock:
            capture, self._capture = self._capture, None
        if capture is not None:
            capture.release()

    def __enter__(self) -> Camera:
        return self

    def __exit__(self, *args) -> None:
        self.close()

    @property
    def width(self) -> int:
        return self._width

    @property
    def height(self) -> int:
        return self._height

    @property
    def fps(self) -> float:
        return float(self._fps)

    @property
    def is_file(self) -> bool:
        return self._is_file

    @property
    def camera_index(self) -> int:
        """Camera index, or -1 for a video file."""
        return self._camera_index

    @property
    def video_source(self) -> str:
        """Video file path, or an empty string for a camera."""
        return self._video_source

    def _start(self, spec: CaptureSpec) -> Capture | None:
        try:
            capture = self._open(spec)
        except OSError as exc:
            logger.info("Failed to start %s: %s", spec.name, exc)
            return None
        if not capture.is_opened():
            capture.release()
            return None
        return capture

    def _open_file(self) -> None:
        path = self._video_source
        probe = _probe_video(path)
        if probe is None:
            raise CameraError(f"Failed to open video file: {path}")
        width, height, fps = probe
        ffmpeg, gstreamer = _file_specs(path, width, height, fps)

        capture = self._start(ffmpeg)
        if capture is not None:
            test_frame = capture.read()
            capture.release()
            if test_frame is None or test_frame.size == 0:
                raise CameraError("Could open the file but failed to read a frame")
            # Start again so that the first frame is not lost.
            capture = self._start(ffmpeg)
            if capture is None:
                raise CameraError(f"Failed to reopen video file: {path}")
        else:
            logger.info("Trying backend %s for video file", gstreamer.name)
            capture = self._start(gstreamer)
            if capture is None:
                raise CameraError(f"Failed to open video file: {path}")

        self._capture = capture
        self._width, self._height, self._fps = width, height, fps
        logger.info("Video properties: %dx%d @ %d FPS", width, height, fps)

    def _open_camera(self, width: int, height: int, fps: int) -> None:
        index = self._camera_index
        formats = query_formats(index)
        logger.info(
            "Camera format support - MJPG: %d, H264: %d, YUYV: %d",
            "MJPG" in formats,
            "H264" in formats,
            "YUYV" in formats,
        )
        for spec in _camera_specs(index, width, height, fps, formats, _native_size(index)):
            logger.info("Trying pipeline: %s", spec.name)
            capture = self._start(spec)
            if capture is None:
                continue
            test_frame = capture.read()
            if test_frame is None or test_frame.size == 0:
                logger.info("Pipeline opened but failed to grab frame")
                capture.release()
                continue
            self._capture = capture
            self._height, self._width = test_frame.shape[:2]
            self._fps = fps
            logger.info(
                "Successfully opened camera with %s: %dx%d", spec.name, self._width, self._height
            )
            return
        raise CameraError("Failed to initialize camera with any method")