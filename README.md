# lowlatvideo

A low-latency video pipeline. Frames come from a camera or a video file,
pass through a bounded thread-safe frame buffer, are upscaled to a target
resolution and are shown in a window. Every stage is timed, and a table of
per-stage timings can be printed.

## Installation

```
pip install lowlatvideo
```

To run the test suite:

```
pip install "lowlatvideo[test]"
pytest
```

### External programs

Capture, probing and recording use command-line tools started as child
processes. These tools must be on `PATH`:

- `v4l2-ctl` (from v4l-utils) to find a camera's formats and native size;
- `gst-launch-1.0` (GStreamer) and/or `ffmpeg` to read camera frames;
- `ffprobe` and `ffmpeg` (or `gst-launch-1.0` as a fallback) to read video files;
- `ffmpeg` with `libx264` to record video.

The window is drawn with pygame.

## Command line

```
lowlatvideo [camera_index | video_file] [--output FILE | -o FILE] [--record | -r]
```

- With no source, the first available camera (the first of `/dev/video0` to
  `/dev/video9` that can be opened) is used.
- An argument made only of digits is a camera index. If that camera is not
  available, the first available one is used instead.
- Any other argument is the path of a video file.
- `--output` / `-o` sets the file that recordings are written to
  (default `output.mp4`; the path is made absolute and its directory created).
- `--record` / `-r` starts recording with the first frame shown.

The source is opened at 640x480 @ 60 FPS, falling back to its defaults
(1280x720 @ 60 FPS) if that fails. Frames are upscaled to 1920x1080 with
bilinear interpolation, and an overlay with the upscaling rate, buffer fill,
dropped-frame count and a `RECORDING` marker is drawn on them. Frames are
dropped while the capture buffer is at least 80% full. The window is called
"Video Feed". While it has focus:

| Key | Action                                      |
|-----|---------------------------------------------|
| `q` | quit                                        |
| `r` | toggle recording on and off                 |
| `s` | save the current frame as `snapshot_<ns>.jpg` |

On exit, the totals of captured, processed, displayed and dropped frames are
printed, followed by the timing table. SIGINT and SIGTERM close any recording
before the program exits. The exit status is 1 when no source can be opened.

## Library use

Frames are NumPy arrays in BGR channel order (or single-channel gray).

### Timing

```python
from lowlatvideo.timer import Timer

timer = Timer()
timer.start("upscale")
...
timer.stop("upscale")
print(timer.duration("upscale"), timer.average_duration("upscale"))
print(timer.format_stats())
timer.print_stats()
```

Durations are in milliseconds. `duration` and `average_duration` return
`None` for events with no recorded duration. Stopping an event that was not
started issues a `RuntimeWarning` and records nothing.

### Frame buffer

`FrameBuffer` is a bounded, thread-safe FIFO. Frames are copied on push.

```python
import numpy as np
from lowlatvideo.frame_buffer import FrameBuffer

buffer = FrameBuffer(10)
buffer.push(np.zeros((480, 640, 3), dtype=np.uint8), blocking=False)
frame = buffer.pop(blocking=False)
print(len(buffer), buffer.capacity, buffer.empty, buffer.full)
```

A non-blocking `push` on a full buffer returns `False`; a non-blocking `pop`
on an empty buffer returns `None`. Pushing an empty frame and a capacity below
one raise `ValueError`. `clear()` drops every frame.

### Upscaling

```python
from lowlatvideo.upscaler import Algorithm, Upscaler

upscaler = Upscaler(Algorithm.BICUBIC)
upscaler.initialize(1920, 1080)
big = upscaler.upscale(frame)
print(upscaler.algorithm_name())  # "Bicubic"
```

The algorithms are `NEAREST`, `BILINEAR`, `BICUBIC`, `LANCZOS` and
`SUPER_RES`, which resizes as bicubic. `upscale` raises `RuntimeError` before
`initialize` and `ValueError` for an empty frame.

### Processing chains

`Processor` applies its enabled operations to a copy of each frame, in the
order they were added:

```python
from lowlatvideo.processor import Processor

processor = Processor()
processor.initialize()
processor.add_default_pre_processing().add_default_post_processing()
processor.enable_operation("sharpen", False)
out = processor.process(frame)
print(processor.last_processing_time)
```

The operations `denoise` (5x5 Gaussian blur), `color_correction` (luma
histogram equalization of a BGR uint8 frame), `sharpen` (3x3 kernel) and
`contrast` (`x * 1.2 + 10`, saturated) can also be called on their own.
`enable_operation` raises `KeyError` for an unknown name.

### Display

`Display` opens a pygame window and shows frames scaled to it, with an
optional overlay of its own frame rate and render time. `set_vsync(True)`
together with `set_max_frame_rate(fps)` limits the rate at which frames are
shown. `poll_key(timeout_ms)` returns the code of a pressed key or `-1`.
`draw_text(frame, text, origin, color)` draws text onto a uint8 frame in place.

### Camera

```python
from lowlatvideo.camera import Camera

with Camera(0) as camera:          # or Camera("clip.mp4")
    camera.initialize(1280, 720, 60)
    frame = camera.get_frame()
    print(camera.width, camera.height, camera.fps)
```

`initialize` tries each capture method in turn and raises `CameraError` if
none delivers a frame. `get_frame` returns `None` when no frame could be
read; once a video file ends, `is_opened()` becomes `False`.
`Camera.list_available_cameras()` and `query_formats(index)` inspect the
system's video devices.

### Full pipeline

```python
from lowlatvideo.pipeline import Pipeline, PipelineConfig

pipeline = Pipeline(PipelineConfig(buffer_size=3))
pipeline.initialize(0)          # camera index, or a path to a video file
pipeline.start()
pipeline.wait_for_key("q")
pipeline.stop()
pipeline.print_performance_stats()
```

`initialize` and `start` raise `PipelineError` on failure. `latency()` is the
smoothed time in milliseconds from upscaling to display, and `fps()` the
capture rate over the last second. `set_target_resolution` and
`set_buffer_size` take effect at the next `initialize` and raise
`RuntimeError` while the pipeline runs.

## Limitations

- There is no GPU acceleration: `is_gpu_available()` is always `False`, and
  asking for a GPU with `set_use_gpu(True)` raises `RuntimeError`.
- `SUPER_RES` is not a super-resolution model; it resizes as bicubic.
- The command-line program does not apply `Processor` operations; it only
  upscales and overlays status text.
- Cameras are found only as Linux `/dev/video*` devices.