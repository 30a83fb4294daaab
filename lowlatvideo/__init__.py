"""Low-latency video capture, buffering, upscaling, processing and display."""

__version__ = "1.0.0"