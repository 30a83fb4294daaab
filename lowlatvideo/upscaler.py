"""Resizing of video frames to a fixed target resolution."""

from __future__ import annotations

import logging
from enum import Enum

import numpy as np
from PIL import Image

logger = logging.getLogger(__name__)


class Algorithm(Enum):
    """Upscaling algorithm; the value is its display name."""

    NEAREST = "Nearest Neighbor"
    BILINEAR = "Bilinear"
    BICUBIC = "Bicubic"
    LANCZOS = "Lanczos"
    SUPER_RES = "Super Resolution"


# Super resolution has no implementation here and falls back to bicubic.
_RESAMPLING = {
    Algorithm.NEAREST: Image.Resampling.NEAREST,
    Algorithm.BILINEAR: Image.Resampling.BILINEAR,
    Algorithm.BICUBIC: Image.Resampling.BICUBIC,
    Algorithm.LANCZOS: Image.Resampling.LANCZOS,
    Algorithm.SUPER_RES: Image.Resampling.BICUBIC,
}


def _resize_plane(plane: np.ndarray, size: tuple[int, int], resample) -> np.ndarray:
    image = Image.fromarray(np.ascontiguousarray(plane, dtype=np.float32))
    resized = np.asarray(image.resize(size, resample))
    if np.issubdtype(plane.dtype, np.integer):
        info = np.iinfo(plane.dtype)
        return np.clip(np.rint(resized), info.min, info.max).astype(plane.dtype)
    return resized.astype(plane.dtype)


def _resize(frame: np.ndarray, size: tuple[int, int], resample) -> np.ndarray:
    if frame.dtype == np.uint8 and (frame.ndim == 2 or frame.shape[2] == 3):
        image = Image.fromarray(np.ascontiguousarray(frame))
        return np.asarray(image.resize(size, resample))
    if frame.ndim == 2:
        return _resize_plane(frame, size, resample)
    planes = [_resize_plane(plane, size, resample) for plane in np.moveaxis(frame, -1, 0)]
    return np.stack(planes, axis=-1)


class Upscaler:
    """Resizes frames to a target resolution with a chosen algorithm."""

    def __init__(self, algorithm: Algorithm = Algorithm.BILINEAR, use_gpu: bool = True) -> None:
        self._algorithm = algorithm
        self._use_gpu = use_gpu
        self._initialized = False
        self._target_width = 0
        self._target_height = 0
        if self._use_gpu and not self.is_gpu_available():
            logger.info("GPU acceleration requested but not available; using CPU")
            self._use_gpu = False

    def initialize(self, target_width: int, target_height: int) -> None:
        """Set the target resolution; raises ValueError if it is not positive."""
        if target_width <= 0 or target_height <= 0:
            raise ValueError(f"invalid target resolution: {target_width}x{target_height}")
        self._target_width = target_width
        self._target_height = target_height
        self._initialized = True
        logger.info(
            "Using %s upscaling with %s", "GPU" if self._use_gpu else "CPU", self.algorithm_name()
        )

    def upscale(self, frame: np.ndarray) -> np.ndarray:
        """Return ``frame`` resized to the target resolution."""
        if not self._initialized:
            raise RuntimeError("upscaler not initialized")
        array = np.asarray(frame) if frame is not None else None
        if array is None or array.size == 0:
            raise ValueError("input frame is empty")
        if array.ndim not in (2, 3):
            raise ValueError(f"frame must have 2 or 3 dimensions, got {array.ndim}")
        return _resize(array, (self._target_width, self._target_height), _RESAMPLING[self._algorithm])

    def set_algorithm(self, algorithm: Algorithm) -> None:
        """Switch to another upscaling algorithm."""
        self._algorithm = algorithm

    def set_use_gpu(self, use_gpu: bool) -> None:
        """Select GPU or CPU; raises RuntimeError if a GPU is requested but absent."""
        if use_gpu and not self.is_gpu_available():
            raise RuntimeError("GPU acceleration requested but not available")
        self._use_gpu = use_gpu

    def algorithm_name(self) -> str:
        """Human-readable name of the current algorithm."""
        return self._algorithm.value

    @property
    def algorithm(self) -> Algorithm:
        return self._algorithm

    @property
    def use_gpu(self) -> bool:
        """Whether GPU acceleration is in use."""
        return self._use_gpu

    @property
    def initialized(self) -> bool:
        return self._initialized

    @property
    def target_size(self) -> tuple[int, int]:
        """Target (width, height)."""
        return self._target_width, self._target_height

    @staticmethod
    def is_gpu_available() -> bool:
        """Whether a GPU backend exists; resizing here always runs on the CPU."""
        return False