"""Chains of frame transformations applied in order."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable

import numpy as np
from scipy import ndimage

logger = logging.getLogger(__name__)

ProcessFunction = Callable[[np.ndarray], np.ndarray]

# Sigma chosen for a 5x5 kernel when no sigma is given: 0.3 * ((ksize - 1) * 0.5 - 1) + 0.8
_GAUSS_SIGMA = 0.3 * ((5 - 1) * 0.5 - 1) + 0.8
_GAUSS_RADIUS = 2

_SHARPEN_KERNEL = np.array(
    [[-1.0, -1.0, -1.0], [-1.0, 9.0, -1.0], [-1.0, -1.0, -1.0]],
)


def _saturate(values: np.ndarray, dtype: np.dtype) -> np.ndarray:
    """Round and clip ``values`` into the range of ``dtype``."""
    if np.issubdtype(dtype, np.integer):
        info = np.iinfo(dtype)
        return np.clip(np.rint(values), info.min, info.max).astype(dtype)
    return values.astype(dtype)


def _spatial(frame: np.ndarray, per_axis: float) -> tuple[float, ...]:
    return (per_axis, per_axis) + (0.0,) * (frame.ndim - 2)


def denoise(frame: np.ndarray) -> np.ndarray:
    """Gaussian blur with a 5x5 kernel, channels blurred independently."""
    array = np.asarray(frame)
    blurred = ndimage.gaussian_filter(
        array.astype(np.float64),
        sigma=_spatial(array, _GAUSS_SIGMA),
        mode="mirror",
        truncate=_GAUSS_RADIUS / _GAUSS_SIGMA,
    )
    return _saturate(blurred, array.dtype)


def _equalize_hist(plane: np.ndarray) -> np.ndarray:
    hist = np.bincount(plane.ravel(), minlength=256)
    total = plane.size
    first = int(np.flatnonzero(hist)[0])
    if hist[first] == total:
        return plane.copy()
    scale = 255.0 / (total - hist[first])
    lut = np.clip(np.rint((np.cumsum(hist) - hist[first]) * scale), 0, 255)
    lut[:first] = 0
    return lut.astype(np.uint8)[plane]


def color_correction(frame: np.ndarray) -> np.ndarray:
    """Equalize the luma histogram of a BGR uint8 frame, keeping its chroma."""
    array = np.asarray(frame)
    if array.dtype != np.uint8 or array.ndim != 3 or array.shape[2] != 3:
        raise ValueError("color correction needs a 3-channel uint8 BGR frame")
    b, g, r = (array[..., i].astype(np.float64) for i in range(3))
    y = 0.299 * r + 0.587 * g + 0.114 * b
    u = _saturate((b - y) * 0.492 + 128.0, np.dtype(np.uint8)).astype(np.float64)
    v = _saturate((r - y) * 0.877 + 128.0, np.dtype(np.uint8)).astype(np.float64)
    y = _equalize_hist(_saturate(y, np.dtype(np.uint8))).astype(np.float64)
    out = np.stack(
        [
            y + 2.032 * (u - 128.0),
            y - 0.395 * (u - 128.0) - 0.581 * (v - 128.0),
            y + 1.140 * (v - 128.0),
        ],
        axis=-1,
    )
    return _saturate(out, np.dtype(np.uint8))


def sharpen(frame: np.ndarray) -> np.ndarray:
    """Sharpen with a 3x3 kernel whose weights sum to one."""
    array = np.asarray(frame)
    kernel = _SHARPEN_KERNEL.reshape(_SHARPEN_KERNEL.shape + (1,) * (array.ndim - 2))
    result = ndimage.correlate(array.astype(np.float64), kernel, mode="mirror")
    return _saturate(result, array.dtype)


def contrast(frame: np.ndarray) -> np.ndarray:
    """Scale pixel values by 1.2 and add 10, saturating at the type's limits."""
    array = np.asarray(frame)
    return _saturate(array.astype(np.float64) * 1.2 + 10.0, array.dtype)


@dataclass
class Operation:
    """A named frame transformation that can be switched on and off."""

    name: str
    func: ProcessFunction
    enabled: bool = True


class Processor:
    """Applies a chain of enabled operations to frames, in the order added."""

    def __init__(self, use_gpu: bool = True) -> None:
        self._operations: list[Operation] = []
        self._use_gpu = use_gpu
        self._initialized = False
        self._last_processing_time = 0.0
        self._lock = threading.Lock()
        if self._use_gpu and not self.is_gpu_available():
            logger.info("GPU acceleration requested but not available; using CPU")
            self._use_gpu = False

    def initialize(self) -> None:
        """Prepare the processor for use; calling it again does nothing."""
        self._initialized = True

    def process(self, frame: np.ndarray) -> np.ndarray:
        """Return the result of every enabled operation applied to ``frame``.

        The input is not modified. Raises RuntimeError before ``initialize``
        and ValueError for an empty frame.
        """
        if not self._initialized:
            raise RuntimeError("processor not initialized")
        if frame is None or np.asarray(frame).size == 0:
            raise ValueError("input frame is empty")
        with self._lock:
            start = time.perf_counter()
            output = np.array(frame, copy=True)
            for operation in self._operations:
                if operation.enabled:
                    output = operation.func(output)
            self._last_processing_time = (time.perf_counter() - start) * 1000.0
        return output

    def add_operation(self, name: str, func: ProcessFunction) -> Processor:
        """Append an enabled operation; returns the processor for chaining."""
        with self._lock:
            self._operations.append(Operation(name, func))
        return self

    def add_default_pre_processing(self) -> Processor:
        """Append noise reduction and colour correction."""
        return self.add_operation("denoise", denoise).add_operation(
            "color_correction", color_correction
        )

    def add_default_post_processing(self) -> Processor:
        """Append sharpening and contrast enhancement."""
        return self.add_operation("sharpen", sharpen).add_operation("contrast", contrast)

    def enable_operation(self, name: str, enabled: bool) -> None:
        """Switch the first operation called ``name``; raises KeyError if absent."""
        with self._lock:
            for operation in self._operations:
                if operation.name == name:
                    operation.enabled = enabled
                    return
        raise KeyError(f"operation not found: {name}")

    def set_use_gpu(self, use_gpu: bool) -> None:
        """Select GPU or CPU; raises RuntimeError if a GPU is requested but absent."""
        if use_gpu and not self.is_gpu_available():
            raise RuntimeError("GPU acceleration requested but not available")
        if self._use_gpu != use_gpu:
            self._use_gpu = use_gpu
            self._initialized = False
            self.initialize()

    @property
    def use_gpu(self) -> bool:
        """Whether GPU acceleration is in use."""
        return self._use_gpu

    @property
    def initialized(self) -> bool:
        return self._initialized

    @property
    def operations(self) -> tuple[Operation, ...]:
        """The registered operations, in application order."""
        with self._lock:
            return tuple(self._operations)

    @property
    def last_processing_time(self) -> float:
        """Duration of the most recent ``process`` call in milliseconds."""
        return self._last_processing_time

    @staticmethod
    def is_gpu_available() -> bool:
        """Whether a GPU backend exists; processing here always runs on the CPU."""
        return False