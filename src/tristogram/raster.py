"""Raster buffers and image decoding helpers."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import NamedTuple, Union

import cv2
import numpy as np

logger = logging.getLogger(__name__)


class RasterError(ValueError):
    """Raised when pixel data cannot be turned into a valid raster buffer."""


class PixelColor(NamedTuple):
    r: int
    g: int
    b: int
    a: int


@dataclass(frozen=True, eq=False)
class RasterBuffer:
    """Row-major RGBA pixels, four bytes per pixel."""

    width: int
    height: int
    data: np.ndarray

    def __post_init__(self) -> None:
        if int(self.width) < 0 or int(self.height) < 0:
            raise RasterError(f"Raster dimensions must be non-negative, got {self.width}x{self.height}")
        data = np.array(self.data, dtype=np.uint8, copy=True).reshape(-1)
        expected = int(self.width) * int(self.height) * 4
        if data.shape[0] != expected:
            raise RasterError(
                f"RGBA buffer holds {data.shape[0]} bytes, expected {expected} for {self.width}x{self.height}"
            )
        data.setflags(write=False)
        object.__setattr__(self, "width", int(self.width))
        object.__setattr__(self, "height", int(self.height))
        object.__setattr__(self, "data", data)

    @property
    def pixel_count(self) -> int:
        return self.width * self.height

    @property
    def rgba(self) -> np.ndarray:
        """Read-only ``(height, width, 4)`` view of the buffer."""
        return self.data.reshape(self.height, self.width, 4)

    def pixel(self, x: int, y: int) -> PixelColor:
        if not (0 <= x < self.width and 0 <= y < self.height):
            raise IndexError(f"Pixel ({x}, {y}) outside {self.width}x{self.height} raster")
        position = (x + self.width * y) * 4
        r, g, b, a = (int(value) for value in self.data[position : position + 4])
        return PixelColor(r, g, b, a)


def raster_from_bytes(width: int, height: int, data: Union[bytes, bytearray, memoryview]) -> RasterBuffer:
    return RasterBuffer(width=width, height=height, data=np.frombuffer(bytes(data), dtype=np.uint8))


def raster_from_array(array: np.ndarray) -> RasterBuffer:
    """Wrap an RGB(A) or grayscale ``uint8`` image array.

    Accepts ``(H, W)``, ``(H, W, 3)`` and ``(H, W, 4)`` arrays in RGB channel
    order; missing alpha is filled with 255.
    """
    image = np.asarray(array)
    if image.dtype != np.uint8:
        raise RasterError(f"Expected uint8 pixel data, got {image.dtype}")
    if image.ndim == 2:
        image = np.repeat(image[:, :, None], 3, axis=2)
    if image.ndim != 3 or image.shape[2] not in (3, 4):
        raise RasterError(f"Unsupported image shape {image.shape}")
    height, width = image.shape[:2]
    if image.shape[2] == 3:
        alpha = np.full((height, width, 1), 255, dtype=np.uint8)
        image = np.concatenate([image, alpha], axis=2)
    return RasterBuffer(width=width, height=height, data=image.reshape(-1))


def _to_rgba(decoded: np.ndarray) -> np.ndarray:
    if decoded.dtype == np.uint16:
        decoded = (decoded >> 8).astype(np.uint8)
    elif decoded.dtype != np.uint8:
        raise RasterError(f"Unsupported decoded pixel type {decoded.dtype}")

    if decoded.ndim == 2:
        return cv2.cvtColor(decoded, cv2.COLOR_GRAY2RGBA)
    channels = decoded.shape[2]
    if channels == 1:
        return cv2.cvtColor(np.ascontiguousarray(decoded[:, :, 0]), cv2.COLOR_GRAY2RGBA)
    if channels == 3:
        return cv2.cvtColor(decoded, cv2.COLOR_BGR2RGBA)
    if channels == 4:
        return cv2.cvtColor(decoded, cv2.COLOR_BGRA2RGBA)
    raise RasterError(f"Unsupported channel count {channels}")


def decode_raster(payload: bytes) -> RasterBuffer:
    """Decode an encoded image (PNG, JPEG, ...) held in memory."""
    if not payload:
        raise RasterError("Empty image payload")
    buffer = np.frombuffer(payload, dtype=np.uint8)
    decoded = cv2.imdecode(buffer, cv2.IMREAD_UNCHANGED)
    if decoded is None:
        raise RasterError("Unable to decode image payload")
    rgba = _to_rgba(decoded)
    return raster_from_array(rgba)


def load_raster(path: Union[str, Path]) -> RasterBuffer:
    """Read an image file from disk into an RGBA raster buffer."""
    source = Path(path)
    if not source.exists():
        raise RasterError(f"Image path does not exist: {source}")
    decoded = cv2.imread(str(source), cv2.IMREAD_UNCHANGED)
    if decoded is None:
        raise RasterError(f"Unable to decode image: {source}")
    rgba = _to_rgba(decoded)
    logger.debug("Loaded %s (%dx%d)", source, rgba.shape[1], rgba.shape[0])
    return raster_from_array(rgba)


def encode_png(raster: RasterBuffer) -> bytes:
    """Encode a raster as PNG bytes, preserving alpha."""
    bgra = cv2.cvtColor(np.ascontiguousarray(raster.rgba), cv2.COLOR_RGBA2BGRA)
    ok, encoded = cv2.imencode(".png", bgra)
    if not ok:
        raise RasterError("PNG encoding failed")
    return encoded.tobytes()
