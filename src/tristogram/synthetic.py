"""Synthetic rasters with controlled color properties."""
from __future__ import annotations

from enum import Enum
from typing import Optional, Tuple

import numpy as np

from .raster import RasterBuffer, raster_from_array


class ImageType(str, Enum):
    SOLID_COLOR = "solid"
    GRADIENT = "gradient"
    RANDOM_NOISE = "noise"
    CHECKERBOARD = "checkerboard"


def solid_color(width: int, height: int, color: Tuple[int, int, int] = (128, 128, 128)) -> RasterBuffer:
    image = np.empty((height, width, 3), dtype=np.uint8)
    image[:, :] = color
    return raster_from_array(image)


def gradient(width: int, height: int) -> RasterBuffer:
    """Horizontal red → green → blue gradient, constant along each column."""
    if width <= 1:
        t = np.zeros(width, dtype=np.float64)
    else:
        t = np.arange(width, dtype=np.float64) / (width - 1)
    first = np.clip(1.0 - 2.0 * t, 0.0, 1.0)
    second = np.clip(1.0 - np.abs(2.0 * t - 1.0), 0.0, 1.0)
    third = np.clip(2.0 * t - 1.0, 0.0, 1.0)
    row = np.round(np.stack([first, second, third], axis=1) * 255).astype(np.uint8)
    image = np.broadcast_to(row, (height, width, 3))
    return raster_from_array(np.ascontiguousarray(image))


def random_noise(width: int, height: int, seed: Optional[int] = 42) -> RasterBuffer:
    rng = np.random.default_rng(seed)
    image = rng.integers(0, 256, size=(height, width, 3), dtype=np.uint8)
    return raster_from_array(image)


def checkerboard(
    width: int,
    height: int,
    square: int = 8,
    colors: Tuple[Tuple[int, int, int], Tuple[int, int, int]] = ((0, 0, 0), (255, 255, 255)),
) -> RasterBuffer:
    square = max(1, int(square))
    ys, xs = np.indices((height, width))
    parity = ((xs // square) + (ys // square)) % 2
    palette = np.asarray(colors, dtype=np.uint8)
    return raster_from_array(palette[parity])


def generate(image_type: ImageType | str, width: int, height: int, seed: Optional[int] = 42) -> RasterBuffer:
    kind = ImageType(image_type)
    if kind is ImageType.SOLID_COLOR:
        return solid_color(width, height)
    if kind is ImageType.GRADIENT:
        return gradient(width, height)
    if kind is ImageType.RANDOM_NOISE:
        return random_noise(width, height, seed=seed)
    return checkerboard(width, height)
