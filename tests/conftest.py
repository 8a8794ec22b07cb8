from __future__ import annotations

import numpy as np
import pytest

from src.tristogram.raster import RasterBuffer, raster_from_array


def make_raster(rgb_rows) -> RasterBuffer:
    """Build an opaque raster from nested ``[[(r, g, b), ...], ...]`` rows."""
    return raster_from_array(np.asarray(rgb_rows, dtype=np.uint8))


@pytest.fixture()
def four_color_raster() -> RasterBuffer:
    return make_raster(
        [
            [(255, 0, 0), (0, 255, 0)],
            [(0, 0, 255), (255, 255, 255)],
        ]
    )


@pytest.fixture()
def two_red_raster() -> RasterBuffer:
    return make_raster([[(255, 0, 0), (255, 0, 0)]])
