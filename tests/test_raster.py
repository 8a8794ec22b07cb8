from __future__ import annotations

import numpy as np
import pytest

from src.tristogram.raster import (
    RasterBuffer,
    RasterError,
    decode_raster,
    encode_png,
    load_raster,
    raster_from_array,
    raster_from_bytes,
)


def test_pixel_lookup_is_row_major(four_color_raster) -> None:
    assert four_color_raster.width == 2
    assert four_color_raster.height == 2
    assert four_color_raster.pixel_count == 4
    assert tuple(four_color_raster.pixel(1, 0)) == (0, 255, 0, 255)
    assert tuple(four_color_raster.pixel(0, 1)) == (0, 0, 255, 255)
    assert four_color_raster.pixel(1, 1).a == 255


def test_pixel_out_of_bounds(four_color_raster) -> None:
    with pytest.raises(IndexError):
        four_color_raster.pixel(2, 0)
    with pytest.raises(IndexError):
        four_color_raster.pixel(0, -1)


def test_buffer_length_must_match_dimensions() -> None:
    with pytest.raises(RasterError):
        raster_from_bytes(2, 2, bytes(15))
    with pytest.raises(RasterError):
        RasterBuffer(width=-1, height=1, data=np.zeros(0, dtype=np.uint8))


def test_buffer_is_copied_and_read_only() -> None:
    source = np.zeros(8, dtype=np.uint8)
    raster = RasterBuffer(width=2, height=1, data=source)
    source[0] = 99
    assert raster.pixel(0, 0).r == 0
    with pytest.raises(ValueError):
        raster.data[0] = 1


def test_zero_pixel_raster_is_valid() -> None:
    raster = raster_from_bytes(0, 0, b"")
    assert raster.pixel_count == 0
    assert raster.rgba.shape == (0, 0, 4)


def test_raster_from_array_fills_alpha_and_expands_gray() -> None:
    gray = np.array([[10, 20]], dtype=np.uint8)
    raster = raster_from_array(gray)
    assert tuple(raster.pixel(1, 0)) == (20, 20, 20, 255)

    with pytest.raises(RasterError):
        raster_from_array(np.zeros((2, 2, 3), dtype=np.float32))
    with pytest.raises(RasterError):
        raster_from_array(np.zeros((2, 2, 2), dtype=np.uint8))


def test_png_round_trip_keeps_rgba_order(tmp_path) -> None:
    rgba = np.array(
        [[[255, 0, 0, 255], [0, 255, 0, 128]], [[0, 0, 255, 0], [12, 34, 56, 255]]],
        dtype=np.uint8,
    )
    raster = raster_from_array(rgba)
    payload = encode_png(raster)

    decoded = decode_raster(payload)
    assert np.array_equal(decoded.rgba, rgba)

    image_path = tmp_path / "tiny.png"
    image_path.write_bytes(payload)
    loaded = load_raster(image_path)
    assert tuple(loaded.pixel(1, 1)) == (12, 34, 56, 255)


def test_decode_rejects_garbage(tmp_path) -> None:
    with pytest.raises(RasterError):
        decode_raster(b"")
    with pytest.raises(RasterError):
        decode_raster(b"not an image")
    with pytest.raises(RasterError):
        load_raster(tmp_path / "missing.png")
