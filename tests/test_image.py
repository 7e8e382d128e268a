"""Tests for the RGBImage pixel-access wrapper."""

import io

import numpy as np
import pytest
from PIL import Image

from ringscan.image import RGBImage


def _gradient() -> RGBImage:
    pixels = np.zeros((4, 6, 3), dtype=np.uint8)
    for y in range(4):
        for x in range(6):
            pixels[y, x] = (x * 10, y * 10, 100)
    return RGBImage(pixels)


class TestPixelAccess:
    def test_dimensions(self):
        img = _gradient()
        assert img.width == 6
        assert img.height == 4
        assert img.center == (3, 2)

    def test_get_pixel(self):
        assert _gradient().get_pixel(2, 3) == (20, 30, 100)

    def test_out_of_bounds_clamps(self):
        img = _gradient()
        assert img.get_pixel(-10, -10) == (0, 0, 100)
        assert img.get_pixel(100, 100) == (50, 30, 100)
        assert img.get_pixel(100, -3) == (50, 0, 100)

    def test_luminance_is_channel_mean(self):
        img = _gradient()
        assert img.luminance(3, 1) == pytest.approx((30 + 10 + 100) / 3)

    def test_window_mean_interior(self):
        img = _gradient()
        r, g, b = img.window_mean(2, 1, 3)
        assert r == pytest.approx(20.0)
        assert g == pytest.approx(10.0)
        assert b == pytest.approx(100.0)

    def test_window_mean_at_corner_repeats_edge(self):
        img = _gradient()
        r, g, _ = img.window_mean(0, 0, 3)
        # columns -1,0,1 -> 0,0,1 ; rows -1,0,1 -> 0,0,1
        assert r == pytest.approx((0 + 0 + 10) / 3)
        assert g == pytest.approx((0 + 0 + 10) / 3)

    def test_rejects_bad_shape(self):
        with pytest.raises(ValueError):
            RGBImage(np.zeros((4, 4), dtype=np.uint8))


class TestCodec:
    def test_from_bytes_roundtrip_png(self):
        img = _gradient()
        back = RGBImage.from_bytes(img.encode("PNG"))
        assert np.array_equal(back.pixels, img.pixels)

    def test_encode_jpeg(self):
        data = _gradient().encode()
        assert data[:2] == b"\xff\xd8"

    def test_from_bytes_invalid(self):
        with pytest.raises(ValueError, match="Cannot open image"):
            RGBImage.from_bytes(b"not an image")

    def test_from_bytes_empty(self):
        with pytest.raises(ValueError):
            RGBImage.from_bytes(b"")

    def test_transparency_composited_on_white(self):
        rgba = Image.new("RGBA", (4, 4), (0, 0, 0, 0))
        buf = io.BytesIO()
        rgba.save(buf, format="PNG")
        img = RGBImage.from_bytes(buf.getvalue())
        assert img.get_pixel(1, 1) == (255, 255, 255)
