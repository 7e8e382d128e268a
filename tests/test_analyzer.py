"""Tests for per-frame ring presence analysis."""

import io

import numpy as np
import pytest
from PIL import Image

from ringscan.analyzer import Frame, FrameAnalyzer, ScanCandidate, yuv420_to_rgb
from ringscan.config import ScanConfig
from ringscan.errors import ConfigurationError
from ringscan.image import RGBImage
from ringscan.renderer import render_code

PRODUCT = [1, 0, 1, 1, 0, 0, 1, 0, 0]
DATE = [0, 1, 0, 0, 1, 1, 0, 0, 1]


def _black_frame(width=320, height=240) -> Frame:
    chroma = bytes([128]) * ((width // 2) * (height // 2))
    return Frame(planes=(bytes(width * height), chroma, chroma), width=width, height=height)


def _code_frame(size=480, rotation=0) -> Frame:
    image = RGBImage.from_pil(render_code(PRODUCT, DATE, size=size))
    return Frame.from_image(image, rotation=rotation)


class TestFrame:
    def test_from_image_plane_sizes(self):
        frame = _code_frame(240)
        assert len(frame.planes[0]) == 240 * 240
        assert len(frame.planes[1]) == 120 * 120
        assert len(frame.planes[2]) == 120 * 120

    def test_odd_dimensions_rejected(self):
        image = RGBImage(np.zeros((11, 10, 3), dtype=np.uint8))
        with pytest.raises(ValueError):
            Frame.from_image(image)

    def test_planes_are_copied(self):
        y = bytearray(16)
        frame = Frame(planes=(y, bytearray(4), bytearray(4)), width=4, height=4)
        y[0] = 255
        assert frame.planes[0][0] == 0

    def test_upright_size(self):
        frame = Frame(planes=(), width=640, height=480, rotation=90)
        assert frame.upright_size == (480, 640)
        assert Frame(planes=(), width=640, height=480, rotation=180).upright_size == (640, 480)


class TestYuvConversion:
    def test_grey_roundtrip(self):
        image = RGBImage(np.full((40, 60, 3), 120, dtype=np.uint8))
        rgb, factor = yuv420_to_rgb(Frame.from_image(image), target_short_side=240)
        assert factor == 1.0
        assert rgb.shape == (40, 60, 3)
        assert np.abs(rgb.astype(int) - 120).max() <= 1

    def test_downscale_factor_is_clamped(self):
        frame = _black_frame(2000, 1200)
        rgb, factor = yuv420_to_rgb(frame, target_short_side=240)
        assert factor == 4.0
        assert rgb.shape == (300, 500, 3)

    def test_rotation(self):
        base = _black_frame(320, 240)
        frame = Frame(planes=base.planes, width=320, height=240, rotation=90)
        rgb, _ = yuv420_to_rgb(frame)
        assert rgb.shape[:2] == (320, 240)

    def test_short_planes_do_not_raise(self):
        frame = Frame(planes=(bytes(10),), width=20, height=20)
        rgb, _ = yuv420_to_rgb(frame)
        assert rgb.shape == (20, 20, 3)


class TestFrameAnalyzer:
    def test_all_black_frame(self):
        candidate = FrameAnalyzer().analyze(_black_frame(320, 240))
        assert candidate.confidence == 0.0
        assert candidate.center_estimate == (160, 120)
        assert candidate.thumbnail is None

    def test_code_frame_scores_high(self):
        candidate = FrameAnalyzer().analyze(_code_frame(480))
        assert candidate.confidence >= 0.9
        cx, cy = candidate.center_estimate
        assert abs(cx - 240) < 24
        assert abs(cy - 240) < 24
        assert candidate.thumbnail is not None
        thumb = Image.open(io.BytesIO(candidate.thumbnail))
        assert thumb.size == (240, 240)

    def test_rotated_thumbnail_is_upright(self):
        image = RGBImage.from_pil(render_code(PRODUCT, DATE, size=480).crop((0, 80, 480, 400)))
        frame = Frame.from_image(image, rotation=90)
        candidate = FrameAnalyzer().analyze(frame)
        assert candidate.thumbnail is not None
        assert Image.open(io.BytesIO(candidate.thumbnail)).size == (240, 360)

    def test_broken_frame_never_raises(self):
        candidate = FrameAnalyzer().analyze(Frame(planes=(), width=0, height=0))
        assert isinstance(candidate, ScanCandidate)
        assert candidate.confidence == 0.0
        assert candidate.center_estimate == (0, 0)

    def test_confidence_in_unit_interval(self):
        rng = np.random.default_rng(7)
        noise = RGBImage(rng.integers(0, 256, size=(120, 160, 3), dtype=np.uint8))
        candidate = FrameAnalyzer(rays=16).analyze(Frame.from_image(noise))
        assert 0.0 <= candidate.confidence <= 1.0

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"rays": 0},
            {"target_short_side": 0},
            {"thumbnail_quality": 0},
            {"thumbnail_quality": 101},
        ],
    )
    def test_invalid_settings_rejected(self, kwargs):
        with pytest.raises(ConfigurationError):
            FrameAnalyzer(**kwargs)

    def test_from_config(self):
        analyzer = FrameAnalyzer.from_config(ScanConfig(analysis_rays=12, thumbnail_quality=60))
        assert analyzer.rays == 12
        assert analyzer.thumbnail_quality == 60
