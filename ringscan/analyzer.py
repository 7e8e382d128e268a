"""Cheap per-frame ring presence detection for live video.

Each camera frame is scored by:
1. Converting the YUV 4:2:0 planes to RGB on a downscaled grid
   (short side ~240 px, nearest sampling)
2. Casting a few rays from the centre and recording the first strong
   bright->dark step on each
3. confidence = rays with an edge / rays cast

The downscaled image is also JPEG-encoded as a thumbnail so the
controller can try a speculative decode without a full capture.

``FrameAnalyzer.analyze`` runs on a worker thread. It only reads its
input frame and never raises; failures come back as a zero-confidence
candidate.
"""

from __future__ import annotations

import io
import math
from dataclasses import dataclass

import numpy as np
import structlog
from PIL import Image

from .config import ScanConfig
from .errors import ConfigurationError
from .image import RGBImage

logger = structlog.get_logger(__name__)

EDGE_BRIGHT = 160
EDGE_DARK = 90
MIN_SCAN_RADIUS = 6
MIN_DOWNSCALE = 1.0
MAX_DOWNSCALE = 4.0


@dataclass(frozen=True)
class Frame:
    """One camera frame in YUV 4:2:0 planar layout.

    Attributes:
        planes: (Y, U, V) plane buffers. Y has width*height samples, U and
            V have (height // 2) rows of (width // 2) samples.
        width: Frame width in pixels.
        height: Frame height in pixels.
        rotation: Clockwise sensor rotation in degrees (multiple of 90).
    """

    planes: tuple[bytes, ...]
    width: int
    height: int
    rotation: int = 0

    def __post_init__(self) -> None:
        # Camera buffers are often reused by the producer; keep private copies
        object.__setattr__(self, "planes", tuple(bytes(p) for p in self.planes))

    @classmethod
    def from_image(cls, image: RGBImage, rotation: int = 0) -> Frame:
        """Build a 4:2:0 frame from an RGB image (BT.601 full range).

        Raises:
            ValueError: If the image has odd dimensions.
        """
        if image.width % 2 or image.height % 2:
            raise ValueError(f"4:2:0 frames need even dimensions, got {image.width}x{image.height}")
        rgb = image.pixels.astype(np.float32)
        r, g, b = rgb[..., 0], rgb[..., 1], rgb[..., 2]

        y = 0.299 * r + 0.587 * g + 0.114 * b
        u = -0.168736 * r - 0.331264 * g + 0.5 * b + 128.0
        v = 0.5 * r - 0.418688 * g - 0.081312 * b + 128.0

        def subsample(plane: np.ndarray) -> np.ndarray:
            h, w = plane.shape
            return plane.reshape(h // 2, 2, w // 2, 2).mean(axis=(1, 3))

        def to_bytes(plane: np.ndarray) -> bytes:
            return np.clip(np.rint(plane), 0, 255).astype(np.uint8).tobytes()

        return cls(
            planes=(to_bytes(y), to_bytes(subsample(u)), to_bytes(subsample(v))),
            width=image.width,
            height=image.height,
            rotation=rotation,
        )

    @property
    def upright_size(self) -> tuple[int, int]:
        """(width, height) after applying the sensor rotation."""
        if (self.rotation // 90) % 2:
            return self.height, self.width
        return self.width, self.height


@dataclass(frozen=True)
class ScanCandidate:
    """Ring-presence evidence for one frame.

    Attributes:
        confidence: Fraction of rays that crossed a bright->dark edge, [0, 1].
        center_estimate: (x, y) mean edge point in upright full-resolution
            coordinates, or the frame centre when no edge was seen.
        thumbnail: JPEG of the downscaled upright frame, if available.
    """

    confidence: float
    center_estimate: tuple[int, int]
    thumbnail: bytes | None = None


def _lookup(buf: bytes, index: np.ndarray, default: int) -> np.ndarray:
    """Read plane samples at flat indices; indices past the buffer give ``default``."""
    arr = np.frombuffer(buf, dtype=np.uint8)
    out = np.full(index.shape, float(default), dtype=np.float32)
    valid = index < len(arr)
    out[valid] = arr[index[valid]]
    return out


def yuv420_to_rgb(frame: Frame, target_short_side: int = 240) -> tuple[np.ndarray, float]:
    """Convert a frame to a downscaled, upright RGB array.

    Args:
        frame: Source frame.
        target_short_side: Desired short side of the output.

    Returns:
        Tuple of (H x W x 3 uint8 array, downscale factor).
    """
    w, h = frame.width, frame.height
    factor = min(max(min(w, h) / target_short_side, MIN_DOWNSCALE), MAX_DOWNSCALE)
    small_w = max(1, round(w / factor))
    small_h = max(1, round(h / factor))

    xs = np.minimum(np.rint(np.arange(small_w) * factor).astype(np.int64), w - 1)
    ys = np.minimum(np.rint(np.arange(small_h) * factor).astype(np.int64), h - 1)

    y_plane = frame.planes[0] if len(frame.planes) > 0 else b""
    u_plane = frame.planes[1] if len(frame.planes) > 1 else b""
    v_plane = frame.planes[2] if len(frame.planes) > 2 else b""

    yv = _lookup(y_plane, ys[:, None] * w + xs[None, :], 0)
    uv_index = (ys[:, None] // 2) * (w // 2) + (xs[None, :] // 2)
    uv = _lookup(u_plane, uv_index, 128) - 128.0
    vv = _lookup(v_plane, uv_index, 128) - 128.0

    r = yv + 1.370705 * vv
    g = yv - 0.337633 * uv - 0.698001 * vv
    b = yv + 1.732446 * uv
    rgb = np.clip(np.rint(np.stack([r, g, b], axis=-1)), 0, 255).astype(np.uint8)

    quarter_turns = (frame.rotation // 90) % 4
    if quarter_turns:
        rgb = np.ascontiguousarray(np.rot90(rgb, k=-quarter_turns))
    return rgb, factor


class FrameAnalyzer:
    """Scores frames for ring presence. Stateless and thread-safe."""

    def __init__(
        self,
        rays: int = 28,
        target_short_side: int = 240,
        thumbnail_quality: int = 75,
    ) -> None:
        if rays < 1:
            raise ConfigurationError(f"rays must be >= 1, got {rays}")
        if target_short_side < 1:
            raise ConfigurationError(f"target_short_side must be >= 1, got {target_short_side}")
        if not 1 <= thumbnail_quality <= 95:
            raise ConfigurationError(
                f"thumbnail_quality must be in [1, 95], got {thumbnail_quality}"
            )
        self.rays = rays
        self.target_short_side = target_short_side
        self.thumbnail_quality = thumbnail_quality

    @classmethod
    def from_config(cls, config: ScanConfig) -> FrameAnalyzer:
        return cls(
            rays=config.analysis_rays,
            target_short_side=config.target_short_side,
            thumbnail_quality=config.thumbnail_quality,
        )

    def analyze(self, frame: Frame) -> ScanCandidate:
        """Score one frame. Never raises."""
        try:
            return self._analyze(frame)
        except Exception as e:
            logger.warning(
                "frame_analysis_failed", error=str(e), width=frame.width, height=frame.height
            )
            return ScanCandidate(confidence=0.0, center_estimate=self._frame_center(frame))

    @staticmethod
    def _frame_center(frame: Frame) -> tuple[int, int]:
        try:
            w, h = frame.upright_size
            return round(w / 2), round(h / 2)
        except TypeError:
            return 0, 0

    def _edge_points(self, gray: np.ndarray) -> list[tuple[float, float]]:
        h, w = gray.shape
        cx, cy = w / 2.0, h / 2.0
        radii = np.arange(MIN_SCAN_RADIUS, min(w, h) // 2, dtype=np.float64)
        if len(radii) < 2:
            return []

        points: list[tuple[float, float]] = []
        for s in range(self.rays):
            ang = 2 * math.pi * s / self.rays
            xs = np.clip(np.rint(cx + radii * math.cos(ang)).astype(np.int64), 0, w - 1)
            ys = np.clip(np.rint(cy + radii * math.sin(ang)).astype(np.int64), 0, h - 1)
            lum = gray[ys, xs]
            hits = np.flatnonzero((lum[:-1] > EDGE_BRIGHT) & (lum[1:] < EDGE_DARK))
            if len(hits):
                k = int(hits[0]) + 1
                points.append((float(xs[k]), float(ys[k])))
        return points

    def _thumbnail(self, rgb: np.ndarray) -> bytes | None:
        try:
            buf = io.BytesIO()
            Image.fromarray(rgb).save(buf, format="JPEG", quality=self.thumbnail_quality)
            return buf.getvalue()
        except OSError as e:
            logger.debug("thumbnail_encode_failed", error=str(e))
            return None

    def _analyze(self, frame: Frame) -> ScanCandidate:
        rgb, factor = yuv420_to_rgb(frame, self.target_short_side)
        gray = rgb.astype(np.float32).mean(axis=2)
        points = self._edge_points(gray)

        if not points:
            return ScanCandidate(confidence=0.0, center_estimate=self._frame_center(frame))

        avg_x = sum(p[0] for p in points) / len(points) * factor
        avg_y = sum(p[1] for p in points) / len(points) * factor
        confidence = min(max(len(points) / self.rays, 0.0), 1.0)

        return ScanCandidate(
            confidence=confidence,
            center_estimate=(round(avg_x), round(avg_y)),
            thumbnail=self._thumbnail(rgb),
        )
