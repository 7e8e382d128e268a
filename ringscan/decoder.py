"""Bit decoder for dual-ring circular codes.

Decodes a ring code image to its product and date bit sequences by:
1. Estimating the product ring radii with the radial profiler
2. Deriving the date ring radii from the product ring's inner edge
3. For each ring:
   a. Locating the red start marker sector
   b. Classifying every sector against a local luminance baseline,
      with 3-way angular oversampling and a majority vote
   c. Rotating to the marker and reversing into logical bit order

No checksum is carried by the code, so a decode always yields bits; the
live controller applies its own plausibility gate on top.
"""

from __future__ import annotations

import math
from dataclasses import dataclass

import structlog

from .bits import align_and_order
from .config import ColorClass, RingConfig, SamplingConfig
from .errors import ConfigurationError
from .image import RGBImage
from .radial import RadialParams, estimate_radii

logger = structlog.get_logger(__name__)

# Radial span (fractions of ring thickness) used for the lighting baseline
BASELINE_START = 0.25
BASELINE_END = 0.75


@dataclass
class RingDecodeResult:
    """Bits and geometry from decoding both rings of one image.

    Attributes:
        product_bits: Logical product ring bits.
        date_bits: Logical date ring bits.
        product_start: Start marker sector of the product ring.
        date_start: Start marker sector of the date ring.
        params: Product ring geometry from the profiler.
        date_radii: (inner, outer) radii used for the date ring.
        product_raw: Raw per-sector product bits.
        date_raw: Raw per-sector date bits.
    """

    product_bits: list[int]
    date_bits: list[int]
    product_start: int
    date_start: int
    params: RadialParams
    date_radii: tuple[float, float]
    product_raw: list[int]
    date_raw: list[int]


@dataclass
class DecodeResult:
    """Result of decoding an encoded image.

    Attributes:
        product_bits: Product ring bits, or None if decode failed.
        date_bits: Date ring bits, or None if decode failed.
        confidence: Confidence score in [0.0, 1.0].
        error: Error message if decode failed.
    """

    product_bits: list[int] | None
    date_bits: list[int] | None
    confidence: float
    error: str | None = None


class RingBitDecoder:
    """Per-sector bit extraction for one image.

    Sector ``i`` is centred on angle ``2*pi*(i + 0.5) / num_sectors``,
    measured clockwise from +x in image coordinates.
    """

    def __init__(
        self,
        image: RGBImage,
        num_sectors: int = 10,
        data_bits: int = 9,
        sampling: SamplingConfig | None = None,
        center: tuple[float, float] | None = None,
    ) -> None:
        if num_sectors < 2:
            raise ConfigurationError(f"num_sectors must be >= 2, got {num_sectors}")
        if data_bits < 1 or num_sectors < data_bits + 1:
            raise ConfigurationError(
                f"num_sectors ({num_sectors}) must leave room for the start marker "
                f"after {data_bits} data bits"
            )
        self.sampling = sampling or SamplingConfig()
        if self.sampling.window_size % 2 == 0:
            raise ConfigurationError(f"window_size must be odd, got {self.sampling.window_size}")

        self.image = image
        self.num_sectors = num_sectors
        self.data_bits = data_bits
        self.cx, self.cy = center if center is not None else image.center

    def _sector_angle(self, index: int) -> float:
        return 2 * math.pi * (index + 0.5) / self.num_sectors

    def _point(self, angle: float, radius: float) -> tuple[float, float]:
        return self.cx + radius * math.cos(angle), self.cy + radius * math.sin(angle)

    def _window(self, angle: float, radius: float) -> tuple[float, float, float]:
        x, y = self._point(angle, radius)
        return self.image.window_mean(x, y, self.sampling.window_size)

    def _is_robust_red(self, rgb: tuple[float, float, float]) -> bool:
        r, g, b = rgb
        s = self.sampling
        return r > s.red_min and r - g > s.red_margin and r - b > s.red_margin

    def detect_start_marker(self, r1: float, r2: float, offset_fraction: float = 0.4) -> int:
        """Index of the first robust-red sector, or 0 if there is none."""
        radius = r1 + offset_fraction * (r2 - r1)
        for i in range(self.num_sectors):
            if self._is_robust_red(self._window(self._sector_angle(i), radius)):
                return i
        logger.debug("start_marker_not_found", r1=round(r1, 1), r2=round(r2, 1))
        return 0

    def local_baseline(self, angle: float, r1: float, r2: float) -> float:
        """Mean luminance across the ring thickness at ``angle``."""
        n = self.sampling.baseline_samples
        thickness = r2 - r1
        total = 0.0
        for k in range(n):
            step = k / (n - 1) if n > 1 else 0.5
            frac = BASELINE_START + (BASELINE_END - BASELINE_START) * step
            x, y = self._point(angle, r1 + frac * thickness)
            total += self.image.luminance(x, y)
        return total / n

    def classify(
        self,
        rgb: tuple[float, float, float],
        baseline: float,
        color_class: ColorClass,
    ) -> bool:
        """Decide whether one window sample shows ink of ``color_class``."""
        r, g, b = rgb
        lum = (r + g + b) / 3.0
        s = self.sampling

        if color_class == ColorClass.BLACK:
            return lum < baseline * s.black_factor

        strict = (
            r > s.yellow_min_rg
            and g > s.yellow_min_rg
            and r - b > s.yellow_margin
            and g - b > s.yellow_margin
            and lum > baseline * s.yellow_factor
        )
        if strict:
            return True
        # Darker yellow: weaker chroma, but must stand out more from its surroundings
        loose = (
            r > s.yellow_loose_min_rg
            and g > s.yellow_loose_min_rg
            and r - b > s.yellow_loose_margin
            and g - b > s.yellow_loose_margin
            and lum > baseline * s.yellow_loose_factor
        )
        if loose:
            return True
        return r > s.bright_min_rg and g > s.bright_min_rg and b < s.bright_max_b

    def extract_bits(
        self,
        r1: float,
        r2: float,
        color_class: ColorClass | str,
        offset_fraction: float = 0.4,
    ) -> list[int]:
        """Classify every sector of the ring between radii r1 and r2.

        Args:
            r1: Inner ring radius in pixels.
            r2: Outer ring radius in pixels.
            color_class: Ink colour of the data marks.
            offset_fraction: Sampling track as a fraction of ring thickness.

        Returns:
            Raw bits, one per sector (length num_sectors).
        """
        color_class = ColorClass(color_class)
        radius = r1 + offset_fraction * (r2 - r1)
        delta = math.radians(self.sampling.angle_delta_deg)

        bits: list[int] = []
        for i in range(self.num_sectors):
            angle = self._sector_angle(i)
            baseline = self.local_baseline(angle, r1, r2)
            votes = sum(
                self.classify(self._window(angle + d, radius), baseline, color_class)
                for d in (0.0, delta, -delta)
            )
            bits.append(1 if votes >= 2 else 0)
        return bits

    def align_and_order(self, raw_bits: list[int], start_index: int) -> list[int]:
        """Rotate raw bits to the start marker and reverse into data order."""
        return align_and_order(raw_bits, start_index, self.data_bits)

    def decode_ring(
        self,
        r1: float,
        r2: float,
        color_class: ColorClass | str,
        offset_fraction: float,
    ) -> tuple[list[int], int, list[int]]:
        """Marker detection + extraction + alignment for one ring.

        Returns:
            Tuple of (data bits, start index, raw bits).
        """
        start = self.detect_start_marker(r1, r2, offset_fraction)
        raw = self.extract_bits(r1, r2, color_class, offset_fraction)
        return self.align_and_order(raw, start), start, raw


def date_ring_radii(params: RadialParams, config: RingConfig) -> tuple[float, float]:
    """Date ring (inner, outer) radii derived from the product ring."""
    outer = params.inner_radius * config.date_outer_ratio
    return outer * config.date_inner_ratio, outer


def decode_rings(image: RGBImage, config: RingConfig | None = None) -> RingDecodeResult:
    """Decode both rings of a fully available image.

    Args:
        image: Image with the code roughly centred.
        config: Ring layout and sampling settings.

    Returns:
        RingDecodeResult with logical bits for both rings.

    Raises:
        ConfigurationError: If the ring layout is invalid.
    """
    config = config or RingConfig()
    params = estimate_radii(image, steps=config.profiler_steps)
    d1, d2 = date_ring_radii(params, config)

    product_spec, date_spec = config.product, config.date
    product_dec = RingBitDecoder(
        image, product_spec.num_sectors, product_spec.data_bits, config.sampling
    )
    date_dec = RingBitDecoder(image, date_spec.num_sectors, date_spec.data_bits, config.sampling)

    product_bits, product_start, product_raw = product_dec.decode_ring(
        params.inner_radius,
        params.outer_radius,
        product_spec.color_class,
        product_spec.sampling_offset,
    )
    date_bits, date_start, date_raw = date_dec.decode_ring(
        d1, d2, date_spec.color_class, date_spec.sampling_offset
    )

    logger.debug(
        "rings_decoded",
        size=f"{image.width}x{image.height}",
        r_inner=round(params.inner_radius, 1),
        r_outer=round(params.outer_radius, 1),
        product_start=product_start,
        date_start=date_start,
        product_raw="".join(map(str, product_raw)),
        date_raw="".join(map(str, date_raw)),
    )

    return RingDecodeResult(
        product_bits=product_bits,
        date_bits=date_bits,
        product_start=product_start,
        date_start=date_start,
        params=params,
        date_radii=(d1, d2),
        product_raw=product_raw,
        date_raw=date_raw,
    )


def decode_image(image_bytes: bytes, config: RingConfig | None = None) -> DecodeResult:
    """Decode a ring code from encoded image bytes.

    Supports PNG, JPEG, and WebP input.

    Args:
        image_bytes: Raw image bytes.
        config: Ring layout and sampling settings.

    Returns:
        DecodeResult with both bit sequences, or an error message.
    """
    try:
        image = RGBImage.from_bytes(image_bytes)
    except ValueError as e:
        logger.warning("decode_image_open_failed", error=str(e))
        return DecodeResult(product_bits=None, date_bits=None, confidence=0.0, error=str(e))

    result = decode_rings(image, config)

    # Geometry from real ray hits is trusted more than the size-based fallback
    confidence = 0.9 if result.params.rays_used > 0 else 0.5
    logger.info(
        "decode_success",
        product_bits="".join(map(str, result.product_bits)),
        date_bits="".join(map(str, result.date_bits)),
        confidence=confidence,
    )
    return DecodeResult(
        product_bits=result.product_bits,
        date_bits=result.date_bits,
        confidence=confidence,
    )
