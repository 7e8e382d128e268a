"""Ring radius estimation by radial luminance scanning.

Casts rays from the code centre and looks for the dark band of the
product ring on each ray:
1. Sample mean luminance at unit radius steps from r=8 outward
2. Inner edge = first bright->dark step (prev > 160, cur < 120)
3. Outer edge = next dark->bright step (prev < 120, cur > 160)
4. Keep rays whose band is thicker than 6 px
5. Median inner / median outer, with outliers (> 25% from the median
   inner radius) filtered out

When no ray yields a band, the radii fall back to fixed fractions of the
image size. This never raises.
"""

from __future__ import annotations

import math
from dataclasses import dataclass

import numpy as np
import structlog

from .errors import GeometryNotFound
from .image import RGBImage

logger = structlog.get_logger(__name__)

BRIGHT_LEVEL = 160
DARK_LEVEL = 120
MIN_START_RADIUS = 8
MIN_BAND_WIDTH = 6
OUTLIER_FRACTION = 0.25

# Fallback geometry as fractions of half the short image side
FALLBACK_INNER = 0.55
FALLBACK_OUTER = 0.85
DEFAULT_RELATIVE_POSITION = 0.65


@dataclass(frozen=True)
class RadialParams:
    """Estimated ring geometry in pixels.

    Attributes:
        inner_radius: Radius where the ring band starts.
        outer_radius: Radius where the ring band ends (> inner_radius).
        relative_position: Fraction of ring thickness used for sampling.
        rays_used: Number of rays that contributed to the estimate
            (0 for the fallback).
    """

    inner_radius: float
    outer_radius: float
    relative_position: float = DEFAULT_RELATIVE_POSITION
    rays_used: int = 0

    @property
    def thickness(self) -> float:
        return self.outer_radius - self.inner_radius


def fallback_params(width: int, height: int) -> RadialParams:
    """Heuristic geometry for a code that fills the image."""
    half = min(width, height) / 2.0
    return RadialParams(half * FALLBACK_INNER, half * FALLBACK_OUTER, DEFAULT_RELATIVE_POSITION)


def _scan_ray(
    gray: np.ndarray,
    cx: float,
    cy: float,
    angle: float,
    radii: np.ndarray,
) -> tuple[int, int] | None:
    """Find the (inner, outer) band edges along one ray, or None."""
    h, w = gray.shape
    xs = np.clip(np.rint(cx + radii * math.cos(angle)).astype(np.int64), 0, w - 1)
    ys = np.clip(np.rint(cy + radii * math.sin(angle)).astype(np.int64), 0, h - 1)
    lum = gray[ys, xs]

    prev, cur = lum[:-1], lum[1:]
    falls = np.flatnonzero((prev > BRIGHT_LEVEL) & (cur < DARK_LEVEL))
    if len(falls) == 0:
        return None
    i_in = int(falls[0]) + 1

    rises = np.flatnonzero((prev[i_in:] < DARK_LEVEL) & (cur[i_in:] > BRIGHT_LEVEL))
    if len(rises) == 0:
        return None
    i_out = i_in + int(rises[0]) + 1

    inner, outer = int(radii[i_in]), int(radii[i_out])
    if outer - inner <= MIN_BAND_WIDTH:
        return None
    return inner, outer


def _upper_median(values: list[int]) -> float:
    ordered = sorted(values)
    return float(ordered[len(ordered) // 2])


def _aggregate(pairs: list[tuple[int, int]]) -> tuple[float, float, int]:
    if not pairs:
        raise GeometryNotFound("no ray crossed a ring band")

    median_inner = _upper_median([p[0] for p in pairs])
    median_outer = _upper_median([p[1] for p in pairs])

    kept = [p for p in pairs if abs(p[0] - median_inner) <= median_inner * OUTLIER_FRACTION]
    if kept:
        median_inner = _upper_median([p[0] for p in kept])
        median_outer = _upper_median([p[1] for p in kept])
    return median_inner, median_outer, len(kept)


def estimate_radii(
    image: RGBImage,
    center: tuple[float, float] | None = None,
    steps: int = 180,
    max_radius: int = 0,
) -> RadialParams:
    """Estimate inner/outer ring radii around ``center``.

    Args:
        image: Image to scan.
        center: (x, y) scan origin. Defaults to the image centre.
        steps: Number of rays spread uniformly over 2*pi.
        max_radius: Longest ray. 0 means half the short image side.

    Returns:
        RadialParams with inner_radius < outer_radius. Falls back to
        fixed fractions of the image size when no ring band is found.
    """
    cx, cy = center if center is not None else image.center
    if max_radius <= 0:
        max_radius = min(image.width, image.height) // 2

    radii = np.arange(MIN_START_RADIUS, max_radius - 2, dtype=np.float64)
    if len(radii) < 2:
        logger.debug("radial_scan_too_small", width=image.width, height=image.height)
        return fallback_params(image.width, image.height)

    gray = image.gray
    pairs: list[tuple[int, int]] = []
    for s in range(steps):
        pair = _scan_ray(gray, cx, cy, 2 * math.pi * s / steps, radii)
        if pair is not None:
            pairs.append(pair)

    try:
        inner, outer, used = _aggregate(pairs)
    except GeometryNotFound as e:
        params = fallback_params(image.width, image.height)
        logger.debug(
            "radial_fallback",
            reason=str(e),
            inner=round(params.inner_radius, 1),
            outer=round(params.outer_radius, 1),
        )
        return params

    logger.debug(
        "radial_estimated",
        inner=inner,
        outer=outer,
        rays_accepted=len(pairs),
        rays_used=used,
        steps=steps,
    )
    return RadialParams(inner, outer, DEFAULT_RELATIVE_POSITION, used)
