"""PNG/SVG rendering of ring codes and annotated evidence images.

Code layout (radii as fractions of half the image size):
- Product ring: grey band from 0.55 to 0.85, black data marks and the red
  start marker on a track near its inner edge
- Date ring: white band from 0.223 to 0.495 (derived from the product
  ring by the RingConfig ratios), yellow data marks and its own red start
  marker at mid-thickness

Marks cover +/-15% of ring thickness around the sampling track, so most of
the baseline samples see the band colour rather than the ink.

The rendered codes are synthetic stand-ins for printed labels. They are
used by the render endpoint and to drive decode tests end to end.
"""

from __future__ import annotations

import io
import math
from dataclasses import dataclass, field

import structlog
from PIL import Image, ImageDraw

from .bits import place_bits
from .config import RingConfig, RingSpec
from .decoder import RingDecodeResult
from .image import RGBImage

logger = structlog.get_logger(__name__)

RGB = tuple[int, int, int]

PRODUCT_INNER = 0.55
PRODUCT_OUTER = 0.85
MARK_HALF_WIDTH = 0.15
ARC_STEPS = 24


@dataclass(frozen=True)
class RingStyle:
    """Colours for one ring. band=None leaves the background showing."""

    ink: RGB
    band: RGB | None = None


@dataclass(frozen=True)
class CodeStyle:
    """Colours for a full dual-ring code."""

    background: RGB = (255, 255, 255)
    marker: RGB = (220, 20, 20)
    product: RingStyle = field(
        default_factory=lambda: RingStyle(ink=(0, 0, 0), band=(70, 70, 70))
    )
    date: RingStyle = field(default_factory=lambda: RingStyle(ink=(250, 220, 20)))


def _rgb_to_hex(rgb: RGB) -> str:
    """Convert (r, g, b) to hex color string."""
    return f"#{rgb[0]:02x}{rgb[1]:02x}{rgb[2]:02x}"


def _mark_span(r1: float, r2: float, offset: float) -> tuple[float, float]:
    t = r2 - r1
    lo = max(0.0, offset - MARK_HALF_WIDTH)
    hi = min(1.0, offset + MARK_HALF_WIDTH)
    return r1 + lo * t, r1 + hi * t


def _sector_polygon(
    cx: float,
    cy: float,
    r_in: float,
    r_out: float,
    a0: float,
    a1: float,
) -> list[tuple[float, float]]:
    """Vertices of an annular sector between angles a0 and a1 (radians)."""
    points: list[tuple[float, float]] = []
    for k in range(ARC_STEPS + 1):
        a = a0 + (a1 - a0) * k / ARC_STEPS
        points.append((cx + r_out * math.cos(a), cy + r_out * math.sin(a)))
    for k in range(ARC_STEPS + 1):
        a = a1 - (a1 - a0) * k / ARC_STEPS
        points.append((cx + r_in * math.cos(a), cy + r_in * math.sin(a)))
    return points


def draw_ring(
    draw: ImageDraw.ImageDraw,
    center: tuple[float, float],
    r1: float,
    r2: float,
    raw_bits: list[int],
    offset: float,
    style: RingStyle,
    background: RGB,
    marker_index: int | None = None,
    marker_color: RGB = (220, 20, 20),
) -> None:
    """Draw one ring. Rings must be drawn from the outside in.

    Args:
        draw: Target drawing context.
        center: (x, y) ring centre.
        r1: Inner radius in pixels.
        r2: Outer radius in pixels.
        raw_bits: One bit per sector; 1 draws an ink mark.
        offset: Sampling track as a fraction of ring thickness.
        style: Band and ink colours.
        background: Colour inside r1.
        marker_index: Sector to paint as the start marker, if any.
        marker_color: Start marker colour.
    """
    cx, cy = center
    if style.band is not None:
        draw.ellipse((cx - r2, cy - r2, cx + r2, cy + r2), fill=style.band)
        draw.ellipse((cx - r1, cy - r1, cx + r1, cy + r1), fill=background)

    m_in, m_out = _mark_span(r1, r2, offset)
    n = len(raw_bits)
    for i, bit in enumerate(raw_bits):
        if i == marker_index:
            color = marker_color
        elif bit:
            color = style.ink
        else:
            continue
        a0 = 2 * math.pi * i / n
        a1 = 2 * math.pi * (i + 1) / n
        draw.polygon(_sector_polygon(cx, cy, m_in, m_out, a0, a1), fill=color)


def code_radii(size: int, config: RingConfig) -> tuple[float, float, float, float]:
    """(product inner, product outer, date inner, date outer) for a size x size code."""
    half = size / 2.0
    p1, p2 = half * PRODUCT_INNER, half * PRODUCT_OUTER
    d2 = p1 * config.date_outer_ratio
    return p1, p2, d2 * config.date_inner_ratio, d2


def _check_fits(bits: list[int], spec: RingSpec, name: str) -> None:
    if len(bits) != spec.data_bits:
        raise ValueError(f"{name} ring needs {spec.data_bits} bits, got {len(bits)}")
    if set(bits) - {0, 1}:
        raise ValueError(f"{name} ring bits must be 0 or 1")


def render_code(
    product_bits: list[int],
    date_bits: list[int],
    size: int = 512,
    product_start: int = 0,
    date_start: int = 0,
    config: RingConfig | None = None,
    style: CodeStyle | None = None,
) -> Image.Image:
    """Render a dual-ring code as a Pillow image.

    Args:
        product_bits: Logical product ring bits.
        date_bits: Logical date ring bits.
        size: Output size in pixels (square).
        product_start: Sector of the product ring start marker.
        date_start: Sector of the date ring start marker.
        config: Ring layout.
        style: Colours.

    Returns:
        RGB image of the code centred on a size x size canvas.

    Raises:
        ValueError: If a bit sequence does not match its ring layout.
    """
    config = config or RingConfig()
    style = style or CodeStyle()
    _check_fits(product_bits, config.product, "product")
    _check_fits(date_bits, config.date, "date")

    p1, p2, d1, d2 = code_radii(size, config)
    center = (size / 2.0, size / 2.0)

    img = Image.new("RGB", (size, size), style.background)
    draw = ImageDraw.Draw(img)
    draw_ring(
        draw,
        center,
        p1,
        p2,
        place_bits(product_bits, product_start, config.product.num_sectors),
        config.product.sampling_offset,
        style.product,
        style.background,
        marker_index=product_start % config.product.num_sectors,
        marker_color=style.marker,
    )
    draw_ring(
        draw,
        center,
        d1,
        d2,
        place_bits(date_bits, date_start, config.date.num_sectors),
        config.date.sampling_offset,
        style.date,
        style.background,
        marker_index=date_start % config.date.num_sectors,
        marker_color=style.marker,
    )

    logger.debug("code_rendered", size=size, product_start=product_start, date_start=date_start)
    return img


def render_png(
    product_bits: list[int],
    date_bits: list[int],
    size: int = 512,
    product_start: int = 0,
    date_start: int = 0,
    config: RingConfig | None = None,
    style: CodeStyle | None = None,
) -> bytes:
    """Render a dual-ring code as PNG bytes."""
    img = render_code(product_bits, date_bits, size, product_start, date_start, config, style)
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    png_bytes = buf.getvalue()
    logger.debug("png_rendered", size=size, bytes=len(png_bytes))
    return png_bytes


def _svg_sector(cx: float, cy: float, r_in: float, r_out: float, a0: float, a1: float) -> str:
    large = 1 if (a1 - a0) > math.pi else 0
    p = [
        (cx + r_out * math.cos(a0), cy + r_out * math.sin(a0)),
        (cx + r_out * math.cos(a1), cy + r_out * math.sin(a1)),
        (cx + r_in * math.cos(a1), cy + r_in * math.sin(a1)),
        (cx + r_in * math.cos(a0), cy + r_in * math.sin(a0)),
    ]
    return (
        f"M {p[0][0]:.2f},{p[0][1]:.2f} "
        f"A {r_out:.2f},{r_out:.2f} 0 {large} 1 {p[1][0]:.2f},{p[1][1]:.2f} "
        f"L {p[2][0]:.2f},{p[2][1]:.2f} "
        f"A {r_in:.2f},{r_in:.2f} 0 {large} 0 {p[3][0]:.2f},{p[3][1]:.2f} Z"
    )


def render_svg(
    product_bits: list[int],
    date_bits: list[int],
    size: int = 512,
    product_start: int = 0,
    date_start: int = 0,
    config: RingConfig | None = None,
    style: CodeStyle | None = None,
) -> str:
    """Render a dual-ring code as an SVG document (same layout as render_code)."""
    config = config or RingConfig()
    style = style or CodeStyle()
    _check_fits(product_bits, config.product, "product")
    _check_fits(date_bits, config.date, "date")

    p1, p2, d1, d2 = code_radii(size, config)
    c = size / 2.0
    bg = _rgb_to_hex(style.background)

    svg_parts: list[str] = [
        f'<svg xmlns="http://www.w3.org/2000/svg" '
        f'viewBox="0 0 {size} {size}" '
        f'width="{size}" height="{size}">',
        f'  <rect width="{size}" height="{size}" fill="{bg}"/>',
    ]

    rings = [
        (p1, p2, product_bits, product_start, config.product, style.product, "product"),
        (d1, d2, date_bits, date_start, config.date, style.date, "date"),
    ]
    for r1, r2, bits, start, spec, ring_style, name in rings:
        if ring_style.band is not None:
            svg_parts.append(
                f'  <circle cx="{c:.1f}" cy="{c:.1f}" r="{r2:.2f}" '
                f'fill="{_rgb_to_hex(ring_style.band)}" class="{name}-band"/>'
            )
            svg_parts.append(f'  <circle cx="{c:.1f}" cy="{c:.1f}" r="{r1:.2f}" fill="{bg}"/>')

        raw = place_bits(bits, start, spec.num_sectors)
        m_in, m_out = _mark_span(r1, r2, spec.sampling_offset)
        n = spec.num_sectors
        marker = start % n
        for i, bit in enumerate(raw):
            if i == marker:
                fill, cls = style.marker, f"{name}-marker"
            elif bit:
                fill, cls = ring_style.ink, f"{name}-mark"
            else:
                continue
            path = _svg_sector(c, c, m_in, m_out, 2 * math.pi * i / n, 2 * math.pi * (i + 1) / n)
            svg_parts.append(f'  <path d="{path}" fill="{_rgb_to_hex(fill)}" class="{cls}"/>')

    svg_parts.append("</svg>")
    svg_content = "\n".join(svg_parts)

    logger.debug("svg_rendered", size=size, element_count=len(svg_parts))
    return svg_content


def render_evidence(
    image: RGBImage,
    result: RingDecodeResult,
    config: RingConfig | None = None,
    quality: int = 88,
) -> bytes:
    """Annotate a decoded image with what the decoder sampled.

    Draws ring boundaries, one dot per sampled sector (coloured by its raw
    bit), a line on each start marker, the centre and both bit strings.

    Args:
        image: The image that was decoded.
        result: Output of decode_rings on that image.
        config: Ring layout used for the decode.
        quality: JPEG quality.

    Returns:
        JPEG bytes.
    """
    config = config or RingConfig()
    out = image.to_pil().copy()
    draw = ImageDraw.Draw(out)
    cx, cy = image.center
    product_radii = (result.params.inner_radius, result.params.outer_radius)

    def circle(radius: float, color: RGB) -> None:
        draw.ellipse((cx - radius, cy - radius, cx + radius, cy + radius), outline=color, width=2)

    circle(product_radii[0], (0, 200, 0))
    circle(product_radii[1], (255, 165, 0))
    circle(result.date_radii[0], (0, 180, 180))
    circle(result.date_radii[1], (0, 180, 180))

    rings = [
        (product_radii, result.product_raw, result.product_start, config.product, (255, 0, 0), 8),
        (result.date_radii, result.date_raw, result.date_start, config.date, (255, 255, 0), 6),
    ]
    for (r1, r2), raw, start, spec, on_color, dot in rings:
        radius = r1 + spec.sampling_offset * (r2 - r1)
        for i, bit in enumerate(raw):
            ang = 2 * math.pi * (i + 0.5) / spec.num_sectors
            x = cx + radius * math.cos(ang)
            y = cy + radius * math.sin(ang)
            dot_color = on_color if bit else (30, 30, 30)
            draw.ellipse((x - dot, y - dot, x + dot, y + dot), fill=dot_color)

            label_x = x + radius * 0.12 * math.cos(ang)
            label_y = y + radius * 0.12 * math.sin(ang)
            draw.text((label_x, label_y), str(i), fill=(255, 255, 255))
            if i == start:
                x2 = cx + (radius - 3 * dot) * math.cos(ang)
                y2 = cy + (radius - 3 * dot) * math.sin(ang)
                draw.line((x2, y2, x, y), fill=(255, 0, 255), width=2)

    draw.ellipse((cx - 6, cy - 6, cx + 6, cy + 6), fill=(255, 0, 0))
    draw.text((8, 8), "product: " + "".join(map(str, result.product_bits)), fill=(255, 255, 255))
    draw.text((8, 24), "date:    " + "".join(map(str, result.date_bits)), fill=(255, 255, 255))

    buf = io.BytesIO()
    out.save(buf, format="JPEG", quality=quality)
    return buf.getvalue()
