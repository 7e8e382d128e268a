"""Pixel access for decoding.

``RGBImage`` is the only image type the profiler and decoder see. It wraps
an H x W x 3 uint8 array and clamps every coordinate to the nearest valid
pixel, so samples near or past the border never fail.
"""

from __future__ import annotations

import io

import numpy as np
from PIL import Image


class RGBImage:
    """Read-only RGB pixel grid with clamped coordinate access.

    Attributes:
        pixels: H x W x 3 uint8 array (not copied; treat as read-only).
        width: Image width in pixels.
        height: Image height in pixels.
    """

    def __init__(self, pixels: np.ndarray) -> None:
        if pixels.ndim != 3 or pixels.shape[2] != 3:
            raise ValueError(f"Expected an H x W x 3 array, got shape {pixels.shape}")
        if pixels.shape[0] == 0 or pixels.shape[1] == 0:
            raise ValueError("Image has no pixels")
        self.pixels = pixels.astype(np.uint8, copy=False)
        self.height, self.width = int(pixels.shape[0]), int(pixels.shape[1])
        self._gray: np.ndarray | None = None

    @classmethod
    def from_pil(cls, img: Image.Image) -> RGBImage:
        """Wrap a Pillow image, compositing transparency onto white."""
        if img.mode in ("RGBA", "LA", "P"):
            rgba = img.convert("RGBA")
            white_bg = Image.new("RGBA", rgba.size, (255, 255, 255, 255))
            img = Image.alpha_composite(white_bg, rgba)
        return cls(np.array(img.convert("RGB")))

    @classmethod
    def from_bytes(cls, data: bytes) -> RGBImage:
        """Decode PNG/JPEG/WebP bytes.

        Raises:
            ValueError: If the bytes are not a readable image.
        """
        try:
            with Image.open(io.BytesIO(data)) as img:
                img.load()
                return cls.from_pil(img)
        except (OSError, Image.DecompressionBombError) as e:
            raise ValueError(f"Cannot open image: {e}") from e

    def to_pil(self) -> Image.Image:
        return Image.fromarray(self.pixels)

    def encode(self, fmt: str = "JPEG", quality: int = 75) -> bytes:
        """Re-encode the pixels (JPEG by default)."""
        buf = io.BytesIO()
        if fmt.upper() == "JPEG":
            self.to_pil().save(buf, format="JPEG", quality=quality)
        else:
            self.to_pil().save(buf, format=fmt)
        return buf.getvalue()

    @property
    def center(self) -> tuple[int, int]:
        return self.width // 2, self.height // 2

    @property
    def gray(self) -> np.ndarray:
        """Per-pixel luminance, (r + g + b) / 3 as float32. Cached."""
        if self._gray is None:
            self._gray = self.pixels.astype(np.float32).mean(axis=2)
        return self._gray

    def _clamp(self, x: float, y: float) -> tuple[int, int]:
        xi = min(max(int(round(x)), 0), self.width - 1)
        yi = min(max(int(round(y)), 0), self.height - 1)
        return xi, yi

    def get_pixel(self, x: float, y: float) -> tuple[int, int, int]:
        """RGB at (x, y), rounded and clamped to the image."""
        xi, yi = self._clamp(x, y)
        r, g, b = self.pixels[yi, xi]
        return int(r), int(g), int(b)

    def luminance(self, x: float, y: float) -> float:
        xi, yi = self._clamp(x, y)
        return float(self.gray[yi, xi])

    def window_mean(self, x: float, y: float, size: int) -> tuple[float, float, float]:
        """Mean RGB over a size x size window centred on (x, y).

        Window pixels past the border repeat the edge pixel.
        """
        xi, yi = self._clamp(x, y)
        half = size // 2
        xs = np.clip(np.arange(xi - half, xi + half + 1), 0, self.width - 1)
        ys = np.clip(np.arange(yi - half, yi + half + 1), 0, self.height - 1)
        region = self.pixels[np.ix_(ys, xs)].reshape(-1, 3).astype(np.float64)
        r, g, b = region.mean(axis=0)
        return float(r), float(g), float(b)
