"""Configuration models for ringscan.

All tunables live in pydantic models so they are validated once, at
construction time. Invalid values raise ConfigurationError whether a
model is built directly or through ``load_config``.

Defaults describe the standard code layout: a 10-sector black product ring
sampled near its inner edge, and a 10-sector yellow date ring sampled at
mid-thickness.

The yellow "loose" and "bright" rules are empirical heuristics kept as
defaults rather than derived from a colour model.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from .errors import ConfigurationError


class _ConfigModel(BaseModel):
    """Frozen model that reports invalid values as ConfigurationError."""

    model_config = ConfigDict(frozen=True)

    def __init__(self, **data: Any) -> None:
        try:
            super().__init__(**data)
        except ValidationError as e:
            raise ConfigurationError(str(e)) from e


class ColorClass(str, Enum):
    """Ink colour of the data marks in a ring."""

    BLACK = "black"
    YELLOW = "yellow"


class SamplingConfig(_ConfigModel):
    """Per-sector sampling and classification thresholds."""

    window_size: int = Field(default=7, ge=1, description="Odd side length of the sampling window")
    angle_delta_deg: float = Field(default=2.0, ge=0.0, lt=90.0)
    baseline_samples: int = Field(default=5, ge=1)
    black_factor: float = Field(default=0.75, gt=0.0)
    yellow_factor: float = Field(default=1.08, gt=0.0)
    yellow_loose_factor: float = Field(default=1.12, gt=0.0)
    yellow_min_rg: int = Field(default=140, ge=0, le=255)
    yellow_margin: int = Field(default=40, ge=0, le=255)
    yellow_loose_min_rg: int = Field(default=110, ge=0, le=255)
    yellow_loose_margin: int = Field(default=25, ge=0, le=255)
    bright_min_rg: int = Field(default=200, ge=0, le=255)
    bright_max_b: int = Field(default=150, ge=0, le=255)
    red_min: int = Field(default=150, ge=0, le=255)
    red_margin: int = Field(default=60, ge=0, le=255)

    @field_validator("window_size")
    @classmethod
    def _window_must_be_odd(cls, v: int) -> int:
        if v % 2 == 0:
            raise ValueError(f"window_size must be odd, got {v}")
        return v


class RingSpec(_ConfigModel):
    """Layout of one ring: sector count, payload size, ink and sampling track."""

    num_sectors: int = Field(default=10, ge=2)
    data_bits: int = Field(default=9, ge=1)
    color_class: ColorClass = ColorClass.BLACK
    sampling_offset: float = Field(default=0.2, gt=0.0, lt=1.0)

    @model_validator(mode="after")
    def _room_for_marker(self) -> RingSpec:
        if self.num_sectors < self.data_bits + 1:
            raise ValueError(
                f"num_sectors ({self.num_sectors}) must be >= data_bits + 1 ({self.data_bits + 1})"
            )
        return self


class RingConfig(_ConfigModel):
    """Geometry and sampling for the full dual-ring code."""

    product: RingSpec = Field(
        default_factory=lambda: RingSpec(color_class=ColorClass.BLACK, sampling_offset=0.2)
    )
    date: RingSpec = Field(
        default_factory=lambda: RingSpec(color_class=ColorClass.YELLOW, sampling_offset=0.5)
    )
    sampling: SamplingConfig = Field(default_factory=SamplingConfig)
    profiler_steps: int = Field(default=180, ge=4)
    # Date ring radii relative to the product ring's inner edge
    date_outer_ratio: float = Field(default=0.9, gt=0.0, lt=1.0)
    date_inner_ratio: float = Field(default=0.45, gt=0.0, lt=1.0)


class ScanConfig(_ConfigModel):
    """Live-scan acquisition settings."""

    ring: RingConfig = Field(default_factory=RingConfig)
    required_detections: int = Field(default=2, ge=1)
    throttle_ms: int = Field(default=160, ge=0)
    auto_capture: bool = True
    ema_alpha: float = Field(default=0.25, gt=0.0, le=1.0)
    analysis_rays: int = Field(default=28, ge=1)
    target_short_side: int = Field(default=240, ge=16)
    thumbnail_quality: int = Field(default=75, ge=1, le=95)
    evidence_quality: int = Field(default=88, ge=1, le=95)


def load_config(source: Mapping[str, Any] | str | Path | None = None) -> ScanConfig:
    """Build a ScanConfig from a mapping, a JSON file path, or defaults.

    Args:
        source: Nested dict matching ScanConfig, path to a JSON file, or None.

    Returns:
        Validated ScanConfig.

    Raises:
        ConfigurationError: If the file cannot be read or a value is invalid.
    """
    if source is None:
        return ScanConfig()

    if isinstance(source, (str, Path)):
        try:
            data = json.loads(Path(source).read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigurationError(f"Cannot read config {source}: {e}") from e
    else:
        data = dict(source)

    try:
        return ScanConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigurationError(str(e)) from e
