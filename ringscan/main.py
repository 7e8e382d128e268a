"""ringscan decode service -- FastAPI application.

Endpoints:
    POST /decode   -- Decode an uploaded image to product/date bit strings
    POST /render   -- Render a ring code from bit strings (PNG or SVG)
    GET  /health   -- Health check

The /decode response is the contract ``ringscan.client.RemoteDecoder``
consumes, so one instance can act as the remote second opinion for another.
"""

from __future__ import annotations

import structlog
from fastapi import FastAPI, File, HTTPException, UploadFile
from fastapi.responses import Response
from pydantic import BaseModel, Field

from .bits import bits_to_string, string_to_bits
from .config import RingConfig
from .decoder import decode_rings
from .image import RGBImage
from .renderer import render_png, render_svg

structlog.configure(
    processors=[
        structlog.dev.ConsoleRenderer(),
    ],
)

logger = structlog.get_logger(__name__)

SERVICE_VERSION = "0.1.0"
MAX_UPLOAD_BYTES = 10 * 1024 * 1024

app = FastAPI(
    title="ringscan",
    description="Decoder for dual-ring circular product/date codes",
    version=SERVICE_VERSION,
)

ring_config = RingConfig()


# --------------------------------------------------------------------------
# Request / Response models
# --------------------------------------------------------------------------


class RenderRequest(BaseModel):
    """Request body for /render."""

    product_bits: str = Field(
        ...,
        description="Product ring bits as a 0/1 string",
        examples=["101100100"],
    )
    date_bits: str = Field(
        ...,
        description="Date ring bits as a 0/1 string",
        examples=["010011001"],
    )
    product_start: int = Field(default=0, ge=0, description="Start marker sector, product ring")
    date_start: int = Field(default=0, ge=0, description="Start marker sector, date ring")
    size: int = Field(
        default=512,
        ge=64,
        le=2048,
        description="Output image size in pixels (square)",
    )
    format: str = Field(default="png", description="Output format: png or svg")


class DecodeResponse(BaseModel):
    """Response body for /decode."""

    product_bits: str = Field(description="Product ring bits as a 0/1 string")
    date_bits: str = Field(description="Date ring bits as a 0/1 string")
    meta: dict = Field(
        default_factory=dict,
        description="Decode details: radii, start sectors, image size",
    )


class HealthResponse(BaseModel):
    """Response body for /health."""

    status: str
    service: str
    version: str


# --------------------------------------------------------------------------
# Endpoints
# --------------------------------------------------------------------------


@app.post("/decode", response_model=DecodeResponse)
async def decode_endpoint(file: UploadFile = File(...)) -> DecodeResponse:
    """Decode a ring code image to product and date bits."""
    if file.content_type and file.content_type not in (
        "image/png",
        "image/jpeg",
        "image/webp",
    ):
        raise HTTPException(
            status_code=422,
            detail=(f"Unsupported image type: {file.content_type}. " "Use PNG, JPEG, or WebP."),
        )

    image_bytes = await file.read()
    if len(image_bytes) > MAX_UPLOAD_BYTES:
        raise HTTPException(status_code=413, detail="Image too large (max 10MB)")

    try:
        image = RGBImage.from_bytes(image_bytes)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))

    result = decode_rings(image, ring_config)
    meta = {
        "width": image.width,
        "height": image.height,
        "inner_radius": result.params.inner_radius,
        "outer_radius": result.params.outer_radius,
        "rays_used": result.params.rays_used,
        "date_radii": list(result.date_radii),
        "product_start": result.product_start,
        "date_start": result.date_start,
    }
    logger.info(
        "decode_request_served",
        product_bits=bits_to_string(result.product_bits),
        date_bits=bits_to_string(result.date_bits),
    )
    return DecodeResponse(
        product_bits=bits_to_string(result.product_bits),
        date_bits=bits_to_string(result.date_bits),
        meta=meta,
    )


@app.post(
    "/render",
    response_class=Response,
    responses={
        200: {
            "content": {"image/png": {}, "image/svg+xml": {}},
            "description": "Rendered ring code",
        },
        422: {"description": "Invalid input"},
    },
)
async def render_endpoint(request: RenderRequest) -> Response:
    """Render a ring code for the given bit strings."""
    try:
        product = string_to_bits(request.product_bits)
        date = string_to_bits(request.date_bits)
        if request.format.lower() == "svg":
            svg_content = render_svg(
                product,
                date,
                request.size,
                request.product_start,
                request.date_start,
                ring_config,
            )
            return Response(content=svg_content, media_type="image/svg+xml")
        if request.format.lower() != "png":
            raise ValueError(f"Unknown format: {request.format}. Use png or svg.")
        png_bytes = render_png(
            product,
            date,
            request.size,
            request.product_start,
            request.date_start,
            ring_config,
        )
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except Exception as e:
        logger.error("render_failed", error=str(e))
        raise HTTPException(status_code=500, detail="Rendering failed")

    return Response(content=png_bytes, media_type="image/png")


@app.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """Health check endpoint for Docker and load balancer probes."""
    return HealthResponse(
        status="healthy",
        service="ringscan",
        version=SERVICE_VERSION,
    )
