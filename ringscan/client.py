"""Client for an optional remote decode service.

The remote service accepts ``POST /decode`` with a multipart ``file`` field
and answers::

    {"product_bits": "101100100", "date_bits": "010011001", "meta": {...}}

It is only ever a second opinion. The local decode is authoritative, and
any remote failure is reduced to an advisory notice.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

import requests
import structlog

from .bits import string_to_bits
from .config import RingConfig
from .decoder import DecodeResult, decode_image
from .errors import RemoteServiceUnavailable

logger = structlog.get_logger(__name__)

DEFAULT_TIMEOUT = 15.0


@dataclass
class RemoteDecodeResult:
    """Bits reported by the remote service."""

    product_bits: list[int]
    date_bits: list[int]
    meta: dict[str, Any] = field(default_factory=dict)


@dataclass
class CrossCheckResult:
    """Local decode plus the remote second opinion, if any.

    Attributes:
        local: Authoritative local decode.
        remote: Remote decode, or None if the service was unavailable.
        notice: Advisory message when the remote path failed or disagreed.
    """

    local: DecodeResult
    remote: RemoteDecodeResult | None = None
    notice: str | None = None

    @property
    def agrees(self) -> bool | None:
        """True/False when both decodes exist, None otherwise."""
        if self.remote is None or self.local.product_bits is None:
            return None
        return (
            self.local.product_bits == self.remote.product_bits
            and self.local.date_bits == self.remote.date_bits
        )


class RemoteDecoder:
    """Thin requests-based client for ``POST {base_url}/decode``."""

    def __init__(
        self,
        base_url: str,
        timeout: float = DEFAULT_TIMEOUT,
        session: requests.Session | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    def decode(self, image_bytes: bytes, filename: str = "capture.png") -> RemoteDecodeResult:
        """Upload an image and parse the service's bit strings.

        Raises:
            RemoteServiceUnavailable: On transport errors, non-2xx status,
                or a malformed response body.
        """
        url = f"{self.base_url}/decode"
        content_type = "image/png" if filename.lower().endswith(".png") else "image/jpeg"
        files = {"file": (filename, image_bytes, content_type)}
        try:
            resp = self.session.post(url, files=files, timeout=self.timeout)
        except requests.RequestException as e:
            raise RemoteServiceUnavailable(f"Remote decode request failed: {e}") from e

        if not 200 <= resp.status_code < 300:
            raise RemoteServiceUnavailable(
                f"Backend error {resp.status_code}: {resp.text[:200]}",
                status_code=resp.status_code,
            )

        try:
            body = resp.json()
            product = string_to_bits(body["product_bits"])
            date = string_to_bits(body["date_bits"])
            meta = body.get("meta") or {}
            if not isinstance(meta, Mapping):
                raise TypeError(f"meta must be an object, got {type(meta).__name__}")
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            raise RemoteServiceUnavailable(f"Malformed remote response: {e}") from e

        return RemoteDecodeResult(product_bits=product, date_bits=date, meta=dict(meta))


def decode_with_remote(
    image_bytes: bytes,
    config: RingConfig | None = None,
    remote: RemoteDecoder | None = None,
) -> CrossCheckResult:
    """Decode locally and, when configured, ask the remote service too.

    Args:
        image_bytes: Encoded image.
        config: Ring layout and sampling settings.
        remote: Remote client, or None to skip the second opinion.

    Returns:
        CrossCheckResult. Never raises for remote failures.
    """
    local = decode_image(image_bytes, config)
    if remote is None:
        return CrossCheckResult(local=local)

    try:
        remote_result = remote.decode(image_bytes)
    except RemoteServiceUnavailable as e:
        logger.warning("remote_decode_unavailable", error=str(e), status_code=e.status_code)
        return CrossCheckResult(local=local, notice=f"Remote decoder unavailable: {e}")

    result = CrossCheckResult(local=local, remote=remote_result)
    if result.agrees is False:
        logger.warning(
            "remote_decode_mismatch",
            local_product=local.product_bits,
            remote_product=remote_result.product_bits,
        )
        result.notice = "Remote decoder disagrees with the local result"
    return result
