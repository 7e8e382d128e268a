"""Bit-sequence utilities for ring codes.

Handles conversion between bit lists and bit strings, the rotation +
reversal that maps raw sector bits to data bits, and the plausibility
gate applied to live-scan decodes.

The physical ring is read in the opposite rotational sense from the
logical bit order: data bit 0 sits in the last sector before the start
marker (going clockwise), data bit N-1 right after it.
"""

from __future__ import annotations

from .errors import DecodeImplausible


def bits_to_string(bits: list[int]) -> str:
    """Convert a list of bits to a string of '0'/'1' characters."""
    return "".join("1" if b else "0" for b in bits)


def string_to_bits(bit_string: str) -> list[int]:
    """Convert a string of '0'/'1' characters to a list of bits.

    Args:
        bit_string: String such as "101100100". Whitespace is ignored.

    Returns:
        List of 0s and 1s.

    Raises:
        ValueError: If the string is empty or contains other characters.
    """
    clean = "".join(bit_string.split())
    if not clean:
        raise ValueError("Empty bit string")
    if set(clean) - {"0", "1"}:
        raise ValueError(f"Invalid bit string: {bit_string!r}")
    return [1 if c == "1" else 0 for c in clean]


def align_and_order(raw_bits: list[int], start_index: int, data_bits: int) -> list[int]:
    """Extract data bits from raw sector bits given the start marker index.

    Takes the ``data_bits`` sectors immediately following ``start_index``
    (wrapping around) and reverses them.

    Args:
        raw_bits: One bit per sector, length num_sectors.
        start_index: Sector index of the start marker.
        data_bits: Number of payload bits to extract.

    Returns:
        List of ``data_bits`` bits in logical order.
    """
    num_sectors = len(raw_bits)
    if data_bits >= num_sectors:
        raise ValueError(f"data_bits ({data_bits}) must be < num_sectors ({num_sectors})")
    out = [raw_bits[(start_index + i) % num_sectors] for i in range(1, data_bits + 1)]
    return out[::-1]


def place_bits(data: list[int], start_index: int, num_sectors: int) -> list[int]:
    """Inverse of align_and_order: lay data bits out into raw sector order.

    Sectors not covered by data (the marker and any spare sectors) are 0.

    Args:
        data: Logical data bits.
        start_index: Sector index where the start marker will be drawn.
        num_sectors: Total sectors in the ring.

    Returns:
        Raw sector bits, length num_sectors.
    """
    if len(data) >= num_sectors:
        raise ValueError(f"{len(data)} data bits do not fit in {num_sectors} sectors")
    raw = [0] * num_sectors
    for i, bit in enumerate(reversed(data), start=1):
        raw[(start_index + i) % num_sectors] = bit
    return raw


def is_plausible(bits: list[int], expected_length: int) -> bool:
    """Plausibility gate: right length and neither all-zero nor all-one."""
    if len(bits) != expected_length:
        return False
    ones = sum(bits)
    return 0 < ones < len(bits)


def check_plausible(bits: list[int], expected_length: int) -> None:
    """Raise DecodeImplausible unless ``bits`` passes the plausibility gate."""
    if not is_plausible(bits, expected_length):
        raise DecodeImplausible(bits, expected_length)
