"""Parsing utilities for data extraction."""

from __future__ import annotations

import re

_SIZE_RE = re.compile(r"(\d+(?:[.,]\d+)?)\s*([KMGT]i?B)\b", re.IGNORECASE)

_MULTIPLIERS: dict[str, int] = {
    "B": 1,
    "K": 1024,
    "M": 1024**2,
    "G": 1024**3,
    "T": 1024**4,
}


def parse_size_to_bytes(size_str: str) -> int:
    """Parse a size string to bytes.

    Supports formats:
        - "1234" (raw bytes)
        - "4.5 GB", "500MB", "1,4 GiB"
        - sizes embedded in longer text ("Movie.2024 [1.2GB].mkv")

    Returns 0 when no size is found.
    """
    if not size_str:
        return 0

    text = size_str.strip()
    if text.isdigit():
        return int(text)

    match = _SIZE_RE.search(text)
    if not match:
        return 0

    value = float(match.group(1).replace(",", "."))
    unit = match.group(2)[0].upper()
    return int(value * _MULTIPLIERS.get(unit, 1))


def bytes_to_mb(size_bytes: int) -> float:
    return size_bytes / (1024**2)
