"""Common infrastructure utilities."""

from __future__ import annotations

from .html_selectors import PageLink, extract_links, parse_html
from .parsers import bytes_to_mb, parse_size_to_bytes

__all__ = [
    "PageLink",
    "bytes_to_mb",
    "extract_links",
    "parse_html",
    "parse_size_to_bytes",
]
