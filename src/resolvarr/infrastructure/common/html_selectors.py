"""CSS-selector helpers for host pages.

Every helper accepts a primary selector and optional fallbacks; the
first selector that yields at least one match wins, so a host renaming
a wrapper class only costs one extra selector in its config.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from urllib.parse import urljoin

from bs4 import BeautifulSoup, Tag


@dataclass(frozen=True)
class PageLink:
    """Anchor text plus absolute href."""

    text: str
    href: str


def parse_html(html: str) -> BeautifulSoup:
    """Parse an HTML string with the lxml backend."""
    return BeautifulSoup(html, "lxml")


def select_items(
    root: BeautifulSoup | Tag,
    selector: str,
    *fallback_selectors: str,
) -> list[Tag]:
    """Elements matched by the first selector that matches anything."""
    for sel in (selector, *fallback_selectors):
        items = root.select(sel)
        if items:
            return items
    return []


def extract_text(
    root: BeautifulSoup | Tag,
    selector: str,
    *fallback_selectors: str,
    default: str = "",
) -> str:
    for sel in (selector, *fallback_selectors):
        match = root.select_one(sel)
        if match:
            text = match.get_text(" ", strip=True)
            if text:
                return text
    return default


def extract_attr(
    root: BeautifulSoup | Tag,
    selector: str,
    attr: str,
    *fallback_selectors: str,
    default: str = "",
) -> str:
    for sel in (selector, *fallback_selectors):
        match = root.select_one(sel)
        if match:
            val = match.get(attr)
            if val:
                return str(val)
    return default


def extract_links(
    root: BeautifulSoup | Tag,
    selector: str = "a[href]",
    *fallback_selectors: str,
    base_url: str = "",
) -> list[PageLink]:
    """All anchors matched by *selector*, hrefs made absolute against *base_url*."""
    links: list[PageLink] = []
    for tag in select_items(root, selector, *fallback_selectors):
        href = tag.get("href")
        if not href:
            continue
        href_str = str(href).strip()
        if base_url:
            href_str = urljoin(base_url, href_str)
        links.append(PageLink(text=tag.get_text(" ", strip=True), href=href_str))
    return links


def text_of_row(root: BeautifulSoup | Tag, selector: str, marker: str) -> str:
    """Text of the first element under *selector* whose text contains *marker*.

    The marker prefix (e.g. ``"Size :"``) is stripped from the result.
    """
    for tag in root.select(selector):
        text = tag.get_text(" ", strip=True)
        if marker.lower() in text.lower():
            _, _, value = text.partition(":")
            return (value or text).strip()
    return ""


def search_scripts(root: BeautifulSoup | Tag, pattern: re.Pattern[str]) -> str | None:
    """First group of *pattern* found in any inline ``<script>``."""
    for script in root.find_all("script"):
        m = pattern.search(script.string or script.get_text())
        if m:
            return m.group(1)
    return None
