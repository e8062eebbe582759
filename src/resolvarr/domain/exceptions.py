"""Resolution error taxonomy.

None of these is fatal to an aggregate resolution: each one ends a
single branch or candidate.
"""

from __future__ import annotations


class ResolutionError(Exception):
    """Base exception for link resolution failures."""


class NetworkError(ResolutionError):
    """Timeout or connection failure while talking to a host."""

    def __init__(self, url: str, reason: str) -> None:
        super().__init__(f"{reason}: {url}")
        self.url = url
        self.reason = reason


class ParseError(ResolutionError):
    """Expected marker or selector missing from a fetched body."""


class DecodeError(ResolutionError):
    """Malformed encoded payload, or no candidate key/IV produced valid output."""


class ExhaustedRedirectsError(ResolutionError):
    """Hop budget reached before a terminal URL was found."""

    def __init__(self, start_url: str, hops: int) -> None:
        super().__init__(f"no terminal URL after {hops} hops from {start_url}")
        self.start_url = start_url
        self.hops = hops
