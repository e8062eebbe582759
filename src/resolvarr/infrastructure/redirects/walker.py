"""Bounded redirect-chain walker.

Follows HTTP redirects by hand (redirect-following disabled on every
request) so each hop can be inspected for the real target before the
gateway gets a chance to bounce us somewhere else.
"""

from __future__ import annotations

import re
from typing import Sequence
from urllib.parse import unquote, urljoin, urlparse

import structlog

from resolvarr.domain.entities.links import ResolutionContext
from resolvarr.domain.exceptions import ExhaustedRedirectsError
from resolvarr.domain.ports.fetcher import FetcherPort, FetchResponse

log = structlog.get_logger(__name__)

# Gateway hosts smuggle the real file URL inside a redirect parameter.
_EMBEDDED_TARGET_RE = re.compile(r"[?&](?:link|url)=(.+)$", re.IGNORECASE)

MEDIA_EXTENSIONS: tuple[str, ...] = (".mkv", ".mp4", ".avi", ".webm", ".m3u8")


def embedded_target(location: str) -> str | None:
    """Return the decoded ``link=``/``url=`` value if it is itself a URL."""
    m = _EMBEDDED_TARGET_RE.search(location)
    if not m:
        return None
    value = unquote(m.group(1)).strip()
    if value.startswith(("http://", "https://")):
        return value
    return None


def has_media_extension(url: str) -> bool:
    path = urlparse(url).path.lower()
    return path.endswith(MEDIA_EXTENSIONS)


class RedirectChainWalker:
    """Walks ``Location`` headers until a terminal URL, within a hop budget."""

    def __init__(
        self,
        fetcher: FetcherPort,
        *,
        location_headers: Sequence[str] = ("location",),
    ) -> None:
        self._fetcher = fetcher
        self._location_headers = tuple(location_headers)

    async def follow(
        self,
        start_url: str,
        context: ResolutionContext,
        *,
        gateway_fragment: str | None = None,
        referer: str | None = None,
    ) -> str | None:
        """Return the terminal URL, or None when the chain is unresolved.

        ``NetworkError`` from the fetcher propagates to the owning branch.
        """
        try:
            return await self._walk(start_url, context, gateway_fragment, referer)
        except ExhaustedRedirectsError as exc:
            log.info(
                "redirect_chain_exhausted",
                start_url=exc.start_url,
                hops=exc.hops,
            )
            return None

    async def _walk(
        self,
        start_url: str,
        context: ResolutionContext,
        gateway_fragment: str | None,
        referer: str | None,
    ) -> str | None:
        current = start_url
        previous: str | None = None

        while True:
            if current in context.visited:
                log.info("redirect_loop_detected", url=current, start_url=start_url)
                return None
            context.visited.add(current)

            resp = await self._fetcher.get(
                current,
                referer=referer,
                follow_redirects=False,
                timeout=context.per_hop_timeout,
            )
            location = self._location(resp)
            if not location:
                log.debug("redirect_terminal", url=current, hops=context.hops_used)
                return current

            target = embedded_target(location)
            if target is not None:
                log.debug("redirect_embedded_target", url=target, via=current)
                return target

            location = urljoin(current, location)
            if location == current or location == previous:
                log.info("redirect_self_loop", url=current, location=location)
                return None

            if has_media_extension(location) or (
                gateway_fragment is not None and gateway_fragment not in location
            ):
                log.debug("redirect_terminal", url=location, hops=context.hops_used + 1)
                return location

            if context.remaining_hops <= 0:
                raise ExhaustedRedirectsError(start_url, context.hops_used)
            context.hops_used += 1
            previous, current = current, location

    def _location(self, resp: FetchResponse) -> str | None:
        for name in self._location_headers:
            value = resp.header(name)
            if value:
                return value.strip()
        return None
