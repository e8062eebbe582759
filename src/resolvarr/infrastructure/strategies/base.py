"""Shared plumbing for resolution strategies.

A strategy *kind* (HTML scrape, redirect chain, cipher payload, JSON API,
aggregator host) is one class; each supported host is a ``HostConfig``
record handed to the class of its kind. Adding a host that behaves like
an existing one = adding a config constant to ``catalog.py``.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import AsyncIterator, Mapping
from urllib.parse import urlparse

import structlog

from resolvarr.domain.entities.links import (
    CandidateLink,
    MediaType,
    ResolutionContext,
    SourceReference,
)
from resolvarr.domain.exceptions import ParseError
from resolvarr.domain.ports.fetcher import FetcherPort, FetchResponse
from resolvarr.domain.ports.strategy import Delegate, Found
from resolvarr.infrastructure.common.parsers import parse_size_to_bytes
from resolvarr.infrastructure.domains.alias_table import DomainAliasTable
from resolvarr.infrastructure.redirects.walker import RedirectChainWalker

log = structlog.get_logger(__name__)

DEFAULT_STREAMING_MARKERS: tuple[str, ...] = (".m3u8", "/hls/", ".mpd", "/dash/")

# Headers download players need to fetch the file hosts' CDN links.
PLAYER_HEADERS: dict[str, str] = {
    "User-Agent": "VLC/3.6.0 LibVLC/3.0.18 (Android)",
    "Accept": "*/*",
    "Accept-Encoding": "identity",
    "Connection": "keep-alive",
    "Range": "bytes=0-",
}


def is_streaming_url(url: str, markers: tuple[str, ...] = DEFAULT_STREAMING_MARKERS) -> bool:
    """True if *url* carries an HLS/DASH path or extension marker."""
    lowered = url.lower()
    return any(marker in lowered for marker in markers)


def host_of(url: str) -> str:
    return (urlparse(url).hostname or "").lower()


@dataclass(frozen=True)
class StrategyServices:
    """Collaborators every strategy may use."""

    fetcher: FetcherPort
    walker: RedirectChainWalker
    aliases: DomainAliasTable
    streaming_markers: tuple[str, ...] = DEFAULT_STREAMING_MARKERS


@dataclass(frozen=True)
class HostConfig:
    """Host identity shared by all strategy kinds.

    Parameters
    ----------
    name:
        Host name; becomes ``CandidateLink.source_tag``.
    patterns:
        Regexes searched in the full URL. Any hit selects this host.
    alias_key:
        Key in the remote domain-alias table. ``None`` keeps the URL's
        own domain.
    allows_streaming:
        Player hosts that legitimately return HLS manifests.
    link_headers:
        Headers attached to every emitted candidate.
    """

    name: str
    patterns: tuple[re.Pattern[str], ...]
    alias_key: str | None = None
    allows_streaming: bool = False
    link_headers: Mapping[str, str] = field(default_factory=lambda: dict(PLAYER_HEADERS))

    def matches(self, url: str) -> bool:
        return any(p.search(url) for p in self.patterns)


class BaseStrategy:
    """Common behaviour; subclasses implement ``_resolve``."""

    def __init__(self, config: HostConfig, services: StrategyServices) -> None:
        self._config = config
        self._fetcher = services.fetcher
        self._walker = services.walker
        self._aliases = services.aliases
        self._streaming_markers = services.streaming_markers

    @property
    def name(self) -> str:
        return self._config.name

    @property
    def allows_streaming(self) -> bool:
        return self._config.allows_streaming

    @property
    def config(self) -> HostConfig:
        return self._config

    def matches(self, url: str) -> bool:
        return self._config.matches(url)

    def resolve(
        self,
        ref: SourceReference,
        ctx: ResolutionContext,
        delegate: Delegate,
    ) -> AsyncIterator[Found]:
        return self._resolve(ref, ctx, delegate)

    def _resolve(
        self,
        ref: SourceReference,
        ctx: ResolutionContext,
        delegate: Delegate,
    ) -> AsyncIterator[Found]:
        raise NotImplementedError

    # -- helpers -------------------------------------------------------------

    async def _live_url(self, url: str) -> str:
        """*url* moved onto the host's current domain."""
        if self._config.alias_key is None:
            return url
        return await self._aliases.rewrite(url, self._config.alias_key)

    async def _live_base(self, url: str) -> str:
        if self._config.alias_key is None:
            parsed = urlparse(url)
            return f"{parsed.scheme}://{parsed.netloc}"
        return await self._aliases.resolve(self._config.alias_key, url)

    async def _fetch_page(
        self,
        url: str,
        ctx: ResolutionContext,
        *,
        referer: str | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> FetchResponse:
        resp = await self._fetcher.get(
            url,
            headers=headers,
            referer=referer,
            follow_redirects=True,
            timeout=ctx.per_hop_timeout,
        )
        if resp.status != 200:
            raise ParseError(f"{self.name}: HTTP {resp.status} for {url}")
        return resp

    def _candidate(
        self,
        url: str,
        *,
        label: str = "",
        raw_quality_text: str = "",
        size_text: str = "",
        size_bytes: int | None = None,
        referer: str | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> CandidateLink | None:
        """Build a candidate, or None for a URL this host may not emit.

        Download hosts never emit streaming manifests.
        """
        if not url.startswith(("http://", "https://")):
            log.debug("candidate_rejected_scheme", strategy=self.name, url=url)
            return None

        streaming = is_streaming_url(url, self._streaming_markers)
        if streaming and not self._config.allows_streaming:
            log.info("candidate_rejected_streaming", strategy=self.name, url=url)
            return None

        link_headers = dict(self._config.link_headers)
        if headers:
            link_headers.update(headers)
        if referer:
            link_headers["Referer"] = referer

        if size_bytes is None and size_text:
            size_bytes = parse_size_to_bytes(size_text) or None

        quality_text = raw_quality_text
        if size_text and size_text not in quality_text:
            quality_text = f"{quality_text} [{size_text}]".strip()

        return CandidateLink(
            url=url,
            label=label or self.name,
            source_tag=self.name,
            media_type=MediaType.HLS if streaming else MediaType.DIRECT,
            headers=link_headers,
            size_bytes=size_bytes,
            raw_quality_text=quality_text,
        )
