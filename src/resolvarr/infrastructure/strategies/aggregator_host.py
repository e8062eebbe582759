"""Aggregator hosts: pages whose only content is buttons to other hosts."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import AsyncIterator

import structlog

from resolvarr.domain.entities.links import ResolutionContext, SourceReference
from resolvarr.domain.exceptions import ParseError
from resolvarr.domain.ports.strategy import Delegate, Found
from resolvarr.infrastructure.common.html_selectors import extract_links, parse_html
from resolvarr.infrastructure.strategies.base import BaseStrategy, HostConfig

log = structlog.get_logger(__name__)


@dataclass(frozen=True)
class AggregatorHostConfig(HostConfig):
    """Button listing configuration.

    Parameters
    ----------
    link_selectors:
        Primary selector followed by fallbacks; the first that matches
        anything wins.
    href_pattern:
        Keep only hrefs matching this regex.
    skip_markers:
        Drop hrefs containing any of these (ad gateways, self-links).
    first_only:
        Take the first surviving button only.
    """

    link_selectors: tuple[str, ...] = ("a[href]",)
    href_pattern: re.Pattern[str] | None = None
    skip_markers: tuple[str, ...] = ()
    first_only: bool = False


class AggregatorHostStrategy(BaseStrategy):
    """Lists buttons; each one becomes its own branch or delegation."""

    _config: AggregatorHostConfig

    async def discover(
        self, ref: SourceReference, ctx: ResolutionContext
    ) -> list[SourceReference]:
        cfg = self._config
        page_url = await self._live_url(ref.url)
        resp = await self._fetch_page(page_url, ctx, referer=ref.referer)
        links = extract_links(
            parse_html(resp.body),
            *cfg.link_selectors,
            base_url=resp.final_url or page_url,
        )

        refs: list[SourceReference] = []
        seen: set[str] = set()
        for link in links:
            href = link.href
            lowered = href.lower()
            if not lowered.startswith(("http://", "https://")):
                continue
            if any(marker in lowered for marker in cfg.skip_markers):
                log.debug("aggregator_link_skipped", strategy=self.name, url=href)
                continue
            if cfg.href_pattern is not None and not cfg.href_pattern.search(href):
                continue
            if href in seen:
                continue
            seen.add(href)
            refs.append(SourceReference(href, referer=page_url))
            if cfg.first_only:
                break

        if not refs:
            raise ParseError(f"{self.name}: no onward links on {page_url}")

        log.debug("aggregator_links_found", strategy=self.name, count=len(refs))
        return refs

    async def _resolve(
        self,
        ref: SourceReference,
        ctx: ResolutionContext,
        delegate: Delegate,
    ) -> AsyncIterator[Found]:
        for child in await self.discover(ref, ctx):
            async for found in delegate(child, ctx):
                yield found
