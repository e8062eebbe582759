"""Redirect-chain hosts: the reference only bounces to the file."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import AsyncIterator

import structlog

from resolvarr.domain.entities.links import ResolutionContext, SourceReference
from resolvarr.domain.ports.strategy import Delegate, Found
from resolvarr.infrastructure.redirects.walker import has_media_extension
from resolvarr.infrastructure.strategies.base import BaseStrategy, HostConfig

log = structlog.get_logger(__name__)


@dataclass(frozen=True)
class RedirectChainConfig(HostConfig):
    """Gateway host configuration.

    ``gateway_fragment`` marks URLs still inside the gateway; the first
    location without it is terminal. ``delegate_result`` hands the
    terminal URL to the strategy of whatever host it points at instead
    of emitting it.
    """

    gateway_fragment: str | None = None
    max_hops: int | None = None
    delegate_result: bool = False
    # (pattern, template): rewrite the reference before walking. With
    # walk=False the rewritten URL is emitted as is.
    rewrite: tuple[re.Pattern[str], str] | None = None
    walk: bool = True


class RedirectChainStrategy(BaseStrategy):
    """Follows the reference's redirect chain to its terminal URL."""

    _config: RedirectChainConfig

    async def _resolve(
        self,
        ref: SourceReference,
        ctx: ResolutionContext,
        delegate: Delegate,
    ) -> AsyncIterator[Found]:
        cfg = self._config
        walk_ctx = ctx.fork()
        if cfg.max_hops is not None:
            walk_ctx.max_hops = min(cfg.max_hops, ctx.max_hops)

        start = await self._live_url(ref.url)
        if cfg.rewrite is not None:
            pattern, template = cfg.rewrite
            start = pattern.sub(template, start, count=1)

        if not cfg.walk:
            cand = self._candidate(start, referer=ref.referer)
            if cand:
                yield cand
            return

        target = await self._walker.follow(
            start,
            walk_ctx,
            gateway_fragment=cfg.gateway_fragment,
            referer=ref.referer,
        )
        # Without a redirect the start page is the gateway itself, unless
        # it already serves the media file.
        if target is None or (target == start and not has_media_extension(start)):
            log.info("redirect_host_unresolved", strategy=self.name, url=ref.url)
            return

        if cfg.delegate_result:
            async for found in delegate(SourceReference(target, referer=start), ctx):
                yield found
            return

        cand = self._candidate(target, raw_quality_text=target.rsplit("/", 1)[-1])
        if cand:
            yield cand
