"""Best-effort strategy for references no host config claims."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import AsyncIterator

import structlog

from resolvarr.domain.entities.links import ResolutionContext, SourceReference
from resolvarr.domain.ports.strategy import Delegate, Found
from resolvarr.infrastructure.strategies.base import BaseStrategy, HostConfig, PLAYER_HEADERS

log = structlog.get_logger(__name__)

_MEDIA_URL_RE = re.compile(r"""(https?://[^\s"'<>]+\.(?:mp4|mkv|m3u8)[^\s"'<>]*)""", re.IGNORECASE)


def find_media_urls(body: str) -> list[str]:
    """Unique direct media URLs in *body*, in order of appearance."""
    seen: dict[str, None] = {}
    for m in _MEDIA_URL_RE.finditer(body):
        seen.setdefault(m.group(1).replace("\\/", "/"), None)
    return list(seen)


@dataclass(frozen=True)
class FallbackConfig(HostConfig):
    """Matches nothing on its own; the dispatcher uses it last."""


GENERIC_FALLBACK = FallbackConfig(
    name="generic",
    patterns=(),
    allows_streaming=True,
    link_headers=dict(PLAYER_HEADERS),
)


class DirectMediaFallbackStrategy(BaseStrategy):
    """Regex scan of the fetched body for .mp4/.mkv/.m3u8 URLs."""

    _config: FallbackConfig

    async def _resolve(
        self,
        ref: SourceReference,
        ctx: ResolutionContext,
        delegate: Delegate,
    ) -> AsyncIterator[Found]:
        resp = await self._fetch_page(ref.url, ctx, referer=ref.referer)
        urls = find_media_urls(resp.body)
        if not urls:
            log.debug("fallback_no_media", url=ref.url)
            return
        for url in urls:
            cand = self._candidate(
                url,
                raw_quality_text=url.rsplit("/", 1)[-1].split("?", 1)[0],
                referer=ref.url,
            )
            if cand:
                yield cand
