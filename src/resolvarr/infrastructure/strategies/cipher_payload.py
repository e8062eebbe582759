"""Cipher-payload hosts: the target URL is hidden in an encoded payload.

The payload comes either from the page itself (regex captures, or a
query parameter of the reference) or from a player API. It runs through
the host's decode chain; the decoded text yields the target, which is
emitted or handed on to the strategy of the host it points at. Packed
JWPlayer hosts (StreamWish, Filemoon and their clones) run the page's
packed script through the unpacker and read the player source from it.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator, Mapping
from urllib.parse import parse_qs, urljoin, urlparse

import structlog

from resolvarr.domain.entities.links import (
    ResolutionContext,
    SourceReference,
    SubtitleTrack,
)
from resolvarr.domain.exceptions import DecodeError, ParseError
from resolvarr.domain.ports.strategy import Delegate, Found
from resolvarr.infrastructure.common.html_selectors import extract_attr, parse_html
from resolvarr.infrastructure.decoding.chain import (
    DecodeStep,
    b64decode,
    decode,
    decode_json,
)
from resolvarr.infrastructure.strategies.base import BaseStrategy, HostConfig

log = structlog.get_logger(__name__)

# "[English](https://host/sub.srt),[Hindi](...)" as used by player configs.
_SUBTITLE_LIST_RE = re.compile(r"\[([^\]]+)\]\(?(https?://[^\s,\"()]+\.(?:srt|vtt))\)?")

# Whole eval(function(p,a,c,k,e,d)...) block, up to its word list.
PACKED_SCRIPT_RE = re.compile(r"(eval\(function\(p,a,c,k,e,d\).+?\.split\('\|'\))", re.DOTALL)

# JWPlayer setup keys, most specific first.
_PLAYER_SOURCE_RES: tuple[re.Pattern[str], ...] = (
    re.compile(r"""sources\s*:\s*\[\s*\{[^}]*?file\s*:\s*["'](https?://[^"']+)"""),
    re.compile(r"""["']hls[24]["']\s*:\s*["'](https?://[^"']+)"""),
    re.compile(r"""file\s*:\s*["'](https?://[^"']+\.(?:m3u8|mp4)[^"']*)"""),
)


class PayloadSource(Enum):
    PAGE_REGEX = "page_regex"  # captures of payload_re, concatenated
    API = "api"  # body of api_path, keyed by the reference's #fragment


class TargetRule(Enum):
    GATEWAY_JSON = "gateway_json"  # {"o": b64(url)} or {"blog_url", "data"}
    AFTER_LINK_PARAM = "after_link_param"  # text after the last "link="
    MANIFEST_JSON = "manifest_json"  # {"source": m3u8, "subtitle": {...}}
    PLAYER_SOURCES = "player_sources"  # JWPlayer setup script: sources[0].file


@dataclass(frozen=True)
class CipherPayloadConfig(HostConfig):
    source: PayloadSource = PayloadSource.PAGE_REGEX
    payload_re: re.Pattern[str] | None = None
    url_param: str | None = None  # read the payload from this query parameter first
    api_path: str = "/api/v1/video?id={id}"
    api_headers: Mapping[str, str] = field(default_factory=dict)
    decode_chain: tuple[DecodeStep, ...] = ()
    target: TargetRule = TargetRule.AFTER_LINK_PARAM
    delegate_target: bool = False
    quality_hint: str = ""
    iframe_selector: str | None = None  # embed page to fetch when the page has no payload


def parse_subtitles(data: Mapping[str, Any]) -> list[SubtitleTrack]:
    """Subtitle tracks from a decoded player payload."""
    tracks: list[SubtitleTrack] = []
    raw = data.get("subtitle") or data.get("subtitles")
    if isinstance(raw, Mapping):
        for language, url in raw.items():
            if isinstance(url, str) and url.startswith("http"):
                tracks.append(SubtitleTrack(language=str(language), url=url))
    elif isinstance(raw, list):
        for item in raw:
            if isinstance(item, Mapping) and str(item.get("file", "")).startswith("http"):
                tracks.append(
                    SubtitleTrack(
                        language=str(item.get("label") or item.get("language") or "und"),
                        url=str(item["file"]),
                    )
                )
    elif isinstance(raw, str):
        for m in _SUBTITLE_LIST_RE.finditer(raw):
            tracks.append(SubtitleTrack(language=m.group(1), url=m.group(2)))
    return tracks


def concat_captures(body: str, pattern: re.Pattern[str]) -> str:
    """First non-empty group of every match, joined in page order."""
    return "".join(next((g for g in m.groups() if g), "") for m in pattern.finditer(body))


def player_source(script: str) -> str:
    """Media URL from an unpacked JWPlayer setup script, or ``""``."""
    normalized = script.replace("\\'", "'").replace('\\"', '"')
    for pattern in _PLAYER_SOURCE_RES:
        m = pattern.search(normalized)
        if m:
            return m.group(1)
    return ""


class CipherPayloadStrategy(BaseStrategy):
    """Decodes obfuscated payloads (gateway pages, CDN redirects, AES players)."""

    _config: CipherPayloadConfig

    async def _resolve(
        self,
        ref: SourceReference,
        ctx: ResolutionContext,
        delegate: Delegate,
    ) -> AsyncIterator[Found]:
        cfg = self._config
        raw, page_url = await self._payload(ref, ctx)
        subtitles: list[SubtitleTrack] = []

        if cfg.target is TargetRule.GATEWAY_JSON:
            target = await self._gateway_target(decode_json(raw, cfg.decode_chain), ctx)
        elif cfg.target is TargetRule.MANIFEST_JSON:
            data = decode_json(raw, cfg.decode_chain)
            target = str(data.get("source") or "").replace("\\/", "/")
            subtitles = parse_subtitles(data)
        elif cfg.target is TargetRule.PLAYER_SOURCES:
            target = player_source(decode(raw, cfg.decode_chain))
        else:
            target = decode(raw, cfg.decode_chain).rsplit("link=", 1)[-1].strip()

        if not target.startswith(("http://", "https://")):
            raise ParseError(f"{self.name}: decoded target is not a URL")

        log.debug("cipher_target_decoded", strategy=self.name, target=target)

        for track in subtitles:
            yield track

        if cfg.delegate_target:
            async for found in delegate(SourceReference(target, referer=ref.url), ctx):
                yield found
            return

        cand = self._candidate(
            target,
            raw_quality_text=cfg.quality_hint or target.rsplit("/", 1)[-1],
            referer=page_url,
        )
        if cand:
            yield cand

    async def _payload(
        self, ref: SourceReference, ctx: ResolutionContext
    ) -> tuple[str, str]:
        """The encoded payload and the URL of the page it came from."""
        cfg = self._config
        page_url = ref.url

        if cfg.url_param:
            values = parse_qs(urlparse(ref.url).query).get(cfg.url_param)
            if values and values[0]:
                return values[0], page_url

        if cfg.source is PayloadSource.API:
            _, sep, video_id = ref.url.rpartition("#")
            if not sep or not video_id:
                raise ParseError(f"{self.name}: no video id in {ref.url}")
            base = await self._live_base(ref.url)
            resp = await self._fetch_page(
                base.rstrip("/") + cfg.api_path.format(id=video_id),
                ctx,
                referer=ref.url,
                headers=cfg.api_headers,
            )
            payload = resp.body.strip()
        else:
            if cfg.payload_re is None:
                raise ParseError(f"{self.name}: no payload pattern configured")
            page_url = await self._live_url(ref.url)
            resp = await self._fetch_page(page_url, ctx, referer=ref.referer)
            payload = concat_captures(resp.body, cfg.payload_re)
            if not payload and cfg.iframe_selector:
                embed_url = self._embed_url(resp.body, resp.final_url or page_url)
                if embed_url:
                    log.debug("cipher_following_embed", strategy=self.name, url=embed_url)
                    resp = await self._fetch_page(embed_url, ctx, referer=page_url)
                    page_url = embed_url
                    payload = concat_captures(resp.body, cfg.payload_re)

        if not payload:
            raise ParseError(f"{self.name}: encoded payload missing on {ref.url}")
        return payload, page_url

    def _embed_url(self, body: str, base_url: str) -> str | None:
        src = extract_attr(parse_html(body), self._config.iframe_selector or "", "src")
        return urljoin(base_url, src) if src else None

    async def _gateway_target(
        self, data: Mapping[str, Any], ctx: ResolutionContext
    ) -> str:
        encoded = str(data.get("o") or "").strip()
        if encoded:
            return b64decode(encoded).decode("utf-8", errors="replace").strip()

        blog_url = str(data.get("blog_url") or "").strip()
        token = str(data.get("data") or "").strip()
        if not blog_url or not token:
            raise DecodeError(f"{self.name}: gateway payload has no target fields")

        re_param = b64decode(token).decode("utf-8", errors="replace").strip()
        resp = await self._fetch_page(f"{blog_url}?re={re_param}", ctx)
        body = parse_html(resp.body).body
        return body.get_text(strip=True) if body is not None else resp.body.strip()
