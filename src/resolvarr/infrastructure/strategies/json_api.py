"""JSON-API hosts.

GoFile: an ephemeral guest token plus a website token unlock the content
listing; the first file of the folder is emitted with the account
cookie attached.

    POST https://api.{host}/accounts            -> {"data": {"token": "..."}}
    GET  https://{host}/dist/js/config.js       -> appdata.wt = "..."
    GET  https://api.{host}/contents/{id}       (Bearer token + X-Website-Token)

Mirror map (gdmirror/techinmind embeds): ``embedhelper.php`` returns the
mirror hosts' base URLs and a base64 map of per-mirror file codes; every
mirror present in both is delegated to its own strategy.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, AsyncIterator, Mapping
from urllib.parse import urlparse

import structlog

from resolvarr.domain.entities.links import ResolutionContext, SourceReference
from resolvarr.domain.exceptions import DecodeError, ParseError
from resolvarr.domain.ports.fetcher import FetchResponse
from resolvarr.domain.ports.strategy import Delegate, Found
from resolvarr.infrastructure.decoding.chain import b64decode
from resolvarr.infrastructure.strategies.base import BaseStrategy, HostConfig

log = structlog.get_logger(__name__)

_WEBSITE_TOKEN_RE = re.compile(r"""appdata\.wt\s*=\s*["']([^"']+)["']""")
_CONTENT_ID_RE = re.compile(r"/d/([A-Za-z0-9]+)")

_BROWSER_UA = (
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/137.0.0.0 Safari/537.36"
)


class ApiFlow(Enum):
    GOFILE_CONTENTS = "gofile_contents"
    MIRROR_MAP = "mirror_map"


@dataclass(frozen=True)
class JsonApiConfig(HostConfig):
    flow: ApiFlow = ApiFlow.GOFILE_CONTENTS
    helper_path: str = "/embedhelper.php"


def _json_object(resp: FetchResponse, what: str) -> dict[str, Any]:
    try:
        data = json.loads(resp.body)
    except ValueError as exc:
        raise ParseError(f"{what}: invalid JSON") from exc
    if not isinstance(data, dict):
        raise ParseError(f"{what}: expected a JSON object")
    return data


def _json_mapping(value: Any, what: str) -> Mapping[str, Any]:
    """*value* as a mapping; missing or empty counts as empty."""
    if not value:
        return {}
    if not isinstance(value, Mapping):
        raise ParseError(f"{what}: expected a JSON object, got {type(value).__name__}")
    return value


def format_size(size: int) -> str:
    if size < 1024**3:
        return f"{size / 1024**2:.2f} MB"
    return f"{size / 1024**3:.2f} GB"


class JsonApiStrategy(BaseStrategy):
    """Hosts whose file listing comes from a JSON endpoint."""

    _config: JsonApiConfig

    async def _resolve(
        self,
        ref: SourceReference,
        ctx: ResolutionContext,
        delegate: Delegate,
    ) -> AsyncIterator[Found]:
        if self._config.flow is ApiFlow.MIRROR_MAP:
            async for found in self._mirror_map(ref, ctx, delegate):
                yield found
        else:
            async for found in self._gofile(ref, ctx):
                yield found

    # -- GoFile --------------------------------------------------------------

    async def _gofile(
        self, ref: SourceReference, ctx: ResolutionContext
    ) -> AsyncIterator[Found]:
        m = _CONTENT_ID_RE.search(urlparse(ref.url).path)
        if not m:
            raise ParseError(f"{self.name}: no content id in {ref.url}")
        content_id = m.group(1)

        main = (await self._live_base(ref.url)).rstrip("/")
        api = main.replace("://", "://api.", 1)
        headers = {"User-Agent": _BROWSER_UA, "Origin": main, "Referer": main}

        account = await self._fetcher.post(
            f"{api}/accounts", json={}, headers=headers, timeout=ctx.per_hop_timeout
        )
        token = _json_mapping(
            _json_object(account, "gofile accounts").get("data"), "gofile accounts data"
        ).get("token")
        if not token:
            raise ParseError(f"{self.name}: guest token missing")

        config_js = await self._fetch_page(f"{main}/dist/js/config.js", ctx, headers=headers)
        wt = _WEBSITE_TOKEN_RE.search(config_js.body)
        if not wt:
            raise ParseError(f"{self.name}: website token missing")

        contents = await self._fetch_page(
            f"{api}/contents/{content_id}?cache=true&sortField=createTime&sortDirection=1",
            ctx,
            headers={
                **headers,
                "Authorization": f"Bearer {token}",
                "X-Website-Token": wt.group(1),
            },
        )
        data = _json_mapping(
            _json_object(contents, "gofile contents").get("data"), "gofile contents data"
        )
        children = _json_mapping(data.get("children"), "gofile children")
        if not children:
            log.info("gofile_folder_empty", content_id=content_id)
            return

        first = _json_mapping(next(iter(children.values())), "gofile child")
        link = str(first.get("link") or "")
        name = str(first.get("name") or "")
        size = first.get("size")
        size_bytes = int(size) if isinstance(size, (int, float)) else None

        cand = self._candidate(
            link,
            label=self.name,
            raw_quality_text=name,
            size_text=format_size(size_bytes) if size_bytes else "",
            size_bytes=size_bytes,
            headers={"Cookie": f"accountToken={token}"},
        )
        if cand:
            log.debug("gofile_resolved", content_id=content_id)
            yield cand

    # -- mirror map ----------------------------------------------------------

    async def _mirror_map(
        self,
        ref: SourceReference,
        ctx: ResolutionContext,
        delegate: Delegate,
    ) -> AsyncIterator[Found]:
        landing = await self._fetch_page(ref.url, ctx, referer=ref.referer)
        effective = landing.final_url or ref.url
        parsed = urlparse(effective)
        host = f"{parsed.scheme}://{parsed.netloc}"
        embed_id = effective.rstrip("/").rsplit("/", 1)[-1]

        resp = await self._fetcher.post(
            host + self._config.helper_path,
            data={"sid": embed_id, "UserFavSite": "", "currentDomain": "[]"},
            referer=effective,
            timeout=ctx.per_hop_timeout,
        )
        payload = _json_object(resp, "embedhelper")

        site_urls = payload.get("siteUrls")
        mresult = payload.get("mresult")
        if isinstance(mresult, str):
            try:
                mresult = json.loads(b64decode(mresult).decode("utf-8"))
            except (ValueError, DecodeError) as exc:
                raise DecodeError(f"{self.name}: mresult is not base64 JSON") from exc
        if not isinstance(site_urls, Mapping) or not isinstance(mresult, Mapping):
            raise ParseError(f"{self.name}: siteUrls/mresult missing")

        for key in sorted(site_urls.keys() & mresult.keys()):
            site_url, code = site_urls.get(key), mresult.get(key)
            if not isinstance(site_url, str) or not isinstance(code, str):
                log.debug("mirror_skipped", strategy=self.name, key=key)
                continue
            log.debug("mirror_delegated", strategy=self.name, key=key)
            async for found in delegate(
                SourceReference(site_url + code, referer=ref.referer or effective), ctx
            ):
                yield found
