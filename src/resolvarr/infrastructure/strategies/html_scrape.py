"""HTML-scrape hosts: a file page with one button per download server.

The page yields a file name and size once; every button is classified
by its label/href into a ``ButtonAction``. Buttons of one group run
concurrently; the fast group finishes first and the slow fallbacks only
run when no fast server produced a link.
"""

from __future__ import annotations

import asyncio
import re
from dataclasses import dataclass
from enum import Enum
from typing import AsyncGenerator, AsyncIterator
from urllib.parse import unquote, urljoin, urlparse

import structlog

from resolvarr.domain.entities.links import (
    CandidateLink,
    ResolutionContext,
    SourceReference,
)
from resolvarr.domain.exceptions import ParseError, ResolutionError
from resolvarr.domain.ports.strategy import Delegate, Found
from resolvarr.infrastructure.common.html_selectors import (
    PageLink,
    extract_links,
    extract_text,
    parse_html,
    search_scripts,
    select_items,
    text_of_row,
)
from resolvarr.infrastructure.redirects.walker import embedded_target
from resolvarr.infrastructure.strategies.base import BaseStrategy, HostConfig

log = structlog.get_logger(__name__)

_DRIVEBOT_TOKEN_RE = re.compile(r"formData\.append\('token', '([a-f0-9]+)'\)")
_DRIVEBOT_POST_ID_RE = re.compile(r"fetch\('/download\?id=([a-zA-Z0-9/+]+)'")
_DRIVEBOT_URL_RE = re.compile(r'url":"(.*?)"')
_PHPSESSID_RE = re.compile(r"PHPSESSID=([^;]+)")

# Queue marker: one per finished button.
_BUTTON_DONE = object()


class ButtonAction(Enum):
    DIRECT = "direct"  # href is the file
    HX_REDIRECT = "hx_redirect"  # {href}/download answers with an hx-redirect header
    PIXELDRAIN = "pixeldrain"  # rewrite to the pixeldrain file API
    WALK = "walk"  # follow redirects until the embedded link
    URL_PARAM = "url_param"  # file URL sits in the href's url= parameter
    REDIRECT_PARAM = "redirect_param"  # one redirect whose Location carries url=
    MEDIA_ONLY = "media_only"  # emit only if the href names a video file
    INDEX_PAGES = "index_pages"  # index listing -> server pages -> source link
    PAGE_THEN_DELEGATE = "page_then_delegate"  # intermediate page -> other host
    DRIVEBOT = "drivebot"  # token form post returning JSON with the url


@dataclass(frozen=True)
class ButtonRule:
    """Classifies a button by label text (case-sensitive) or href fragment."""

    action: ButtonAction
    text_markers: tuple[str, ...] = ()
    href_markers: tuple[str, ...] = ()
    slow: bool = False

    def matches(self, button: PageLink) -> bool:
        if any(marker in button.text for marker in self.text_markers):
            return True
        href = button.href.lower()
        return any(marker in href for marker in self.href_markers)


@dataclass(frozen=True)
class FieldSpec:
    """Where a page field lives: a selector, optionally a labelled row."""

    selector: str
    marker: str | None = None


@dataclass(frozen=True)
class HtmlScrapeConfig(HostConfig):
    """Button-page host configuration."""

    button_selector: str = "a.btn"
    button_rules: tuple[ButtonRule, ...] = ()
    fallback_action: ButtonAction | None = None
    title: FieldSpec | None = None
    size: FieldSpec | None = None
    # Landing page that links to the real file page
    landing_selector: str | None = None
    landing_script_re: re.Pattern[str] | None = None
    landing_script_marker: str = "drive"
    # Slow fallbacks
    index_button_selector: str = "a.btn.btn-outline-info"
    index_source_selector: str = "div.mb-4 > a"
    index_limit: int = 2
    delegate_selector: str = ".row .row a"
    drivebot_base: str = "https://drivebot.sbs"


@dataclass(frozen=True)
class _FilePage:
    url: str
    base: str
    title: str
    size: str


class HtmlScrapeStrategy(BaseStrategy):
    """Resolves button pages (HubCloud, GDFlix and lookalikes)."""

    _config: HtmlScrapeConfig

    async def _resolve(
        self,
        ref: SourceReference,
        ctx: ResolutionContext,
        delegate: Delegate,
    ) -> AsyncIterator[Found]:
        cfg = self._config
        base = await self._live_base(ref.url)
        page_url = await self._live_url(ref.url)

        if cfg.landing_selector or cfg.landing_script_re:
            page_url = await self._follow_landing(page_url, base, ctx, ref.referer)

        resp = await self._fetch_page(page_url, ctx, referer=ref.referer)
        soup = parse_html(resp.body)
        page = _FilePage(
            url=resp.final_url or page_url,
            base=base,
            title=self._field(soup, cfg.title),
            size=self._field(soup, cfg.size),
        )

        buttons = extract_links(soup, cfg.button_selector, base_url=page.url)
        if not buttons:
            raise ParseError(f"{self.name}: no download buttons on {page.url}")

        log.debug(
            "file_page_parsed",
            strategy=self.name,
            title=page.title,
            size=page.size,
            buttons=len(buttons),
        )

        fast_found = False
        for slow in (False, True):
            if slow and fast_found:
                log.debug("slow_servers_skipped", strategy=self.name, url=page.url)
                break
            jobs: list[tuple[PageLink, ButtonRule]] = []
            for button in buttons:
                rule = self._rule_for(button)
                if rule is not None and rule.slow == slow:
                    jobs.append((button, rule))
            group = self._run_buttons(jobs, page, ctx, delegate)
            try:
                async for found in group:
                    if not slow and isinstance(found, CandidateLink):
                        fast_found = True
                    yield found
            finally:
                await group.aclose()

    async def _run_buttons(
        self,
        jobs: list[tuple[PageLink, ButtonRule]],
        page: _FilePage,
        ctx: ResolutionContext,
        delegate: Delegate,
    ) -> AsyncGenerator[Found, None]:
        """Run every button as its own task; yield results in arrival order.

        Returns once all buttons finished. Closing the iterator cancels
        the buttons still running.
        """
        if not jobs:
            return
        queue: asyncio.Queue[object] = asyncio.Queue()
        tasks = [
            asyncio.create_task(self._drain_button(button, rule, page, ctx, delegate, queue))
            for button, rule in jobs
        ]
        pending = len(tasks)
        try:
            while pending:
                item = await queue.get()
                if item is _BUTTON_DONE:
                    pending -= 1
                    continue
                yield item
        finally:
            for task in tasks:
                if not task.done():
                    task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _drain_button(
        self,
        button: PageLink,
        rule: ButtonRule,
        page: _FilePage,
        ctx: ResolutionContext,
        delegate: Delegate,
        queue: asyncio.Queue[object],
    ) -> None:
        try:
            async for found in self._run(rule.action, button, page, ctx, delegate):
                queue.put_nowait(found)
        except ResolutionError as exc:
            log.warning(
                "server_button_failed",
                strategy=self.name,
                button=button.text,
                url=button.href,
                error_type=type(exc).__name__,
                error=str(exc),
            )
        except Exception:
            log.exception(
                "server_button_crashed", strategy=self.name, button=button.text, url=button.href
            )
        finally:
            queue.put_nowait(_BUTTON_DONE)

    # -- page helpers --------------------------------------------------------

    async def _follow_landing(
        self,
        url: str,
        base: str,
        ctx: ResolutionContext,
        referer: str | None,
    ) -> str:
        cfg = self._config
        resp = await self._fetch_page(url, ctx, referer=referer)
        soup = parse_html(resp.body)

        link: str | None = None
        if cfg.landing_script_re is not None and cfg.landing_script_marker in url:
            link = search_scripts(soup, cfg.landing_script_re)
        elif cfg.landing_selector:
            items = select_items(soup, cfg.landing_selector)
            if items and items[0].get("href"):
                link = str(items[0]["href"])
        if not link:
            raise ParseError(f"{self.name}: landing link missing on {url}")

        if not link.startswith(("http://", "https://")):
            link = urljoin(base.rstrip("/") + "/", link.lstrip("/"))
        return link

    @staticmethod
    def _field(soup, spec: FieldSpec | None) -> str:
        if spec is None:
            return ""
        if spec.marker:
            return text_of_row(soup, spec.selector, spec.marker)
        return extract_text(soup, spec.selector)

    def _rule_for(self, button: PageLink) -> ButtonRule | None:
        for rule in self._config.button_rules:
            if rule.matches(button):
                return rule
        if self._config.fallback_action is not None:
            return ButtonRule(self._config.fallback_action)
        return None

    def _emit(self, url: str, button: PageLink, page: _FilePage, **kwargs) -> CandidateLink | None:
        return self._candidate(
            url,
            label=f"{self.name}[{button.text}]" if button.text else self.name,
            raw_quality_text=page.title,
            size_text=page.size,
            **kwargs,
        )

    # -- actions -------------------------------------------------------------

    def _run(
        self,
        action: ButtonAction,
        button: PageLink,
        page: _FilePage,
        ctx: ResolutionContext,
        delegate: Delegate,
    ) -> AsyncIterator[Found]:
        handlers = {
            ButtonAction.DIRECT: self._direct,
            ButtonAction.HX_REDIRECT: self._hx_redirect,
            ButtonAction.PIXELDRAIN: self._pixeldrain,
            ButtonAction.WALK: self._walk,
            ButtonAction.URL_PARAM: self._url_param,
            ButtonAction.REDIRECT_PARAM: self._redirect_param,
            ButtonAction.MEDIA_ONLY: self._media_only,
            ButtonAction.INDEX_PAGES: self._index_pages,
            ButtonAction.PAGE_THEN_DELEGATE: self._page_then_delegate,
            ButtonAction.DRIVEBOT: self._drivebot,
        }
        return handlers[action](button, page, ctx, delegate)

    async def _direct(self, button, page, ctx, delegate) -> AsyncIterator[Found]:
        cand = self._emit(button.href, button, page)
        if cand:
            yield cand

    async def _media_only(self, button, page, ctx, delegate) -> AsyncIterator[Found]:
        href = button.href.lower()
        if (".mkv" in href or ".mp4" in href) and ".zip" not in href:
            cand = self._emit(button.href, button, page)
            if cand:
                yield cand

    async def _hx_redirect(self, button, page, ctx, delegate) -> AsyncIterator[Found]:
        resp = await self._fetcher.get(
            button.href.rstrip("/") + "/download",
            referer=button.href,
            follow_redirects=False,
            timeout=ctx.per_hop_timeout,
        )
        target = resp.header("hx-redirect")
        if not target:
            log.debug("hx_redirect_missing", strategy=self.name, url=button.href)
            return
        cand = self._emit(urljoin(page.base.rstrip("/") + "/", target), button, page)
        if cand:
            yield cand

    async def _pixeldrain(self, button, page, ctx, delegate) -> AsyncIterator[Found]:
        href = button.href
        if "download" not in href.lower():
            parsed = urlparse(href)
            file_id = parsed.path.rstrip("/").rsplit("/", 1)[-1]
            href = f"{parsed.scheme}://{parsed.netloc}/api/file/{file_id}?download"
        cand = self._emit(href, button, page)
        if cand:
            yield cand

    async def _walk(self, button, page, ctx, delegate) -> AsyncIterator[Found]:
        target = await self._walker.follow(button.href, ctx.fork(), referer=page.url)
        if target and target != button.href:
            cand = self._emit(target, button, page)
            if cand:
                yield cand

    async def _url_param(self, button, page, ctx, delegate) -> AsyncIterator[Found]:
        _, sep, value = button.href.partition("url=")
        if sep:
            cand = self._emit(unquote(value), button, page)
            if cand:
                yield cand

    async def _redirect_param(self, button, page, ctx, delegate) -> AsyncIterator[Found]:
        resp = await self._fetcher.get(
            button.href, follow_redirects=False, timeout=ctx.per_hop_timeout
        )
        location = resp.header("location") or ""
        target = embedded_target(location)
        if target:
            cand = self._emit(target, button, page)
            if cand:
                yield cand

    async def _index_pages(self, button, page, ctx, delegate) -> AsyncIterator[Found]:
        cfg = self._config
        listing = await self._fetch_page(urljoin(page.base + "/", button.href), ctx)
        servers = select_items(parse_html(listing.body), cfg.index_button_selector)
        for server in servers[: cfg.index_limit]:
            href = server.get("href")
            if not href:
                continue
            server_page = await self._fetch_page(urljoin(page.base + "/", str(href)), ctx)
            links = extract_links(
                parse_html(server_page.body),
                cfg.index_source_selector,
                base_url=server_page.final_url,
            )
            if links:
                cand = self._emit(links[0].href, button, page)
                if cand:
                    yield cand

    async def _page_then_delegate(self, button, page, ctx, delegate) -> AsyncIterator[Found]:
        resp = await self._fetch_page(button.href, ctx, referer=page.url)
        links = extract_links(
            parse_html(resp.body),
            self._config.delegate_selector,
            base_url=resp.final_url or button.href,
        )
        if not links:
            raise ParseError(f"{self.name}: no onward link on {button.href}")
        async for found in delegate(SourceReference(links[0].href, referer=button.href), ctx):
            yield found

    async def _drivebot(self, button, page, ctx, delegate) -> AsyncIterator[Found]:
        cfg = self._config
        file_id = button.href.partition("id=")[2].partition("&")[0]
        do_id = button.href.partition("do=")[2].partition("==")[0]
        if not file_id:
            raise ParseError(f"{self.name}: drivebot id missing in {button.href}")

        index_url = f"{cfg.drivebot_base}/download?id={file_id}&do={do_id}"
        index = await self._fetch_page(index_url, ctx)
        token_m = _DRIVEBOT_TOKEN_RE.search(index.body)
        post_id_m = _DRIVEBOT_POST_ID_RE.search(index.body)
        if not token_m or not post_id_m:
            raise ParseError(f"{self.name}: drivebot token missing")

        headers = {}
        session = _PHPSESSID_RE.search(index.header("set-cookie") or "")
        if session:
            headers["Cookie"] = f"PHPSESSID={session.group(1)}"

        resp = await self._fetcher.post(
            f"{cfg.drivebot_base}/download?id={post_id_m.group(1)}",
            data={"token": token_m.group(1)},
            headers=headers,
            referer=index_url,
            timeout=ctx.per_hop_timeout,
        )
        url_m = _DRIVEBOT_URL_RE.search(resp.body)
        if url_m:
            cand = self._emit(
                url_m.group(1).replace("\\", ""),
                button,
                page,
                referer=cfg.drivebot_base,
            )
            if cand:
                yield cand
