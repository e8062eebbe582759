"""Tests for the button-page strategy (HubCloud, GDFlix)."""

from __future__ import annotations

import asyncio
import dataclasses
from typing import Any, Callable
from unittest.mock import AsyncMock

import pytest

from resolvarr.application.use_cases.resolve_links import ResolveLinksUseCase
from resolvarr.domain.entities.links import (
    CandidateLink,
    ResolutionContext,
    SourceReference,
)
from resolvarr.domain.exceptions import NetworkError, ParseError
from resolvarr.domain.ports.fetcher import FetchResponse
from resolvarr.infrastructure.common.html_selectors import PageLink
from resolvarr.infrastructure.config.schema import ResolverConfig, ScoringConfig
from resolvarr.infrastructure.scoring.quality_scorer import QualityScorer
from resolvarr.infrastructure.strategies.base import StrategyServices
from resolvarr.infrastructure.strategies.catalog import GDFLIX, HUBCLOUD
from resolvarr.infrastructure.strategies.dispatch import StrategyDispatcher
from resolvarr.infrastructure.strategies.html_scrape import (
    ButtonAction,
    ButtonRule,
    HtmlScrapeStrategy,
)

_MB = 1024**2

_HUBCLOUD_LANDING = """
<html><body>
<script>var url = 'https://hubcloud.example/file/xyz';</script>
</body></html>
"""

_HUBCLOUD_FILE = """
<html><body>
  <div class="card-header">Movie.2024.1080p.WEB-DL.x264.mkv</div>
  <i id="size">700 MB</i>
  <div class="card-body">
    <h2><a class="btn" href="https://fsl.example/Movie.mkv?token=1">Download [FSL Server]</a></h2>
    <h2><a class="btn" href="https://buzz.example/f/1">BuzzServer</a></h2>
    <h2><a class="btn" href="https://pixeldrain.example/u/AbCd12">Pixeldrain</a></h2>
    <h2><a class="btn" href="https://other.example/Movie.zip">Zip Mirror</a></h2>
    <h2><a class="btn" href="https://other.example/Movie.mkv">Other Mirror</a></h2>
  </div>
</body></html>
"""

_GDFLIX_FILE = """
<html><body>
  <ul>
    <li class="list-group-item">Name : Movie.2024.720p.x264.mkv</li>
    <li class="list-group-item">Size : 1.4 GB</li>
  </ul>
  <div class="text-center">
    <a href="https://r2.example/dl?url=https%3A%2F%2Fcdn.example%2FMovie.720p.mkv">CLOUD DOWNLOAD [R2]</a>
    <a href="https://gdflix.example/instant/abc">Instant DL</a>
    <a href="https://gdflix.example/zfile/abc">Index Links</a>
  </div>
</body></html>
"""

_GDFLIX_SLOW_ONLY = """
<html><body>
  <ul><li class="list-group-item">Name : Movie.2024.720p.x264.mkv</li></ul>
  <div class="text-center">
    <a href="https://gdflix.example/gofile/abc">GoFile [Mirror]</a>
  </div>
</body></html>
"""

_HUBCLOUD_SLOW_FIRST = """
<html><body>
  <div class="card-header">Movie.2024.1080p.WEB-DL.x264.mkv</div>
  <div class="card-body">
    <h2><a class="btn" href="https://gpdl.example/go/1">Download [Server : 10Gbps]</a></h2>
    <h2><a class="btn" href="https://fsl.example/Movie.mkv">Download [FSL Server]</a></h2>
  </div>
</body></html>
"""

_GOFILE_INTERMEDIATE = """
<html><body>
  <div class="row"><div class="row"><a href="https://gofile.example/d/AbC123">Open</a></div></div>
</body></html>
"""


def _page(body: str, url: str, status: int = 200, headers: dict[str, str] | None = None) -> FetchResponse:
    return FetchResponse(status=status, headers=headers or {}, body=body, final_url=url)


# Route value for a request that never answers.
_HANG = object()


def _routed_fetcher(routes: dict[str, Any]) -> AsyncMock:
    """Fetcher answering GETs from *routes*; exceptions in *routes* are raised."""
    fetcher = AsyncMock()

    async def _get(url: str, **kwargs: Any) -> FetchResponse:
        answer = routes.get(url)
        if answer is _HANG:
            await asyncio.Event().wait()
        if isinstance(answer, Exception):
            raise answer
        return answer or _page("", url, status=404)

    fetcher.get.side_effect = _get
    return fetcher


async def _no_delegate(ref: SourceReference, ctx: ResolutionContext):
    return
    yield


async def _collect(strategy: HtmlScrapeStrategy, ref: SourceReference, ctx: ResolutionContext, delegate=None) -> list:
    return [found async for found in strategy.resolve(ref, ctx, delegate or _no_delegate)]


# ---------------------------------------------------------------------------
# HubCloud
# ---------------------------------------------------------------------------


class TestHubCloud:
    @pytest.mark.asyncio()
    async def test_buttons_are_classified(
        self, make_services: Callable[[Any], StrategyServices], ctx: ResolutionContext
    ) -> None:
        fetcher = _routed_fetcher(
            {
                "https://hubcloud.example/drive/abc": _page(
                    _HUBCLOUD_LANDING, "https://hubcloud.example/drive/abc"
                ),
                "https://hubcloud.example/file/xyz": _page(
                    _HUBCLOUD_FILE, "https://hubcloud.example/file/xyz"
                ),
                "https://buzz.example/f/1/download": _page(
                    "", "https://buzz.example/f/1/download", headers={"HX-Redirect": "/dl/Movie.mkv"}
                ),
            }
        )
        strategy = HtmlScrapeStrategy(HUBCLOUD, make_services(fetcher))

        found = await _collect(strategy, SourceReference("https://hubcloud.example/drive/abc"), ctx)

        assert [c.url for c in found] == [
            "https://fsl.example/Movie.mkv?token=1",
            "https://hubcloud.example/dl/Movie.mkv",
            "https://pixeldrain.example/api/file/AbCd12?download",
            "https://other.example/Movie.mkv",
        ]

    @pytest.mark.asyncio()
    async def test_candidate_carries_page_fields(
        self, make_services: Callable[[Any], StrategyServices], ctx: ResolutionContext
    ) -> None:
        fetcher = _routed_fetcher(
            {
                "https://hubcloud.example/drive/abc": _page(
                    _HUBCLOUD_LANDING, "https://hubcloud.example/drive/abc"
                ),
                "https://hubcloud.example/file/xyz": _page(
                    _HUBCLOUD_FILE, "https://hubcloud.example/file/xyz"
                ),
            }
        )
        strategy = HtmlScrapeStrategy(HUBCLOUD, make_services(fetcher))

        found = await _collect(strategy, SourceReference("https://hubcloud.example/drive/abc"), ctx)
        first = found[0]

        assert isinstance(first, CandidateLink)
        assert first.label == "hubcloud[Download [FSL Server]]"
        assert first.source_tag == "hubcloud"
        assert first.size_bytes == 700 * _MB
        assert first.raw_quality_text == "Movie.2024.1080p.WEB-DL.x264.mkv [700 MB]"
        assert "User-Agent" in first.headers

    @pytest.mark.asyncio()
    async def test_missing_hx_redirect_skips_button(
        self, make_services: Callable[[Any], StrategyServices], ctx: ResolutionContext
    ) -> None:
        fetcher = _routed_fetcher(
            {
                "https://hubcloud.example/drive/abc": _page(
                    _HUBCLOUD_LANDING, "https://hubcloud.example/drive/abc"
                ),
                "https://hubcloud.example/file/xyz": _page(
                    _HUBCLOUD_FILE, "https://hubcloud.example/file/xyz"
                ),
                "https://buzz.example/f/1/download": _page("", "https://buzz.example/f/1/download"),
            }
        )
        strategy = HtmlScrapeStrategy(HUBCLOUD, make_services(fetcher))

        found = await _collect(strategy, SourceReference("https://hubcloud.example/drive/abc"), ctx)

        assert "https://hubcloud.example/dl/Movie.mkv" not in [c.url for c in found]
        assert len(found) == 3

    @pytest.mark.asyncio()
    async def test_failing_button_does_not_stop_others(
        self, make_services: Callable[[Any], StrategyServices], ctx: ResolutionContext
    ) -> None:
        fetcher = _routed_fetcher(
            {
                "https://hubcloud.example/drive/abc": _page(
                    _HUBCLOUD_LANDING, "https://hubcloud.example/drive/abc"
                ),
                "https://hubcloud.example/file/xyz": _page(
                    _HUBCLOUD_FILE, "https://hubcloud.example/file/xyz"
                ),
                "https://buzz.example/f/1/download": NetworkError(
                    "https://buzz.example/f/1/download", "timeout"
                ),
            }
        )
        strategy = HtmlScrapeStrategy(HUBCLOUD, make_services(fetcher))

        found = await _collect(strategy, SourceReference("https://hubcloud.example/drive/abc"), ctx)

        assert len(found) == 3

    @pytest.mark.asyncio()
    async def test_crashing_button_does_not_stop_others(
        self, make_services: Callable[[Any], StrategyServices], ctx: ResolutionContext
    ) -> None:
        fetcher = _routed_fetcher(
            {
                "https://hubcloud.example/drive/abc": _page(
                    _HUBCLOUD_LANDING, "https://hubcloud.example/drive/abc"
                ),
                "https://hubcloud.example/file/xyz": _page(
                    _HUBCLOUD_FILE, "https://hubcloud.example/file/xyz"
                ),
                "https://buzz.example/f/1/download": AttributeError("headers"),
            }
        )
        strategy = HtmlScrapeStrategy(HUBCLOUD, make_services(fetcher))

        found = await _collect(strategy, SourceReference("https://hubcloud.example/drive/abc"), ctx)

        assert len(found) == 3

    @pytest.mark.asyncio()
    async def test_hanging_button_does_not_hold_back_later_ones(
        self, make_services: Callable[[Any], StrategyServices], ctx: ResolutionContext
    ) -> None:
        config = dataclasses.replace(HUBCLOUD, landing_selector=None, landing_script_re=None)
        fetcher = _routed_fetcher(
            {
                "https://hubcloud.example/file/xyz": _page(
                    _HUBCLOUD_SLOW_FIRST, "https://hubcloud.example/file/xyz"
                ),
                "https://gpdl.example/go/1": _HANG,
            }
        )
        strategy = HtmlScrapeStrategy(config, make_services(fetcher))

        stream = strategy.resolve(
            SourceReference("https://hubcloud.example/file/xyz"), ctx, _no_delegate
        )
        first = await asyncio.wait_for(stream.__anext__(), timeout=1.0)
        await asyncio.wait_for(stream.aclose(), timeout=1.0)

        assert first.url == "https://fsl.example/Movie.mkv"

    @pytest.mark.asyncio()
    async def test_branch_deadline_keeps_links_of_fast_buttons(
        self, make_services: Callable[[Any], StrategyServices]
    ) -> None:
        config = dataclasses.replace(HUBCLOUD, landing_selector=None, landing_script_re=None)
        fetcher = _routed_fetcher(
            {
                "https://hubcloud.example/file/xyz": _page(
                    _HUBCLOUD_SLOW_FIRST, "https://hubcloud.example/file/xyz"
                ),
                "https://gpdl.example/go/1": _HANG,
            }
        )
        use_case = ResolveLinksUseCase(
            dispatcher=StrategyDispatcher([HtmlScrapeStrategy(config, make_services(fetcher))]),
            scorer=QualityScorer(ScoringConfig()),
            config=ResolverConfig(per_hop_timeout_seconds=0.1, overall_timeout_seconds=0.5),
        )

        links = await asyncio.wait_for(
            use_case.resolve("https://hubcloud.example/file/xyz"), timeout=3.0
        )

        assert [link.url for link in links] == ["https://fsl.example/Movie.mkv"]

    @pytest.mark.asyncio()
    async def test_missing_landing_link_raises(
        self, make_services: Callable[[Any], StrategyServices], ctx: ResolutionContext
    ) -> None:
        fetcher = _routed_fetcher(
            {
                "https://hubcloud.example/drive/abc": _page(
                    "<html><body>nothing</body></html>", "https://hubcloud.example/drive/abc"
                ),
            }
        )
        strategy = HtmlScrapeStrategy(HUBCLOUD, make_services(fetcher))

        with pytest.raises(ParseError):
            await _collect(strategy, SourceReference("https://hubcloud.example/drive/abc"), ctx)

    @pytest.mark.asyncio()
    async def test_no_buttons_raises(
        self, make_services: Callable[[Any], StrategyServices], ctx: ResolutionContext
    ) -> None:
        config = dataclasses.replace(HUBCLOUD, landing_selector=None, landing_script_re=None)
        fetcher = _routed_fetcher(
            {
                "https://hubcloud.example/file/xyz": _page(
                    "<html><body><p>gone</p></body></html>", "https://hubcloud.example/file/xyz"
                ),
            }
        )
        strategy = HtmlScrapeStrategy(config, make_services(fetcher))

        with pytest.raises(ParseError):
            await _collect(strategy, SourceReference("https://hubcloud.example/file/xyz"), ctx)

    @pytest.mark.asyncio()
    async def test_http_error_raises(
        self, make_services: Callable[[Any], StrategyServices], ctx: ResolutionContext
    ) -> None:
        strategy = HtmlScrapeStrategy(HUBCLOUD, make_services(_routed_fetcher({})))

        with pytest.raises(ParseError):
            await _collect(strategy, SourceReference("https://hubcloud.example/drive/abc"), ctx)


# ---------------------------------------------------------------------------
# GDFlix
# ---------------------------------------------------------------------------


class TestGdflix:
    @pytest.mark.asyncio()
    async def test_fast_servers_skip_slow_ones(
        self, make_services: Callable[[Any], StrategyServices], ctx: ResolutionContext
    ) -> None:
        fetcher = _routed_fetcher(
            {
                "https://gdflix.example/file/abc": _page(
                    _GDFLIX_FILE, "https://gdflix.example/file/abc"
                ),
                "https://gdflix.example/instant/abc": _page(
                    "",
                    "https://gdflix.example/instant/abc",
                    status=302,
                    headers={"Location": "https://go.example/?url=https://instant.example/Movie.mkv"},
                ),
            }
        )
        strategy = HtmlScrapeStrategy(GDFLIX, make_services(fetcher))

        found = await _collect(strategy, SourceReference("https://gdflix.example/file/abc"), ctx)

        assert [c.url for c in found] == [
            "https://cdn.example/Movie.720p.mkv",
            "https://instant.example/Movie.mkv",
        ]
        requested = [call.args[0] for call in fetcher.get.call_args_list]
        assert "https://gdflix.example/zfile/abc" not in requested

    @pytest.mark.asyncio()
    async def test_row_fields_feed_candidates(
        self, make_services: Callable[[Any], StrategyServices], ctx: ResolutionContext
    ) -> None:
        fetcher = _routed_fetcher(
            {
                "https://gdflix.example/file/abc": _page(
                    _GDFLIX_FILE, "https://gdflix.example/file/abc"
                ),
            }
        )
        strategy = HtmlScrapeStrategy(GDFLIX, make_services(fetcher))

        found = await _collect(strategy, SourceReference("https://gdflix.example/file/abc"), ctx)

        assert found[0].raw_quality_text == "Movie.2024.720p.x264.mkv [1.4 GB]"
        assert found[0].size_bytes == int(1.4 * 1024**3)
        assert found[0].label == "gdflix[CLOUD DOWNLOAD [R2]]"

    @pytest.mark.asyncio()
    async def test_slow_server_delegates_when_nothing_fast(
        self, make_services: Callable[[Any], StrategyServices], ctx: ResolutionContext
    ) -> None:
        fetcher = _routed_fetcher(
            {
                "https://gdflix.example/file/abc": _page(
                    _GDFLIX_SLOW_ONLY, "https://gdflix.example/file/abc"
                ),
                "https://gdflix.example/gofile/abc": _page(
                    _GOFILE_INTERMEDIATE, "https://gdflix.example/gofile/abc"
                ),
            }
        )
        strategy = HtmlScrapeStrategy(GDFLIX, make_services(fetcher))
        delegated: list[SourceReference] = []
        emitted = CandidateLink(url="https://store.gofile.example/download/Movie.mkv")

        async def _delegate(ref: SourceReference, ctx: ResolutionContext):
            delegated.append(ref)
            yield emitted

        found = await _collect(
            strategy, SourceReference("https://gdflix.example/file/abc"), ctx, _delegate
        )

        assert found == [emitted]
        assert delegated == [
            SourceReference(
                "https://gofile.example/d/AbC123", referer="https://gdflix.example/gofile/abc"
            )
        ]

    @pytest.mark.asyncio()
    async def test_streaming_manifest_rejected_for_download_host(
        self, make_services: Callable[[Any], StrategyServices], ctx: ResolutionContext
    ) -> None:
        page = """
        <div class="text-center">
          <a href="https://cdn.example/hls/master.m3u8">DIRECT DL</a>
          <a href="https://cdn.example/Movie.mkv">DIRECT SERVER</a>
        </div>
        """
        fetcher = _routed_fetcher(
            {"https://gdflix.example/file/abc": _page(page, "https://gdflix.example/file/abc")}
        )
        strategy = HtmlScrapeStrategy(GDFLIX, make_services(fetcher))

        found = await _collect(strategy, SourceReference("https://gdflix.example/file/abc"), ctx)

        assert [c.url for c in found] == ["https://cdn.example/Movie.mkv"]


class TestButtonRule:
    def test_text_marker_is_case_sensitive(self) -> None:
        rule = ButtonRule(ButtonAction.DIRECT, text_markers=("Instant DL",))
        assert rule.matches(PageLink("Instant DL [10GB]", "https://x.example/"))
        assert not rule.matches(PageLink("instant dl", "https://x.example/"))

    def test_href_marker_is_case_insensitive(self) -> None:
        rule = ButtonRule(ButtonAction.PIXELDRAIN, href_markers=("pixeldra",))
        assert rule.matches(PageLink("Mirror", "https://PixelDrain.example/u/1"))
