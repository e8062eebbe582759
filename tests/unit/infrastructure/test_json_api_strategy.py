"""Tests for JSON-API hosts (GoFile, mirror maps)."""

from __future__ import annotations

import base64
import json
from typing import Any, Callable
from unittest.mock import AsyncMock

import pytest

from resolvarr.domain.entities.links import (
    CandidateLink,
    ResolutionContext,
    SourceReference,
)
from resolvarr.domain.exceptions import DecodeError, ParseError
from resolvarr.domain.ports.fetcher import FetchResponse
from resolvarr.infrastructure.strategies.base import StrategyServices
from resolvarr.infrastructure.strategies.catalog import GDMIRROR, GOFILE
from resolvarr.infrastructure.strategies.json_api import JsonApiStrategy, format_size

_CONTENTS_URL = (
    "https://api.gofile.example/contents/AbC123"
    "?cache=true&sortField=createTime&sortDirection=1"
)


def _json(data: Any, url: str = "") -> FetchResponse:
    return FetchResponse(status=200, body=json.dumps(data), final_url=url)


def _api_fetcher(get_routes: dict[str, FetchResponse], post_routes: dict[str, FetchResponse]) -> AsyncMock:
    fetcher = AsyncMock()

    async def _get(url: str, **kwargs: Any) -> FetchResponse:
        return get_routes.get(url) or FetchResponse(status=404, final_url=url)

    async def _post(url: str, **kwargs: Any) -> FetchResponse:
        return post_routes.get(url) or FetchResponse(status=404, final_url=url)

    fetcher.get.side_effect = _get
    fetcher.post.side_effect = _post
    return fetcher


async def _collect(strategy, ref, ctx, delegate=None) -> list:
    async def _no_delegate(ref, ctx):
        return
        yield

    return [found async for found in strategy.resolve(ref, ctx, delegate or _no_delegate)]


@pytest.fixture()
def gofile_fetcher() -> AsyncMock:
    return _api_fetcher(
        get_routes={
            "https://gofile.example/dist/js/config.js": FetchResponse(
                status=200, body='appdata.wt = "4fd6sg89d7s6";'
            ),
            _CONTENTS_URL: _json(
                {
                    "status": "ok",
                    "data": {
                        "children": {
                            "f1": {
                                "link": "https://store1.gofile.example/download/f1/Movie.1080p.x264.mkv",
                                "name": "Movie.1080p.x264.mkv",
                                "size": 700 * 1024**2,
                            },
                            "f2": {
                                "link": "https://store1.gofile.example/download/f2/Extra.mkv",
                                "name": "Extra.mkv",
                                "size": 10,
                            },
                        }
                    },
                }
            ),
        },
        post_routes={
            "https://api.gofile.example/accounts": _json({"data": {"token": "guest-tok"}}),
        },
    )


# ---------------------------------------------------------------------------
# GoFile
# ---------------------------------------------------------------------------


class TestGofile:
    @pytest.mark.asyncio()
    async def test_first_file_emitted(
        self,
        make_services: Callable[[Any], StrategyServices],
        gofile_fetcher: AsyncMock,
        ctx: ResolutionContext,
    ) -> None:
        strategy = JsonApiStrategy(GOFILE, make_services(gofile_fetcher))

        found = await _collect(strategy, SourceReference("https://gofile.example/d/AbC123"), ctx)

        assert len(found) == 1
        link = found[0]
        assert isinstance(link, CandidateLink)
        assert link.url == "https://store1.gofile.example/download/f1/Movie.1080p.x264.mkv"
        assert link.headers["Cookie"] == "accountToken=guest-tok"
        assert link.size_bytes == 700 * 1024**2
        assert link.raw_quality_text == "Movie.1080p.x264.mkv [700.00 MB]"
        assert link.source_tag == "gofile"

    @pytest.mark.asyncio()
    async def test_contents_request_is_authorized(
        self,
        make_services: Callable[[Any], StrategyServices],
        gofile_fetcher: AsyncMock,
        ctx: ResolutionContext,
    ) -> None:
        strategy = JsonApiStrategy(GOFILE, make_services(gofile_fetcher))

        await _collect(strategy, SourceReference("https://gofile.example/d/AbC123"), ctx)

        call = gofile_fetcher.get.call_args
        assert call.args[0] == _CONTENTS_URL
        assert call.kwargs["headers"]["Authorization"] == "Bearer guest-tok"
        assert call.kwargs["headers"]["X-Website-Token"] == "4fd6sg89d7s6"

    @pytest.mark.asyncio()
    async def test_missing_content_id(
        self,
        make_services: Callable[[Any], StrategyServices],
        mock_fetcher: AsyncMock,
        ctx: ResolutionContext,
    ) -> None:
        strategy = JsonApiStrategy(GOFILE, make_services(mock_fetcher))

        with pytest.raises(ParseError):
            await _collect(strategy, SourceReference("https://gofile.example/"), ctx)
        mock_fetcher.post.assert_not_called()

    @pytest.mark.asyncio()
    async def test_missing_guest_token(
        self, make_services: Callable[[Any], StrategyServices], ctx: ResolutionContext
    ) -> None:
        fetcher = _api_fetcher(
            get_routes={},
            post_routes={"https://api.gofile.example/accounts": _json({"status": "error"})},
        )
        strategy = JsonApiStrategy(GOFILE, make_services(fetcher))

        with pytest.raises(ParseError):
            await _collect(strategy, SourceReference("https://gofile.example/d/AbC123"), ctx)

    @pytest.mark.asyncio()
    async def test_empty_folder_yields_nothing(
        self, make_services: Callable[[Any], StrategyServices], ctx: ResolutionContext
    ) -> None:
        fetcher = _api_fetcher(
            get_routes={
                "https://gofile.example/dist/js/config.js": FetchResponse(
                    status=200, body="appdata.wt = 'wt';"
                ),
                _CONTENTS_URL: _json({"data": {"children": {}}}),
            },
            post_routes={"https://api.gofile.example/accounts": _json({"data": {"token": "t"}})},
        )
        strategy = JsonApiStrategy(GOFILE, make_services(fetcher))

        assert await _collect(strategy, SourceReference("https://gofile.example/d/AbC123"), ctx) == []

    @pytest.mark.asyncio()
    async def test_account_data_list_is_parse_error(
        self, make_services: Callable[[Any], StrategyServices], ctx: ResolutionContext
    ) -> None:
        fetcher = _api_fetcher(
            get_routes={},
            post_routes={"https://api.gofile.example/accounts": _json({"data": ["t"]})},
        )
        strategy = JsonApiStrategy(GOFILE, make_services(fetcher))

        with pytest.raises(ParseError):
            await _collect(strategy, SourceReference("https://gofile.example/d/AbC123"), ctx)

    @pytest.mark.asyncio()
    async def test_non_object_child_is_parse_error(
        self, make_services: Callable[[Any], StrategyServices], ctx: ResolutionContext
    ) -> None:
        fetcher = _api_fetcher(
            get_routes={
                "https://gofile.example/dist/js/config.js": FetchResponse(
                    status=200, body="appdata.wt = 'wt';"
                ),
                _CONTENTS_URL: _json({"data": {"children": {"f1": "Movie.mkv"}}}),
            },
            post_routes={"https://api.gofile.example/accounts": _json({"data": {"token": "t"}})},
        )
        strategy = JsonApiStrategy(GOFILE, make_services(fetcher))

        with pytest.raises(ParseError):
            await _collect(strategy, SourceReference("https://gofile.example/d/AbC123"), ctx)


class TestFormatSize:
    def test_megabytes(self) -> None:
        assert format_size(512 * 1024**2) == "512.00 MB"

    def test_gigabytes(self) -> None:
        assert format_size(3 * 1024**3) == "3.00 GB"


# ---------------------------------------------------------------------------
# Mirror map
# ---------------------------------------------------------------------------


class TestMirrorMap:
    _EMBED = "https://techinmind.example/embed/xyz"

    def _fetcher(self, mresult: Any) -> AsyncMock:
        return _api_fetcher(
            get_routes={
                "https://gdmirror.example/embed/xyz": FetchResponse(
                    status=200, body="<html></html>", final_url=self._EMBED
                ),
            },
            post_routes={
                "https://techinmind.example/embedhelper.php": _json(
                    {
                        "siteUrls": {
                            "hubcloud": "https://hubcloud.example/drive/",
                            "gofile": "https://gofile.example/d/",
                            "unpaired": "https://lonely.example/",
                        },
                        "mresult": mresult,
                    }
                ),
            },
        )

    @pytest.mark.asyncio()
    async def test_every_paired_mirror_is_delegated(
        self, make_services: Callable[[Any], StrategyServices], ctx: ResolutionContext
    ) -> None:
        mresult = base64.b64encode(
            json.dumps({"hubcloud": "h1", "gofile": "g1", "other": "o1"}).encode()
        ).decode()
        fetcher = self._fetcher(mresult)
        strategy = JsonApiStrategy(GDMIRROR, make_services(fetcher))
        delegated: list[SourceReference] = []

        async def _delegate(ref: SourceReference, ctx: ResolutionContext):
            delegated.append(ref)
            yield CandidateLink(url=ref.url + ".mkv")

        found = await _collect(
            strategy, SourceReference("https://gdmirror.example/embed/xyz"), ctx, _delegate
        )

        assert delegated == [
            SourceReference("https://gofile.example/d/g1", referer=self._EMBED),
            SourceReference("https://hubcloud.example/drive/h1", referer=self._EMBED),
        ]
        assert len(found) == 2

    @pytest.mark.asyncio()
    async def test_helper_form(
        self, make_services: Callable[[Any], StrategyServices], ctx: ResolutionContext
    ) -> None:
        fetcher = self._fetcher({"gofile": "g1"})
        strategy = JsonApiStrategy(GDMIRROR, make_services(fetcher))

        await _collect(strategy, SourceReference("https://gdmirror.example/embed/xyz"), ctx)

        call = fetcher.post.call_args
        assert call.args[0] == "https://techinmind.example/embedhelper.php"
        assert call.kwargs["data"]["sid"] == "xyz"

    @pytest.mark.asyncio()
    async def test_plain_mapping_mresult(
        self, make_services: Callable[[Any], StrategyServices], ctx: ResolutionContext
    ) -> None:
        fetcher = self._fetcher({"hubcloud": "h1"})
        strategy = JsonApiStrategy(GDMIRROR, make_services(fetcher))
        delegated: list[str] = []

        async def _delegate(ref: SourceReference, ctx: ResolutionContext):
            delegated.append(ref.url)
            return
            yield

        await _collect(strategy, SourceReference("https://gdmirror.example/embed/xyz"), ctx, _delegate)

        assert delegated == ["https://hubcloud.example/drive/h1"]

    @pytest.mark.asyncio()
    async def test_bad_mresult(
        self, make_services: Callable[[Any], StrategyServices], ctx: ResolutionContext
    ) -> None:
        strategy = JsonApiStrategy(GDMIRROR, make_services(self._fetcher("!!not base64!!")))

        with pytest.raises(DecodeError):
            await _collect(strategy, SourceReference("https://gdmirror.example/embed/xyz"), ctx)

    @pytest.mark.asyncio()
    async def test_missing_site_urls(
        self, make_services: Callable[[Any], StrategyServices], ctx: ResolutionContext
    ) -> None:
        fetcher = _api_fetcher(
            get_routes={
                "https://gdmirror.example/embed/xyz": FetchResponse(status=200, final_url=self._EMBED)
            },
            post_routes={"https://techinmind.example/embedhelper.php": _json({"mresult": {}})},
        )
        strategy = JsonApiStrategy(GDMIRROR, make_services(fetcher))

        with pytest.raises(ParseError):
            await _collect(strategy, SourceReference("https://gdmirror.example/embed/xyz"), ctx)
