"""Shared test fixtures for the resolvarr test suite."""

from __future__ import annotations

from typing import Any, Callable
from unittest.mock import AsyncMock

import pytest

from resolvarr.domain.entities.links import CandidateLink, ResolutionContext
from resolvarr.domain.ports.fetcher import FetchResponse
from resolvarr.infrastructure.config.schema import ResolverConfig, ScoringConfig
from resolvarr.infrastructure.domains.alias_table import DomainAliasTable
from resolvarr.infrastructure.redirects.walker import RedirectChainWalker
from resolvarr.infrastructure.strategies.base import StrategyServices


def _response(
    status: int = 200,
    body: str = "",
    headers: dict[str, str] | None = None,
    final_url: str = "",
) -> FetchResponse:
    return FetchResponse(status=status, headers=headers or {}, body=body, final_url=final_url)


def _offline_aliases() -> DomainAliasTable:
    fetcher = AsyncMock()
    fetcher.get.return_value = _response(404)
    return DomainAliasTable(fetcher, source_url="https://aliases.example/urls.json")


# ---------------------------------------------------------------------------
# Domain fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def ctx() -> ResolutionContext:
    """Fresh per-branch context with default budgets."""
    return ResolutionContext()


@pytest.fixture()
def candidate() -> CandidateLink:
    """Typical HubCloud-style candidate."""
    return CandidateLink(
        url="https://cdn.example/Movie.2024.1080p.WEB-DL.x264.mkv",
        label="hubcloud[FSL Server]",
        source_tag="hubcloud",
        size_bytes=700 * 1024**2,
        raw_quality_text="Movie.2024.1080p.WEB-DL.x264.mkv",
    )


# ---------------------------------------------------------------------------
# Config fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def scoring_config() -> ScoringConfig:
    return ScoringConfig()


@pytest.fixture()
def resolver_config() -> ResolverConfig:
    return ResolverConfig(
        per_hop_timeout_seconds=1.0,
        overall_timeout_seconds=2.0,
        max_concurrent_branches=4,
    )


# ---------------------------------------------------------------------------
# Collaborator mocks
# ---------------------------------------------------------------------------


@pytest.fixture()
def mock_fetcher() -> AsyncMock:
    """Fetcher mock; tests set ``get``/``post`` return values or side effects."""
    fetcher = AsyncMock()
    fetcher.get.return_value = _response(404)
    fetcher.post.return_value = _response(404)
    return fetcher


@pytest.fixture()
def offline_aliases() -> DomainAliasTable:
    """Alias table whose source answers 404, so every lookup falls back."""
    return _offline_aliases()


@pytest.fixture()
def make_services() -> Callable[[Any], StrategyServices]:
    """Build StrategyServices around any fetcher (mock or HttpxFetcher)."""

    def _make(fetcher: Any) -> StrategyServices:
        return StrategyServices(
            fetcher=fetcher,
            walker=RedirectChainWalker(fetcher),
            aliases=_offline_aliases(),
        )

    return _make
