"""Composition root: wires the engine from an ``AppConfig``."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

import httpx
import structlog

from resolvarr.application.use_cases.resolve_links import ResolveLinksUseCase
from resolvarr.infrastructure.config.schema import AppConfig
from resolvarr.infrastructure.domains.alias_table import DomainAliasTable
from resolvarr.infrastructure.http.fetcher import HttpxFetcher
from resolvarr.infrastructure.redirects.walker import RedirectChainWalker
from resolvarr.infrastructure.scoring.quality_scorer import QualityScorer
from resolvarr.infrastructure.strategies.base import StrategyServices
from resolvarr.infrastructure.strategies.catalog import (
    create_all_strategies,
    create_fallback_strategy,
)
from resolvarr.infrastructure.strategies.dispatch import StrategyDispatcher

log = structlog.get_logger(__name__)


def build_resolver(
    config: AppConfig,
    http_client: httpx.AsyncClient,
    *,
    aliases: DomainAliasTable | None = None,
) -> ResolveLinksUseCase:
    """Build the resolution engine on top of a caller-owned HTTP client.

    Order matters:
        1. Fetcher (wraps the client)
        2. Redirect walker + domain alias table (use the fetcher)
        3. Strategies + dispatcher (use all of the above)
        4. Scorer + use case
    """
    fetcher = HttpxFetcher(http_client, default_timeout=config.http_timeout_seconds)
    walker = RedirectChainWalker(fetcher)
    if aliases is None:
        aliases = DomainAliasTable(
            fetcher,
            source_url=config.domains.source_url,
            timeout=config.domains.timeout_seconds,
        )

    services = StrategyServices(
        fetcher=fetcher,
        walker=walker,
        aliases=aliases,
        streaming_markers=tuple(config.resolver.streaming_markers),
    )
    strategies = create_all_strategies(services)
    dispatcher = StrategyDispatcher(strategies, fallback=create_fallback_strategy(services))
    log.info("strategies_registered", hosts=dispatcher.supported_hosts)

    return ResolveLinksUseCase(
        dispatcher=dispatcher,
        scorer=QualityScorer(config.scoring),
        config=config.resolver,
    )


@asynccontextmanager
async def open_resolver(config: AppConfig) -> AsyncIterator[ResolveLinksUseCase]:
    """Engine with its own HTTP client, closed on exit."""
    http_client = httpx.AsyncClient(
        timeout=httpx.Timeout(config.http_timeout_seconds),
        headers={"User-Agent": config.http_user_agent},
        follow_redirects=True,
    )
    log.info("http_client_initialized")
    try:
        yield build_resolver(config, http_client)
    finally:
        await http_client.aclose()
        log.info("http_client_closed")
