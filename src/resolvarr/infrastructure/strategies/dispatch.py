"""Maps references to strategies and expands aggregator pages into branches."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

import structlog

from resolvarr.domain.entities.links import ResolutionContext, SourceReference
from resolvarr.domain.exceptions import ResolutionError
from resolvarr.domain.ports.strategy import (
    AggregatorStrategyPort,
    ResolutionStrategyPort,
)

log = structlog.get_logger(__name__)


@dataclass(frozen=True)
class Branch:
    """One independently resolved unit of work."""

    strategy: ResolutionStrategyPort
    ref: SourceReference


class StrategyDispatcher:
    """Ordered host matcher with a best-effort fallback.

    Strategies are tried in registration order and the first match wins.
    References nothing claims go to *fallback*.
    """

    def __init__(
        self,
        strategies: Sequence[ResolutionStrategyPort],
        fallback: ResolutionStrategyPort | None = None,
    ) -> None:
        self._strategies = list(strategies)
        self._by_name = {s.name: s for s in self._strategies}
        self._fallback = fallback

    @property
    def supported_hosts(self) -> list[str]:
        return [s.name for s in self._strategies]

    def select(
        self, url: str, host_hint: str | None = None
    ) -> ResolutionStrategyPort | None:
        if host_hint:
            hinted = self._by_name.get(host_hint)
            if hinted is not None:
                return hinted
            log.debug("host_hint_unknown", host_hint=host_hint)

        for strategy in self._strategies:
            if strategy.matches(url):
                return strategy
        return self._fallback

    async def dispatch(
        self, ref: SourceReference, ctx: ResolutionContext
    ) -> list[Branch]:
        """Top-level branches for *ref*.

        Aggregator pages are expanded here so that every button runs as
        its own concurrent branch; a failed expansion yields no branches.
        """
        strategy = self.select(ref.url, ref.host_hint)
        if strategy is None:
            log.info("no_strategy_for_reference", url=ref.url)
            return []

        if not isinstance(strategy, AggregatorStrategyPort):
            log.debug("strategy_selected", strategy=strategy.name, url=ref.url)
            return [Branch(strategy, ref)]

        try:
            children = await strategy.discover(ref, ctx)
        except ResolutionError as exc:
            log.warning(
                "aggregator_discovery_failed",
                strategy=strategy.name,
                url=ref.url,
                error=str(exc),
            )
            return []

        branches: list[Branch] = []
        for child in children:
            child_strategy = self.select(child.url, child.host_hint)
            if child_strategy is None:
                log.debug("aggregator_child_unmatched", url=child.url)
                continue
            branches.append(Branch(child_strategy, child))

        log.info(
            "aggregator_expanded",
            strategy=strategy.name,
            url=ref.url,
            branches=len(branches),
        )
        return branches
