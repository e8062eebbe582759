"""Link resolution use case.

Reference -> dispatch into branches -> all branches run concurrently
-> streaming filter -> score -> dedupe -> push to the caller.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Sequence
from typing import AsyncIterator, Protocol

import structlog

from resolvarr.domain.entities.links import (
    CandidateLink,
    MediaType,
    ResolutionContext,
    ScoredLink,
    SourceReference,
    SubtitleTrack,
    rank_links,
)
from resolvarr.domain.exceptions import ResolutionError
from resolvarr.domain.ports.strategy import Found, ResolutionStrategyPort

# ---------------------------------------------------------------------------
# Protocols: what this use case needs from its collaborators.
# ---------------------------------------------------------------------------


class _ResolverConfig(Protocol):
    """Configuration values consumed by ResolveLinksUseCase."""

    max_hops: int
    per_hop_timeout_seconds: float
    overall_timeout_seconds: float
    max_delegation_depth: int
    max_concurrent_branches: int
    download_only: bool
    streaming_markers: list[str]


class _Branch(Protocol):
    strategy: ResolutionStrategyPort
    ref: SourceReference


class _Dispatcher(Protocol):
    """Selects strategies and expands aggregator pages."""

    def select(
        self, url: str, host_hint: str | None = None
    ) -> ResolutionStrategyPort | None: ...

    async def dispatch(
        self, ref: SourceReference, ctx: ResolutionContext
    ) -> Sequence[_Branch]: ...


class _Scorer(Protocol):
    def score(self, candidate: CandidateLink) -> int: ...


LinkSink = Callable[[ScoredLink], None]
SubtitleSink = Callable[[SubtitleTrack], None]

log = structlog.get_logger(__name__)

# Queue marker: one per finished branch.
_BRANCH_DONE = object()


class ResolveLinksUseCase:
    """Resolve one reference into a push stream of scored links.

    Every branch runs as its own task with its own ``ResolutionContext``
    and deadline; a failing or slow branch never affects its siblings.
    Links reach the caller in arrival order, not ranked order; use
    :meth:`collect` for a ranked list.
    """

    def __init__(
        self,
        *,
        dispatcher: _Dispatcher,
        scorer: _Scorer,
        config: _ResolverConfig,
    ) -> None:
        self._dispatcher = dispatcher
        self._scorer = scorer
        self._max_hops = config.max_hops
        self._per_hop_timeout = config.per_hop_timeout_seconds
        self._overall_timeout = config.overall_timeout_seconds
        self._max_depth = config.max_delegation_depth
        self._max_concurrent = config.max_concurrent_branches
        self._download_only = config.download_only
        self._streaming_markers = tuple(m.lower() for m in config.streaming_markers)

    def new_context(self) -> ResolutionContext:
        return ResolutionContext(
            max_hops=self._max_hops,
            per_hop_timeout=self._per_hop_timeout,
            overall_timeout=self._overall_timeout,
            max_depth=self._max_depth,
        )

    def is_streaming(self, candidate: CandidateLink) -> bool:
        if candidate.media_type is MediaType.HLS:
            return True
        url = candidate.url.lower()
        return any(marker in url for marker in self._streaming_markers)

    # -- public API ----------------------------------------------------------

    async def resolve_all(
        self,
        ref: SourceReference,
        *,
        download_only: bool | None = None,
        on_subtitle: SubtitleSink | None = None,
    ) -> AsyncIterator[ScoredLink]:
        """Yield scored links as branches produce them.

        Exact-URL duplicates are dropped unless they score strictly
        higher than the copy already emitted. Closing the iterator
        cancels the outstanding branches.
        """
        if download_only is None:
            download_only = self._download_only

        try:
            branches = await asyncio.wait_for(
                self._dispatcher.dispatch(ref, self.new_context()),
                timeout=self._overall_timeout,
            )
        except TimeoutError:
            log.warning("dispatch_timeout", url=ref.url, timeout=self._overall_timeout)
            return
        if not branches:
            log.info("resolution_no_branches", url=ref.url)
            return

        queue: asyncio.Queue[object] = asyncio.Queue()
        semaphore = asyncio.Semaphore(self._max_concurrent)
        tasks = [
            asyncio.create_task(self._run_branch(branch, queue, semaphore))
            for branch in branches
        ]
        log.info("resolution_started", url=ref.url, branches=len(tasks))

        emitted: dict[str, int] = {}
        sequence = 0
        pending = len(tasks)
        try:
            while pending:
                item = await queue.get()
                if item is _BRANCH_DONE:
                    pending -= 1
                    continue
                if isinstance(item, SubtitleTrack):
                    if on_subtitle is not None:
                        on_subtitle(item)
                    continue
                if not isinstance(item, CandidateLink):
                    continue

                if download_only and self.is_streaming(item):
                    log.debug("streaming_link_dropped", url=item.url, source=item.source_tag)
                    continue

                score = self._scorer.score(item)
                previous = emitted.get(item.url)
                if previous is not None and score <= previous:
                    log.debug("duplicate_link_dropped", url=item.url, score=score)
                    continue
                emitted[item.url] = score

                yield ScoredLink.from_candidate(item, score, sequence)
                sequence += 1
        finally:
            for task in tasks:
                if not task.done():
                    task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            log.info("resolution_finished", url=ref.url, links=sequence)

    async def resolve(
        self,
        url: str,
        referer: str | None = None,
        *,
        on_link: LinkSink | None = None,
        on_subtitle: SubtitleSink | None = None,
        download_only: bool | None = None,
    ) -> list[ScoredLink]:
        """Callback form of :meth:`resolve_all`; returns the emitted links."""
        links: list[ScoredLink] = []
        stream = self.resolve_all(
            SourceReference(url, referer=referer),
            download_only=download_only,
            on_subtitle=on_subtitle,
        )
        async for link in stream:
            links.append(link)
            if on_link is not None:
                on_link(link)
        return links

    async def collect(
        self,
        ref: SourceReference,
        timeout: float | None = None,
        *,
        download_only: bool | None = None,
    ) -> list[ScoredLink]:
        """Gather everything found within *timeout*, best copy per URL, ranked."""
        best: dict[str, ScoredLink] = {}

        async def _drain() -> None:
            async for link in self.resolve_all(ref, download_only=download_only):
                current = best.get(link.url)
                if current is None or link.score > current.score:
                    best[link.url] = link

        try:
            await asyncio.wait_for(_drain(), timeout=timeout)
        except TimeoutError:
            log.warning("collect_timeout", url=ref.url, timeout=timeout, links=len(best))
        return rank_links(best.values())

    # -- branches ------------------------------------------------------------

    async def _run_branch(
        self,
        branch: _Branch,
        queue: asyncio.Queue[object],
        semaphore: asyncio.Semaphore,
    ) -> None:
        name = branch.strategy.name
        try:
            async with semaphore:
                await asyncio.wait_for(
                    self._drain_branch(branch, self.new_context(), queue),
                    timeout=self._overall_timeout,
                )
        except TimeoutError:
            log.warning(
                "branch_timeout",
                strategy=name,
                url=branch.ref.url,
                timeout=self._overall_timeout,
            )
        except ResolutionError as exc:
            log.warning(
                "branch_failed",
                strategy=name,
                url=branch.ref.url,
                error_type=type(exc).__name__,
                error=str(exc),
            )
        except Exception:
            log.exception("branch_crashed", strategy=name, url=branch.ref.url)
        finally:
            queue.put_nowait(_BRANCH_DONE)

    async def _drain_branch(
        self,
        branch: _Branch,
        ctx: ResolutionContext,
        queue: asyncio.Queue[object],
    ) -> None:
        async for found in branch.strategy.resolve(branch.ref, ctx, self._delegate):
            queue.put_nowait(found)

    async def _delegate(
        self, ref: SourceReference, ctx: ResolutionContext
    ) -> AsyncIterator[Found]:
        """Resolve a nested reference one level deeper.

        Failures stay inside the delegated call so a strategy that fans
        out over several mirrors keeps the others.
        """
        if not ctx.can_delegate:
            log.warning("delegation_depth_exceeded", url=ref.url, depth=ctx.depth)
            return

        strategy = self._dispatcher.select(ref.url, ref.host_hint)
        if strategy is None:
            log.debug("delegation_unmatched", url=ref.url)
            return

        log.debug("delegating", strategy=strategy.name, url=ref.url, depth=ctx.depth + 1)
        try:
            async for found in strategy.resolve(ref, ctx.child(), self._delegate):
                yield found
        except ResolutionError as exc:
            log.warning(
                "delegated_resolution_failed",
                strategy=strategy.name,
                url=ref.url,
                error_type=type(exc).__name__,
                error=str(exc),
            )
        except Exception:
            log.exception("delegated_resolution_crashed", strategy=strategy.name, url=ref.url)
