"""Port for host-specific resolution strategies."""

from __future__ import annotations

from typing import AsyncIterator, Callable, Protocol, Union, runtime_checkable

from resolvarr.domain.entities.links import (
    CandidateLink,
    ResolutionContext,
    SourceReference,
    SubtitleTrack,
)

Found = Union[CandidateLink, SubtitleTrack]

# Resolves a nested reference with another strategy (recursion guarded by
# ResolutionContext.depth).
Delegate = Callable[[SourceReference, ResolutionContext], AsyncIterator[Found]]


@runtime_checkable
class ResolutionStrategyPort(Protocol):
    """Turns one reference into candidate links.

    Implementations yield results as they are found and raise
    ``ResolutionError`` subclasses when the host cannot be handled.
    """

    @property
    def name(self) -> str:
        """Strategy name, used as ``CandidateLink.source_tag``."""
        ...

    @property
    def allows_streaming(self) -> bool:
        """Whether this strategy may emit HLS manifests."""
        ...

    def matches(self, url: str) -> bool:
        """Return True if this strategy handles *url*."""
        ...

    def resolve(
        self,
        ref: SourceReference,
        ctx: ResolutionContext,
        delegate: Delegate,
    ) -> AsyncIterator[Found]:
        """Yield candidates and subtitle tracks for *ref*."""
        ...


@runtime_checkable
class AggregatorStrategyPort(ResolutionStrategyPort, Protocol):
    """Strategy for pages that only list buttons to other hosts."""

    async def discover(
        self, ref: SourceReference, ctx: ResolutionContext
    ) -> list[SourceReference]:
        """Return one reference per button/link found on the page."""
        ...
