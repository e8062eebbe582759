"""Domain entities for link resolution and ranking.

Pure value objects without I/O.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Iterable


class MediaType(Enum):
    """How a resolved URL is meant to be consumed."""

    DIRECT = "direct"  # progressive download (mkv/mp4/...)
    HLS = "hls"  # streaming manifest


@dataclass(frozen=True)
class SourceReference:
    """Opaque media page handed to the engine by a caller."""

    url: str
    referer: str | None = None
    host_hint: str | None = None  # logical host name, skips pattern matching


@dataclass
class ResolutionContext:
    """Per-branch resolution budget.

    Owned by exactly one branch. Only the redirect walker mutates
    ``visited`` and ``hops_used``.
    """

    max_hops: int = 5
    per_hop_timeout: float = 10.0
    overall_timeout: float = 30.0
    max_depth: int = 4
    depth: int = 0
    visited: set[str] = field(default_factory=set)
    hops_used: int = 0

    @property
    def remaining_hops(self) -> int:
        return max(self.max_hops - self.hops_used, 0)

    @property
    def can_delegate(self) -> bool:
        return self.depth < self.max_depth

    def fork(self) -> ResolutionContext:
        """Sibling context for an independent chain within the same branch."""
        return ResolutionContext(
            max_hops=self.max_hops,
            per_hop_timeout=self.per_hop_timeout,
            overall_timeout=self.overall_timeout,
            max_depth=self.max_depth,
            depth=self.depth,
        )

    def child(self) -> ResolutionContext:
        """Context for a delegated resolution one level deeper."""
        ctx = self.fork()
        ctx.depth = self.depth + 1
        return ctx


@dataclass(frozen=True)
class CandidateLink:
    """A resolved, not yet ranked media URL."""

    url: str
    label: str = ""  # server/button label ("Instant DL", "FSL Server")
    source_tag: str = ""  # strategy that produced it
    media_type: MediaType = MediaType.DIRECT
    headers: dict[str, str] = field(default_factory=dict)
    size_bytes: int | None = None
    raw_quality_text: str = ""  # file name / header text the score is read from


@dataclass(frozen=True)
class ScoredLink:
    """CandidateLink plus its score and discovery order."""

    url: str
    label: str
    source_tag: str
    media_type: MediaType
    headers: dict[str, str]
    size_bytes: int | None
    raw_quality_text: str
    score: int
    sequence: int = 0

    @classmethod
    def from_candidate(
        cls, candidate: CandidateLink, score: int, sequence: int = 0
    ) -> ScoredLink:
        values = {f.name: getattr(candidate, f.name) for f in fields(candidate)}
        return cls(**values, score=score, sequence=sequence)


@dataclass(frozen=True)
class SubtitleTrack:
    """Subtitle descriptor found incidentally while resolving a player."""

    language: str
    url: str


def rank_links(links: Iterable[ScoredLink]) -> list[ScoredLink]:
    """Sort by score descending; ties keep discovery order."""
    return sorted(links, key=lambda link: (-link.score, link.sequence))
