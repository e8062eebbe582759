from .links import (
    CandidateLink,
    MediaType,
    ResolutionContext,
    ScoredLink,
    SourceReference,
    SubtitleTrack,
    rank_links,
)

__all__ = [
    "CandidateLink",
    "MediaType",
    "ResolutionContext",
    "ScoredLink",
    "SourceReference",
    "SubtitleTrack",
    "rank_links",
]
