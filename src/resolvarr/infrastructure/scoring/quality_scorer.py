"""Candidate quality scoring.

Score = codec/resolution tier + inverse size bucket + server tier.
All weights come from ScoringConfig; the tiers are validated there so
that a higher codec tier always outranks a lower one regardless of the
size and server bonuses.

The score depends only on CandidateLink fields, so identical candidates
always rank identically.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from functools import lru_cache

from guessit import guessit

from resolvarr.domain.entities.links import CandidateLink
from resolvarr.infrastructure.common.parsers import bytes_to_mb, parse_size_to_bytes
from resolvarr.infrastructure.config.schema import ScoringConfig

_HEVC_RE = re.compile(r"hevc|x265|h\.?265", re.IGNORECASE)
_X264_RE = re.compile(r"x264|h\.?264", re.IGNORECASE)
_HEIGHT_RE = re.compile(r"(?<!\d)(\d{3,4})p(?![a-z])", re.IGNORECASE)
_4K_RE = re.compile(r"\b(?:4k|uhd)\b", re.IGNORECASE)

_GUESSIT_CODECS: dict[str, str] = {
    "H.264": "x264",
    "H.265": "hevc",
}


@dataclass(frozen=True)
class QualityTraits:
    """What the scorer read from a candidate."""

    codec: str | None  # "x264", "hevc" or None
    height: int | None
    size_mb: float | None


@lru_cache(maxsize=1024)
def _guess(text: str) -> tuple[str | None, int | None]:
    guess = guessit(text)
    codec = _GUESSIT_CODECS.get(str(guess.get("video_codec", "")))
    height: int | None = None
    screen_size = guess.get("screen_size")
    if isinstance(screen_size, str):
        m = re.match(r"(\d{3,4})[pi]", screen_size)
        if m:
            height = int(m.group(1))
    return codec, height


def parse_traits(candidate: CandidateLink) -> QualityTraits:
    """Extract codec, vertical resolution and size from a candidate."""
    text = " ".join(
        part for part in (candidate.raw_quality_text, candidate.label) if part
    )
    haystack = f"{text} {candidate.url}"

    # x264 first: a name tagged with both is treated as the compatible encode.
    codec: str | None = None
    if _X264_RE.search(haystack):
        codec = "x264"
    elif _HEVC_RE.search(haystack):
        codec = "hevc"

    height: int | None = None
    m = _HEIGHT_RE.search(haystack)
    if m:
        height = int(m.group(1))
    elif _4K_RE.search(haystack):
        height = 2160

    if (codec is None or height is None) and candidate.raw_quality_text:
        guessed_codec, guessed_height = _guess(candidate.raw_quality_text)
        codec = codec or guessed_codec
        height = height or guessed_height

    size_bytes = candidate.size_bytes
    if not size_bytes:
        size_bytes = parse_size_to_bytes(candidate.raw_quality_text) or None

    return QualityTraits(
        codec=codec,
        height=height,
        size_mb=bytes_to_mb(size_bytes) if size_bytes else None,
    )


class QualityScorer:
    """Deterministic candidate scoring.

    With default config: x264 1080p (30000) beats HEVC 1080p (10000),
    which beats an unknown codec at 1080p (8000). Within a tier, a 700 MB
    file (+220) beats a 2.4 GB file (+60), and an "Instant" server (+100)
    beats a generic one (+50).
    """

    def __init__(self, config: ScoringConfig) -> None:
        self._codec_tiers = config.codec_tiers
        self._base_tier_score = config.base_tier_score
        self._size_buckets = config.size_buckets
        self._server_scores = config.server_scores
        self._default_server_score = config.default_server_score

    def tier_score(self, traits: QualityTraits) -> int:
        height = traits.height or 0
        for tier in self._codec_tiers:
            if tier.codec != "any" and tier.codec != traits.codec:
                continue
            if height >= tier.min_height:
                return tier.score
        return self._base_tier_score

    def size_bonus(self, traits: QualityTraits) -> int:
        if traits.size_mb is None:
            return 0
        for bucket in self._size_buckets:
            if traits.size_mb <= bucket.max_mb:
                return bucket.bonus
        return 0

    def server_bonus(self, label: str) -> int:
        lowered = label.lower()
        for marker, bonus in self._server_scores.items():
            if marker in lowered:
                return bonus
        return self._default_server_score

    def score(self, candidate: CandidateLink) -> int:
        """Composite score for a single candidate."""
        traits = parse_traits(candidate)
        return (
            self.tier_score(traits)
            + self.size_bonus(traits)
            + self.server_bonus(candidate.label)
        )
