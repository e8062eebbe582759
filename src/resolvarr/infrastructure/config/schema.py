"""Pydantic configuration models with validation."""

from __future__ import annotations

from typing import Any, Literal, Optional

from pydantic import (
    AliasChoices,
    AliasPath,
    BaseModel,
    Field,
    field_validator,
    model_validator,
)
from pydantic_settings import BaseSettings, SettingsConfigDict

Environment = Literal["dev", "test", "prod"]
LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR"]
LogFormat = Literal["json", "console"]
Codec = Literal["x264", "hevc", "any"]


class CodecTier(BaseModel):
    """Dominant score term: first tier whose codec and height match wins."""

    codec: Codec
    min_height: int = Field(ge=0)
    score: int


class SizeBucket(BaseModel):
    """Bonus for files up to ``max_mb`` (smaller files rank higher)."""

    max_mb: int = Field(gt=0)
    bonus: int = Field(ge=0)


class ScoringConfig(BaseModel):
    """Quality scorer weights.

    Score formula: codec_tier + size_bucket_bonus + server_bonus.
    Tiers are validated so that the smallest gap between two codec tiers
    is larger than the best size bonus plus the best server bonus.
    """

    codec_tiers: list[CodecTier] = Field(
        default=[
            CodecTier(codec="x264", min_height=1080, score=30000),
            CodecTier(codec="x264", min_height=720, score=20000),
            CodecTier(codec="hevc", min_height=1080, score=10000),
            CodecTier(codec="hevc", min_height=720, score=9000),
            CodecTier(codec="any", min_height=1080, score=8000),
            CodecTier(codec="any", min_height=720, score=7000),
            CodecTier(codec="any", min_height=480, score=6000),
        ],
        description="Ordered codec/resolution tiers.",
    )
    base_tier_score: int = Field(
        default=5000,
        description="Tier score when no codec tier matches.",
    )

    size_buckets: list[SizeBucket] = Field(
        default=[
            SizeBucket(max_mb=300, bonus=260),
            SizeBucket(max_mb=400, bonus=250),
            SizeBucket(max_mb=500, bonus=240),
            SizeBucket(max_mb=600, bonus=230),
            SizeBucket(max_mb=700, bonus=220),
            SizeBucket(max_mb=800, bonus=210),
            SizeBucket(max_mb=900, bonus=200),
            SizeBucket(max_mb=1000, bonus=190),
            SizeBucket(max_mb=1200, bonus=170),
            SizeBucket(max_mb=1500, bonus=140),
            SizeBucket(max_mb=2000, bonus=100),
            SizeBucket(max_mb=2500, bonus=60),
            SizeBucket(max_mb=3000, bonus=20),
        ],
        description="Ascending size buckets; larger or unknown sizes get 0.",
    )

    server_scores: dict[str, int] = Field(
        default={
            "instant": 100,
            "direct": 90,
            "10gbps": 85,
            "fsl": 80,
            "download file": 70,
            "pixeldrain": 60,
        },
        description="Server label bonus; first label found in the link label wins.",
    )
    default_server_score: int = Field(
        default=50,
        description="Bonus for unknown server labels.",
    )

    @field_validator("size_buckets")
    @classmethod
    def _validate_bucket_order(cls, v: list[SizeBucket]) -> list[SizeBucket]:
        limits = [b.max_mb for b in v]
        if limits != sorted(limits):
            raise ValueError("size_buckets must be sorted by max_mb")
        return v

    @model_validator(mode="after")
    def _validate_tier_dominance(self) -> "ScoringConfig":
        scores = sorted(
            {t.score for t in self.codec_tiers} | {self.base_tier_score}
        )
        if len(scores) < 2:
            return self
        min_gap = min(b - a for a, b in zip(scores, scores[1:]))
        max_size = max((b.bonus for b in self.size_buckets), default=0)
        max_server = max(
            [*self.server_scores.values(), self.default_server_score]
        )
        if max_size + max_server >= min_gap:
            raise ValueError(
                "codec tier gap must exceed the largest size + server bonus"
            )
        return self


class ResolverConfig(BaseModel):
    """Resolution budgets and aggregator behaviour."""

    max_hops: int = Field(default=5, ge=1, description="Redirect hops per chain.")
    per_hop_timeout_seconds: float = Field(
        default=10.0, description="Timeout for a single request."
    )
    overall_timeout_seconds: float = Field(
        default=30.0, description="Deadline for one branch."
    )
    max_delegation_depth: int = Field(
        default=4, ge=0, description="How deep strategies may delegate."
    )
    max_concurrent_branches: int = Field(
        default=8, ge=1, description="Parallel branches per resolution."
    )
    download_only: bool = Field(
        default=True, description="Drop streaming manifests by default."
    )
    streaming_markers: list[str] = Field(
        default=[".m3u8", "/hls/", ".mpd", "/dash/"],
        description="URL markers treated as streaming-only.",
    )

    @field_validator("per_hop_timeout_seconds", "overall_timeout_seconds")
    @classmethod
    def _validate_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("timeouts must be > 0")
        return v


class DomainAliasConfig(BaseSettings):
    """Remote alias table location."""

    source_url: str = Field(
        default=(
            "https://raw.githubusercontent.com/codeiva4u/Utils-repo/"
            "refs/heads/main/urls.json"
        ),
        description="JSON object mapping logical host names to base URLs.",
    )
    timeout_seconds: float = Field(
        default=5.0,
        description="Separate short timeout for the alias fetch.",
    )

    model_config = SettingsConfigDict(
        env_prefix="RESOLVARR_DOMAINS_",
        case_sensitive=False,
    )


class AppConfig(BaseModel):
    """
    Canonical application configuration (validated, final).

    Note:
    - YAML is expected to be sectioned (http/logging/resolver/domains/scoring).
    - Environment variables are handled by EnvOverrides(BaseSettings) to allow strict
      precedence control (defaults < YAML < ENV < overrides) in load.py.
    """

    app_name: str = Field(default="resolvarr", description="Application name.")
    environment: Environment = Field(
        default="dev",
        description="Runtime environment (affects defaults like log format).",
    )

    # HTTP (YAML section: http.*)
    http_timeout_seconds: float = Field(
        default=15.0,
        validation_alias=AliasChoices(
            "http_timeout_seconds",
            AliasPath("http", "timeout_seconds"),
        ),
        description="Default HTTP timeout in seconds.",
    )
    http_user_agent: str = Field(
        default=(
            "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
            "AppleWebKit/537.36 (KHTML, like Gecko) "
            "Chrome/120.0.0.0 Safari/537.36"
        ),
        validation_alias=AliasChoices(
            "http_user_agent",
            AliasPath("http", "user_agent"),
        ),
        description="User-Agent for outgoing HTTP requests.",
    )

    # Logging (YAML section: logging.*)
    log_level: LogLevel = Field(
        default="INFO",
        validation_alias=AliasChoices(
            "log_level",
            AliasPath("logging", "level"),
        ),
        description="Log level.",
    )
    log_format: Optional[LogFormat] = Field(
        default=None,
        validation_alias=AliasChoices(
            "log_format",
            AliasPath("logging", "format"),
        ),
        description=(
            "Log renderer format (console/json). If unset, derived from environment."
        ),
    )

    resolver: ResolverConfig = Field(default_factory=ResolverConfig)
    domains: DomainAliasConfig = Field(default_factory=DomainAliasConfig)
    scoring: ScoringConfig = Field(default_factory=ScoringConfig)

    @field_validator("http_timeout_seconds")
    @classmethod
    def _validate_http_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("http_timeout_seconds must be > 0")
        return v

    @model_validator(mode="after")
    def _derive_defaults(self) -> "AppConfig":
        # Default log format: console in dev/test, json in prod.
        if self.log_format is None:
            self.log_format = "json" if self.environment == "prod" else "console"
        return self

    def to_sectioned_dict(self) -> dict[str, Any]:
        """
        Dump configuration in the sectioned shape used by config.yaml/docs.
        """
        return {
            "app_name": self.app_name,
            "environment": self.environment,
            "http": {
                "timeout_seconds": self.http_timeout_seconds,
                "user_agent": self.http_user_agent,
            },
            "logging": {"level": self.log_level, "format": self.log_format},
            "resolver": self.resolver.model_dump(),
            "domains": {
                "source_url": self.domains.source_url,
                "timeout_seconds": self.domains.timeout_seconds,
            },
            "scoring": self.scoring.model_dump(),
        }


class EnvOverrides(BaseSettings):
    """
    Environment-variable overrides (all optional).

    load.py creates EnvOverrides() to read RESOLVARR_* variables,
    converts to dict of set values, merges into YAML/defaults,
    then validates AppConfig.

    Supported env var examples (flat, explicit):
    - RESOLVARR_HTTP_TIMEOUT_SECONDS
    - RESOLVARR_LOG_LEVEL
    - RESOLVARR_MAX_HOPS
    - RESOLVARR_MAX_CONCURRENT_BRANCHES
    """

    model_config = SettingsConfigDict(
        env_prefix="RESOLVARR_",
        extra="ignore",
        case_sensitive=False,
    )

    app_name: Optional[str] = None
    environment: Optional[Environment] = None

    http_timeout_seconds: Optional[float] = None
    http_user_agent: Optional[str] = None

    log_level: Optional[LogLevel] = None
    log_format: Optional[LogFormat] = None

    max_hops: Optional[int] = None
    per_hop_timeout_seconds: Optional[float] = None
    overall_timeout_seconds: Optional[float] = None
    max_delegation_depth: Optional[int] = None
    max_concurrent_branches: Optional[int] = None
    download_only: Optional[bool] = None

    domain_alias_url: Optional[str] = None

    def to_update_dict(self) -> dict[str, Any]:
        """
        Return only values that were actually provided (non-None), for merging.
        """
        return self.model_dump(exclude_none=True)
