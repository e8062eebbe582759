from __future__ import annotations

from .load import load_config
from .schema import AppConfig, EnvOverrides, ResolverConfig, ScoringConfig

__all__ = ["AppConfig", "EnvOverrides", "ResolverConfig", "ScoringConfig", "load_config"]
