"""Host resolution strategies and the dispatcher that selects them."""

from __future__ import annotations

from .base import StrategyServices
from .catalog import ALL_HOST_CONFIGS, create_all_strategies, create_fallback_strategy
from .dispatch import Branch, StrategyDispatcher

__all__ = [
    "ALL_HOST_CONFIGS",
    "Branch",
    "StrategyDispatcher",
    "StrategyServices",
    "create_all_strategies",
    "create_fallback_strategy",
]
