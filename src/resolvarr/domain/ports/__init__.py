from .fetcher import FetcherPort, FetchResponse
from .strategy import AggregatorStrategyPort, Delegate, Found, ResolutionStrategyPort

__all__ = [
    "AggregatorStrategyPort",
    "Delegate",
    "FetchResponse",
    "FetcherPort",
    "Found",
    "ResolutionStrategyPort",
]
