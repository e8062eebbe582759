"""Hardcoded default configuration values."""

from __future__ import annotations

from typing import Any

DEFAULT_CONFIG: dict[str, Any] = {
    "app_name": "resolvarr",
    "environment": "dev",
    "http": {
        "timeout_seconds": 15.0,
    },
    "logging": {
        "level": "INFO",
        "format": None,  # Derived from environment in schema.py
    },
    "resolver": {
        "max_hops": 5,
        "per_hop_timeout_seconds": 10.0,
        "overall_timeout_seconds": 30.0,
        "max_delegation_depth": 4,
        "max_concurrent_branches": 8,
        "download_only": True,
    },
    "domains": {
        "timeout_seconds": 5.0,
    },
}
