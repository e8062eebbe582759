"""Logical host name -> live base URL, backed by a remote JSON table.

File hosts rotate their domains often. The table is fetched once per
instance (best-effort, short timeout) and reused until ``invalidate()``.
Lookups never raise: a failed fetch or a missing key falls back to the
scheme and host of the URL being resolved.
"""

from __future__ import annotations

import asyncio
import json
from urllib.parse import urlparse, urlunparse

import structlog

from resolvarr.domain.exceptions import NetworkError
from resolvarr.domain.ports.fetcher import FetcherPort

log = structlog.get_logger(__name__)

DEFAULT_ALIAS_SOURCE_URL = (
    "https://raw.githubusercontent.com/codeiva4u/Utils-repo/refs/heads/main/urls.json"
)


def base_url(url: str) -> str:
    """``scheme://host[:port]`` of *url*."""
    parsed = urlparse(url)
    return f"{parsed.scheme}://{parsed.netloc}"


def replace_base(url: str, new_base: str) -> str:
    """Swap scheme and host of *url* for those of *new_base*."""
    parsed = urlparse(url)
    target = urlparse(new_base)
    if not target.scheme or not target.netloc:
        return url
    return urlunparse(parsed._replace(scheme=target.scheme, netloc=target.netloc))


class DomainAliasTable:
    """Fetch-once cache of live base URLs with per-call fallback."""

    def __init__(
        self,
        fetcher: FetcherPort,
        *,
        source_url: str = DEFAULT_ALIAS_SOURCE_URL,
        timeout: float = 5.0,
    ) -> None:
        self._fetcher = fetcher
        self._source_url = source_url
        self._timeout = timeout
        self._table: dict[str, str] | None = None
        self._lock = asyncio.Lock()

    async def resolve(self, logical_host: str, fallback_from_url: str) -> str:
        """Return the live base URL for *logical_host*."""
        table = await self._ensure_loaded()
        live = table.get(logical_host.lower())
        if live:
            return live
        fallback = base_url(fallback_from_url)
        log.debug(
            "domain_alias_fallback",
            logical_host=logical_host,
            base_url=fallback,
        )
        return fallback

    async def rewrite(self, url: str, logical_host: str) -> str:
        """Move *url* onto the live domain of *logical_host*."""
        return replace_base(url, await self.resolve(logical_host, url))

    def invalidate(self) -> None:
        """Drop the cached table; the next lookup fetches again."""
        self._table = None
        log.info("domain_alias_table_invalidated")

    async def _ensure_loaded(self) -> dict[str, str]:
        if self._table is not None:
            return self._table
        async with self._lock:
            if self._table is None:
                # A failed fetch is cached as an empty table so the
                # critical path pays the timeout at most once.
                self._table = await self._fetch()
        return self._table

    async def _fetch(self) -> dict[str, str]:
        try:
            resp = await asyncio.wait_for(
                self._fetcher.get(self._source_url, timeout=self._timeout),
                timeout=self._timeout,
            )
        except (NetworkError, TimeoutError) as exc:
            log.warning(
                "domain_alias_fetch_failed", url=self._source_url, error=str(exc)
            )
            return {}

        if resp.status != 200:
            log.warning(
                "domain_alias_fetch_failed",
                url=self._source_url,
                status=resp.status,
            )
            return {}

        try:
            data = json.loads(resp.body)
        except ValueError:
            log.warning("domain_alias_invalid_json", url=self._source_url)
            return {}
        if not isinstance(data, dict):
            log.warning("domain_alias_invalid_json", url=self._source_url)
            return {}

        table = {
            str(key).lower(): str(value).rstrip("/")
            for key, value in data.items()
            if isinstance(value, str) and value.startswith(("http://", "https://"))
        }
        log.info("domain_alias_table_loaded", entries=len(table))
        return table
