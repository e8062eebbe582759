"""httpx adapter for the fetch port."""

from __future__ import annotations

from typing import Any, Mapping

import httpx
import structlog

from resolvarr.domain.exceptions import NetworkError
from resolvarr.domain.ports.fetcher import FetchResponse

log = structlog.get_logger(__name__)


def _merge_headers(
    headers: Mapping[str, str] | None, referer: str | None
) -> dict[str, str]:
    merged = dict(headers or {})
    if referer and not any(k.lower() == "referer" for k in merged):
        merged["Referer"] = referer
    return merged


def _to_response(resp: httpx.Response) -> FetchResponse:
    return FetchResponse(
        status=resp.status_code,
        headers=resp.headers,
        body=resp.text,
        final_url=str(resp.url),
    )


class HttpxFetcher:
    """Fetch collaborator backed by a shared ``httpx.AsyncClient``.

    The client is owned by the caller; this class never closes it.
    """

    def __init__(
        self, http_client: httpx.AsyncClient, *, default_timeout: float = 15.0
    ) -> None:
        self._http = http_client
        self._default_timeout = default_timeout

    async def get(
        self,
        url: str,
        *,
        headers: Mapping[str, str] | None = None,
        referer: str | None = None,
        follow_redirects: bool = True,
        timeout: float | None = None,
    ) -> FetchResponse:
        return await self._send(
            "GET",
            url,
            headers=_merge_headers(headers, referer),
            follow_redirects=follow_redirects,
            timeout=timeout,
        )

    async def post(
        self,
        url: str,
        *,
        data: Mapping[str, Any] | None = None,
        json: Any = None,
        headers: Mapping[str, str] | None = None,
        referer: str | None = None,
        follow_redirects: bool = True,
        timeout: float | None = None,
    ) -> FetchResponse:
        return await self._send(
            "POST",
            url,
            headers=_merge_headers(headers, referer),
            follow_redirects=follow_redirects,
            timeout=timeout,
            data=data,
            json=json,
        )

    async def _send(
        self,
        method: str,
        url: str,
        *,
        headers: dict[str, str],
        follow_redirects: bool,
        timeout: float | None,
        data: Mapping[str, Any] | None = None,
        json: Any = None,
    ) -> FetchResponse:
        try:
            resp = await self._http.request(
                method,
                url,
                headers=headers,
                data=data,
                json=json,
                follow_redirects=follow_redirects,
                timeout=timeout if timeout is not None else self._default_timeout,
            )
        except httpx.TimeoutException as exc:
            log.warning("fetch_timeout", method=method, url=url)
            raise NetworkError(url, "timeout") from exc
        except httpx.HTTPError as exc:
            log.warning("fetch_failed", method=method, url=url, error=str(exc))
            raise NetworkError(url, type(exc).__name__) from exc

        log.debug(
            "fetch_done",
            method=method,
            url=url,
            status=resp.status_code,
            final_url=str(resp.url),
        )
        return _to_response(resp)
