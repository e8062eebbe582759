"""Port for the HTTP fetch collaborator."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping, Protocol, runtime_checkable


@dataclass(frozen=True)
class FetchResponse:
    """Status, headers and decoded body of one HTTP exchange."""

    status: int
    headers: Mapping[str, str] = field(default_factory=dict)
    body: str = ""
    final_url: str = ""

    def header(self, name: str) -> str | None:
        """Case-insensitive header lookup."""
        wanted = name.lower()
        for key, value in self.headers.items():
            if key.lower() == wanted:
                return value
        return None


@runtime_checkable
class FetcherPort(Protocol):
    """Performs GET/POST requests on behalf of the engine.

    Implementations raise ``NetworkError`` on timeouts and connection
    failures. Non-2xx statuses are returned, not raised.
    """

    async def get(
        self,
        url: str,
        *,
        headers: Mapping[str, str] | None = None,
        referer: str | None = None,
        follow_redirects: bool = True,
        timeout: float | None = None,
    ) -> FetchResponse: ...

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
    ) -> FetchResponse: ...
