"""HTTP client for reading session snapshots."""

from dataclasses import dataclass

import httpx

from standup_sync.domain.sessions import SessionSnapshot
from standup_sync.errors import UpstreamError

_GONE_STATUSES = {404, 410}


@dataclass
class HttpxSessionApiClient:
    """Session source implemented with httpx against the standup API."""

    base_url: str
    http_client: httpx.AsyncClient

    @classmethod
    def create(cls, base_url: str) -> "HttpxSessionApiClient":
        """Create an API client with a managed httpx session."""
        return cls(base_url=base_url.rstrip("/"), http_client=httpx.AsyncClient())

    async def fetch_session(self, session_id: str) -> SessionSnapshot | None:
        """Fetch the authoritative snapshot; None once it is gone."""
        url = f"{self.base_url}/api/sessions/{session_id}"
        try:
            response = await self.http_client.get(url, timeout=10)
        except httpx.HTTPError as exc:
            raise UpstreamError(f"Session fetch failed: {exc}") from exc
        if response.status_code in _GONE_STATUSES:
            return None
        if response.is_server_error:
            raise UpstreamError(f"Session fetch failed: HTTP {response.status_code}")
        response.raise_for_status()
        return SessionSnapshot.model_validate(response.json())

    async def close(self) -> None:
        """Close the underlying HTTP client session."""
        await self.http_client.aclose()
