"""
Base HTTP API client.
"""
from abc import ABC, abstractmethod
from typing import Optional
import aiohttp

from app.constants import HTTP_CLIENT_TIMEOUT_SECONDS


class BaseApiClient(ABC):
    """Owns a lazily created aiohttp session with a bounded total timeout."""

    service_name: str = "API"

    def __init__(self, timeout_seconds: float = HTTP_CLIENT_TIMEOUT_SECONDS):
        self.timeout_seconds = timeout_seconds
        self._session: Optional[aiohttp.ClientSession] = None

    @property
    def session(self) -> aiohttp.ClientSession:
        """Get or create aiohttp session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout_seconds)
            )
        return self._session

    async def close(self):
        """Close the HTTP session."""
        if self._session and not self._session.closed:
            await self._session.close()

    @abstractmethod
    async def verify(self) -> None:
        """Check credentials against the remote API. Raises on failure."""
        pass
