"""
Polygon REST Client

Shared GET-with-retry layer for every Polygon endpoint the flow scanner uses.
Each attempt runs under its own timeout; transport failures and non-2xx
responses are retried with exponential backoff (1s, 2s, 4s, ...). The last
error is raised to the caller, who decides how to degrade.

Errors:
- TransportError: timeout, connection reset, DNS failure
- UpstreamStatusError: non-2xx HTTP status
- ParseError: body is not the JSON object we expected
"""

import asyncio
import logging
from typing import Any, Optional

import aiohttp

logger = logging.getLogger(__name__)

POLYGON_BASE_URL = "https://api.polygon.io"
DEFAULT_TIMEOUT = 30
MAX_RETRIES = 3
BACKOFF_BASE_SECONDS = 1.0
USER_AGENT = "OptionsFlow/1.0"


class PolygonError(Exception):
    """Base class for Polygon fetch failures."""

    def __init__(self, message: str, url: str = ""):
        super().__init__(message)
        self.url = url


class TransportError(PolygonError):
    """Timeout or connection-level failure."""


class UpstreamStatusError(PolygonError):
    """Polygon answered with a non-2xx status."""

    def __init__(self, status: int, message: str, url: str = ""):
        super().__init__(f"HTTP {status}: {message}", url)
        self.status = status


class ParseError(PolygonError):
    """Response body was not valid JSON (or not a JSON object)."""


def mask_api_key(text: str, api_key: str) -> str:
    """Hide the API key before anything is logged."""
    if api_key and api_key in text:
        return text.replace(api_key, "API_KEY_HIDDEN")
    return text


class PolygonClient:
    """
    Async Polygon REST client with per-attempt timeout and retry/backoff.

    Usage:
        async with PolygonClient(api_key) as client:
            data = await client.get_json("/v2/aggs/ticker/AAPL/prev")
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = POLYGON_BASE_URL,
        timeout: float = DEFAULT_TIMEOUT,
        max_retries: int = MAX_RETRIES,
        backoff_base: float = BACKOFF_BASE_SECONDS,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        """
        Initialize client.

        Args:
            api_key: Polygon API key (sent as the apiKey query parameter)
            base_url: API root
            timeout: Default per-attempt timeout in seconds
            max_retries: Default number of attempts
            backoff_base: Seconds to wait after the first failed attempt; doubles each time
            session: Optional externally managed aiohttp session
        """
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.max_retries = max_retries
        self.backoff_base = backoff_base
        self._session = session
        self._owns_session = session is None

        # Metrics
        self._request_count = 0
        self._retry_count = 0
        self._errors = 0

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create aiohttp session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                headers={"User-Agent": USER_AGENT, "Accept": "application/json"}
            )
            self._owns_session = True
        return self._session

    async def close(self):
        """Close the aiohttp session if we created it."""
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()

    async def __aenter__(self) -> "PolygonClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
        return False

    def _build_url(self, path_or_url: str) -> str:
        if path_or_url.startswith("http"):
            return path_or_url
        return f"{self.base_url}/{path_or_url.lstrip('/')}"

    def backoff_delay(self, attempt: int) -> float:
        """Delay after a failed 1-based attempt: base * 2^(attempt-1)."""
        return self.backoff_base * (2 ** (attempt - 1))

    async def get_json(
        self,
        path_or_url: str,
        params: Optional[dict] = None,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
    ) -> dict[str, Any]:
        """
        GET a Polygon endpoint and return the decoded JSON object.

        Args:
            path_or_url: "/v3/..." path or absolute URL
            params: Extra query parameters (apiKey is added)
            timeout: Per-attempt timeout override (seconds)
            max_retries: Attempt count override

        Returns:
            Parsed JSON body

        Raises:
            TransportError / UpstreamStatusError: after the final attempt
            ParseError: body could not be decoded (not retried)
        """
        url = self._build_url(path_or_url)
        query = dict(params or {})
        query["apiKey"] = self.api_key
        attempts = max(1, max_retries or self.max_retries)
        client_timeout = aiohttp.ClientTimeout(total=timeout or self.timeout)
        session = await self._get_session()
        safe_url = mask_api_key(url, self.api_key)

        last_error: Optional[PolygonError] = None

        for attempt in range(1, attempts + 1):
            self._request_count += 1
            try:
                async with session.get(url, params=query, timeout=client_timeout) as response:
                    if 200 <= response.status < 300:
                        try:
                            data = await response.json(content_type=None)
                        except ValueError as e:
                            self._errors += 1
                            raise ParseError(f"Invalid JSON from {safe_url}: {e}", safe_url) from e
                        if not isinstance(data, dict):
                            self._errors += 1
                            raise ParseError(f"Unexpected JSON shape from {safe_url}", safe_url)
                        return data

                    text = await response.text()
                    last_error = UpstreamStatusError(
                        response.status, mask_api_key(text[:200], self.api_key), safe_url
                    )

            except asyncio.TimeoutError:
                last_error = TransportError(f"Timeout after {client_timeout.total}s: {safe_url}", safe_url)
            except aiohttp.ClientError as e:
                last_error = TransportError(
                    f"{type(e).__name__}: {mask_api_key(str(e), self.api_key)}", safe_url
                )

            logger.warning(f"Fetch attempt {attempt}/{attempts} failed for {safe_url[:100]}: {last_error}")

            if attempt < attempts:
                self._retry_count += 1
                await asyncio.sleep(self.backoff_delay(attempt))

        self._errors += 1
        raise last_error

    def get_metrics(self) -> dict:
        """Get client metrics."""
        return {
            "request_count": self._request_count,
            "retry_count": self._retry_count,
            "errors": self._errors,
        }
