"""
Async HTTP client for Sentinel, built on *aiohttp*.

Every fetcher and the enrichment client go through one HttpClient so that the
crawler identity, timeouts, body size cap and retry policy live in one place.
"""

from __future__ import annotations

import asyncio
import logging
import random
from email.utils import parsedate_to_datetime
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional, Tuple

import aiohttp

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (compatible; SentinelPP01/1.0; +https://razewire.com) "
    "AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)
FEED_ACCEPT = "application/rss+xml, application/atom+xml, application/xml;q=0.9, text/html;q=0.8, */*;q=0.5"
RETRYABLE_STATUS: Tuple[int, ...] = (429, 500, 502, 503, 504)
MAX_BODY_BYTES = 5 * 1024 * 1024


class ResponseTooLarge(ValueError):
    """A page or feed body exceeded the configured size cap."""


def parse_retry_after(header_val: Optional[str]) -> Optional[float]:
    """Seconds to wait from a Retry-After header (delta-seconds or HTTP-date)."""
    if not header_val:
        return None
    header_val = header_val.strip()
    if header_val.isdigit():
        return float(header_val)
    try:
        retry_at = parsedate_to_datetime(header_val)
    except (TypeError, ValueError):
        return None
    if retry_at.tzinfo is None:
        retry_at = retry_at.replace(tzinfo=timezone.utc)
    return max(0.0, (retry_at - datetime.now(tz=timezone.utc)).total_seconds())


class HttpClient:
    """
    Shared aiohttp session with:

    * a crawler User-Agent and feed-friendly Accept header on every request
    * a cap on downloaded body size, so a misconfigured source cannot pull in
      a multi-megabyte page
    * exponential back-off with jitter for retryable statuses and network
      errors, honouring Retry-After
    """

    def __init__(
        self,
        *,
        session: Optional[aiohttp.ClientSession] = None,
        timeout: float = 30.0,
        max_retries: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
        max_body_bytes: int = MAX_BODY_BYTES,
        default_headers: Optional[Mapping[str, str]] = None,
    ) -> None:
        self._external_session = session
        self._timeout = timeout
        self._max_retries = max(1, max_retries)
        self._base_delay = base_delay
        self._max_delay = max_delay
        self._max_body_bytes = max_body_bytes
        self._own_session: Optional[aiohttp.ClientSession] = None
        self._headers: Dict[str, str] = {"User-Agent": DEFAULT_USER_AGENT, "Accept": FEED_ACCEPT}
        self._headers.update(default_headers or {})

    async def __aenter__(self) -> "HttpClient":
        await self._session()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    # ---------------------------------------------- #
    # Session

    async def _session(self) -> aiohttp.ClientSession:
        if self._external_session:
            return self._external_session
        if self._own_session is None or self._own_session.closed:
            self._own_session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self._timeout))
        return self._own_session

    async def close(self) -> None:
        if self._own_session and not self._own_session.closed:
            await self._own_session.close()
        self._own_session = None

    # ---------------------------------------------- #
    # Retry loop

    def _backoff_delay(self, attempt: int, error: Exception) -> float:
        if isinstance(error, aiohttp.ClientResponseError) and error.headers:
            retry_after = parse_retry_after(error.headers.get("Retry-After"))
            if retry_after is not None:
                return min(retry_after, self._max_delay)
        delay = min(self._base_delay * 2 ** (attempt - 1), self._max_delay)
        return delay + random.uniform(0, self._base_delay)

    async def _request(
        self,
        method: str,
        url: str,
        *,
        retry_for_status: Tuple[int, ...] = RETRYABLE_STATUS,
        **kwargs: Any,
    ) -> aiohttp.ClientResponse:
        session = await self._session()
        kwargs["headers"] = {**self._headers, **(kwargs.pop("headers", None) or {})}

        for attempt in range(1, self._max_retries + 1):
            try:
                resp = await session.request(method, url, **kwargs)
                if resp.status < 400:
                    return resp
                resp.release()
                raise aiohttp.ClientResponseError(
                    resp.request_info,
                    resp.history,
                    status=resp.status,
                    message=resp.reason or f"HTTP {resp.status}",
                    headers=resp.headers,
                )
            except (aiohttp.ClientConnectionError, aiohttp.ClientResponseError, asyncio.TimeoutError) as e:
                retryable = not isinstance(e, aiohttp.ClientResponseError) or e.status in retry_for_status
                if not retryable or attempt == self._max_retries:
                    logger.warning(f"{method} {url} failed after {attempt} attempt(s): {e or type(e).__name__}")
                    raise
                delay = self._backoff_delay(attempt, e)
                logger.info(f"{method} {url} attempt {attempt}/{self._max_retries} failed, retrying in {delay:.1f}s")
                await asyncio.sleep(delay)

        raise RuntimeError("Unreachable retry loop")

    async def _read_capped(self, resp: aiohttp.ClientResponse) -> bytes:
        if resp.content_length is not None and resp.content_length > self._max_body_bytes:
            raise ResponseTooLarge(f"{resp.url} declares {resp.content_length} bytes")
        body = await resp.content.read(self._max_body_bytes + 1)
        if len(body) > self._max_body_bytes:
            raise ResponseTooLarge(f"{resp.url} exceeds {self._max_body_bytes} bytes")
        return body

    # ---------------------------------------------- #
    # Public helpers

    async def get_text(self, url: str, **kwargs: Any) -> str:
        """Fetch a page or feed body as text, decoded with the declared charset."""
        async with await self._request("GET", url, **kwargs) as resp:
            body = await self._read_capped(resp)
            try:
                return body.decode(resp.charset or "utf-8", errors="replace")
            except LookupError:
                return body.decode("utf-8", errors="replace")

    async def get_json(self, url: str, **kwargs: Any) -> Any:
        async with await self._request("GET", url, **kwargs) as resp:
            return await resp.json(content_type=None)

    async def post_json(self, url: str, data: Any, **kwargs: Any) -> Any:
        kwargs["json"] = data
        async with await self._request("POST", url, **kwargs) as resp:
            return await resp.json(content_type=None)
