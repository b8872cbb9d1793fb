"""Async OKX REST client with request signing, clock alignment and rate limiting."""

import asyncio
import base64
import hashlib
import hmac
import logging
import time
from datetime import UTC, datetime, timedelta
from typing import Any

import httpx

from copytrade_harvester.ingestor.models import SERVER_TIME_PATH, FetchOutcome, parse_server_time

logger = logging.getLogger(__name__)

# Constants
DEFAULT_BASE_URL = "https://www.okx.com"
MAX_REQUESTS_PER_SECOND = 5
DEFAULT_TIMEOUT_SECONDS = 10.0
TIME_SYNC_TIMEOUT_SECONDS = 3.0

_BODY_METHODS = frozenset({"POST", "PUT", "PATCH"})


class RateLimiter:
    """Token bucket rate limiter for API requests."""

    def __init__(self, max_requests_per_second: float = MAX_REQUESTS_PER_SECOND) -> None:
        """Initialize the rate limiter.

        Args:
            max_requests_per_second: Maximum requests allowed per second.
        """
        if max_requests_per_second <= 0:
            raise ValueError("max_requests_per_second must be positive")
        self._min_interval = 1.0 / max_requests_per_second
        self._last_request_time: float = 0.0
        self._lock = asyncio.Lock()

    async def acquire(self) -> None:
        """Wait until a request slot is available."""
        async with self._lock:
            now = time.monotonic()
            elapsed = now - self._last_request_time
            if elapsed < self._min_interval:
                await asyncio.sleep(self._min_interval - elapsed)
            self._last_request_time = time.monotonic()


class OkxClientError(Exception):
    """Base exception for OkxClient errors."""


class TransportError(OkxClientError):
    """Raised when no HTTP response was received (network failure or timeout)."""

    def __init__(self, message: str, url: str = "") -> None:
        super().__init__(message)
        self.url = url


def sign(secret_key: str, timestamp: str, method: str, request_path: str, body: str = "") -> str:
    """OKX signature: base64(HMAC-SHA256(secret, timestamp + METHOD + path?query + body))."""
    prehash = f"{timestamp}{method.upper()}{request_path}{body}"
    digest = hmac.new(secret_key.encode("utf-8"), prehash.encode("utf-8"), hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


def format_timestamp(ts: datetime) -> str:
    """ISO-8601 UTC with millisecond precision, e.g. ``2024-01-01T00:00:00.123Z``."""
    ts = ts.astimezone(UTC)
    return ts.strftime("%Y-%m-%dT%H:%M:%S.") + f"{ts.microsecond // 1000:03d}Z"


class OkxClient:
    """Async client for the OKX copy-trading public endpoints.

    Every HTTP response, whatever its status, is returned as a
    :class:`FetchOutcome`; only transport failures raise. Requests are signed
    when credentials are configured.

    Example:
        >>> async with OkxClient() as client:
        ...     params = LeadTradersQuery().to_request_params()
        ...     outcome = await client.fetch("GET", LEAD_TRADERS_PATH, params)
    """

    def __init__(
        self,
        *,
        base_url: str = DEFAULT_BASE_URL,
        access_key: str | None = None,
        secret_key: str | None = None,
        passphrase: str | None = None,
        clock_offset_ms: int = 0,
        requests_per_second: float = MAX_REQUESTS_PER_SECOND,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the OKX client.

        Args:
            base_url: REST API root.
            access_key: API key; signing is enabled when key, secret and passphrase are set.
            secret_key: API secret used for HMAC signing.
            passphrase: API passphrase.
            clock_offset_ms: Fixed correction added to the local clock when signing.
            requests_per_second: Rate limit for API requests.
            timeout_seconds: Per-request timeout.
            transport: Optional httpx transport (used by tests).
        """
        self._base_url = base_url.rstrip("/")
        self._access_key = access_key
        self._secret_key = secret_key
        self._passphrase = passphrase
        self._clock_offset_ms = clock_offset_ms
        self._server_offset_ms = 0
        self._rate_limiter = RateLimiter(requests_per_second)
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            timeout=httpx.Timeout(timeout_seconds),
            headers={"Accept": "application/json"},
            transport=transport,
        )

        logger.info(
            "Initialized OkxClient with base_url=%s, rate_limit=%.1f req/s, signed=%s",
            self._base_url,
            requests_per_second,
            self.is_signed,
        )

    async def __aenter__(self) -> "OkxClient":
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    async def close(self) -> None:
        await self._client.aclose()

    @property
    def is_signed(self) -> bool:
        return bool(self._access_key and self._secret_key and self._passphrase)

    @property
    def total_offset_ms(self) -> int:
        return self._clock_offset_ms + self._server_offset_ms

    def _timestamp(self) -> str:
        return format_timestamp(datetime.now(UTC) + timedelta(milliseconds=self.total_offset_ms))

    async def sync_time(self) -> None:
        """Align the signing clock with the server; on failure keep the fixed offset."""
        try:
            response = await self._client.get(SERVER_TIME_PATH, timeout=TIME_SYNC_TIMEOUT_SECONDS)
            response.raise_for_status()
            server_ms = parse_server_time(response.content)
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(
                "OKX time sync failed, keeping fixed clock offset %dms: %s",
                self._clock_offset_ms,
                e,
            )
            return
        local_ms = int(time.time() * 1000)
        self._server_offset_ms = server_ms - local_ms
        logger.info(
            "OKX time sync: server_ts=%d local_ts=%d dynamic_offset=%dms total_offset=%dms",
            server_ms,
            local_ms,
            self._server_offset_ms,
            self.total_offset_ms,
        )

    async def fetch(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        body: str | None = None,
    ) -> FetchOutcome:
        """Perform one request and capture its outcome.

        Raises:
            TransportError: If the request produced no HTTP response.
        """
        method = method.upper()
        request = self._client.build_request(
            method,
            path,
            params=params,
            content=body.encode("utf-8") if body and method in _BODY_METHODS else None,
        )
        if self.is_signed:
            request_path = request.url.raw_path.decode("ascii")
            timestamp = self._timestamp()
            request.headers["OK-ACCESS-KEY"] = self._access_key  # type: ignore[assignment]
            request.headers["OK-ACCESS-SIGN"] = sign(
                self._secret_key,  # type: ignore[arg-type]
                timestamp,
                method,
                request_path,
                body if body and method in _BODY_METHODS else "",
            )
            request.headers["OK-ACCESS-TIMESTAMP"] = timestamp
            request.headers["OK-ACCESS-PASSPHRASE"] = self._passphrase  # type: ignore[assignment]
            request.headers["Content-Type"] = "application/json"

        await self._rate_limiter.acquire()
        url = str(request.url)
        try:
            response = await self._client.send(request)
        except httpx.TransportError as e:
            raise TransportError(f"{method} {url} failed: {e!r}", url=url) from e

        content = response.content
        length_header = response.headers.get("Content-Length")
        outcome = FetchOutcome(
            status_code=response.status_code,
            body=content,
            etag=response.headers.get("ETag"),
            last_modified=response.headers.get("Last-Modified"),
            content_length=int(length_header) if length_header and length_header.isdigit() else len(content),
            url=url,
        )
        logger.debug("%s %s -> %d (%d bytes)", method, url, outcome.status_code, len(content))
        return outcome

