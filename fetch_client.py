"""
fetch_client.py
===============
Single choke point for every outbound catalog request.

Responsibilities:
  - TTL cache keyed by (method, url, normalised headers, body digest)
  - Per-host minimum spacing between requests (delayed, never dropped)
  - Bounded retry with linear backoff on 408/425/429/5xx and transport errors
  - Per-attempt timeout
  - Offline degradation: stale cache is served, otherwise OfflineNoCacheError
  - Streaming file downloads with digest verification

Cache and rate-limit bookkeeping live in a ``FetchState`` owned by the
caller and injected into the client, so tests can build isolated clients.
"""

from __future__ import annotations

import asyncio
import hashlib
import inspect
import json
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, Optional
from urllib.parse import urlencode, urlsplit

import aiohttp

from content_errors import (
    ChecksumMismatch,
    NetworkError,
    OfflineNoCacheError,
    PermanentRequestError,
    RateLimitedError,
    TransientNetworkError,
)

logger = logging.getLogger(__name__)

USER_AGENT = "ContentLauncher/1.0 (+https://github.com/content-launcher)"

RATE_LIMIT_SECONDS = 0.2
RETRY_ATTEMPTS = 3
RETRY_DELAY_SECONDS = 0.22
REQUEST_TIMEOUT_SECONDS = 10.0
DOWNLOAD_TIMEOUT_SECONDS = 300.0
DEFAULT_TTL_SECONDS = 60.0
CHUNK_SIZE = 8192

RETRYABLE_STATUSES = frozenset({408, 425, 429})


def is_retryable_status(status: int) -> bool:
    return status in RETRYABLE_STATUSES or status >= 500


# ──────────────────────────────────────────────
#  Shared State
# ──────────────────────────────────────────────

@dataclass
class CacheEntry:
    value: Any
    expires_at: float


@dataclass
class FetchState:
    """Process-wide cache and per-host last-request timestamps."""

    cache: Dict[str, CacheEntry] = field(default_factory=dict)
    last_request: Dict[str, float] = field(default_factory=dict)

    def clear(self) -> None:
        self.cache.clear()
        self.last_request.clear()


# ──────────────────────────────────────────────
#  Key / URL helpers
# ──────────────────────────────────────────────

def build_url(url: str, params: Optional[Mapping[str, Any]] = None) -> str:
    """Append query parameters to ``url``, dropping ``None`` and empty values."""
    if not params:
        return url
    pairs = [(k, str(v)) for k, v in params.items() if v is not None and v != ""]
    if not pairs:
        return url
    separator = "&" if "?" in url else "?"
    return f"{url}{separator}{urlencode(pairs)}"


def build_cache_key(
    method: str,
    url: str,
    headers: Optional[Mapping[str, str]] = None,
    body: Any = None,
) -> str:
    if headers:
        normalized = sorted((str(k).lower(), str(v)) for k, v in headers.items())
        header_key = json.dumps(normalized)
    else:
        header_key = "no-headers"
    key = f"{method.upper()}:{url}:{header_key}"
    if body is not None:
        digest = hashlib.sha256(
            json.dumps(body, sort_keys=True, default=str).encode("utf-8")
        ).hexdigest()[:16]
        key = f"{key}:{digest}"
    return key


def _status_error(status: int, url: str) -> NetworkError:
    if status == 429:
        return RateLimitedError(f"HTTP 429 Too Many Requests from {url}", url=url, status=status)
    if is_retryable_status(status):
        return TransientNetworkError(f"HTTP {status} from {url}", url=url, status=status)
    return PermanentRequestError(f"HTTP {status} from {url}", url=url, status=status)


# ──────────────────────────────────────────────
#  Fetch Client
# ──────────────────────────────────────────────

class FetchClient:
    """
    Resilient HTTP client for catalog APIs.

    Args:
        session:          aiohttp session (created lazily and owned if None)
        state:            shared cache / rate-limit state (fresh if None)
        rate_limit:       minimum seconds between two requests to one host
        retry_attempts:   total attempts per request
        retry_delay:      backoff unit; attempt n waits ``retry_delay * n``
        timeout:          seconds allowed per attempt
        offline:          start in offline mode (cache only)
        connectivity_probe: optional callable returning False when offline
        clock:            monotonic time source
    """

    def __init__(
        self,
        session: Optional[aiohttp.ClientSession] = None,
        state: Optional[FetchState] = None,
        *,
        rate_limit: float = RATE_LIMIT_SECONDS,
        retry_attempts: int = RETRY_ATTEMPTS,
        retry_delay: float = RETRY_DELAY_SECONDS,
        timeout: float = REQUEST_TIMEOUT_SECONDS,
        download_timeout: float = DOWNLOAD_TIMEOUT_SECONDS,
        offline: bool = False,
        connectivity_probe: Optional[Callable[[], bool]] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._session = session
        self._own_session = session is None
        self.state = state if state is not None else FetchState()
        self.rate_limit = max(0.0, float(rate_limit))
        self.retry_attempts = max(1, int(retry_attempts))
        self.retry_delay = max(0.0, float(retry_delay))
        self.timeout = float(timeout)
        self.download_timeout = float(download_timeout)
        self.offline = offline
        self._probe = connectivity_probe
        self._clock = clock

    async def __aenter__(self) -> "FetchClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    @property
    def session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._own_session = True
        return self._session

    async def close(self) -> None:
        if self._own_session and self._session is not None and not self._session.closed:
            await self._session.close()

    def is_online(self) -> bool:
        if self.offline:
            return False
        if self._probe is not None:
            try:
                return bool(self._probe())
            except Exception as exc:
                logger.warning("Connectivity probe failed: %s", exc)
                return False
        return True

    def clear_cache(self) -> None:
        self.state.cache.clear()

    # ================================================================
    #  FETCH
    # ================================================================

    async def fetch(
        self,
        url: str,
        *,
        ttl: float = DEFAULT_TTL_SECONDS,
        method: str = "GET",
        params: Optional[Mapping[str, Any]] = None,
        headers: Optional[Mapping[str, str]] = None,
        json_body: Any = None,
    ) -> Any:
        """
        Fetch ``url`` and return the decoded JSON (or text) body.

        Raises:
            OfflineNoCacheError:   offline / unreachable with nothing cached
            PermanentRequestError: non-retryable HTTP status
            TransientNetworkError: retries exhausted with nothing cached
        """
        full_url = build_url(url, params)
        key = build_cache_key(method, full_url, headers, json_body)
        cached = self.state.cache.get(key)

        if cached is not None and cached.expires_at > self._clock():
            logger.debug("Cache hit: %s %s", method, full_url)
            return cached.value

        if not self.is_online():
            if cached is not None:
                logger.info("Offline, serving cached copy of %s", full_url)
                return cached.value
            raise OfflineNoCacheError(full_url)

        request_headers = {"User-Agent": USER_AGENT}
        if headers:
            request_headers.update(headers)

        last_error: Optional[NetworkError] = None
        unreachable = True

        for attempt in range(self.retry_attempts):
            await self._throttle(full_url)
            try:
                value = await self._request_once(method, full_url, request_headers, json_body)
            except PermanentRequestError:
                raise
            except TransientNetworkError as exc:
                last_error = exc
                unreachable = False
            except aiohttp.ClientConnectorError as exc:
                last_error = TransientNetworkError(
                    f"Cannot reach {full_url}: {exc}", url=full_url,
                )
                last_error.__cause__ = exc
            except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
                last_error = TransientNetworkError(
                    f"Request to {full_url} failed: {exc or type(exc).__name__}",
                    url=full_url,
                )
                last_error.__cause__ = exc
                unreachable = False
            else:
                self.state.cache[key] = CacheEntry(value, self._clock() + ttl)
                return value

            if attempt < self.retry_attempts - 1:
                delay = self.retry_delay * (attempt + 1)
                logger.debug(
                    "Attempt %d/%d for %s failed (%s), retrying in %.2fs",
                    attempt + 1, self.retry_attempts, full_url, last_error, delay,
                )
                await asyncio.sleep(delay)

        if cached is not None:
            logger.warning("Serving stale cache for %s after: %s", full_url, last_error)
            return cached.value

        if unreachable:
            raise OfflineNoCacheError(full_url) from last_error
        raise last_error or TransientNetworkError(f"Request to {full_url} failed", url=full_url)

    async def _request_once(
        self,
        method: str,
        url: str,
        headers: Mapping[str, str],
        body: Any,
    ) -> Any:
        async with self.session.request(
            method, url, headers=dict(headers), json=body,
            timeout=aiohttp.ClientTimeout(total=self.timeout),
        ) as resp:
            if resp.status >= 400:
                raise _status_error(resp.status, url)
            if "json" in (resp.content_type or ""):
                try:
                    return await resp.json()
                except (aiohttp.ContentTypeError, ValueError) as exc:
                    # Proxies answer with HTML error pages under a JSON content type
                    raise TransientNetworkError(
                        f"Malformed response from {url}: {exc}", url=url, status=resp.status,
                    ) from exc
            return await resp.text()

    async def _throttle(self, url: str) -> None:
        """Delay until this host's minimum spacing has elapsed."""
        host = urlsplit(url).netloc
        now = self._clock()
        last = self.state.last_request.get(host)
        scheduled = now if last is None else max(now, last + self.rate_limit)
        # Reserve the slot before sleeping so concurrent callers queue behind it
        self.state.last_request[host] = scheduled
        wait = scheduled - now
        if wait > 0:
            logger.debug("Rate limit: waiting %.3fs for %s", wait, host)
            await asyncio.sleep(wait)

    # ================================================================
    #  DOWNLOAD
    # ================================================================

    async def download_file(
        self,
        url: str,
        dest: str | Path,
        *,
        expected_hash: Optional[str] = None,
        hash_algorithm: str = "sha256",
        progress_callback: Optional[Callable] = None,
        label: Optional[str] = None,
    ) -> Path:
        """
        Stream ``url`` into ``dest``, verifying the digest when one is given.

        The body is written to ``<dest>.part`` and renamed into place only
        after verification, so a failed download never leaves a file at
        ``dest``.
        """
        dest = Path(dest)
        dest.parent.mkdir(parents=True, exist_ok=True)
        if not self.is_online():
            raise OfflineNoCacheError(url)

        part = dest.with_name(dest.name + ".part")
        last_error: Optional[NetworkError] = None
        digest = ""

        for attempt in range(self.retry_attempts):
            await self._throttle(url)
            try:
                digest = await self._stream_to(url, part, hash_algorithm, progress_callback)
            except PermanentRequestError:
                part.unlink(missing_ok=True)
                raise
            except TransientNetworkError as exc:
                last_error = exc
            except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
                last_error = TransientNetworkError(
                    f"Download of {url} failed: {exc or type(exc).__name__}", url=url,
                )
                last_error.__cause__ = exc
            else:
                break

            part.unlink(missing_ok=True)
            if attempt < self.retry_attempts - 1:
                await asyncio.sleep(self.retry_delay * (attempt + 1))
        else:
            raise last_error or TransientNetworkError(f"Download of {url} failed", url=url)

        if expected_hash and digest.lower() != expected_hash.lower():
            part.unlink(missing_ok=True)
            raise ChecksumMismatch(label or dest.name, expected_hash, digest, hash_algorithm)

        part.replace(dest)
        logger.info("Downloaded %s (%d bytes)", dest.name, dest.stat().st_size)
        return dest

    async def _stream_to(
        self,
        url: str,
        part: Path,
        hash_algorithm: str,
        progress_callback: Optional[Callable],
    ) -> str:
        hasher = hashlib.new(hash_algorithm)
        async with self.session.request(
            "GET", url, headers={"User-Agent": USER_AGENT},
            timeout=aiohttp.ClientTimeout(total=self.download_timeout),
        ) as resp:
            if resp.status >= 400:
                raise _status_error(resp.status, url)

            total = int(resp.headers.get("Content-Length", 0) or 0)
            downloaded = 0

            with open(part, "wb") as fh:
                async for chunk in resp.content.iter_chunked(CHUNK_SIZE):
                    fh.write(chunk)
                    hasher.update(chunk)
                    downloaded += len(chunk)
                    if progress_callback:
                        result = progress_callback(downloaded, total)
                        if inspect.isawaitable(result):
                            await result

        return hasher.hexdigest()
