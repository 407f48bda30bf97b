"""
content_errors.py
=================
Exception hierarchy for catalog search and mod installation.

    ContentError
    ├── NetworkError
    │   ├── TransientNetworkError      (timeout, 5xx, 408/425/429, transport)
    │   │   └── RateLimitedError       (429)
    │   └── PermanentRequestError      (other 4xx, never retried)
    ├── OfflineNoCacheError            (no network and nothing cached)
    ├── ProviderUnavailable            (one catalog failed)
    ├── AggregateFailure               (every catalog failed)
    └── InstallError
        ├── NoCompatibleVersion
        ├── DependencyUnresolved
        ├── DownloadUnavailable
        └── ChecksumMismatch
"""

from __future__ import annotations

from typing import Dict, Optional


class ContentError(Exception):
    """Base class for every error raised by the content pipeline."""


# ──────────────────────────────────────────────
#  Network
# ──────────────────────────────────────────────

class NetworkError(ContentError):
    """A request to a third-party catalog failed."""

    def __init__(self, message: str, *, url: str = "", status: Optional[int] = None) -> None:
        super().__init__(message)
        self.url = url
        self.status = status


class TransientNetworkError(NetworkError):
    """Retryable failure: timeout, transport error, 5xx, 408, 425 or 429."""


class RateLimitedError(TransientNetworkError):
    """The catalog answered 429 Too Many Requests."""


class PermanentRequestError(NetworkError):
    """Non-retryable HTTP status (4xx other than 408/425/429)."""


class OfflineNoCacheError(ContentError):
    """The network is unreachable and no cached copy exists."""

    def __init__(self, url: str) -> None:
        super().__init__(f"Offline and no cached data for {url}")
        self.url = url


# ──────────────────────────────────────────────
#  Catalog aggregation
# ──────────────────────────────────────────────

class ProviderUnavailable(ContentError):
    """A single provider could not answer a search or detail request."""

    def __init__(self, source: str, message: str) -> None:
        super().__init__(f"{source}: {message}")
        self.source = source


class AggregateFailure(ContentError):
    """Every active provider failed for the same query."""

    def __init__(self, failures: Dict[str, BaseException]) -> None:
        self.failures = failures
        self.rate_limited = any(
            _is_rate_limited(exc) for exc in failures.values()
        )
        if self.rate_limited:
            message = (
                "Catalog APIs are rate limiting requests. "
                "Try again in a few seconds."
            )
        else:
            names = ", ".join(sorted(failures)) or "no sources"
            message = f"All catalog sources are unreachable ({names})"
        super().__init__(message)


def _is_rate_limited(exc: BaseException) -> bool:
    """Walk the cause chain looking for a 429."""
    seen = 0
    current: Optional[BaseException] = exc
    while current is not None and seen < 8:
        if isinstance(current, RateLimitedError):
            return True
        if isinstance(current, NetworkError) and current.status == 429:
            return True
        current = current.__cause__
        seen += 1
    return False


# ──────────────────────────────────────────────
#  Installation
# ──────────────────────────────────────────────

class InstallError(ContentError):
    """An install batch was aborted while processing ``item``."""

    def __init__(self, item: str, message: str) -> None:
        super().__init__(f"{item}: {message}")
        self.item = item
        self.reason = message


class NoCompatibleVersion(InstallError):
    """The item publishes no version that could be selected."""


class DependencyUnresolved(InstallError):
    """A required dependency could not be found."""


class DownloadUnavailable(InstallError):
    """The selected version has no downloadable file."""


class ChecksumMismatch(InstallError):
    """A downloaded file did not match its published digest."""

    def __init__(self, item: str, expected: str, actual: str, algorithm: str = "sha256") -> None:
        super().__init__(
            item, f"{algorithm} mismatch (expected {expected}, got {actual})",
        )
        self.expected = expected
        self.actual = actual
        self.algorithm = algorithm
