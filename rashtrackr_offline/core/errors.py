"""Error taxonomy for the offline cache controller.

A cache miss is not an error and has no exception type: lookups return
``None`` and the controller falls back to the network.
"""

from typing import List, Optional


class OfflineCacheError(Exception):
    """Base class for controller errors."""

    pass


class NetworkUnavailable(OfflineCacheError):
    """The network attempt produced no HTTP response (offline, DNS, timeout)."""

    def __init__(self, url: str, reason: Optional[str] = None) -> None:
        self.url = url
        self.reason = reason
        super().__init__(f"Network unavailable for {url}: {reason}")


class NonCacheableResponse(OfflineCacheError):
    """A response was received but is not eligible for storage.

    Raised and caught inside the serving path only; the response is passed
    through to the caller uncached.
    """

    def __init__(self, url: str, reason: str) -> None:
        self.url = url
        self.reason = reason
        super().__init__(f"Response for {url} not cacheable: {reason}")


class UnexpectedFailure(OfflineCacheError):
    """Any other failure in the serving path. Always converted to a 500."""

    def __init__(self, url: str, cause: BaseException) -> None:
        self.url = url
        self.cause = cause
        super().__init__(f"Unexpected failure serving {url}: {cause!r}")


class ReconciliationItemFailure(OfflineCacheError):
    """A single deferred write could not be replayed. The item stays queued."""

    def __init__(self, item_id: str, reason: str) -> None:
        self.item_id = item_id
        self.reason = reason
        super().__init__(f"Deferred write {item_id} failed to replay: {reason}")


class InstallError(OfflineCacheError):
    """Strict precache failed; nothing was stored for the new version."""

    def __init__(self, cache_name: str, failed: List[str]) -> None:
        self.cache_name = cache_name
        self.failed = list(failed)
        super().__init__(f"Failed to precache {len(self.failed)} asset(s) into {cache_name}: {self.failed}")
