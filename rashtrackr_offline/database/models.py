"""Data models for the RashTrackr offline cache controller."""

import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urlsplit

NAVIGATE = "navigate"


def _lookup_header(headers: Dict[str, str], name: str, default: Optional[str] = None) -> Optional[str]:
    lowered = name.lower()
    for key, value in headers.items():
        if key.lower() == lowered:
            return value
    return default


def origin_of(url: str) -> str:
    """Return ``scheme://host[:port]`` for an absolute URL."""
    parts = urlsplit(url)
    return f"{parts.scheme.lower()}://{parts.netloc.lower()}"


@dataclass
class Request:
    """An intercepted outgoing request."""

    url: str
    method: str = "GET"
    headers: Dict[str, str] = field(default_factory=dict)
    body: Optional[bytes] = None
    mode: str = "cors"

    def __post_init__(self):
        self.method = self.method.upper()

    @property
    def is_navigation(self) -> bool:
        return self.mode == NAVIGATE

    @property
    def identity(self) -> Tuple[str, str]:
        return self.method, self.url

    def header(self, name: str, default: Optional[str] = None) -> Optional[str]:
        return _lookup_header(self.headers, name, default)


@dataclass
class Response:
    """An HTTP response, either received from the network or synthetic."""

    body: bytes = b""
    status: int = 200
    status_text: str = "OK"
    headers: Dict[str, str] = field(default_factory=dict)
    response_type: str = "basic"
    url: str = ""
    redirected: bool = False

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    def header(self, name: str, default: Optional[str] = None) -> Optional[str]:
        return _lookup_header(self.headers, name, default)

    def clone(self) -> "Response":
        return Response(
            body=bytes(self.body),
            status=self.status,
            status_text=self.status_text,
            headers=dict(self.headers),
            response_type=self.response_type,
            url=self.url,
            redirected=self.redirected,
        )

    @classmethod
    def synthetic(cls, status: int, status_text: str, headers: Optional[Dict[str, str]] = None) -> "Response":
        """Build a locally generated, empty-bodied response."""
        return cls(body=b"", status=status, status_text=status_text, headers=dict(headers or {}), response_type="default")


@dataclass
class DeferredWrite:
    """A report submitted while offline, waiting to be replayed."""

    payload: Any
    token: Optional[str] = None
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    created_at: float = field(default_factory=time.time)
    attempts: int = 0
    last_error: Optional[str] = None


@dataclass
class SyncResult:
    """Result of one reconciliation trigger."""

    skipped: bool = False
    attempted: int = 0
    succeeded: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    duration_seconds: float = 0.0
    reason: Optional[str] = None

    @property
    def success(self) -> bool:
        return not self.skipped and not self.failed and not self.errors


@dataclass
class InstallResult:
    """Outcome of precaching the asset manifest for a client version."""

    cache_name: str
    mode: str
    cached: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)


@dataclass
class Notification:
    """A push notification ready for display."""

    title: str
    body: str
    icon: str
    badge: str
    vibrate: List[int] = field(default_factory=list)
    data: Dict[str, Any] = field(default_factory=dict)
    actions: List[Dict[str, str]] = field(default_factory=list)
    closed: bool = False

    def close(self) -> None:
        self.closed = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "body": self.body,
            "icon": self.icon,
            "badge": self.badge,
            "vibrate": list(self.vibrate),
            "data": dict(self.data),
            "actions": [dict(a) for a in self.actions],
        }
