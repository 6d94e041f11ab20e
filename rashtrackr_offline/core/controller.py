import json
import threading
import time
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple
from urllib.parse import urljoin, urlsplit

from rashtrackr_offline.cache.storage import CacheStorage, CacheStore
from rashtrackr_offline.core.config import ConfigurationManager
from rashtrackr_offline.core.errors import InstallError, NetworkUnavailable, NonCacheableResponse, UnexpectedFailure
from rashtrackr_offline.core.interceptors import RateLimitInterceptor, ResponseInterceptorChain
from rashtrackr_offline.core.network import Transport, UrllibTransport
from rashtrackr_offline.database.manager import DatabaseManager
from rashtrackr_offline.database.models import DeferredWrite, InstallResult, Notification, Request, Response, SyncResult
from rashtrackr_offline.monitoring.manager import MonitoringManager
from rashtrackr_offline.notifications.manager import NotificationManager
from rashtrackr_offline.sync.queue import InMemoryWriteQueue, SQLiteWriteQueue, WriteQueue
from rashtrackr_offline.sync.reconciler import Reconciler
from rashtrackr_offline.throttling.manager import RequestSpacer, SyncThrottle, SyncThrottleState
from rashtrackr_offline.utils.logger import configure_logging, get_logger


class ControllerState(Enum):
    """Lifecycle of one deployed client version."""

    PARSED = "parsed"
    INSTALLING = "installing"
    INSTALLED = "installed"
    ACTIVATING = "activating"
    ACTIVATED = "activated"
    REDUNDANT = "redundant"


class OfflineCacheController:
    """Offline cache controller for the RashTrackr web client.

    Mediates every request the client makes: cached GET responses are served
    without touching the network, misses go to the network and successful
    same-origin responses are stored, and connectivity failures degrade to
    the offline page or a synthetic 503. Writes made while offline are
    queued and replayed by ``sync``.

    The lifecycle hooks are plain methods so that any host can drive them;
    ``start`` runs the bundled HTTP host adapter.

    Example:
        >>> controller = OfflineCacheController({"origin": "https://rashtrackr.example"})
        >>> controller.install()
        >>> controller.activate()
        >>> response = controller.fetch(Request("https://rashtrackr.example/api/reports"))
        >>> controller.sync("background-sync")

        Using the HTTP host adapter as a context manager:

        >>> with OfflineCacheController(config) as controller:
        ...     # adapter is serving on config["server"]["port"]
        ...     pass
    """

    def __init__(
        self,
        config: Optional[Dict[str, Any]] = None,
        transport: Optional[Transport] = None,
        write_queue: Optional[WriteQueue] = None,
        throttle_state: Optional[SyncThrottleState] = None,
        clock: Optional[Callable[[], float]] = None,
        notification_sink: Optional[Callable[[Notification], None]] = None,
        window_opener: Optional[Callable[[str], None]] = None,
    ) -> None:
        """Initialize the controller and all of its components.

        Args:
            config: Configuration dictionary, merged over the defaults
            transport: Network transport; defaults to a urllib transport for the origin
            write_queue: Deferred write storage; defaults to ``sync.queue_backend``
            throttle_state: Reconciliation throttle state to share or pre-seed
            clock: Time source for throttling and notifications
            notification_sink: Called with each notification to display
            window_opener: Called with the route a notification click opens

        Raises:
            ValueError: If configuration is invalid
        """
        self.config_manager = ConfigurationManager(config or {})
        self.config = self.config_manager.config
        configure_logging(self.config.get("logging", {}))
        self.logger = get_logger("core.controller")
        self.callbacks = self.config.get("callbacks", {})
        self.clock = clock or time.time

        cache_cfg = self.config["cache"]
        self.db_manager = DatabaseManager(cache_cfg["database_path"])
        self.storage = CacheStorage(
            self.db_manager,
            max_response_size=cache_cfg["max_cache_response_size"],
            compression_threshold=cache_cfg["compression_threshold"],
        )

        network_cfg = self.config["network"]
        if transport is None:
            spacer = None
            if network_cfg["min_request_interval_ms"] > 0:
                spacer = RequestSpacer(network_cfg["min_request_interval_ms"])
            transport = UrllibTransport(self.origin, timeout=network_cfg["timeout"], spacer=spacer)
        self.transport = transport

        self.rate_limit_interceptor = RateLimitInterceptor(self._on_rate_limited)
        self.interceptors = ResponseInterceptorChain([self.rate_limit_interceptor])

        sync_cfg = self.config["sync"]
        if write_queue is None:
            if sync_cfg["queue_backend"] == "sqlite":
                write_queue = SQLiteWriteQueue(self.db_manager)
            else:
                write_queue = InMemoryWriteQueue()
        self.write_queue = write_queue
        self.throttle = SyncThrottle(sync_cfg["min_interval_seconds"], state=throttle_state, clock=self.clock)
        self.reconciler = Reconciler(self.write_queue, self.transport, self.sync_endpoint_url, self.throttle)

        self.notifications = NotificationManager(
            self.config["notifications"], sink=notification_sink, opener=window_opener, clock=self.clock
        )
        self.metrics_collector = MetricsCollector()
        self.state = ControllerState.PARSED
        self.server: Optional[Any] = None
        self.running = False
        self.start_time: Optional[float] = None
        self.monitoring_manager = MonitoringManager(
            self, self.storage, self.db_manager, self.write_queue, self.throttle
        )

    # ------------------------------------------------------------------
    # Derived configuration

    @property
    def origin(self) -> str:
        return self.config["origin"].rstrip("/")

    @property
    def cache_name(self) -> str:
        """Name of the cache store for the deployed client version."""
        return self.config_manager.cache_name

    @property
    def sync_tag(self) -> str:
        return self.config["sync"]["tag"]

    @property
    def sync_endpoint_url(self) -> str:
        return self.resolve(self.config["sync"]["endpoint"])

    def resolve(self, url: str) -> str:
        """Resolve a route or asset path against the origin."""
        return urljoin(self.origin + "/", url)

    # ------------------------------------------------------------------
    # Lifecycle hooks

    def install(self) -> InstallResult:
        """Create the current cache store and precache the asset manifest.

        Raises:
            InstallError: In strict mode, if any asset could not be fetched
        """
        self.state = ControllerState.INSTALLING
        mode = self.config["precache"]["mode"]
        requests = [Request(self.resolve(url)) for url in self.config["precache"]["urls"]]
        try:
            store = self.storage.open(self.cache_name)
            self.logger.info(f"Opened cache {self.cache_name}")
            cached, failed = store.add_all(requests, self.transport.fetch, strict=mode == "strict")
        except InstallError as e:
            self.state = ControllerState.REDUNDANT
            self.logger.error(f"Install failed: {e}")
            raise
        except Exception:
            self.state = ControllerState.REDUNDANT
            raise
        self.state = ControllerState.INSTALLED
        if failed:
            self.logger.warning(f"Installed {self.cache_name} without {len(failed)} asset(s): {failed}")
        else:
            self.logger.info(f"Installed {self.cache_name} with {len(cached)} asset(s)")
        return InstallResult(cache_name=self.cache_name, mode=mode, cached=cached, failed=failed)

    def activate(self) -> List[str]:
        """Delete every cache store that does not belong to the current version.

        Returns:
            Names of the deleted stores
        """
        self.state = ControllerState.ACTIVATING
        deleted = []
        for name in self.storage.keys():
            if name != self.cache_name:
                self.logger.info(f"Deleting old cache: {name}")
                if self.storage.delete(name):
                    deleted.append(name)
        self.state = ControllerState.ACTIVATED
        return deleted

    def fetch(self, request: Request) -> Response:
        """Serve an intercepted request. Never raises.

        Returns:
            The cached response, the network response, or a synthetic
            503 (offline) or 500 (unexpected failure)
        """
        try:
            return self._serve(request)
        except Exception as e:
            failure = UnexpectedFailure(getattr(request, "url", "<unknown>"), e)
            self.logger.error(str(failure))
            self.metrics_collector.record_event("error", {"url": failure.url, "error": repr(e)})
            return Response.synthetic(500, "Service Worker Error")

    def sync(self, tag: str) -> SyncResult:
        """Handle a background sync signal.

        Only the configured sync tag triggers reconciliation.
        """
        if tag != self.sync_tag:
            self.logger.debug(f"Ignoring sync for unknown tag: {tag}")
            return SyncResult(skipped=True, reason="unknown_tag")
        result = self.reconciler.run()
        if not result.skipped:
            self.metrics_collector.record_event(
                "sync", {"succeeded": len(result.succeeded), "failed": len(result.failed)}
            )
        return result

    def push(self, data: Optional[str] = None) -> Notification:
        """Display a notification for a push message."""
        return self.notifications.show(data)

    def notification_click(self, action: Optional[str], notification: Optional[Notification] = None) -> Optional[str]:
        """Close the notification and open the dashboard for the explore action."""
        return self.notifications.click(action, notification)

    # ------------------------------------------------------------------
    # Serving path

    def _current_store(self) -> CacheStore:
        return CacheStore(self.storage, self.cache_name)

    def _serve(self, request: Request) -> Response:
        if request.method == "GET":
            cached = self._current_store().match(request)
            if cached is not None:
                self.metrics_collector.record_event("cache_hit", {"url": request.url})
                return cached
        self.metrics_collector.record_event("cache_miss", {"url": request.url})

        try:
            response = self.transport.fetch(request)
        except NetworkUnavailable as e:
            return self._offline_response(request, e)
        if not isinstance(response, Response):
            return Response.synthetic(503, "Service Unavailable")

        response = self.interceptors.process(request, response)

        try:
            self._check_cacheable(request, response)
        except NonCacheableResponse as e:
            self.logger.debug(str(e))
            self.metrics_collector.record_event("not_cacheable", {"url": request.url, "reason": e.reason})
            return response

        try:
            if self.storage.open(self.cache_name).put(request, response.clone()):
                self.metrics_collector.record_event("stored", {"url": request.url})
            else:
                self.metrics_collector.record_event("not_cacheable", {"url": request.url, "reason": "too large"})
        except Exception as e:
            # The network response is still good to serve
            self.logger.warning(f"Failed to cache {request.url}: {e}")
        return response

    def _check_cacheable(self, request: Request, response: Response) -> None:
        if request.method != "GET":
            raise NonCacheableResponse(request.url, f"method {request.method}")
        if response.status != 200:
            raise NonCacheableResponse(request.url, f"status {response.status}")
        if response.response_type != "basic":
            raise NonCacheableResponse(request.url, f"{response.response_type} response")
        if response.redirected:
            raise NonCacheableResponse(request.url, "redirected")

    def _offline_response(self, request: Request, error: NetworkUnavailable) -> Response:
        self.metrics_collector.record_event("network_failure", {"url": request.url, "reason": error.reason})

        headers = {}
        queued_id = self._capture_offline_write(request)
        if queued_id:
            headers["X-Offline-Queued"] = queued_id

        if request.is_navigation:
            offline_page = self.config["offline"].get("page")
            if offline_page:
                offline = self._current_store().match(Request(self.resolve(offline_page)))
                if offline is not None:
                    self.metrics_collector.record_event("offline_fallback", {"url": request.url})
                    return offline
            return Response.synthetic(503, "Offline", headers)
        return Response.synthetic(503, "Service Unavailable", headers)

    def _is_sync_endpoint(self, url: str) -> bool:
        target = urlsplit(self.sync_endpoint_url)
        candidate = urlsplit(url)
        return (candidate.scheme, candidate.netloc, candidate.path.rstrip("/")) == (
            target.scheme,
            target.netloc,
            target.path.rstrip("/"),
        )

    def _capture_offline_write(self, request: Request) -> Optional[str]:
        if not self.config["sync"]["capture_offline_writes"]:
            return None
        if request.method != "POST" or not self._is_sync_endpoint(request.url):
            return None
        try:
            payload = json.loads((request.body or b"").decode("utf-8"))
            _, token = _split_bearer(request.header("Authorization"))
            item_id = self.enqueue_write(payload, token)
        except (ValueError, UnicodeDecodeError) as e:
            self.logger.warning(f"Not queueing offline write to {request.url}: body is not JSON ({e})")
            return None
        except Exception as e:
            self.logger.error(f"Failed to queue offline write to {request.url}: {e}")
            return None
        self.logger.info(f"Queued offline write {item_id} for background sync")
        return item_id

    # ------------------------------------------------------------------
    # Deferred writes

    def enqueue_write(self, payload: Any, token: Optional[str] = None) -> str:
        """Queue a write for the next reconciliation pass and return its id."""
        item = DeferredWrite(payload=payload, token=token, created_at=self.clock())
        self.write_queue.enqueue(item)
        self.metrics_collector.record_event("queued", {"id": item.id})
        return item.id

    def _on_rate_limited(self, event: Dict[str, Any]) -> None:
        self.metrics_collector.record_event("rate_limited", event)
        if "on_rate_limited" in self.callbacks:
            try:
                self.callbacks["on_rate_limited"](event)
            except Exception as e:
                self.logger.error(f"Error in rate limit callback: {e}")

    # ------------------------------------------------------------------
    # Host adapter and administration

    def start(self, blocking: bool = False) -> None:
        """Run the lifecycle hooks configured to run at startup, then serve.

        Args:
            blocking: If True, blocks until the server stops. If False,
                     serves from a background thread.

        Raises:
            RuntimeError: If the server is already running
            OSError: If unable to bind to the configured host/port
        """
        from rashtrackr_offline.core.handler import ControllerHTTPRequestHandler
        from rashtrackr_offline.core.server import ThreadedHTTPServer

        if self.running:
            raise RuntimeError("Server is already running")

        lifecycle = self.config["lifecycle"]
        if lifecycle["auto_install"] and self.state == ControllerState.PARSED:
            try:
                self.install()
            except InstallError:
                self.logger.warning("Serving without a precached shell; requests go to the network")
        if lifecycle["auto_activate"] and self.state == ControllerState.INSTALLED:
            self.activate()

        host = self.config["server"]["host"]
        port = self.config["server"]["port"]
        if self.server is None:
            self.server = ThreadedHTTPServer((host, port), ControllerHTTPRequestHandler, self)
        self.running = True
        self.start_time = time.time()
        self.logger.info(f"Offline cache controller serving on {host}:{port} (blocking={blocking})")
        self.server.start(blocking=blocking)

    def stop(self) -> None:
        """Stop the host adapter. Safe to call more than once."""
        if self.server:
            self.server.stop()
            self.server = None
        self.running = False
        self.logger.info("Offline cache controller stopped.")
        if "on_shutdown" in self.callbacks:
            try:
                self.callbacks["on_shutdown"](self)
            except Exception as e:
                self.logger.error(f"Error in shutdown callback: {e}")

    def close(self) -> None:
        """Stop serving and release database connections."""
        if self.running:
            self.stop()
        self.db_manager.close()

    def is_running(self) -> bool:
        return self.running

    def get_metrics(self) -> Dict[str, Any]:
        return self.metrics_collector.get_metrics()

    def get_status(self) -> Dict[str, Any]:
        status = self.monitoring_manager.get_status()
        status["metrics"] = self.get_metrics()
        status["rate_limit"] = self.rate_limit_interceptor.get_stats()
        return status

    def clear_cache(self) -> bool:
        """Delete the current cache store."""
        self.logger.info(f"Clearing cache {self.cache_name}")
        return self.storage.delete(self.cache_name)

    def update_config(self, key_path: str, value: Any) -> None:
        """Update configuration at runtime using dot notation.

        Values read per call (cache version, offline page, sync tag and
        endpoint, precache list) take effect immediately; bumping
        ``cache.version`` followed by ``install`` and ``activate`` rolls the
        client over to a new cache store.

        Raises:
            ValueError: If the resulting configuration is invalid
        """
        self.logger.info(f"Updating config '{key_path}' to {value}")
        self.config_manager.update(key_path, value)
        if key_path == "sync.endpoint":
            self.reconciler.endpoint_url = self.sync_endpoint_url
        elif key_path == "sync.min_interval_seconds":
            self.throttle.min_interval = value

    def __enter__(self) -> "OfflineCacheController":
        self.start(blocking=False)
        return self

    def __exit__(self, exc_type: Optional[type], exc_val: Optional[Exception], exc_tb: Optional[Any]) -> None:
        self.close()


def _split_bearer(value: Optional[str]) -> Tuple[Optional[str], Optional[str]]:
    """Split an Authorization header into (scheme, credentials)."""
    if not value:
        return None, None
    scheme, _, credentials = value.partition(" ")
    if scheme.lower() != "bearer":
        return scheme, None
    return scheme, credentials.strip() or None


class MetricsCollector:
    """Counts controller events and keeps the most recent ones.

    Thread-safe for concurrent request handling.
    """

    COUNTERS = {
        "cache_hit": "cache_hits",
        "cache_miss": "cache_misses",
        "stored": "stored",
        "not_cacheable": "not_cacheable",
        "network_failure": "network_failures",
        "offline_fallback": "offline_fallbacks",
        "queued": "queued_writes",
        "sync": "sync_passes",
        "rate_limited": "rate_limited",
        "error": "errors",
    }

    def __init__(self, max_events: int = 100) -> None:
        self._lock = threading.Lock()
        self._metrics: Dict[str, Any] = {name: 0 for name in self.COUNTERS.values()}
        self._metrics["total_requests"] = 0
        self._metrics["start_time"] = time.time()
        self._events: List[Tuple[str, Dict[str, Any]]] = []
        self._max_events = max_events

    def record_event(self, event_type: str, details: Optional[Dict[str, Any]] = None) -> None:
        """Record a controller event.

        Args:
            event_type: One of the ``COUNTERS`` keys
            details: Additional event details
        """
        with self._lock:
            if event_type in ("cache_hit", "cache_miss"):
                self._metrics["total_requests"] += 1
            counter = self.COUNTERS.get(event_type)
            if counter:
                self._metrics[counter] += 1
            self._events.append((event_type, details or {}))
            if len(self._events) > self._max_events:
                del self._events[: len(self._events) - self._max_events]

    def get_metrics(self) -> Dict[str, Any]:
        with self._lock:
            m = dict(self._metrics)
            events = list(self._events)
        m["uptime_seconds"] = time.time() - m["start_time"]
        lookups = m["cache_hits"] + m["cache_misses"]
        m["hit_rate"] = m["cache_hits"] / lookups if lookups else 0.0
        m["events"] = [{"event_type": event_type, "details": details} for event_type, details in events]
        return m
