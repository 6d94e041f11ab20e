"""HTTP request handler bridging the threaded server to the controller."""

import dataclasses
import json
from datetime import datetime, timezone
from http.server import BaseHTTPRequestHandler
from typing import Any, Dict, Optional

from rashtrackr_offline.core.errors import InstallError
from rashtrackr_offline.database.models import NAVIGATE, Request, Response
from rashtrackr_offline.utils.logger import get_logger

# Never copied from a stored or upstream response onto the wire
_SKIP_RESPONSE_HEADERS = {"connection", "content-length", "transfer-encoding", "keep-alive", "server", "date"}


def detect_mode(method: str, headers) -> str:
    """Work out the request mode the client used.

    Browsers send ``Sec-Fetch-Mode``; otherwise a GET that prefers HTML is
    treated as a page navigation.
    """
    mode = headers.get("Sec-Fetch-Mode")
    if mode:
        return mode.lower()
    accept = headers.get("Accept", "") or ""
    if method == "GET" and "text/html" in accept:
        return NAVIGATE
    return "cors"


class RequestProcessingMixin:
    """Turns incoming HTTP requests into controller calls."""

    @property
    def logger(self):
        if hasattr(self, "controller") and hasattr(self.controller, "logger"):
            return self.controller.logger
        return get_logger("core.handler")

    @property
    def admin_prefix(self) -> str:
        return self.controller.config["server"]["admin_prefix"].rstrip("/")

    def _read_body(self) -> Optional[bytes]:
        length = int(self.headers.get("Content-Length", 0) or 0)
        if length <= 0:
            return None
        return self.rfile.read(length)

    def _build_request(self, method: str, body: Optional[bytes]) -> Request:
        if self.path.startswith(("http://", "https://")):
            url = self.path
        else:
            url = self.controller.resolve(self.path)
        return Request(
            url=url,
            method=method,
            headers={key: value for key, value in self.headers.items()},
            body=body,
            mode=detect_mode(method, self.headers),
        )

    def _handle_request(self, method: str):
        self.logger.debug(f"Handling {method} request for path: {self.path}")
        try:
            body = self._read_body()
        except ValueError:
            self.logger.warning(f"Malformed Content-Length on {method} {self.path}")
            # The body cannot be framed, so the connection cannot be reused
            self.close_connection = True
            self._send_controller_response(Response.synthetic(400, "Bad Request"), include_body=False)
            return

        if self._is_admin_path(self.path):
            self._handle_admin_request(method, self.path[len(self.admin_prefix) :], body)
            return

        response = self.controller.fetch(self._build_request(method, body))
        self._send_controller_response(response, include_body=method != "HEAD")

    def _send_controller_response(self, response: Response, include_body: bool = True):
        status = response.status
        reason = response.status_text or None
        if status < 100:
            # Opaque responses have no status a client could use
            status, reason = 502, "Opaque Response"
        self.send_response(status, reason)
        for key, value in response.headers.items():
            if key.lower() not in _SKIP_RESPONSE_HEADERS:
                self.send_header(key, value)
        self.send_header("Content-Length", str(len(response.body)))
        self.end_headers()
        if include_body and response.body:
            self.wfile.write(response.body)

    # Lifecycle and status endpoints
    def _is_admin_path(self, path: str) -> bool:
        return path == self.admin_prefix or path.startswith(self.admin_prefix + "/")

    def _handle_admin_request(self, method: str, path: str, body: Optional[bytes]):
        """Route lifecycle endpoints below the admin prefix."""
        path = path.split("?", 1)[0].rstrip("/") or "/"
        self.logger.info(f"Admin access: {self.client_address[0]} {method} {path}")
        try:
            if method == "GET":
                self._route_admin_get(path)
            elif method == "POST":
                self._route_admin_post(path, body)
            else:
                self._send_admin_error(405, "METHOD_NOT_ALLOWED", f"Method {method} not allowed")
        except Exception as e:
            self.logger.error(f"Admin request error: {e}")
            self._send_admin_error(500, "INTERNAL_ERROR", "Internal server error")

    def _route_admin_get(self, path: str):
        if path == "/health":
            self._send_admin_response(
                200, {"status": "ok", "state": self.controller.state.value, "cache_name": self.controller.cache_name}
            )
        elif path == "/status":
            self._send_admin_response(200, {"timestamp": _timestamp(), **self.controller.get_status()})
        else:
            self._send_admin_error(404, "ENDPOINT_NOT_FOUND", f"Admin endpoint not found: {path}")

    def _route_admin_post(self, path: str, body: Optional[bytes]):
        if path == "/install":
            self._handle_install()
        elif path == "/activate":
            deleted = self.controller.activate()
            self._send_admin_response(200, {"success": True, "deleted": deleted, "cache_name": self.controller.cache_name})
        elif path == "/sync":
            data = self._parse_json(body)
            if data is None:
                return
            result = self.controller.sync(data.get("tag", self.controller.sync_tag))
            self._send_admin_response(200, {"success": True, **dataclasses.asdict(result)})
        elif path == "/push":
            text = body.decode("utf-8") if body else None
            notification = self.controller.push(text)
            self._send_admin_response(200, {"success": True, "notification": notification.to_dict()})
        elif path == "/notificationclick":
            data = self._parse_json(body)
            if data is None:
                return
            opened = self.controller.notification_click(data.get("action"))
            self._send_admin_response(200, {"success": True, "opened": opened})
        elif path == "/queue":
            data = self._parse_json(body)
            if data is None:
                return
            if "payload" not in data:
                self._send_admin_error(400, "MISSING_PAYLOAD", "Field 'payload' is required")
                return
            item_id = self.controller.enqueue_write(data["payload"], data.get("token"))
            self._send_admin_response(202, {"success": True, "id": item_id})
        else:
            self._send_admin_error(404, "ENDPOINT_NOT_FOUND", f"Admin endpoint not found: {path}")

    def _handle_install(self):
        try:
            result = self.controller.install()
        except InstallError as e:
            self._send_admin_response(
                500,
                {
                    "timestamp": _timestamp(),
                    "success": False,
                    "error": str(e),
                    "error_code": "INSTALL_FAILED",
                    "failed": e.failed,
                },
            )
            return
        self._send_admin_response(200, {"success": True, **dataclasses.asdict(result)})

    def _parse_json(self, body: Optional[bytes]) -> Optional[Dict[str, Any]]:
        """Parse a JSON object body, answering 400 and returning None on bad input."""
        if not body:
            return {}
        try:
            data = json.loads(body.decode("utf-8"))
        except (ValueError, UnicodeDecodeError):
            self._send_admin_error(400, "INVALID_JSON", "Invalid JSON in request body")
            return None
        if not isinstance(data, dict):
            self._send_admin_error(400, "INVALID_JSON", "Request body must be a JSON object")
            return None
        return data

    def _send_admin_response(self, status_code: int, data: dict):
        """Send standardized JSON response for admin endpoints."""
        response_data = json.dumps(data, indent=2, default=str).encode("utf-8")
        self.send_response(status_code)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(response_data)))
        self.end_headers()
        self.wfile.write(response_data)

    def _send_admin_error(self, status_code: int, error_code: str, message: str):
        """Send standardized error response for admin endpoints."""
        self._send_admin_response(
            status_code,
            {"timestamp": _timestamp(), "success": False, "error": message, "error_code": error_code},
        )


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


class ControllerHTTPRequestHandler(RequestProcessingMixin, BaseHTTPRequestHandler):
    """HTTP request handler for the offline cache controller."""

    server_version = "RashTrackrOffline/1.0"
    protocol_version = "HTTP/1.1"

    def __init__(self, *args, controller_instance=None, **kwargs):
        self.controller = controller_instance
        super().__init__(*args, **kwargs)

    def log_message(self, format, *args):
        self.logger.debug("%s - %s" % (self.address_string(), format % args))

    def do_GET(self):
        self._handle_request("GET")

    def do_HEAD(self):
        self._handle_request("HEAD")

    def do_POST(self):
        self._handle_request("POST")

    def do_PUT(self):
        self._handle_request("PUT")

    def do_PATCH(self):
        self._handle_request("PATCH")

    def do_DELETE(self):
        self._handle_request("DELETE")
