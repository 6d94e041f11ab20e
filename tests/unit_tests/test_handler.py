"""Unit tests for RequestProcessingMixin request and lifecycle endpoint handling."""

import json
import sys
import unittest
from io import BytesIO
from pathlib import Path

PROJECT_ROOT = Path(__file__).parent.parent.parent.absolute()
sys.path.insert(0, str(PROJECT_ROOT))

from rashtrackr_offline.core.controller import OfflineCacheController
from rashtrackr_offline.core.errors import NetworkUnavailable
from rashtrackr_offline.core.handler import RequestProcessingMixin, detect_mode
from rashtrackr_offline.database.models import Response

ORIGIN = "https://rashtrackr.example"


class DummyTransport:
    def __init__(self):
        self.offline = False
        self.unreachable = set()
        self.seen = []

    def fetch(self, request):
        self.seen.append(request)
        if self.offline or request.url in self.unreachable:
            raise NetworkUnavailable(request.url, "offline")
        if request.method == "POST":
            return Response(b'{"id": 3}', status=201, status_text="Created")
        return Response(b"body of " + request.url.encode(), headers={"Content-Type": "text/plain"}, url=request.url)


class DummyHandler(RequestProcessingMixin):
    """Captures what the mixin writes instead of talking to a socket."""

    def __init__(self, controller, path, headers=None, body=b""):
        self.controller = controller
        self.path = path
        self.headers = dict(headers or {})
        if body:
            self.headers["Content-Length"] = str(len(body))
        self.rfile = BytesIO(body)
        self.wfile = BytesIO()
        self.client_address = ("127.0.0.1", 54321)
        self.status = None
        self.reason = None
        self.sent_headers = {}

    def send_response(self, code, message=None):
        self.status = code
        self.reason = message

    def send_header(self, key, value):
        self.sent_headers[key] = value

    def end_headers(self):
        pass

    def json(self):
        return json.loads(self.wfile.getvalue().decode("utf-8"))


def _run(controller, method, path, headers=None, body=b""):
    handler = DummyHandler(controller, path, headers, body)
    handler._handle_request(method)
    return handler


class TestDetectMode(unittest.TestCase):
    def test_sec_fetch_mode_wins(self):
        self.assertEqual(detect_mode("GET", {"Sec-Fetch-Mode": "Navigate", "Accept": "*/*"}), "navigate")
        self.assertEqual(detect_mode("GET", {"Sec-Fetch-Mode": "no-cors"}), "no-cors")

    def test_html_get_is_navigation(self):
        self.assertEqual(detect_mode("GET", {"Accept": "text/html,application/xhtml+xml"}), "navigate")

    def test_other_requests_are_cors(self):
        self.assertEqual(detect_mode("GET", {"Accept": "application/json"}), "cors")
        self.assertEqual(detect_mode("POST", {"Accept": "text/html"}), "cors")


class TestRequestHandling(unittest.TestCase):
    def setUp(self):
        self.transport = DummyTransport()
        self.controller = OfflineCacheController(
            {"origin": ORIGIN, "logging": {"enable_console": False}, "precache": {"urls": ["/"]}},
            transport=self.transport,
        )

    def tearDown(self):
        self.controller.close()

    def test_relative_path_resolved_against_origin(self):
        handler = _run(self.controller, "GET", "/api/reports?page=2")
        self.assertEqual(handler.status, 200)
        self.assertEqual(self.transport.seen[0].url, f"{ORIGIN}/api/reports?page=2")
        self.assertEqual(handler.wfile.getvalue(), f"body of {ORIGIN}/api/reports?page=2".encode())
        self.assertEqual(handler.sent_headers["Content-Type"], "text/plain")

    def test_absolute_form_path_used_as_is(self):
        _run(self.controller, "GET", "https://maps.example/tiles/1.png")
        self.assertEqual(self.transport.seen[0].url, "https://maps.example/tiles/1.png")

    def test_head_sends_no_body(self):
        handler = _run(self.controller, "HEAD", "/api/reports")
        self.assertEqual(handler.wfile.getvalue(), b"")
        self.assertIn("Content-Length", handler.sent_headers)

    def test_offline_navigation_is_503(self):
        self.transport.offline = True
        handler = _run(self.controller, "GET", "/dashboard", headers={"Accept": "text/html"})
        self.assertEqual(handler.status, 503)
        self.assertEqual(handler.reason, "Offline")

    def test_opaque_response_mapped_to_502(self):
        self.transport.fetch = lambda request: Response(b"", status=0, status_text="", response_type="opaque")
        handler = _run(self.controller, "GET", "/cdn/lib.js")
        self.assertEqual(handler.status, 502)

    def test_offline_post_is_queued(self):
        self.transport.offline = True
        body = json.dumps({"title": "Pothole"}).encode()
        handler = _run(
            self.controller,
            "POST",
            "/api/reports",
            headers={"Authorization": "Bearer abc123", "Content-Type": "application/json"},
            body=body,
        )
        self.assertEqual(handler.status, 503)
        self.assertIn("X-Offline-Queued", handler.sent_headers)
        self.assertEqual(self.controller.write_queue.count(), 1)

    def test_malformed_content_length_is_bad_request(self):
        for path in ("/api/reports", "/__offline__/health"):
            handler = _run(self.controller, "POST", path, headers={"Content-Length": "abc"})
            self.assertEqual(handler.status, 400)
            self.assertTrue(handler.close_connection)
        self.assertEqual(self.transport.seen, [])
        self.assertEqual(self.controller.write_queue.count(), 0)


class TestLifecycleEndpoints(unittest.TestCase):
    def setUp(self):
        self.transport = DummyTransport()
        self.controller = OfflineCacheController(
            {"origin": ORIGIN, "logging": {"enable_console": False}, "precache": {"urls": ["/", "/manifest.json"]}},
            transport=self.transport,
        )

    def tearDown(self):
        self.controller.close()

    def test_health(self):
        handler = _run(self.controller, "GET", "/__offline__/health")
        self.assertEqual(handler.status, 200)
        self.assertEqual(handler.json()["state"], "parsed")
        self.assertEqual(handler.json()["cache_name"], "rashtrackr-v1")

    def test_status(self):
        handler = _run(self.controller, "GET", "/__offline__/status")
        data = handler.json()
        self.assertIn("timestamp", data)
        self.assertIn("cache", data)
        self.assertIn("metrics", data)

    def test_install_and_activate(self):
        self.controller.storage.open("rashtrackr-v0")
        handler = _run(self.controller, "POST", "/__offline__/install")
        self.assertEqual(handler.status, 200)
        self.assertEqual(len(handler.json()["cached"]), 2)

        handler = _run(self.controller, "POST", "/__offline__/activate")
        self.assertEqual(handler.json()["deleted"], ["rashtrackr-v0"])

    def test_install_failure(self):
        self.transport.unreachable.add(f"{ORIGIN}/manifest.json")
        handler = _run(self.controller, "POST", "/__offline__/install")
        self.assertEqual(handler.status, 500)
        data = handler.json()
        self.assertEqual(data["error_code"], "INSTALL_FAILED")
        self.assertEqual(data["failed"], [f"{ORIGIN}/manifest.json"])

    def test_queue_and_sync(self):
        handler = _run(
            self.controller,
            "POST",
            "/__offline__/queue",
            body=json.dumps({"payload": {"title": "Pothole"}, "token": "abc123"}).encode(),
        )
        self.assertEqual(handler.status, 202)
        item_id = handler.json()["id"]

        handler = _run(self.controller, "POST", "/__offline__/sync", body=b'{"tag": "background-sync"}')
        data = handler.json()
        self.assertEqual(data["succeeded"], [item_id])
        self.assertFalse(data["skipped"])

    def test_sync_with_unknown_tag(self):
        handler = _run(self.controller, "POST", "/__offline__/sync", body=b'{"tag": "other"}')
        self.assertTrue(handler.json()["skipped"])
        self.assertEqual(handler.json()["reason"], "unknown_tag")

    def test_queue_requires_payload(self):
        handler = _run(self.controller, "POST", "/__offline__/queue", body=b'{"token": "abc"}')
        self.assertEqual(handler.status, 400)
        self.assertEqual(handler.json()["error_code"], "MISSING_PAYLOAD")

    def test_invalid_json(self):
        handler = _run(self.controller, "POST", "/__offline__/sync", body=b"{oops")
        self.assertEqual(handler.status, 400)
        self.assertEqual(handler.json()["error_code"], "INVALID_JSON")

    def test_push_and_click(self):
        handler = _run(self.controller, "POST", "/__offline__/push", body=b"Report #12 resolved")
        notification = handler.json()["notification"]
        self.assertEqual(notification["body"], "Report #12 resolved")
        self.assertEqual(notification["vibrate"], [100, 50, 100])

        handler = _run(self.controller, "POST", "/__offline__/notificationclick", body=b'{"action": "explore"}')
        self.assertEqual(handler.json()["opened"], "/dashboard")

    def test_unknown_endpoint(self):
        handler = _run(self.controller, "GET", "/__offline__/nope")
        self.assertEqual(handler.status, 404)

    def test_method_not_allowed(self):
        handler = _run(self.controller, "DELETE", "/__offline__/status")
        self.assertEqual(handler.status, 405)

    def test_admin_paths_never_reach_network(self):
        _run(self.controller, "GET", "/__offline__/health")
        self.assertEqual(self.transport.seen, [])


if __name__ == "__main__":
    unittest.main()
