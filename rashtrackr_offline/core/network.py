"""Network transports used by the controller for cache misses and replays."""

import gzip
import socket
import time
import urllib.error
import urllib.request
import zlib
from typing import Dict, Optional

from rashtrackr_offline.core.errors import NetworkUnavailable
from rashtrackr_offline.database.models import Request, Response, origin_of
from rashtrackr_offline.throttling.manager import RequestSpacer
from rashtrackr_offline.utils.logger import get_logger

# Hop-by-hop headers are never forwarded
_SKIP_REQUEST_HEADERS = {"host", "connection", "content-length", "accept-encoding", "keep-alive", "proxy-connection"}


class Transport:
    """Sends a request to the network.

    Implementations return a ``Response`` for every well-formed HTTP reply,
    whatever its status, and raise ``NetworkUnavailable`` when no reply
    could be obtained at all.
    """

    def fetch(self, request: Request) -> Response:
        raise NotImplementedError


def _decode_body(data: bytes, headers: Dict[str, str], logger) -> bytes:
    encoding = ""
    for key, value in headers.items():
        if key.lower() == "content-encoding":
            encoding = value.lower()
    try:
        if encoding == "gzip":
            data = gzip.decompress(data)
        elif encoding == "deflate":
            data = zlib.decompress(data)
        else:
            return data
    except (gzip.BadGzipFile, zlib.error, OSError) as e:
        logger.warning(f"Failed to decompress {encoding} body: {e}")
        return data
    for key in [k for k in headers if k.lower() in ("content-encoding", "content-length", "transfer-encoding")]:
        headers.pop(key)
    headers["Content-Length"] = str(len(data))
    return data


class UrllibTransport(Transport):
    """Transport built on ``urllib.request``.

    Responses whose final URL shares the configured origin are ``basic``;
    cross-origin responses are ``cors``, or ``opaque`` for ``no-cors``
    requests (status and body hidden, as a browser would).
    """

    def __init__(self, origin: str, timeout: float = 60, spacer: Optional[RequestSpacer] = None) -> None:
        self.origin = origin_of(origin)
        self.timeout = timeout
        self.spacer = spacer
        self.logger = get_logger("core.network")

    def _classify(self, request: Request, final_url: str) -> str:
        if origin_of(final_url) == self.origin:
            return "basic"
        if request.mode == "no-cors":
            return "opaque"
        return "cors"

    def _build_response(self, request: Request, raw, status: int, reason: str) -> Response:
        headers = dict(raw.headers.items()) if raw.headers is not None else {}
        data = raw.read()
        data = _decode_body(data, headers, self.logger)
        final_url = raw.geturl() or request.url
        response_type = self._classify(request, final_url)
        if response_type == "opaque":
            return Response(body=b"", status=0, status_text="", headers={}, response_type="opaque", url="")
        return Response(
            body=data,
            status=status,
            status_text=reason or "",
            headers=headers,
            response_type=response_type,
            url=final_url,
            redirected=final_url != request.url,
        )

    def fetch(self, request: Request) -> Response:
        if self.spacer is not None:
            self.spacer.wait()

        req = urllib.request.Request(request.url, data=request.body, method=request.method)
        for key, value in request.headers.items():
            if key.lower() not in _SKIP_REQUEST_HEADERS:
                req.add_header(key, value)
        req.add_header("Accept-Encoding", "gzip, deflate")

        start_time = time.time()
        self.logger.debug(f"Fetching {request.method} {request.url} (timeout={self.timeout})")
        try:
            with urllib.request.urlopen(req, timeout=self.timeout) as raw:
                response = self._build_response(request, raw, raw.status, raw.reason)
        except urllib.error.HTTPError as e:
            # An HTTP error status is still a well-formed response
            with e:
                response = self._build_response(request, e, e.code, str(e.reason))
        except urllib.error.URLError as e:
            self.logger.info(f"Network error for {request.url}: {e.reason}")
            raise NetworkUnavailable(request.url, str(e.reason)) from e
        except (socket.timeout, TimeoutError, ConnectionError) as e:
            self.logger.info(f"Network error for {request.url}: {e}")
            raise NetworkUnavailable(request.url, str(e) or type(e).__name__) from e

        elapsed_ms = int((time.time() - start_time) * 1000)
        self.logger.debug(f"Received {response.status} for {request.url} in {elapsed_ms}ms")
        return response
