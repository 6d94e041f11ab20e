"""Threaded HTTP server hosting the offline cache controller."""

import threading
from http.server import ThreadingHTTPServer

from rashtrackr_offline.utils.logger import get_logger

logger = get_logger("core.server")


class ThreadedHTTPServer(ThreadingHTTPServer):
    """Threaded HTTP server that hands each request handler the controller."""

    allow_reuse_address = True
    daemon_threads = True

    def __init__(self, server_address, RequestHandlerClass, controller_instance):
        self.controller_instance = controller_instance

        def handler(*args, **kwargs):
            return RequestHandlerClass(*args, controller_instance=controller_instance, **kwargs)

        super().__init__(server_address, handler)
        self._run_thread = None

    def start(self, blocking=True):
        if blocking:
            logger.info("Starting server in blocking mode...")
            self.serve_forever()
        else:
            logger.info("Starting server in non-blocking mode...")
            self._run_thread = threading.Thread(target=self.serve_forever, daemon=True)
            self._run_thread.start()
        logger.info("Server started.")

    def stop(self):
        logger.info("Stopping server...")
        self.shutdown()
        self.server_close()
        if self._run_thread:
            self._run_thread.join()
        logger.info("Server stopped.")
