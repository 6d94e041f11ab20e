"""Replays deferred writes against the backend once connectivity returns."""

import json
import time

from rashtrackr_offline.core.errors import NetworkUnavailable, ReconciliationItemFailure
from rashtrackr_offline.core.network import Transport
from rashtrackr_offline.database.models import DeferredWrite, Request, SyncResult
from rashtrackr_offline.sync.queue import WriteQueue
from rashtrackr_offline.throttling.manager import SyncThrottle
from rashtrackr_offline.utils.logger import get_logger


class Reconciler:
    """Runs reconciliation passes over a write queue.

    A pass is rate limited by ``throttle``; each item is replayed once per
    pass and removed only when the backend answers with an ok status.
    Failures are isolated per item and never abort the rest of the batch.
    """

    def __init__(self, queue: WriteQueue, transport: Transport, endpoint_url: str, throttle: SyncThrottle) -> None:
        self.queue = queue
        self.transport = transport
        self.endpoint_url = endpoint_url
        self.throttle = throttle
        self.logger = get_logger("sync.reconciler")

    def _build_request(self, item: DeferredWrite) -> Request:
        headers = {"Content-Type": "application/json"}
        if item.token:
            headers["Authorization"] = f"Bearer {item.token}"
        return Request(
            url=self.endpoint_url,
            method="POST",
            headers=headers,
            body=json.dumps(item.payload).encode("utf-8"),
        )

    def replay(self, item: DeferredWrite) -> None:
        """Replay one write.

        Raises:
            ReconciliationItemFailure: If the backend did not acknowledge it
        """
        try:
            response = self.transport.fetch(self._build_request(item))
        except NetworkUnavailable as e:
            raise ReconciliationItemFailure(item.id, f"network unavailable: {e.reason}") from e
        if not response.ok:
            raise ReconciliationItemFailure(item.id, f"HTTP {response.status} {response.status_text}".strip())

    def _note_failure(self, item: DeferredWrite, reason: str) -> None:
        try:
            self.queue.record_failure(item.id, reason)
        except Exception as e:
            self.logger.warning(f"Could not record failed attempt for {item.id}: {e}")

    def run(self) -> SyncResult:
        """Run one reconciliation pass, unless throttled."""
        if not self.throttle.try_acquire():
            self.logger.debug(
                f"Skipping reconciliation, next pass allowed in {self.throttle.seconds_until_allowed():.0f}s"
            )
            return SyncResult(skipped=True, reason="throttled")

        result = SyncResult()
        start_time = time.time()
        try:
            pending = self.queue.list_pending()
            self.logger.info(f"Reconciling {len(pending)} deferred write(s)")
            for item in pending:
                result.attempted += 1
                try:
                    self.replay(item)
                    self.queue.remove(item.id)
                    result.succeeded.append(item.id)
                except ReconciliationItemFailure as e:
                    self.logger.error(f"Failed to sync report: {e}")
                    result.failed.append(item.id)
                    result.errors.append(e.reason)
                    self._note_failure(item, e.reason)
                except Exception as e:
                    self.logger.error(f"Failed to sync report {item.id}: {e}")
                    result.failed.append(item.id)
                    result.errors.append(str(e))
                    self._note_failure(item, str(e))
        except Exception as e:
            self.logger.error(f"Background sync failed: {e}")
            result.errors.append(str(e))
        result.duration_seconds = time.time() - start_time
        self.logger.info(
            f"Reconciliation finished: {len(result.succeeded)} synced, {len(result.failed)} still queued"
        )
        return result
