"""
Capacity monitor: turns pending-work payloads into a free-slot signal.

Two feeds reach ingest(): passively observed pending responses and the
monitor's own polls. The slot-free event is edge-triggered: it fires once
per arm_awaiting(), on the first empty reading, and never again until re-armed.
"""

import json
import logging
import threading
import time
from typing import Callable, Optional

from soraqueue.core.constants import (
    ErrorCode, PENDING_LIST_KEYS, ACTIVE_TASK_STATUSES,
)
from soraqueue.core.credentials import CredentialStore
from soraqueue.core.error_codes import QueueError
from soraqueue.core.models import CapacitySnapshot
from soraqueue.core.sora_api import SoraApiClient

logger = logging.getLogger(__name__)


def parse_pending_payload(raw, observed_at: float) -> CapacitySnapshot:
    """
    Normalize a pending-work payload into a CapacitySnapshot.
    Accepts JSON text/bytes or decoded data: a bare list of tasks, or an
    object carrying the list under 'tasks' or 'items'.
    Raises QueueError(MALFORMED_PAYLOAD) for any other shape.
    """
    data = raw
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = raw.decode('utf-8')
        except UnicodeDecodeError as e:
            raise QueueError(ErrorCode.MALFORMED_PAYLOAD, f"Pending body is not UTF-8: {e}")
    if isinstance(raw, str):
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise QueueError(ErrorCode.MALFORMED_PAYLOAD, f"Pending body is not JSON: {e}")

    if isinstance(data, dict):
        tasks = None
        for key in PENDING_LIST_KEYS:
            if isinstance(data.get(key), list):
                tasks = data[key]
                break
        if tasks is None:
            raise QueueError(ErrorCode.MALFORMED_PAYLOAD,
                             f"Pending object has no task list (keys: {sorted(data)[:5]})")
    elif isinstance(data, list):
        tasks = data
    else:
        raise QueueError(ErrorCode.MALFORMED_PAYLOAD,
                         f"Unexpected pending payload type: {type(data).__name__}")

    running = sum(
        1 for t in tasks
        if isinstance(t, dict) and t.get('status') in ACTIVE_TASK_STATUSES
    )
    return CapacitySnapshot(task_count=len(tasks), observed_at=observed_at,
                            running_count=running)


class CapacityMonitor:
    """Tracks the latest CapacitySnapshot and raises the slot-free edge event."""

    def __init__(self, credentials: CredentialStore, api: SoraApiClient,
                 clock: Callable[[], float] = time.time):
        self.credentials = credentials
        self.api = api
        self.clock = clock
        self._lock = threading.Lock()
        self._snapshot: Optional[CapacitySnapshot] = None
        self._fresh = False     # snapshot observed after the last submission
        self._armed = False

        # Callback
        self.on_slot_free: Optional[Callable[[], None]] = None

    # ── Read accessors ────────────────────────────────────────────────

    @property
    def snapshot(self) -> CapacitySnapshot | None:
        with self._lock:
            return self._snapshot

    @property
    def pending_count(self) -> int | None:
        snap = self.snapshot
        return snap.task_count if snap else None

    @property
    def is_armed(self) -> bool:
        with self._lock:
            return self._armed

    # ── Arming ────────────────────────────────────────────────────────

    def arm_awaiting(self):
        """
        Start listening for a free slot. A fresh empty reading already on
        hand counts as the transition and fires immediately.
        """
        with self._lock:
            self._armed = True
            fire = self._take_edge_locked()
        if fire:
            logger.info("Slot already free at arm time")
            self._emit_slot_free()

    def disarm(self):
        with self._lock:
            self._armed = False

    def mark_stale(self):
        """The retained reading predates a submission and no longer proves a free slot."""
        with self._lock:
            self._fresh = False

    # ── Feeds ─────────────────────────────────────────────────────────

    def ingest(self, raw) -> bool:
        """
        Parse a pending payload from either feed.
        Malformed payloads are logged and dropped. Returns True if parsed.
        """
        try:
            snap = parse_pending_payload(raw, self.clock())
        except QueueError as e:
            logger.warning("Ignoring pending payload: %s", e.message)
            return False

        with self._lock:
            self._snapshot = snap
            self._fresh = True
            fire = self._take_edge_locked()

        if snap.has_free_slot:
            logger.info("PENDING: [] (free slot)")
        else:
            logger.info("PENDING: %d task(s), %d running/pending",
                        snap.task_count, snap.running_count)

        if fire:
            self._emit_slot_free()
        return True

    def poll_once(self) -> bool:
        """Actively fetch pending work. Failures are dropped; the next poll retries."""
        if not self.credentials.is_ready():
            logger.info("Waiting for authorization before polling pending work...")
            return False
        try:
            body = self.api.fetch_pending()
        except QueueError as e:
            logger.info("Pending poll failed, will retry: %s", e.message)
            return False
        return self.ingest(body)

    # ── Internals ─────────────────────────────────────────────────────

    def _take_edge_locked(self) -> bool:
        if self._armed and self._fresh and self._snapshot and self._snapshot.has_free_slot:
            self._armed = False
            return True
        return False

    def _emit_slot_free(self):
        if self.on_slot_free:
            self.on_slot_free()
