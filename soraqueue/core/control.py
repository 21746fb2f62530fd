"""
Control surface: maps external command messages onto scheduler operations.

Messages look like {"type": "START_QUEUE", "data": {...}}; every command
returns a response dict. A QUEUE_COMPLETE notification is pushed through
`notify` once per completed run.
"""

import logging
from typing import Callable, Optional

from soraqueue.core.constants import DRAFTS_LIMIT
from soraqueue.core.error_codes import QueueError
from soraqueue.core.job_queue import QueueScheduler
from soraqueue.core.prompt_parse import jobs_from_entries
from soraqueue.core.sora_api import SoraApiClient
from soraqueue.core.status import StatusReporter

logger = logging.getLogger(__name__)


def _ok() -> dict:
    return {'success': True}


def _fail(message: str) -> dict:
    return {'success': False, 'error': message}


class ControlSurface:

    def __init__(self, scheduler: QueueScheduler, reporter: StatusReporter,
                 api: SoraApiClient, drafts_limit: int = DRAFTS_LIMIT):
        self.scheduler = scheduler
        self.reporter = reporter
        self.api = api
        self.drafts_limit = drafts_limit

        # Callback
        self.notify: Optional[Callable[[dict], None]] = None

        self.scheduler.on_complete = self._on_queue_complete

        self._handlers: dict[str, Callable[[dict], dict]] = {
            'START_QUEUE': self._start_queue,
            'STOP_QUEUE': self._stop_queue,
            'PAUSE_QUEUE': self._pause_queue,
            'RESUME_QUEUE': self._resume_queue,
            'GET_STATUS': self._get_status,
            'APPLY_VIDEO_SETTINGS': self._apply_video_settings,
            'GET_DRAFTS': self._get_drafts,
        }

    def dispatch(self, message: dict) -> dict:
        msg_type = message.get('type') if isinstance(message, dict) else None
        handler = self._handlers.get(msg_type)
        if handler is None:
            logger.warning("Unknown message type: %r", msg_type)
            return {'success': False, 'error': 'Unknown message'}
        data = message.get('data')
        if data is None:
            data = {}
        if not isinstance(data, dict):
            logger.warning("%s data is not an object: %s", msg_type, type(data).__name__)
            return _fail("Message data must be an object")
        return handler(data)

    def list_completed_artifacts(self, limit: int | None = None):
        """Fetch completed drafts. Raises QueueError on failure."""
        return self.api.fetch_drafts(limit or self.drafts_limit)

    # ── Handlers ──────────────────────────────────────────────────────

    def _start_queue(self, data: dict) -> dict:
        entries = data.get('prompts', data.get('jobs'))
        if not entries:
            logger.error("START_QUEUE without prompts")
            return _fail("No prompts provided")
        settings = data.get('settings')
        if isinstance(settings, dict) and 'videoSettings' in settings:
            settings = settings['videoSettings']
        if settings is not None and not isinstance(settings, dict):
            return _fail("Settings must be an object")
        try:
            jobs = jobs_from_entries(entries)
            self.scheduler.start(jobs, settings)
        except QueueError as e:
            return _fail(e.message)
        return _ok()

    def _stop_queue(self, data: dict) -> dict:
        self.scheduler.stop()
        return _ok()

    def _pause_queue(self, data: dict) -> dict:
        self.scheduler.pause()
        return _ok()

    def _resume_queue(self, data: dict) -> dict:
        self.scheduler.resume()
        return _ok()

    def _get_status(self, data: dict) -> dict:
        return self.reporter.snapshot()

    def _apply_video_settings(self, data: dict) -> dict:
        settings = data.get('settings', data)
        if not isinstance(settings, dict):
            return _fail("Settings must be an object")
        self.scheduler.apply_settings(settings)
        return _ok()

    def _get_drafts(self, data: dict) -> dict:
        try:
            drafts = self.list_completed_artifacts(data.get('limit'))
        except QueueError as e:
            logger.error("Failed to fetch drafts: %s", e.message)
            return _fail(e.message)
        return {'success': True, 'drafts': drafts}

    # ── Notifications ─────────────────────────────────────────────────

    def _on_queue_complete(self, summary: dict):
        if self.notify:
            self.notify({
                'type': 'QUEUE_COMPLETE',
                'data': {
                    'sent': summary['sent'],
                    'errors': summary['errors'],
                    'total': summary['total'],
                },
            })
