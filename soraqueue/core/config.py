"""
Application configuration manager.
Stores settings in a JSON file under the application support directory.
"""

import json
import logging
from pathlib import Path

from soraqueue.core.constants import (
    CONFIG_PATH, DEFAULT_BASE_URL,
    BURST_SIZE, BURST_INTERVAL_SEC, SETTLE_DELAY_SEC, POLL_INTERVAL_SEC,
    CREDENTIAL_RETRY_SEC, REQUEST_TIMEOUT_SEC, DRAFTS_LIMIT,
    DEFAULT_DURATION_SEC, DEFAULT_SIZE_TIER, Orientation,
)
from soraqueue.core.models import SchedulerTiming

logger = logging.getLogger(__name__)

# Validation bounds: key -> (type, min, max, default)
_BOUNDS = {
    'burst_size': (int, 1, 10, BURST_SIZE),
    'burst_interval_sec': (float, 0.0, 60.0, BURST_INTERVAL_SEC),
    'settle_delay_sec': (float, 0.0, 120.0, SETTLE_DELAY_SEC),
    'poll_interval_sec': (float, 0.5, 60.0, POLL_INTERVAL_SEC),
    'credential_retry_sec': (float, 0.5, 60.0, CREDENTIAL_RETRY_SEC),
    'request_timeout_sec': (int, 5, 300, REQUEST_TIMEOUT_SEC),
    'drafts_limit': (int, 1, 100, DRAFTS_LIMIT),
}

_DEFAULTS = {
    'base_url': DEFAULT_BASE_URL,
    'burst_size': BURST_SIZE,
    'burst_interval_sec': BURST_INTERVAL_SEC,
    'settle_delay_sec': SETTLE_DELAY_SEC,
    'poll_interval_sec': POLL_INTERVAL_SEC,
    'credential_retry_sec': CREDENTIAL_RETRY_SEC,
    'request_timeout_sec': REQUEST_TIMEOUT_SEC,
    'drafts_limit': DRAFTS_LIMIT,
    'video_settings': {
        'model': 'sora2',
        'orientation': Orientation.PORTRAIT,
        'duration': DEFAULT_DURATION_SEC,
        'size': DEFAULT_SIZE_TIER,
    },
    'device_id': None,
}


def default_timing() -> SchedulerTiming:
    """Timing used when no config file is involved."""
    return SchedulerTiming(
        burst_size=BURST_SIZE,
        burst_interval_sec=BURST_INTERVAL_SEC,
        settle_delay_sec=SETTLE_DELAY_SEC,
        poll_interval_sec=POLL_INTERVAL_SEC,
        credential_retry_sec=CREDENTIAL_RETRY_SEC,
    )


class AppConfig:
    """Manages application configuration stored as JSON."""

    def __init__(self, config_path: Path | None = None):
        self.path = config_path or CONFIG_PATH
        self._data: dict = {}
        self.load()

    def load(self):
        """Load config from disk, merging with defaults."""
        self._data = json.loads(json.dumps(_DEFAULTS))
        if self.path.exists():
            try:
                with open(self.path, 'r') as f:
                    saved = json.load(f)
                for key, value in saved.items():
                    self._data[key] = self._validate(key, value)
            except Exception as e:
                logger.warning("Failed to load config: %s", e)

    def save(self):
        """Persist config to disk."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, 'w') as f:
            json.dump(self._data, f, indent=2)

    def get(self, key: str, default=None):
        return self._data.get(key, default)

    def set(self, key: str, value):
        value = self._validate(key, value)
        self._data[key] = value
        self.save()

    def override(self, key: str, value):
        """Like set(), for this process only (command-line flags)."""
        self._data[key] = self._validate(key, value)

    def _validate(self, key: str, value):
        """Validate and coerce config values to safe ranges."""
        if key in _BOUNDS:
            kind, low, high, fallback = _BOUNDS[key]
            try:
                value = kind(value)
            except (TypeError, ValueError):
                logger.warning("Invalid %s %r, using default", key, value)
                return fallback
            return max(low, min(high, value))

        if key == 'base_url':
            if not isinstance(value, str) or not value.strip():
                logger.warning("Invalid base_url %r, using default", value)
                return DEFAULT_BASE_URL
            return value.strip().rstrip('/')

        if key == 'video_settings':
            if not isinstance(value, dict):
                logger.warning("Invalid video_settings %r, using defaults", value)
                return dict(_DEFAULTS['video_settings'])
            merged = dict(_DEFAULTS['video_settings'])
            merged.update(value)
            return merged

        if key == 'device_id':
            return str(value) if value else None

        return value

    def as_dict(self) -> dict:
        return dict(self._data)

    def timing(self) -> SchedulerTiming:
        return SchedulerTiming(
            burst_size=self._data['burst_size'],
            burst_interval_sec=self._data['burst_interval_sec'],
            settle_delay_sec=self._data['settle_delay_sec'],
            poll_interval_sec=self._data['poll_interval_sec'],
            credential_retry_sec=self._data['credential_retry_sec'],
        )

    @property
    def base_url(self) -> str:
        return self._data.get('base_url', DEFAULT_BASE_URL)

    @property
    def request_timeout_sec(self) -> int:
        return self._data.get('request_timeout_sec', REQUEST_TIMEOUT_SEC)

    @property
    def drafts_limit(self) -> int:
        return self._data.get('drafts_limit', DRAFTS_LIMIT)

    @property
    def video_settings(self) -> dict:
        return dict(self._data.get('video_settings') or _DEFAULTS['video_settings'])

    @video_settings.setter
    def video_settings(self, value: dict):
        self._data['video_settings'] = self._validate('video_settings', value)
        self.save()

    @property
    def device_id(self) -> str | None:
        return self._data.get('device_id')

    @device_id.setter
    def device_id(self, value: str | None):
        self._data['device_id'] = value or None
        self.save()
