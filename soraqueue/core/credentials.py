"""
Credential store for the remote video API.
Holds the most recently observed authentication headers.
- Field-wise last-write-wins merge (order of arrival does not matter)
- Thread-safe: observations may arrive from any thread
- Secrets are masked before they reach the log
"""

import logging
import threading
from dataclasses import replace
from typing import Mapping

from soraqueue.core.constants import (
    HEADER_AUTHORIZATION, HEADER_DEVICE_ID, HEADER_SENTINEL,
    DEVICE_ID_COOKIE, SECRET_VISIBLE_CHARS,
)
from soraqueue.core.models import CredentialBundle

logger = logging.getLogger(__name__)

# Accepted spellings (lower-cased) -> bundle field
_FIELD_ALIASES = {
    'authorization': 'authorization',
    'device_id': 'device_id',
    HEADER_DEVICE_ID: 'device_id',
    'sentinel_token': 'sentinel_token',
    HEADER_SENTINEL: 'sentinel_token',
}


def mask_secret(value: str | None) -> str:
    """Shorten a secret to a loggable prefix."""
    if not value:
        return "<none>"
    if len(value) <= SECRET_VISIBLE_CHARS:
        return "***"
    return f"{value[:SECRET_VISIBLE_CHARS]}..."


def device_id_from_cookie(cookie_header: str | None) -> str | None:
    """Extract the persisted device id from a Cookie header string."""
    if not cookie_header:
        return None
    for part in cookie_header.split(';'):
        name, sep, value = part.strip().partition('=')
        if sep and name == DEVICE_ID_COOKIE and value:
            return value
    return None


class CredentialStore:
    """Process-wide holder of the current CredentialBundle."""

    def __init__(self, initial: CredentialBundle | None = None):
        self._bundle = replace(initial) if initial else CredentialBundle()
        self._lock = threading.Lock()

    def observe(self, partial: Mapping[str, str | None]) -> bool:
        """
        Merge non-empty fields from a partial bundle or a header mapping.
        Unknown keys are ignored. Returns True if anything changed.
        """
        updates = {}
        for key, value in partial.items():
            field_name = _FIELD_ALIASES.get(str(key).lower())
            if field_name and value:
                updates[field_name] = str(value)

        if not updates:
            return False

        changed = False
        with self._lock:
            for field_name, value in updates.items():
                if getattr(self._bundle, field_name) != value:
                    setattr(self._bundle, field_name, value)
                    changed = True

        if changed:
            if 'authorization' in updates:
                logger.info("Authorization captured (%s)", mask_secret(updates['authorization']))
            else:
                logger.debug("Credential fields updated: %s", ', '.join(sorted(updates)))
        return changed

    def observe_cookie(self, cookie_header: str | None) -> bool:
        """Seed the device id from the persisted oai-did cookie."""
        device_id = device_id_from_cookie(cookie_header)
        if not device_id:
            return False
        logger.info("Device id extracted from cookie: %s", mask_secret(device_id))
        return self.observe({'device_id': device_id})

    def clear(self, field_name: str | None = None):
        """Forget one credential field, or all of them."""
        with self._lock:
            if field_name is None:
                self._bundle = CredentialBundle()
            else:
                setattr(self._bundle, _FIELD_ALIASES.get(field_name.lower(), field_name), None)

    def snapshot(self) -> CredentialBundle:
        with self._lock:
            return replace(self._bundle)

    def is_ready(self) -> bool:
        with self._lock:
            return self._bundle.is_ready

    def build_headers(self) -> dict[str, str]:
        """Build request headers from the current bundle."""
        bundle = self.snapshot()
        headers = {
            'Content-Type': 'application/json',
            'Accept': 'application/json',
        }
        if bundle.authorization:
            headers[HEADER_AUTHORIZATION] = bundle.authorization
        if bundle.device_id:
            headers[HEADER_DEVICE_ID] = bundle.device_id
        if bundle.sentinel_token:
            headers[HEADER_SENTINEL] = bundle.sentinel_token
        return headers
