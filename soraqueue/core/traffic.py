"""
Traffic observer: the single entry point for anything that sees requests
to or responses from the Sora backend (a browser bridge, a proxy log, a
HAR replay). Headers feed the credential store; pending-work bodies feed
the capacity monitor.
"""

import logging
from typing import Mapping
from urllib.parse import urlparse

from soraqueue.core.constants import SERVICE_HOST, PENDING_URL_MARKER
from soraqueue.core.capacity import CapacityMonitor
from soraqueue.core.credentials import CredentialStore

logger = logging.getLogger(__name__)


def is_service_url(url: str, host: str = SERVICE_HOST) -> bool:
    try:
        netloc = urlparse(url).netloc.lower()
    except (TypeError, ValueError):
        return False
    return netloc == host or netloc.endswith(f".{host}")


class TrafficObserver:

    def __init__(self, credentials: CredentialStore, monitor: CapacityMonitor,
                 host: str = SERVICE_HOST):
        self.credentials = credentials
        self.monitor = monitor
        self.host = host

    def observe_request(self, url: str, headers: Mapping[str, str]) -> bool:
        """Report outgoing request headers. Returns True if credentials changed."""
        if not is_service_url(url, self.host):
            return False
        return self.credentials.observe(headers)

    def observe_response(self, url: str, body) -> bool:
        """Report a response body. Only pending-work responses are used."""
        if PENDING_URL_MARKER not in (urlparse(url).path or ""):
            return False
        logger.debug("Observed pending response from %s", url)
        return self.monitor.ingest(body)
