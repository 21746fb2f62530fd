"""
HTTP client for the Sora backend endpoints used by the queue.
POST /backend/nf/create, GET /backend/nf/pending, GET /backend/project_y/profile/drafts.
Requests are not retried here.
"""

import json
import logging
import requests

from soraqueue.core.credentials import CredentialStore
from soraqueue.core.error_codes import QueueError
from soraqueue.core.constants import (
    ErrorCode, DEFAULT_BASE_URL, CREATE_PATH, PENDING_PATH, DRAFTS_PATH,
    REQUEST_TIMEOUT_SEC, ERROR_BODY_MAX_CHARS, DRAFTS_LIMIT,
)

logger = logging.getLogger(__name__)


class SoraApiClient:
    """Thin wrapper over a requests.Session that injects captured credentials."""

    def __init__(self, credentials: CredentialStore, base_url: str = DEFAULT_BASE_URL,
                 timeout: float = REQUEST_TIMEOUT_SEC,
                 session: requests.Session | None = None):
        self.credentials = credentials
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.session = session or requests.Session()

    def close(self):
        self.session.close()

    # ── Endpoints ─────────────────────────────────────────────────────

    def create_video(self, payload: dict) -> requests.Response:
        """Submit one job-creation payload. Returns the 2xx response."""
        return self._request('POST', CREATE_PATH, "create",
                             data=json.dumps(payload))

    def fetch_pending(self) -> str:
        """Fetch the raw pending-work body (parsed by the capacity monitor)."""
        resp = self._request('GET', PENDING_PATH, "pending")
        return resp.text

    def fetch_drafts(self, limit: int = DRAFTS_LIMIT) -> object:
        """Fetch completed drafts metadata."""
        resp = self._request('GET', DRAFTS_PATH, "drafts",
                             params={'limit': int(limit)})
        try:
            return resp.json()
        except ValueError:
            raise QueueError(ErrorCode.REMOTE_ERROR,
                             "Failed to parse drafts response JSON",
                             status_code=resp.status_code)

    def verify_credentials(self) -> tuple[bool, str]:
        """
        Check the captured credentials with a lightweight pending request.
        Returns (success: bool, message: str).
        """
        try:
            self.fetch_pending()
            return True, "Credentials accepted"
        except QueueError as e:
            if e.code == ErrorCode.NO_CREDENTIAL:
                return False, "No authorization captured yet"
            if e.status_code in (401, 403):
                return False, "Authorization invalid or expired"
            return False, e.message

    # ── Internals ─────────────────────────────────────────────────────

    def _request(self, method: str, path: str, label: str, **kwargs) -> requests.Response:
        headers = self.credentials.build_headers()
        if 'Authorization' not in headers:
            raise QueueError(ErrorCode.NO_CREDENTIAL,
                             f"Authorization not available for {label} request")

        url = f"{self.base_url}{path}"
        try:
            resp = self.session.request(method, url, headers=headers,
                                        timeout=self.timeout, **kwargs)
        except requests.exceptions.Timeout:
            raise QueueError(ErrorCode.REMOTE_ERROR, f"{label} request timed out")
        except requests.exceptions.ConnectionError:
            raise QueueError(ErrorCode.REMOTE_ERROR, f"Network error on {label} request")
        except requests.exceptions.RequestException as e:
            raise QueueError(ErrorCode.REMOTE_ERROR, f"{label} request failed: {e}")

        if not 200 <= resp.status_code < 300:
            error_body = resp.text[:ERROR_BODY_MAX_CHARS] if resp.text else "No response body"
            raise QueueError(ErrorCode.REMOTE_ERROR,
                             f"{label} returned {resp.status_code}: {error_body}",
                             status_code=resp.status_code)
        return resp
