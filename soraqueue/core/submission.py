"""
Submission client: builds and sends one job-creation request.
Classifies the outcome as success or failure; never retries.
"""

import json
import logging

from soraqueue.core.constants import (
    ErrorCode, FRAMES_BY_DURATION, DEFAULT_FRAME_COUNT, DEFAULT_SIZE_TIER,
    VideoModel, LOG_BODY_MAX_CHARS,
)
from soraqueue.core.credentials import CredentialStore
from soraqueue.core.error_codes import QueueError
from soraqueue.core.models import Job, VideoSettings, SubmitOutcome
from soraqueue.core.sora_api import SoraApiClient

logger = logging.getLogger(__name__)


def frames_for_duration(duration_seconds) -> int:
    """Map a clip duration to the service's frame count (30 fps)."""
    return FRAMES_BY_DURATION.get(duration_seconds, DEFAULT_FRAME_COUNT)


def build_create_payload(prompt: str, settings: VideoSettings) -> dict:
    """Build the /nf/create body. Unused features are sent as null/empty."""
    return {
        'kind': 'video',
        'prompt': prompt,
        'title': None,
        'orientation': settings.orientation,
        'size': settings.size_tier or DEFAULT_SIZE_TIER,
        'n_frames': frames_for_duration(settings.duration_seconds),
        'inpaint_items': [],
        'remix_target_id': None,
        'metadata': None,
        'cameo_ids': None,
        'cameo_replacements': None,
        'model': settings.model or VideoModel.STANDARD,
        'style_id': None,
        'audio_caption': None,
        'audio_transcript': None,
        'video_caption': None,
        'storyboard_id': None,
    }


class SubmissionClient:

    def __init__(self, credentials: CredentialStore, api: SoraApiClient):
        self.credentials = credentials
        self.api = api

    def submit(self, job: Job, settings: VideoSettings) -> SubmitOutcome:
        # The scheduler waits for credentials first; checked again here.
        if not self.credentials.is_ready():
            logger.error("Authorization header not available, cannot submit")
            return SubmitOutcome.failed(ErrorCode.NO_CREDENTIAL,
                                        "Authorization not captured")

        payload = build_create_payload(job.full_prompt, settings)
        logger.debug("Payload: %s...", json.dumps(payload)[:LOG_BODY_MAX_CHARS])

        try:
            resp = self.api.create_video(payload)
        except QueueError as e:
            logger.error("API error: %s", e.message)
            return SubmitOutcome.failed(e.code, e.message, e.status_code)
        except Exception as e:
            # e.g. UnicodeEncodeError for a header value http.client cannot encode
            logger.error("Unexpected submission error: %s", e, exc_info=True)
            return SubmitOutcome.failed(ErrorCode.REMOTE_ERROR, f"{type(e).__name__}: {e}")

        logger.info("API response OK (%d): %s", resp.status_code,
                    (resp.text or "")[:LOG_BODY_MAX_CHARS])
        return SubmitOutcome.ok(resp.status_code, resp.text)
