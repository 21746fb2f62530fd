"""
Shared constants for SoraQueue.
Imported by every other module.
"""

import pathlib
import sys

# ── Application identity ──────────────────────────────────────────────
APP_NAME = "SoraQueue"
APP_DISPLAY_NAME = "Sora Queue"
APP_VERSION = "5.0.0"

# ── Filesystem paths ─────────────────────────────────────────────────
HOME = pathlib.Path.home()

if sys.platform == "darwin":
    APP_SUPPORT_DIR = HOME / "Library" / "Application Support" / APP_NAME
    LOG_DIR = HOME / "Library" / "Logs" / APP_NAME
else:
    APP_SUPPORT_DIR = HOME / ".config" / APP_NAME
    LOG_DIR = HOME / ".local" / "state" / APP_NAME

CONFIG_PATH = APP_SUPPORT_DIR / "config.json"
LOG_FILE = LOG_DIR / "app.log"

# ── Remote service ────────────────────────────────────────────────────
DEFAULT_BASE_URL = "https://sora.chatgpt.com"
SERVICE_HOST = "sora.chatgpt.com"
CREATE_PATH = "/backend/nf/create"
PENDING_PATH = "/backend/nf/pending"
DRAFTS_PATH = "/backend/project_y/profile/drafts"
PENDING_URL_MARKER = "/pending"

# Wire header names
HEADER_AUTHORIZATION = "Authorization"
HEADER_DEVICE_ID = "oai-device-id"
HEADER_SENTINEL = "openai-sentinel-token"

# Persisted cookie carrying the device id
DEVICE_ID_COOKIE = "oai-did"

# Keys a pending-work object may wrap its task list under
PENDING_LIST_KEYS = ("tasks", "items")
ACTIVE_TASK_STATUSES = ("running", "pending")

# ── Job state values ─────────────────────────────────────────────────
class JobState:
    PENDING = "PENDING"
    SENT = "SENT"
    FAILED = "FAILED"

# ── Queue phases ─────────────────────────────────────────────────────
class QueuePhase:
    IDLE = "IDLE"
    BURSTING = "BURSTING"
    AWAITING_SLOT = "AWAITING_SLOT"
    PAUSED = "PAUSED"
    STOPPED = "STOPPED"
    COMPLETE = "COMPLETE"

ACTIVE_PHASES = {QueuePhase.BURSTING, QueuePhase.AWAITING_SLOT, QueuePhase.PAUSED}

# ── Named timers ──────────────────────────────────────────────────────
class TimerName:
    BURST = "burst"
    POLL = "poll"
    SETTLE = "settle"

# ── Error codes ───────────────────────────────────────────────────────
class ErrorCode:
    # Recoverable
    NO_CREDENTIAL = "ERR_NO_CREDENTIAL"
    REMOTE_ERROR = "ERR_REMOTE"
    MALFORMED_PAYLOAD = "ERR_MALFORMED_PAYLOAD"

    # Rejected synchronously
    EMPTY_JOB_LIST = "ERR_EMPTY_JOB_LIST"
    INVALID_JOB = "ERR_INVALID_JOB"
    UNKNOWN_COMMAND = "ERR_UNKNOWN_COMMAND"

RECOVERABLE_ERRORS = {
    ErrorCode.NO_CREDENTIAL,
    ErrorCode.REMOTE_ERROR,
    ErrorCode.MALFORMED_PAYLOAD,
}

# ── Video settings ────────────────────────────────────────────────────
class VideoModel:
    STANDARD = "sy_8"
    PRO = "sy_8_pro"

# Names the control surface accepts for each model
MODEL_ALIASES = {
    "sora2": VideoModel.STANDARD,
    "standard": VideoModel.STANDARD,
    VideoModel.STANDARD: VideoModel.STANDARD,
    "sora2pro": VideoModel.PRO,
    "pro": VideoModel.PRO,
    VideoModel.PRO: VideoModel.PRO,
}

class Orientation:
    PORTRAIT = "portrait"
    LANDSCAPE = "landscape"
    SQUARE = "square"

ORIENTATIONS = (Orientation.PORTRAIT, Orientation.LANDSCAPE, Orientation.SQUARE)

DEFAULT_DURATION_SEC = 10
DEFAULT_SIZE_TIER = "small"
SUPPORTED_DURATIONS = (5, 10, 15, 20)

# 30 frames per second
FRAMES_BY_DURATION = {
    5: 150,
    10: 300,
    15: 450,
    20: 600,
}
DEFAULT_FRAME_COUNT = 300

# ── Scheduler timing defaults ─────────────────────────────────────────
BURST_SIZE = 3
BURST_INTERVAL_SEC = 3.0       # between burst submissions
SETTLE_DELAY_SEC = 5.0         # after an empty slot is detected
POLL_INTERVAL_SEC = 2.0        # capacity polling while awaiting a slot
CREDENTIAL_RETRY_SEC = 2.0     # while no authorization is known

REQUEST_TIMEOUT_SEC = 30
DRAFTS_LIMIT = 15

# ── Misc ──────────────────────────────────────────────────────────────
ERROR_BODY_MAX_CHARS = 300
LOG_BODY_MAX_CHARS = 100
SECRET_VISIBLE_CHARS = 8
