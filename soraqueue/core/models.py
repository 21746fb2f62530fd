"""
Data models (plain dataclasses) for SoraQueue.
"""

from dataclasses import dataclass, field, replace
from typing import Optional

from soraqueue.core.constants import (
    JobState, QueuePhase, VideoModel, Orientation,
    DEFAULT_DURATION_SEC, DEFAULT_SIZE_TIER,
)


@dataclass
class Job:
    scene_label: str                 # display only
    full_prompt: str
    state: str = JobState.PENDING


@dataclass
class VideoSettings:
    model: str = VideoModel.STANDARD
    orientation: str = Orientation.PORTRAIT
    duration_seconds: int = DEFAULT_DURATION_SEC
    size_tier: str = DEFAULT_SIZE_TIER

    def copy(self) -> "VideoSettings":
        return replace(self)


@dataclass
class CredentialBundle:
    authorization: Optional[str] = None
    device_id: Optional[str] = None
    sentinel_token: Optional[str] = None

    @property
    def is_ready(self) -> bool:
        return bool(self.authorization)


@dataclass(frozen=True)
class CapacitySnapshot:
    task_count: int
    observed_at: float
    running_count: int = 0

    @property
    def has_free_slot(self) -> bool:
        return self.task_count == 0


@dataclass
class RunStats:
    sent: int = 0
    errors: int = 0
    started_at: Optional[float] = None


@dataclass
class QueueRunState:
    jobs: list[Job] = field(default_factory=list)
    cursor: int = 0
    phase: str = QueuePhase.IDLE
    stats: RunStats = field(default_factory=RunStats)
    awaiting_slot: bool = False
    paused_from: Optional[str] = None   # BURSTING or AWAITING_SLOT while PAUSED

    @property
    def total(self) -> int:
        return len(self.jobs)

    @property
    def remaining(self) -> int:
        return len(self.jobs) - self.cursor

    @property
    def current_job(self) -> Job | None:
        if self.cursor < len(self.jobs):
            return self.jobs[self.cursor]
        return None


@dataclass
class SubmitOutcome:
    success: bool
    error_code: Optional[str] = None
    status_code: Optional[int] = None
    detail: Optional[str] = None

    @classmethod
    def ok(cls, status_code: int | None = None, detail: str | None = None) -> "SubmitOutcome":
        return cls(success=True, status_code=status_code, detail=detail)

    @classmethod
    def failed(cls, error_code: str, detail: str | None = None,
               status_code: int | None = None) -> "SubmitOutcome":
        return cls(success=False, error_code=error_code,
                   status_code=status_code, detail=detail)


@dataclass(frozen=True)
class SchedulerTiming:
    burst_size: int
    burst_interval_sec: float
    settle_delay_sec: float
    poll_interval_sec: float
    credential_retry_sec: float
