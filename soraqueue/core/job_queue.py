"""
Queue Scheduler.
Submits an initial burst of jobs, then releases one job per free slot
reported by the capacity monitor.

Phases: IDLE → BURSTING → (AWAITING_SLOT ↔ PAUSED) → COMPLETE,
with STOPPED reachable from any active phase.

Every wait is a named timer on the TimerService; steps run one at a time
on the timer thread. Control calls (pause/resume/stop/apply_settings) may
come from any thread; they only flip state, and each step re-checks the
phase before doing anything with side effects.
"""

import logging
import threading
from dataclasses import replace
from typing import Callable, Mapping, Optional

from soraqueue.core.constants import (
    QueuePhase, JobState, TimerName, ErrorCode, MODEL_ALIASES, ORIENTATIONS,
    ACTIVE_PHASES, SUPPORTED_DURATIONS,
)
from soraqueue.core.capacity import CapacityMonitor
from soraqueue.core.config import default_timing
from soraqueue.core.credentials import CredentialStore
from soraqueue.core.error_codes import QueueError
from soraqueue.core.models import (
    Job, VideoSettings, QueueRunState, RunStats, SchedulerTiming, SubmitOutcome,
)
from soraqueue.core.submission import SubmissionClient
from soraqueue.core.timers import TimerService

logger = logging.getLogger(__name__)


def merge_video_settings(current: VideoSettings, data: Mapping) -> VideoSettings:
    """
    Apply a settings mapping ({model, orientation, duration, size}) on top of
    the current settings. Invalid values are logged and ignored.
    """
    settings = current.copy()

    orientation = data.get('orientation')
    if orientation:
        if orientation in ORIENTATIONS:
            settings.orientation = orientation
        else:
            logger.warning("Ignoring unknown orientation %r", orientation)

    duration = data.get('duration', data.get('duration_seconds'))
    if duration:
        try:
            seconds = int(duration)
        except (TypeError, ValueError):
            seconds = None
        if seconds in SUPPORTED_DURATIONS:
            settings.duration_seconds = seconds
        else:
            logger.warning("Ignoring unsupported duration %r", duration)

    model = data.get('model')
    if model:
        wire_model = MODEL_ALIASES.get(str(model).lower())
        if wire_model:
            settings.model = wire_model
        else:
            logger.warning("Ignoring unknown model %r", model)

    size = data.get('size', data.get('size_tier'))
    if size:
        settings.size_tier = str(size)

    return settings


class QueueScheduler:
    """
    Owns the run state and drives submissions.
    Emits on_progress after every recorded outcome and on_complete once per
    completed run.
    """

    def __init__(self, credentials: CredentialStore, monitor: CapacityMonitor,
                 submitter: SubmissionClient, timers: TimerService,
                 timing: SchedulerTiming | None = None,
                 settings: VideoSettings | None = None):
        self.credentials = credentials
        self.monitor = monitor
        self.submitter = submitter
        self.timers = timers
        self.timing = timing or default_timing()

        self._lock = threading.RLock()
        self._run = QueueRunState()
        self._settings = settings.copy() if settings else VideoSettings()
        self._generation = 0          # bumped on every start()
        self._in_flight = False

        self.monitor.on_slot_free = self._on_slot_free

        # Callbacks
        self.on_complete: Optional[Callable[[dict], None]] = None
        self.on_progress: Optional[Callable[[QueueRunState], None]] = None

    # ── Read accessors ────────────────────────────────────────────────

    @property
    def phase(self) -> str:
        with self._lock:
            return self._run.phase

    @property
    def settings(self) -> VideoSettings:
        with self._lock:
            return self._settings.copy()

    def run_snapshot(self) -> QueueRunState:
        """Copy of the current run state, safe to read without the lock."""
        with self._lock:
            run = self._run
            return replace(run, jobs=[replace(j) for j in run.jobs],
                           stats=replace(run.stats))

    def is_active(self) -> bool:
        return self.phase in ACTIVE_PHASES

    # ── Control operations ────────────────────────────────────────────

    def start(self, jobs: list[Job], settings=None):
        """Begin a fresh run. Raises QueueError for an empty job list."""
        if not jobs:
            logger.error("No prompts, queue not started")
            raise QueueError(ErrorCode.EMPTY_JOB_LIST, "Cannot start a queue without jobs")

        with self._lock:
            if settings is not None:
                self.apply_settings(settings)

            self.timers.cancel_all()
            self.monitor.disarm()
            self._generation += 1
            # an outcome still out from the previous run is discarded by generation
            self._in_flight = False
            self._run = QueueRunState(
                jobs=[Job(scene_label=j.scene_label, full_prompt=j.full_prompt) for j in jobs],
                phase=QueuePhase.BURSTING,
                stats=RunStats(started_at=self.timers.now()),
            )
            gen = self._generation

            logger.info("Starting queue: %d prompt(s)", len(jobs))
            logger.info("First %d will be sent in a burst, then one per free slot "
                        "(+%.0fs settle)", self._burst_limit(), self.timing.settle_delay_sec)
            self.timers.call_later(TimerName.BURST, 0, lambda: self._burst_step(gen))

    def pause(self) -> bool:
        with self._lock:
            run = self._run
            if run.phase not in (QueuePhase.BURSTING, QueuePhase.AWAITING_SLOT):
                logger.info("Pause ignored in phase %s", run.phase)
                return False
            logger.info("Pausing queue")
            run.paused_from = run.phase
            run.phase = QueuePhase.PAUSED
            self.timers.cancel_all()
            self.monitor.disarm()
            return True

    def resume(self) -> bool:
        with self._lock:
            run = self._run
            if run.phase != QueuePhase.PAUSED:
                logger.info("Resume ignored in phase %s", run.phase)
                return False
            logger.info("Resuming queue")
            run.phase = run.paused_from or QueuePhase.BURSTING
            run.paused_from = None
            if self._in_flight:
                # the outstanding submission schedules the next step itself
                return True

            gen = self._generation
            if run.phase == QueuePhase.BURSTING:
                self.timers.call_later(TimerName.BURST, self.timing.burst_interval_sec,
                                       lambda: self._burst_step(gen))
            else:
                self._await_next_slot_locked()
            return True

    def stop(self) -> bool:
        with self._lock:
            self.timers.cancel_all()
            self.monitor.disarm()
            run = self._run
            if run.phase not in ACTIVE_PHASES:
                logger.info("Stop ignored in phase %s", run.phase)
                return False
            logger.info("Stopping queue at %d/%d", run.cursor, run.total)
            run.phase = QueuePhase.STOPPED
            run.awaiting_slot = False
            run.paused_from = None
            return True

    def apply_settings(self, settings):
        """Accept a VideoSettings or a {model, orientation, duration, size} mapping."""
        with self._lock:
            if isinstance(settings, VideoSettings):
                self._settings = settings.copy()
            else:
                self._settings = merge_video_settings(self._settings, settings or {})
            s = self._settings
        logger.info("Video settings: model=%s orientation=%s duration=%ss size=%s",
                    s.model, s.orientation, s.duration_seconds, s.size_tier)

    # ── Burst phase ───────────────────────────────────────────────────

    def _burst_limit(self) -> int:
        return min(self.timing.burst_size, len(self._run.jobs))

    def _burst_step(self, gen: int):
        with self._lock:
            run = self._run
            if gen != self._generation or run.phase != QueuePhase.BURSTING:
                return
            if run.cursor >= run.total:
                self._complete_locked()
                return
            if run.cursor >= self._burst_limit():
                self._enter_awaiting_locked()
                return
            if not self.credentials.is_ready():
                logger.info("Waiting for authorization to be captured...")
                self.timers.call_later(TimerName.BURST, self.timing.credential_retry_sec,
                                       lambda: self._burst_step(gen))
                return

            job, settings = self._begin_submission_locked()
            logger.info("BURST [%d/%d]: %s", run.cursor + 1, self._burst_limit(),
                        _label(job))

        outcome = self._submit(job, settings)

        with self._lock:
            if not self._finish_submission_locked(gen, job, outcome):
                return
            run = self._run
            if run.phase != QueuePhase.BURSTING:
                return
            if run.cursor < self._burst_limit():
                self.timers.call_later(TimerName.BURST, self.timing.burst_interval_sec,
                                       lambda: self._burst_step(gen))
            else:
                self._enter_awaiting_locked()

    # ── Slot-paced phase ──────────────────────────────────────────────

    def _enter_awaiting_locked(self):
        logger.info("PENDING PHASE: watching for free slots")
        self._run.phase = QueuePhase.AWAITING_SLOT
        self._await_next_slot_locked()

    def _await_next_slot_locked(self):
        self._run.awaiting_slot = True
        self._schedule_poll_locked()
        # may fire _on_slot_free right away if a fresh empty reading is on hand
        self.monitor.arm_awaiting()

    def _schedule_poll_locked(self):
        gen = self._generation
        self.timers.call_later(TimerName.POLL, self.timing.poll_interval_sec,
                               lambda: self._poll_tick(gen))

    def _poll_tick(self, gen: int):
        with self._lock:
            if gen != self._generation or self._run.phase != QueuePhase.AWAITING_SLOT:
                return
            if not self.monitor.is_armed:
                return

        self.monitor.poll_once()

        with self._lock:
            if (gen == self._generation and self._run.phase == QueuePhase.AWAITING_SLOT
                    and self.monitor.is_armed):
                self._schedule_poll_locked()

    def _on_slot_free(self):
        """Edge event from the capacity monitor (any thread)."""
        with self._lock:
            run = self._run
            if run.phase != QueuePhase.AWAITING_SLOT or run.cursor >= run.total:
                return
            gen = self._generation
            logger.info("Free slot detected! Sending next in %.0fs...",
                        self.timing.settle_delay_sec)
            self.timers.cancel(TimerName.POLL)
            self.timers.call_later(TimerName.SETTLE, self.timing.settle_delay_sec,
                                   lambda: self._slot_step(gen))

    def _slot_step(self, gen: int):
        with self._lock:
            run = self._run
            if gen != self._generation or run.phase != QueuePhase.AWAITING_SLOT:
                return
            if run.cursor >= run.total:
                self._complete_locked()
                return
            if not self.credentials.is_ready():
                logger.info("Waiting for authorization to be captured...")
                self.timers.call_later(TimerName.SETTLE, self.timing.credential_retry_sec,
                                       lambda: self._slot_step(gen))
                return

            job, settings = self._begin_submission_locked()
            logger.info("SENDING [%d/%d]: %s", run.cursor + 1, run.total, _label(job))

        outcome = self._submit(job, settings)

        with self._lock:
            if not self._finish_submission_locked(gen, job, outcome):
                return
            if self._run.phase != QueuePhase.AWAITING_SLOT:
                return
            logger.info("Waiting for next free slot...")
            self._await_next_slot_locked()

    # ── Shared submission bookkeeping ─────────────────────────────────

    def _submit(self, job: Job, settings: VideoSettings) -> SubmitOutcome:
        """Run one submission outside the lock. Anything raised counts as a failed job."""
        try:
            return self.submitter.submit(job, settings)
        except Exception as e:
            logger.error("Submission raised: %s", e, exc_info=True)
            return SubmitOutcome.failed(ErrorCode.REMOTE_ERROR, f"{type(e).__name__}: {e}")

    def _begin_submission_locked(self) -> tuple[Job, VideoSettings]:
        self._in_flight = True
        # the last reading predates this job, so it cannot release the next one
        self.monitor.mark_stale()
        return self._run.current_job, self._settings.copy()

    def _finish_submission_locked(self, gen: int, job: Job, outcome: SubmitOutcome) -> bool:
        """
        Record the outcome and advance the cursor. Returns True when the
        caller should continue scheduling (run still current and not finished).
        """
        self._in_flight = False
        if gen != self._generation:
            logger.info("Discarding outcome from a previous run")
            return False

        run = self._run
        if outcome.success:
            job.state = JobState.SENT
            run.stats.sent += 1
            logger.info("Sent via API (%d/%d)", run.stats.sent, run.total)
        else:
            job.state = JobState.FAILED
            run.stats.errors += 1
            logger.warning("Failed to send job %d: [%s] %s", run.cursor + 1,
                           outcome.error_code, (outcome.detail or "")[:200])
        run.cursor += 1    # failed jobs are not retried

        if self.on_progress:
            try:
                self.on_progress(self.run_snapshot())
            except Exception as e:
                logger.error("on_progress callback failed: %s", e, exc_info=True)

        if run.phase == QueuePhase.STOPPED:
            return False
        if run.cursor >= run.total:
            self._complete_locked()
            return False
        return True

    def _complete_locked(self):
        self.timers.cancel_all()
        self.monitor.disarm()
        run = self._run
        run.phase = QueuePhase.COMPLETE
        run.awaiting_slot = False
        run.paused_from = None

        elapsed = self.timers.now() - (run.stats.started_at or self.timers.now())
        minutes, seconds = divmod(int(elapsed), 60)
        logger.info("QUEUE COMPLETE: sent %d/%d, errors %d, total time %dm %ds",
                    run.stats.sent, run.total, run.stats.errors, minutes, seconds)

        if self.on_complete:
            try:
                self.on_complete({
                    'sent': run.stats.sent,
                    'errors': run.stats.errors,
                    'total': run.total,
                    'elapsed_sec': elapsed,
                })
            except Exception as e:
                logger.error("on_complete callback failed: %s", e, exc_info=True)


def _label(job: Job) -> str:
    text = job.scene_label or job.full_prompt or "Prompt"
    return f"{text[:50]}..." if len(text) > 50 else text
