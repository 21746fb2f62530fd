"""
Status reporting: a side-effect-free projection of scheduler state.
"""

from soraqueue.core.constants import APP_VERSION, QueuePhase, ACTIVE_PHASES
from soraqueue.core.capacity import CapacityMonitor
from soraqueue.core.credentials import CredentialStore
from soraqueue.core.job_queue import QueueScheduler


class StatusReporter:

    def __init__(self, scheduler: QueueScheduler, monitor: CapacityMonitor,
                 credentials: CredentialStore):
        self.scheduler = scheduler
        self.monitor = monitor
        self.credentials = credentials

    def snapshot(self) -> dict:
        run = self.scheduler.run_snapshot()
        return {
            'phase': run.phase,
            'total': run.total,
            'cursor': run.cursor,
            'sent': run.stats.sent,
            'errors': run.stats.errors,
            'remaining': run.remaining,
            'pendingTaskCount': self.monitor.pending_count,
            'credentialReady': self.credentials.is_ready(),
            'isActive': run.phase in ACTIVE_PHASES,
            'isPaused': run.phase == QueuePhase.PAUSED,
            'mode': 'PENDING_CHECK' if run.awaiting_slot else 'BURST',
            'version': APP_VERSION,
        }


def progress_pct(status: dict) -> int:
    """Share of jobs sent successfully, as a whole percent."""
    total = status.get('total') or 0
    if total <= 0:
        return 0
    return int(status.get('sent', 0) * 100 / total)
