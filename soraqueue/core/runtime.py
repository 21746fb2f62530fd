"""
Builds the component graph once per process:
credentials → api → monitor/submitter → scheduler → reporter → control surface.
"""

import logging
from dataclasses import dataclass

import requests

from soraqueue.core.capacity import CapacityMonitor
from soraqueue.core.config import AppConfig
from soraqueue.core.control import ControlSurface
from soraqueue.core.credentials import CredentialStore
from soraqueue.core.job_queue import QueueScheduler, merge_video_settings
from soraqueue.core.models import CredentialBundle, VideoSettings
from soraqueue.core.sora_api import SoraApiClient
from soraqueue.core.status import StatusReporter
from soraqueue.core.submission import SubmissionClient
from soraqueue.core.timers import TimerService
from soraqueue.core.traffic import TrafficObserver

logger = logging.getLogger(__name__)


@dataclass
class QueueRuntime:
    config: AppConfig
    credentials: CredentialStore
    api: SoraApiClient
    monitor: CapacityMonitor
    scheduler: QueueScheduler
    reporter: StatusReporter
    control: ControlSurface
    observer: TrafficObserver
    timers: TimerService

    def shutdown(self):
        self.scheduler.stop()
        self.timers.shutdown()
        self.api.close()


def build_runtime(config: AppConfig, credentials: CredentialStore | None = None,
                  timers: TimerService | None = None,
                  session: requests.Session | None = None) -> QueueRuntime:
    credentials = credentials or CredentialStore()
    # persisted device id only fills a gap; flags and cookies seeded earlier win
    if config.device_id and not credentials.snapshot().device_id:
        credentials.observe({'device_id': config.device_id})

    timers = timers or TimerService()
    api = SoraApiClient(credentials, config.base_url, config.request_timeout_sec, session)
    monitor = CapacityMonitor(credentials, api)
    submitter = SubmissionClient(credentials, api)
    settings = merge_video_settings(VideoSettings(), config.video_settings)
    scheduler = QueueScheduler(credentials, monitor, submitter, timers,
                               timing=config.timing(), settings=settings)
    reporter = StatusReporter(scheduler, monitor, credentials)
    control = ControlSurface(scheduler, reporter, api, config.drafts_limit)
    observer = TrafficObserver(credentials, monitor)

    logger.info("Runtime ready (base_url=%s, burst=%d)", config.base_url,
                config.timing().burst_size)
    return QueueRuntime(config, credentials, api, monitor, scheduler, reporter,
                        control, observer, timers)


def credentials_from_values(authorization: str | None = None, device_id: str | None = None,
                            sentinel_token: str | None = None) -> CredentialStore:
    return CredentialStore(CredentialBundle(authorization or None, device_id or None,
                                            sentinel_token or None))
