"""
Hour-parity duty cycle: an `even` instance scrapes during even hours, an
`odd` one during odd hours. A minute-level cron tick flips the pipeline on or
off, firing each transition exactly once.
"""
from __future__ import annotations
from datetime import datetime
from typing import Callable, Optional
import logging
import threading

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from .logging_config import log_event
from .settings import INSTANCE_TYPES

logger = logging.getLogger('scheduler')


def should_be_active(hour: int, instance_type: str) -> bool:
    if instance_type not in INSTANCE_TYPES:
        raise ValueError(f"instance_type must be one of {INSTANCE_TYPES}")
    return (hour % 2 == 0) == (instance_type == 'even')


class SchedulerWindow:
    def __init__(self, instance_type: str, on_activate: Callable[[], None], on_deactivate: Callable[[], None],
                 clock: Callable[[], datetime] = datetime.now):
        if instance_type not in INSTANCE_TYPES:
            raise ValueError(f"instance_type must be one of {INSTANCE_TYPES}")
        self.instance_type = instance_type
        self.on_activate = on_activate
        self.on_deactivate = on_deactivate
        self.clock = clock
        self.active = False
        self._lock = threading.Lock()
        self._scheduler: Optional[BackgroundScheduler] = None

    def tick(self, now: Optional[datetime] = None) -> Optional[str]:
        """Apply the window for `now`. Returns 'activate' / 'deactivate' on a transition, else None."""
        now = now or self.clock()
        wanted = should_be_active(now.hour, self.instance_type)
        with self._lock:
            if wanted == self.active:
                return None
            self.active = wanted
        if wanted:
            logger.info(f"Starting scraping for {self.instance_type} instance")
            log_event('window_transition', instance=self.instance_type, active=True, hour=now.hour)
            self.on_activate()
            return 'activate'
        logger.info(f"Stopping scraping for {self.instance_type} instance")
        log_event('window_transition', instance=self.instance_type, active=False, hour=now.hour)
        self.on_deactivate()
        return 'deactivate'

    def start(self):
        logger.info(f"Starting scheduler for {self.instance_type} instance")
        self._scheduler = BackgroundScheduler(job_defaults={'coalesce': True, 'max_instances': 1})
        self._scheduler.add_job(self.tick, CronTrigger(second=0), id='parity-window', replace_existing=True)
        self._scheduler.start()
        # initial check, not waiting for the first minute boundary
        self.tick()

    def stop(self):
        if self._scheduler is not None and self._scheduler.running:
            self._scheduler.shutdown(wait=False)
        self._scheduler = None
        self.active = False
