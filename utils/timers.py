"""
Owned Timer Handles
Named arm/disarm timers over an APScheduler scheduler.

Every timer has a stable name; arming a name replaces whatever was armed
under it, so a component owns at most one handle per name.
"""
import logging
from datetime import datetime, timedelta

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.background import BackgroundScheduler

logger = logging.getLogger(__name__)


class TimerRegistry:
    """Named timers backed by APScheduler jobs"""

    def __init__(self, scheduler=None):
        self.scheduler = scheduler or BackgroundScheduler(daemon=True)

    def start(self):
        if not self.scheduler.running:
            self.scheduler.start()

    def shutdown(self):
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)

    def arm_interval(self, name, seconds, callback, *args):
        """(Re)arm a repeating timer; the first run is one interval from now"""
        self.scheduler.add_job(
            func=callback,
            trigger='interval',
            seconds=seconds,
            args=list(args),
            id=name,
            name=name,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        logger.debug(f'Armed interval timer {name} every {seconds}s')

    def arm_once(self, name, seconds, callback, *args):
        """(Re)arm a one-shot timer"""
        self.scheduler.add_job(
            func=callback,
            trigger='date',
            run_date=datetime.now() + timedelta(seconds=seconds),
            args=list(args),
            id=name,
            name=name,
            replace_existing=True,
        )

    def submit(self, name, callback, *args):
        """Run callback off the caller's thread as soon as possible"""
        self.scheduler.add_job(
            func=callback,
            trigger='date',
            args=list(args),
            id=name,
            name=name,
            replace_existing=True,
            misfire_grace_time=None,
        )

    def disarm(self, name):
        try:
            self.scheduler.remove_job(name)
        except JobLookupError:
            return False
        logger.debug(f'Disarmed timer {name}')
        return True

    def disarm_prefix(self, prefix):
        for job in self.scheduler.get_jobs():
            if job.id.startswith(prefix):
                self.disarm(job.id)
