import logging
import threading
from datetime import datetime, timezone
from typing import Optional

from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_EXECUTED, EVENT_JOB_MAX_INSTANCES
from apscheduler.schedulers.background import BackgroundScheduler

logger = logging.getLogger("scheduler")

JOB_ID = "crawl_cycle"


class CycleScheduler:
    """
    Runs the pipeline on a fixed interval with at most one cycle in flight.

    APScheduler's max_instances=1 keeps overlapping interval runs out, and the
    lock covers manual runs triggered through the API. A failed cycle is
    reported through the job error event and the next interval still fires.
    """

    def __init__(self, pipeline, interval_minutes: int = 10, scheduler: Optional[BackgroundScheduler] = None):
        self.pipeline = pipeline
        self.interval_minutes = interval_minutes
        self.scheduler = scheduler or BackgroundScheduler(timezone=timezone.utc)
        self.last_report = None
        self.last_error = None
        self._lock = threading.Lock()

    @property
    def is_running(self) -> bool:
        return self._lock.locked()

    def run_cycle(self):
        if not self._lock.acquire(blocking=False):
            logger.warning("[Scheduler] Previous cycle still running, skipping this run")
            return None
        try:
            logger.info(f"[Scheduler] Starting crawl cycle at {datetime.now(timezone.utc)}")
            self.last_report = self.pipeline.run_cycle()
            self.last_error = None
            return self.last_report
        except Exception as e:
            self.last_error = e
            raise
        finally:
            self._lock.release()

    def run_now(self):
        """Run one cycle synchronously in the calling thread; errors propagate"""
        return self.run_cycle()

    def _on_job_event(self, event):
        if event.code == EVENT_JOB_ERROR:
            logger.error(f"[Scheduler] Crawl cycle failed: {event.exception!r}\n{event.traceback or ''}")
        elif event.code == EVENT_JOB_MAX_INSTANCES:
            logger.warning("[Scheduler] Crawl cycle skipped, previous run still in flight")
        elif event.code == EVENT_JOB_EXECUTED and event.retval is not None:
            report = event.retval
            logger.info(f"[Scheduler] Crawl cycle finished (session id: {report.session_id}, state: {report.state.value})")

    def start(self, run_immediately: bool = False):
        job_options = {}
        if run_immediately:
            job_options["next_run_time"] = datetime.now(timezone.utc)
        self.scheduler.add_listener(self._on_job_event, EVENT_JOB_ERROR | EVENT_JOB_EXECUTED | EVENT_JOB_MAX_INSTANCES)
        self.scheduler.add_job(
            self.run_cycle,
            "interval",
            minutes=self.interval_minutes,
            id=JOB_ID,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            **job_options,
        )
        self.scheduler.start()
        logger.info(f"[Scheduler] Started with interval of {self.interval_minutes} minutes")

    def shutdown(self, wait: bool = True, timeout: Optional[float] = None):
        """
        Stop scheduling. With wait=True the in-flight cycle, scheduled or
        manual, is allowed to finish before this returns.
        """
        if self.scheduler.running:
            self.scheduler.shutdown(wait=wait)
            logger.info("[Scheduler] Stopped")
        if wait:
            self.wait_idle(timeout)

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until no cycle holds the lock; False when the timeout ran out"""
        if not self._lock.acquire(timeout=-1 if timeout is None else timeout):
            logger.warning("[Scheduler] Timed out waiting for the running cycle to finish")
            return False
        self._lock.release()
        return True
