"""Background jobs: the weekday end-of-day digest and status upkeep."""

import threading
from typing import Callable, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from .clock import MarketClock
from .constants import STATUS_CHECKPOINT_SECONDS, STATUS_TICK_SECONDS, SUMMARY_TIME
from .exceptions import TelegramError
from .health import StatusMonitor
from .logger import logger
from .store import AlertStore
from .telegram_client import ChatSink
from .tracker import AlertTracker


class DigestScheduler:
    """
    Fires the daily digest at a fixed local time on weekdays.

    The digest sequence is: tracker digest → store upsert → chat send →
    tracker rollover. Rollover only happens after a successful send so a
    failed digest can be retried from the manual endpoint.
    """

    def __init__(self, tracker: AlertTracker, store: AlertStore, sink: ChatSink,
                 monitor: StatusMonitor, clock: MarketClock, summary_time: str = SUMMARY_TIME):
        self.tracker = tracker
        self.store = store
        self.sink = sink
        self.monitor = monitor
        self.clock = clock
        hour, minute = summary_time.split(":")
        self.hour, self.minute = int(hour), int(minute)
        self._run_lock = threading.Lock()
        self._scheduler = BackgroundScheduler(
            timezone=clock.tz,
            job_defaults={
                "coalesce": True,  # Combine missed runs into one
                "max_instances": 1,
                "misfire_grace_time": 60 * 5,
            },
        )
        self._running = False

    # ------------------------------------------------------------------
    # lifecycle
    # ------------------------------------------------------------------

    def start(self):
        if self._running:
            logger.warning("scheduler.already_running")
            return
        self._scheduler.add_job(
            self._wrap_job("daily_summary", self.run_daily_summary),
            trigger=CronTrigger(day_of_week="mon-fri", hour=self.hour, minute=self.minute,
                                timezone=self.clock.tz),
            id="daily_summary",
            replace_existing=True,
        )
        self._scheduler.add_job(
            self._wrap_job("status_tick", self.monitor.tick),
            trigger=IntervalTrigger(seconds=STATUS_TICK_SECONDS),
            id="status_tick",
            replace_existing=True,
        )
        self._scheduler.add_job(
            self._wrap_job("status_checkpoint", self.monitor.checkpoint),
            trigger=IntervalTrigger(seconds=STATUS_CHECKPOINT_SECONDS),
            id="status_checkpoint",
            replace_existing=True,
        )
        self._scheduler.start()
        self._running = True
        logger.info("scheduler.started", summary_time=f"{self.hour:02d}:{self.minute:02d}",
                    timezone=str(self.clock.tz))

    def stop(self):
        if not self._running:
            return
        self._scheduler.shutdown(wait=False)
        self._running = False
        logger.info("scheduler.stopped")

    def next_run_time(self) -> Optional[str]:
        job = self._scheduler.get_job("daily_summary")
        next_run = getattr(job, "next_run_time", None)
        return next_run.isoformat() if next_run else None

    def _wrap_job(self, name: str, fn: Callable) -> Callable:
        """Background jobs record failures and never raise into the scheduler"""
        def runner():
            try:
                fn()
            except Exception as e:
                logger.exception("scheduler.job_failed", job=name, error=str(e))
                self.monitor.record_error(f"scheduler.{name}", e, with_stack=True)
        return runner

    # ------------------------------------------------------------------
    # digest
    # ------------------------------------------------------------------

    def run_daily_summary(self) -> dict:
        """
        Build, store and send today's digest, then roll the tracker over.

        Returns:
            {"status": "sent" | "send_failed" | "busy", "summary": {...}}
        """
        if not self._run_lock.acquire(blocking=False):
            logger.warning("scheduler.digest_busy")
            return {"status": "busy"}
        try:
            logger.info("scheduler.digest_started", date=self.clock.trading_day_key())
            summary = self.tracker.digest()
            self.store.upsert_summary(summary.date, summary)

            try:
                if not self.sink.send(summary.message_text, critical=True):
                    raise TelegramError("Chat platform did not accept the digest")
            except TelegramError as e:
                logger.error("scheduler.digest_send_failed", date=summary.date, error=e.message)
                self.monitor.record_telegram_error(e)
                return {"status": "send_failed", "summary": summary.to_dict()}

            self.monitor.record_telegram_sent()
            archive = self.tracker.rollover()
            logger.info("scheduler.digest_sent", date=summary.date, total=summary.total_alerts,
                        archive=str(archive) if archive else None)
            return {"status": "sent", "summary": summary.to_dict()}
        finally:
            self._run_lock.release()
