"""JobQueue notification sink — implements NotificationSink.

Each wake-up is a python-telegram-bot job named after its wake-up id, so
submitting the same id twice replaces the job and cancelling needs no scan
of unrelated jobs.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from telegram.ext import ContextTypes, JobQueue

if TYPE_CHECKING:
    from src.ports.notification_sink import FireCallback, WakeupPayload

logger = logging.getLogger(__name__)

_JOB_PREFIX = "reminder:"


class JobQueueSink:
    """NotificationSink backed by the bot application's JobQueue."""

    def __init__(self, job_queue: JobQueue, on_fire: FireCallback) -> None:
        self._job_queue = job_queue
        self._on_fire = on_fire

    def submit(
        self,
        wakeup_id: str,
        fire_at: datetime,
        payload: WakeupPayload,
        repeat_interval: timedelta | None = None,
    ) -> None:
        name = _JOB_PREFIX + wakeup_id
        self.cancel(wakeup_id)

        # Naive local wall-clock -> aware, so the scheduler does not read it as UTC.
        when = fire_at.astimezone()
        if repeat_interval is None:
            self._job_queue.run_once(self._run, when=when, data=payload, name=name)
        else:
            self._job_queue.run_repeating(
                self._run, interval=repeat_interval, first=when, data=payload, name=name,
            )
        logger.debug("Wake-up %s submitted for %s", wakeup_id, fire_at)

    def cancel(self, wakeup_id: str) -> None:
        for job in self._job_queue.get_jobs_by_name(_JOB_PREFIX + wakeup_id):
            job.schedule_removal()

    def cancel_all(self) -> None:
        cancelled = 0
        for job in self._job_queue.jobs():
            if job.name and job.name.startswith(_JOB_PREFIX):
                job.schedule_removal()
                cancelled += 1
        logger.info("Cancelled %d pending wake-up(s)", cancelled)

    async def _run(self, context: ContextTypes.DEFAULT_TYPE) -> None:
        payload: WakeupPayload = context.job.data
        try:
            await self._on_fire(payload)
        except Exception as exc:
            logger.error("Wake-up %s failed: %s", context.job.name, exc)
