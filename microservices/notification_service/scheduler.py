"""
Scheduler registry and campaign sweep.

The registry holds named jobs and runs them on an APScheduler
AsyncIOScheduler. The factory creates it on startup and stops it on
shutdown; nothing is scheduled at import time. Job failures are logged and
recorded on the job, never propagated into the scheduler.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, time, timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from .campaign_manager import CampaignLifecycleManager
from .models import CampaignStatus, JobStatus, SweepResult
from .protocols import (
    Clock,
    JobNotFoundError,
    NotificationRepositoryProtocol,
    ResourceConflictError,
    utc_now,
)

logger = logging.getLogger(__name__)

JobFunc = Callable[[], Awaitable[Any]]

SCHEDULER_TIMEZONE = "UTC"


def parse_time_of_day(value: str) -> time:
    """Parse "HH:MM" (UTC)"""
    try:
        hour, minute = (int(part) for part in value.strip().split(":"))
        return time(hour=hour, minute=minute)
    except (ValueError, TypeError) as e:
        raise ValueError(f"Invalid time of day {value!r}, expected HH:MM") from e


@dataclass
class ScheduledJob:
    name: str
    func: JobFunc
    interval_seconds: Optional[float] = None
    daily_at: Optional[time] = None
    run_count: int = 0
    last_run_at: Optional[datetime] = None
    last_error: Optional[str] = None
    # Serializes on-demand runs with scheduled ones
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    @property
    def schedule(self) -> str:
        if self.daily_at is not None:
            return f"daily at {self.daily_at.strftime('%H:%M')} UTC"
        return f"every {self.interval_seconds:g}s"

    def trigger_args(self) -> Dict[str, Any]:
        """APScheduler trigger keyword arguments"""
        if self.daily_at is not None:
            return {
                "trigger": "cron",
                "hour": self.daily_at.hour,
                "minute": self.daily_at.minute,
                "timezone": SCHEDULER_TIMEZONE,
            }
        return {"trigger": "interval", "seconds": self.interval_seconds}


class SchedulerRegistry:
    """Named interval and daily jobs on an AsyncIOScheduler"""

    def __init__(self, clock: Clock = utc_now):
        self.clock = clock
        self.jobs: Dict[str, ScheduledJob] = {}
        self._scheduler: Optional[AsyncIOScheduler] = None

    @property
    def running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    @property
    def scheduler(self) -> Optional[AsyncIOScheduler]:
        """Underlying APScheduler instance while started"""
        return self._scheduler

    def register_interval(self, name: str, func: JobFunc, seconds: float) -> ScheduledJob:
        if seconds <= 0:
            raise ValueError(f"Interval for job {name} must be positive")
        return self._register(ScheduledJob(name=name, func=func, interval_seconds=seconds))

    def register_daily(self, name: str, func: JobFunc, at: time) -> ScheduledJob:
        return self._register(ScheduledJob(name=name, func=func, daily_at=at))

    def _register(self, job: ScheduledJob) -> ScheduledJob:
        if job.name in self.jobs:
            raise ValueError(f"Job {job.name} already registered")
        self.jobs[job.name] = job
        logger.info(f"Registered job {job.name} ({job.schedule})")
        return job

    def _get(self, name: str) -> ScheduledJob:
        job = self.jobs.get(name)
        if job is None:
            raise JobNotFoundError(f"Job {name} is not registered")
        return job

    # ====================
    # Lifecycle
    # ====================

    def start(self) -> None:
        """Schedule every registered job (idempotent); needs a running event loop"""
        if self.running:
            return
        scheduler = AsyncIOScheduler(timezone=SCHEDULER_TIMEZONE)
        for job in self.jobs.values():
            scheduler.add_job(
                self._execute,
                args=[job],
                id=job.name,
                name=job.name,
                max_instances=1,
                coalesce=True,
                replace_existing=True,
                **job.trigger_args(),
            )
        scheduler.start()
        self._scheduler = scheduler
        logger.info(f"Scheduler started with {len(self.jobs)} job(s)")

    async def stop(self) -> None:
        """Shut the scheduler down; running job instances are cancelled"""
        scheduler, self._scheduler = self._scheduler, None
        if scheduler is not None and scheduler.running:
            scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")

    async def restart(self) -> None:
        await self.stop()
        self.start()

    # ====================
    # Execution
    # ====================

    async def _execute(self, job: ScheduledJob) -> Any:
        async with job.lock:
            job.last_run_at = self.clock()
            job.run_count += 1
            try:
                result = await job.func()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                job.last_error = str(e) or e.__class__.__name__
                logger.error(f"Job {job.name} failed: {e}", exc_info=True)
                return None
            job.last_error = None
            logger.debug(f"Job {job.name} completed")
            return result

    async def run_job(self, name: str) -> Any:
        """Run a job now, outside its schedule"""
        job = self._get(name)
        logger.info(f"Running job {name} on demand")
        return await self._execute(job)

    def job_status(self, name: str) -> JobStatus:
        job = self._get(name)
        scheduled = self._scheduler.get_job(name) if self.running else None
        return JobStatus(
            name=job.name,
            schedule=job.schedule,
            running=scheduled is not None,
            next_run_at=scheduled.next_run_time if scheduled else None,
            run_count=job.run_count,
            last_run_at=job.last_run_at,
            last_error=job.last_error,
        )

    def status(self) -> List[JobStatus]:
        return [self.job_status(name) for name in self.jobs]


class SchedulerSweep:
    """Sends due scheduled campaigns and reconciles interrupted sends"""

    def __init__(
        self,
        repository: NotificationRepositoryProtocol,
        campaign_manager: CampaignLifecycleManager,
        clock: Clock = utc_now,
        stale_sending_minutes: int = 30,
    ):
        self.repository = repository
        self.campaign_manager = campaign_manager
        self.clock = clock
        self.stale_sending_minutes = stale_sending_minutes

    async def sweep(self) -> SweepResult:
        now = self.clock()
        result = SweepResult(started_at=now)

        try:
            result.reconciled = await self.campaign_manager.reconcile_stale_sending(
                now - timedelta(minutes=self.stale_sending_minutes)
            )
        except Exception as e:
            logger.error(f"Stale sending reconciliation failed: {e}", exc_info=True)

        scheduled = await self.repository.list_campaigns_by_status(CampaignStatus.SCHEDULED)
        due = sorted(
            (c for c in scheduled if c.scheduled_at is not None and c.scheduled_at <= now),
            key=lambda c: c.scheduled_at,
        )
        if due:
            logger.info(f"Sweep found {len(due)} due campaign(s)")

        for campaign in due:
            try:
                finished = await self.campaign_manager.send_campaign(campaign.id)
                if finished.status == CampaignStatus.SENT:
                    result.sent.append(campaign.id)
                else:
                    logger.warning(f"Campaign {campaign.id} ended {finished.status.value}, not sent")
                    result.skipped.append(campaign.id)
            except ResourceConflictError as e:
                logger.info(f"Campaign {campaign.id} skipped: {e}")
                result.skipped.append(campaign.id)
            except Exception as e:
                logger.error(f"Scheduled campaign {campaign.id} failed: {e}", exc_info=True)
                result.failed.append(campaign.id)
                try:
                    await self.campaign_manager.mark_failed(campaign.id, str(e) or e.__class__.__name__)
                except Exception as mark_error:
                    logger.error(f"Could not mark campaign {campaign.id} failed: {mark_error}")

        if due or result.reconciled:
            logger.info(
                f"Sweep finished: {len(result.sent)} sent, {len(result.failed)} failed, "
                f"{len(result.skipped)} skipped, {len(result.reconciled)} reconciled"
            )
        return result
