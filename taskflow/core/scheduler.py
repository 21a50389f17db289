import logging
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.combining import OrTrigger
from apscheduler.triggers.cron import CronTrigger

from taskflow.core.config import settings
from taskflow.core.engine import get_engine
from taskflow.core.schedule_config import parse_time_of_day
from taskflow.models.workflow import ScheduleConfig

logger = logging.getLogger("taskflow.scheduler")

TICK_JOB_ID = "workflow_tick"
CLEANUP_JOB_ID = "workflow_cleanup"


def target_triggers(config: ScheduleConfig, window_seconds: int) -> List[CronTrigger]:
    """Per-minute cron triggers covering a config's notification window in its own timezone."""
    target = datetime.combine(datetime(2000, 1, 1), parse_time_of_day(config.time_of_day))
    minutes: Dict[int, List[int]] = defaultdict(list)
    for offset in range(window_seconds // 60 + 1):
        moment = target + timedelta(minutes=offset)
        minutes[moment.hour].append(moment.minute)
    return [
        CronTrigger(hour=hour, minute=",".join(str(m) for m in mins), timezone=config.timezone)
        for hour, mins in sorted(minutes.items())
    ]


def build_tick_trigger(
    configs: Iterable[ScheduleConfig] = (),
    active_hours: Optional[str] = None,
    timezone: Optional[str] = None,
    window_seconds: Optional[int] = None,
) -> OrTrigger:
    """
    Every minute of ACTIVE_HOURS (read in DEFAULT_TIMEZONE), plus the window
    minutes of every enabled schedule so targets outside those hours still fire.
    """
    active_hours = active_hours or settings.ACTIVE_HOURS
    timezone = timezone or settings.DEFAULT_TIMEZONE
    window_seconds = settings.NOTIFY_WINDOW_SECONDS if window_seconds is None else window_seconds

    triggers = [CronTrigger(minute="*", hour=active_hours, timezone=timezone)]
    for config in configs:
        if config.enabled:
            triggers.extend(target_triggers(config, window_seconds))
    return OrTrigger(triggers)


class SchedulerService:
    """In-process triggers: the per-minute workflow tick and the daily retention sweep."""

    _instance = None
    _scheduler: Optional[AsyncIOScheduler] = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super(SchedulerService, cls).__new__(cls)
            cls._instance._scheduler = AsyncIOScheduler(timezone="UTC")
        return cls._instance

    @classmethod
    def get_instance(cls) -> "SchedulerService":
        if cls._instance is None:
            cls._instance = SchedulerService()
        return cls._instance

    @property
    def running(self) -> bool:
        return bool(self._scheduler and self._scheduler.running)

    async def start(self):
        """Registers the jobs and starts the scheduler."""
        if self._scheduler.running:
            return

        logger.info("Starting Scheduler Service...")
        configs = await get_engine().configs.get_all()
        self._register_jobs(configs)
        self._scheduler.start()

    async def stop(self):
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
            logger.info("Scheduler Service stopped.")

    async def refresh_tick(self, configs: Optional[List[ScheduleConfig]] = None):
        """Rebuilds the tick trigger after a schedule change."""
        if not self.running or self._scheduler.get_job(TICK_JOB_ID) is None:
            return
        if configs is None:
            configs = await get_engine().configs.get_all()
        self._scheduler.reschedule_job(TICK_JOB_ID, trigger=build_tick_trigger(configs))
        logger.info("Workflow tick rescheduled for updated schedules")

    def _register_jobs(self, configs: Iterable[ScheduleConfig] = ()):
        self._scheduler.add_job(
            self._run_tick,
            build_tick_trigger(configs),
            id=TICK_JOB_ID,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self._scheduler.add_job(
            self._run_cleanup,
            CronTrigger(hour=settings.CLEANUP_HOUR, minute=0, timezone="UTC"),
            id=CLEANUP_JOB_ID,
            replace_existing=True,
            coalesce=True,
        )
        logger.info(
            f"Scheduled workflow tick (hours {settings.ACTIVE_HOURS} {settings.DEFAULT_TIMEZONE}) "
            f"and cleanup ({settings.CLEANUP_HOUR}:00)"
        )

    async def _run_tick(self):
        """Executed when the tick fires. The runner records its own failures."""
        await get_engine().runner.run()

    async def _run_cleanup(self):
        await get_engine().runner.cleanup()
