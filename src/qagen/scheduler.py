from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from .config import SCHEDULE_DEFAULTS, Config
from .utils import log_event

TRIGGER_WORK_HOURS = "workHours"
TRIGGER_OFF_HOURS = "offHours"
TRIGGER_MANUAL = "manual"
CLEANUP_JOB_ID = "cleanup"

SCHEDULE_KEYS = {
    TRIGGER_WORK_HOURS: "work_hours",
    TRIGGER_OFF_HOURS: "off_hours",
}

logger = logging.getLogger("qagen.scheduler")


def convert_day_of_week(field: str) -> str:
    """Translate a crontab weekday field (0/7 = Sunday) to APScheduler numbering (0 = Monday)."""
    if field in ("*", "?"):
        return "*"
    days: set[int] = set()
    for part in field.split(","):
        base, _, step_text = part.partition("/")
        step = int(step_text) if step_text else 1
        if step < 1:
            raise ValueError(f"invalid day-of-week step: {part}")
        if base == "*":
            start, end = 0, 6
        elif "-" in base:
            low, high = base.split("-", 1)
            start, end = int(low), int(high)
        else:
            start = int(base)
            end = 6 if step_text else start
        if not 0 <= start <= 7 or not 0 <= end <= 7 or start > end:
            raise ValueError(f"invalid day-of-week range: {part}")
        days.update(day % 7 for day in range(start, end + 1, step))
    return ",".join(str((day - 1) % 7) for day in sorted(days, key=lambda d: (d - 1) % 7))


def build_trigger(expression: str, tz: Any) -> CronTrigger:
    fields = expression.split()
    if len(fields) == 5:
        second = "0"
        minute, hour, day, month, day_of_week = fields
    elif len(fields) == 6:
        second, minute, hour, day, month, day_of_week = fields
    else:
        raise ValueError(f"expected 5 or 6 fields: {expression!r}")
    return CronTrigger(
        second=second,
        minute=minute,
        hour=hour,
        day=day,
        month=month,
        day_of_week=convert_day_of_week(day_of_week),
        timezone=tz,
    )


def resolve_trigger(name: str, expression: str, default: str, tz: Any) -> tuple[str, CronTrigger]:
    try:
        return expression, build_trigger(expression, tz)
    except ValueError as exc:
        log_event(
            logger,
            logging.WARNING,
            "schedule_invalid",
            trigger=name,
            expression=repr(expression),
            fallback=repr(default),
            error=str(exc),
        )
        return default, build_trigger(default, tz)


def resolve_timezone(name: str) -> Any:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        log_event(logger, logging.WARNING, "timezone_invalid", timezone=name, fallback="UTC")
        return timezone.utc


class TriggerScheduler:
    """Cron-driven firings of the guarded pass, plus the retention sweep."""

    def __init__(
        self,
        config: Config,
        fire: Callable[[str], Any],
        cleanup: Callable[[], Any] | None = None,
    ) -> None:
        self.config = config
        self._fire = fire
        self._cleanup = cleanup
        self.tz = resolve_timezone(config.app.timezone)
        self.triggers: dict[str, tuple[str, CronTrigger]] = {}
        for name, key in SCHEDULE_KEYS.items():
            expression = getattr(config.schedule, key)
            self.triggers[name] = resolve_trigger(name, expression, SCHEDULE_DEFAULTS[key], self.tz)
        # Overlap is decided by the pipeline lock.
        self._scheduler = BackgroundScheduler(
            timezone=self.tz,
            job_defaults={"coalesce": True, "max_instances": 3},
        )

    @property
    def running(self) -> bool:
        return bool(self._scheduler.running)

    def start(self) -> None:
        if self.running:
            return
        for name, (expression, trigger) in self.triggers.items():
            self._scheduler.add_job(
                self._run_trigger,
                trigger=trigger,
                args=[name],
                id=name,
                replace_existing=True,
            )
            log_event(logger, logging.INFO, "schedule_registered", trigger=name, expression=repr(expression))
        interval_hours = self.config.cleanup.interval_hours
        if self._cleanup is not None and interval_hours > 0:
            self._scheduler.add_job(
                self._run_cleanup,
                trigger=IntervalTrigger(hours=interval_hours, timezone=self.tz),
                id=CLEANUP_JOB_ID,
                replace_existing=True,
                next_run_time=datetime.now(self.tz),
            )
        self._scheduler.start()
        log_event(logger, logging.INFO, "scheduler_started", timezone=self.tz)

    def stop(self) -> None:
        if not self.running:
            return
        self._scheduler.shutdown(wait=False)
        log_event(logger, logging.INFO, "scheduler_stopped")

    def next_run_times(self, now: datetime | None = None) -> dict[str, str | None]:
        now = now or datetime.now(self.tz)
        times: dict[str, str | None] = {}
        for name, (_, trigger) in self.triggers.items():
            fire_time = trigger.get_next_fire_time(None, now)
            times[name] = fire_time.isoformat() if fire_time else None
        return times

    def job_status(self, now: datetime | None = None) -> dict[str, object]:
        next_runs = self.next_run_times(now)
        return {
            "running": self.running,
            "timezone": str(self.tz),
            "triggers": {
                name: {"expression": expression, "next_run": next_runs[name]}
                for name, (expression, _) in self.triggers.items()
            },
            "cleanup_interval_hours": self.config.cleanup.interval_hours,
        }

    def _run_trigger(self, name: str) -> None:
        try:
            self._fire(name)
        except Exception as exc:  # noqa: BLE001
            log_event(logger, logging.ERROR, "scheduled_run_error", trigger=name, error=str(exc))

    def _run_cleanup(self) -> None:
        try:
            self._cleanup()
        except Exception as exc:  # noqa: BLE001
            log_event(logger, logging.ERROR, "cleanup_failed", error=str(exc))
