from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from functools import lru_cache
from typing import Any, Literal

import httpx
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from hiretrack.core.config import Settings, get_settings
from hiretrack.services.health import HealthMonitor
from hiretrack.services.models import CycleStats, EventType, utcnow
from hiretrack.services.notifier import build_fan_out
from hiretrack.services.pipeline import PushResult, TrackingPipeline
from hiretrack.services.repository import EventRepository, get_repository
from hiretrack.services.sources import PageRenderer, RecentNotificationIds, build_sources

logger = logging.getLogger(__name__)

Cadence = Literal["job_cycle", "hire_cycle", "daily_summary", "weekly_summary", "monthly_summary", "health"]
CADENCES: tuple[Cadence, ...] = (
    "job_cycle",
    "hire_cycle",
    "daily_summary",
    "weekly_summary",
    "monthly_summary",
    "health",
)


@dataclass(slots=True)
class TrackingState:
    running: bool = False
    started_at: datetime | None = None
    stopped_at: datetime | None = None
    last_run: dict[str, datetime] = field(default_factory=dict)
    last_cycles: dict[str, CycleStats] = field(default_factory=dict)
    in_flight: set[str] = field(default_factory=set)
    processed_notifications: RecentNotificationIds = field(default_factory=RecentNotificationIds)


class TrackingOrchestrator:
    """Stopped/Running state machine that owns the scheduler and all cross-cycle caches."""

    def __init__(self, *, settings: Settings, pipeline: TrackingPipeline, health: HealthMonitor) -> None:
        self.settings = settings
        self.pipeline = pipeline
        self.health = health
        self.state = TrackingState()
        self._scheduler: AsyncIOScheduler | None = None

    @property
    def running(self) -> bool:
        return self.state.running

    async def start(self) -> bool:
        if self.state.running:
            logger.warning("Tracking already running; start ignored")
            return False

        scheduler = AsyncIOScheduler(
            event_loop=asyncio.get_running_loop(),
            timezone=self.settings.scheduler_timezone,
            job_defaults={"coalesce": True, "max_instances": 1, "misfire_grace_time": 300},
        )
        for cadence, trigger in self._triggers().items():
            scheduler.add_job(
                self.fire,
                trigger=trigger,
                args=[cadence],
                id=cadence,
                name=cadence.replace("_", " "),
                replace_existing=True,
            )
        scheduler.start()
        self._scheduler = scheduler
        self.state.running = True
        self.state.started_at = utcnow()
        logger.info("Tracking started with %s triggers", len(scheduler.get_jobs()))
        await self.health.log("info", "tracking started", {"cadences": list(CADENCES)})
        return True

    async def stop(self) -> bool:
        if not self.state.running:
            logger.info("Tracking already stopped; stop ignored")
            return False

        self.state.running = False
        self.state.stopped_at = utcnow()
        if self._scheduler is not None:
            self._scheduler.remove_all_jobs()
            self._scheduler.shutdown(wait=False)
            self._scheduler = None
        self.state.processed_notifications.clear()
        self.pipeline.sources.push.clear()
        logger.info("Tracking stopped")
        await self.health.log("info", "tracking stopped")
        return True

    async def fire(self, cadence: Cadence) -> None:
        if not self.state.running:
            logger.info("Skipping %s: tracking is stopped", cadence)
            return
        if cadence in self.state.in_flight:
            logger.warning("Skipping %s: previous run still in flight", cadence)
            return

        self.state.in_flight.add(cadence)
        try:
            await self._actions()[cadence]()
        except Exception:
            logger.exception("%s run failed", cadence)
        finally:
            self.state.in_flight.discard(cadence)
            self.state.last_run[cadence] = utcnow()

    async def handle_push(self, body: bytes, signature: str | None) -> PushResult:
        return await self.pipeline.process_push(body, signature, self.state.processed_notifications)

    def active_jobs(self) -> list[str]:
        if self._scheduler is None:
            return []
        return [job.id for job in self._scheduler.get_jobs()]

    def status(self) -> dict[str, Any]:
        next_runs: dict[str, datetime | None] = {}
        if self._scheduler is not None:
            for job in self._scheduler.get_jobs():
                next_runs[job.id] = getattr(job, "next_run_time", None)

        cadences = {
            cadence: {
                "last_run": self.state.last_run.get(cadence),
                "next_run": next_runs.get(cadence),
            }
            for cadence in CADENCES
        }
        last_cycles = {name: stats.to_dict() for name, stats in self.state.last_cycles.items()}
        report = self.health.last_report
        return {
            "status": "running" if self.state.running else "stopped",
            "started_at": self.state.started_at,
            "stopped_at": self.state.stopped_at,
            "cadences": cadences,
            "last_cycles": last_cycles,
            "health": report.status if report else None,
        }

    def _triggers(self) -> dict[Cadence, IntervalTrigger | CronTrigger]:
        settings = self.settings
        timezone = settings.scheduler_timezone
        return {
            "job_cycle": IntervalTrigger(minutes=settings.job_interval_minutes, timezone=timezone),
            "hire_cycle": IntervalTrigger(minutes=settings.hire_interval_minutes, timezone=timezone),
            "daily_summary": CronTrigger(hour=settings.summary_hour, minute=0, timezone=timezone),
            "weekly_summary": CronTrigger(
                day_of_week=settings.weekly_summary_day, hour=settings.summary_hour, minute=5, timezone=timezone
            ),
            "monthly_summary": CronTrigger(day=1, hour=settings.summary_hour, minute=10, timezone=timezone),
            "health": IntervalTrigger(minutes=settings.health_interval_minutes, timezone=timezone),
        }

    def _actions(self) -> dict[Cadence, Callable[[], Awaitable[Any]]]:
        return {
            "job_cycle": lambda: self._run_cycle(EventType.JOB),
            "hire_cycle": lambda: self._run_cycle(EventType.HIRE),
            "daily_summary": lambda: self.health.summarize("daily"),
            "weekly_summary": lambda: self.health.summarize("weekly"),
            "monthly_summary": lambda: self.health.summarize("monthly"),
            "health": self.health.check,
        }

    async def _run_cycle(self, event_type: EventType) -> CycleStats:
        stats = await self.pipeline.run_cycle(event_type)
        self.state.last_cycles[event_type.value] = stats
        return stats


def build_orchestrator(
    settings: Settings,
    repository: EventRepository,
    *,
    renderer: PageRenderer | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> TrackingOrchestrator:
    fan_out = build_fan_out(settings, transport=transport)
    health = HealthMonitor(repository, fan_out, service_name=settings.app_name)
    pipeline = TrackingPipeline(
        settings=settings,
        repository=repository,
        sources=build_sources(settings, renderer=renderer, transport=transport),
        fan_out=fan_out,
        health=health,
    )
    return TrackingOrchestrator(settings=settings, pipeline=pipeline, health=health)


@lru_cache
def get_orchestrator() -> TrackingOrchestrator:
    return build_orchestrator(get_settings(), get_repository())
