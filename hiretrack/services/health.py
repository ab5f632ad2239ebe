from __future__ import annotations

import logging
import time
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Literal

import httpx

from hiretrack.services.models import (
    AnalyticsEntry,
    CycleStats,
    EventType,
    HealthMetric,
    HealthStatus,
    SystemLog,
    utcnow,
)
from hiretrack.services.notifier import SUMMARY_SHEET_RANGE, NotificationFanOut
from hiretrack.services.repository import EventRepository, RepositoryError

logger = logging.getLogger(__name__)

SummaryPeriod = Literal["daily", "weekly", "monthly"]

SUMMARY_WINDOWS: dict[SummaryPeriod, timedelta] = {
    "daily": timedelta(days=1),
    "weekly": timedelta(days=7),
    "monthly": timedelta(days=30),
}
_STATUS_RANK: dict[HealthStatus, int] = {"healthy": 0, "degraded": 1, "down": 2}


def overall_status(metrics: Iterable[HealthMetric]) -> HealthStatus:
    worst: HealthStatus = "healthy"
    for metric in metrics:
        if _STATUS_RANK[metric.status] > _STATUS_RANK[worst]:
            worst = metric.status
    return worst


@dataclass(slots=True)
class HealthReport:
    status: HealthStatus
    metrics: list[HealthMetric]
    checked_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "checked_at": self.checked_at.isoformat(),
            "services": {
                metric.service: {
                    "status": metric.status,
                    "response_time_ms": metric.response_time_ms,
                    "error_message": metric.error_message,
                }
                for metric in self.metrics
            },
        }


@dataclass(slots=True)
class SummaryReport:
    period: SummaryPeriod
    window_start: datetime
    window_end: datetime
    hires_by_company: dict[str, int]
    jobs_by_company: dict[str, int]

    @property
    def total_hires(self) -> int:
        return sum(self.hires_by_company.values())

    @property
    def total_jobs(self) -> int:
        return sum(self.jobs_by_company.values())

    @property
    def active_companies(self) -> int:
        return len(set(self.hires_by_company) | set(self.jobs_by_company))

    def sheet_row(self) -> list[Any]:
        return [
            self.period,
            self.window_end.date().isoformat(),
            f"{self.window_start.isoformat()} - {self.window_end.isoformat()}",
            self.total_jobs,
            self.total_hires,
            self.active_companies,
        ]

    def render(self) -> str:
        lines = [
            f"{self.period.capitalize()} summary: {self.total_hires} new hires, {self.total_jobs} new jobs "
            f"across {self.active_companies} companies"
        ]
        for company in sorted(set(self.hires_by_company) | set(self.jobs_by_company)):
            lines.append(
                f"- {company}: {self.hires_by_company.get(company, 0)} hires, "
                f"{self.jobs_by_company.get(company, 0)} jobs"
            )
        return "\n".join(lines)


class HealthMonitor:
    """Health ticks, periodic summaries and append-only observability records."""

    def __init__(self, repository: EventRepository, fan_out: NotificationFanOut, service_name: str = "tracker") -> None:
        self.repository = repository
        self.fan_out = fan_out
        self.service_name = service_name
        self.last_report: HealthReport | None = None

    async def check(self) -> HealthReport:
        metrics = [await self._check_repository()]
        if self.fan_out.sheets.configured:
            metrics.append(await self._check_sheets())
        for channel, configured in (("slack", self.fan_out.slack.configured), ("email", self.fan_out.email.configured)):
            if configured:
                metrics.append(HealthMetric(service=channel, status="healthy"))

        report = HealthReport(status=overall_status(metrics), metrics=metrics)
        for metric in metrics:
            await self.record_metric(metric)
        if report.status != "healthy":
            logger.warning("Health check reports %s", report.status)
        self.last_report = report
        return report

    async def summarize(self, period: SummaryPeriod, *, now: datetime | None = None) -> SummaryReport:
        window_end = now or utcnow()
        window_start = window_end - SUMMARY_WINDOWS[period]
        report = SummaryReport(
            period=period,
            window_start=window_start,
            window_end=window_end,
            hires_by_company=await self.repository.count_records_since(EventType.HIRE, window_start),
            jobs_by_company=await self.repository.count_records_since(EventType.JOB, window_start),
        )
        await self.fan_out.broadcast(report.render(), SUMMARY_SHEET_RANGE, [report.sheet_row()])
        await self.log("info", f"{period} summary sent", {"hires": report.total_hires, "jobs": report.total_jobs})
        return report

    async def record_cycle(self, stats: CycleStats, *, roster_size: int, response_times_ms: list[int]) -> None:
        is_hire = stats.event_type == EventType.HIRE.value
        entry = AnalyticsEntry(
            record_type=stats.event_type,
            total_companies=roster_size,
            active_companies=stats.companies,
            hires_found=stats.inserted if is_hire else 0,
            jobs_found=0 if is_hire else stats.inserted,
            successful_scans=stats.successful_scans,
            failed_scans=stats.failed_scans,
            avg_response_time_ms=int(sum(response_times_ms) / len(response_times_ms)) if response_times_ms else None,
            metadata=stats.to_dict(),
        )
        try:
            await self.repository.create_analytics(entry)
        except RepositoryError:
            logger.exception("Failed to record analytics for %s cycle", stats.event_type)

    async def record_metric(self, metric: HealthMetric) -> None:
        try:
            await self.repository.create_health_metric(metric)
        except RepositoryError:
            logger.warning("Failed to persist health metric for %s", metric.service)
        await self.fan_out.record_health(metric)

    async def log(self, level: str, message: str, metadata: dict[str, Any] | None = None) -> None:
        try:
            await self.repository.create_system_log(
                SystemLog(level=level, service=self.service_name, message=message, metadata=metadata or {})
            )
        except RepositoryError:
            logger.warning("Failed to persist system log: %s", message)

    async def _check_repository(self) -> HealthMetric:
        started = time.perf_counter()
        try:
            await self.repository.ping()
        except RepositoryError as exc:
            return HealthMetric(
                service="database",
                status="down",
                response_time_ms=_elapsed_ms(started),
                error_message=str(exc),
            )
        return HealthMetric(service="database", status="healthy", response_time_ms=_elapsed_ms(started))

    async def _check_sheets(self) -> HealthMetric:
        started = time.perf_counter()
        try:
            await self.fan_out.sheets.check()
        except httpx.HTTPError as exc:
            return HealthMetric(
                service="sheets",
                status="degraded",
                response_time_ms=_elapsed_ms(started),
                error_message=str(exc) or type(exc).__name__,
            )
        return HealthMetric(service="sheets", status="healthy", response_time_ms=_elapsed_ms(started))


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)
