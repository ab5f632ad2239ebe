from __future__ import annotations

import asyncio
from collections import Counter
from collections.abc import Iterable
from dataclasses import replace
from datetime import datetime

from hiretrack.services.dedupe import MergeOutcome, candidate_identity_key, resolve_merge
from hiretrack.services.models import (
    AnalyticsEntry,
    Candidate,
    Company,
    EventType,
    HealthMetric,
    SystemLog,
    TrackedRecord,
)


class InMemoryRepository:
    """Process-local event store used when no database is configured and in tests."""

    def __init__(self, companies: Iterable[Company] = ()) -> None:
        self.companies: list[Company] = list(companies)
        self.records: dict[tuple[EventType, str], TrackedRecord] = {}
        self.system_logs: list[SystemLog] = []
        self.health_metrics: list[HealthMetric] = []
        self.analytics: list[AnalyticsEntry] = []
        # Entries live only while a write for that key is running or waiting.
        self._locks: dict[tuple[EventType, str], asyncio.Lock] = {}
        self._lock_users: Counter[tuple[EventType, str]] = Counter()

    async def close(self) -> None:
        self._locks.clear()

    async def ping(self) -> None:
        return None

    async def list_companies(self) -> list[Company]:
        return list(self.companies)

    async def apply_candidate(
        self,
        candidate: Candidate,
        *,
        include_position: bool = False,
        auto_verify_min_confidence: int | None = None,
    ) -> MergeOutcome:
        key = (candidate.event_type, candidate_identity_key(candidate, include_position=include_position))
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._lock_users[key] += 1
        try:
            async with lock:
                outcome = resolve_merge(
                    candidate,
                    self.records.get(key),
                    include_position=include_position,
                    auto_verify_min_confidence=auto_verify_min_confidence,
                )
                if outcome.accepted:
                    self.records[key] = outcome.record
                return outcome
        finally:
            self._lock_users[key] -= 1
            if not self._lock_users[key]:
                self._lock_users.pop(key, None)
                self._locks.pop(key, None)

    @property
    def active_locks(self) -> int:
        return len(self._locks)

    async def get_record(self, event_type: EventType, identity_key: str) -> TrackedRecord | None:
        return self.records.get((event_type, identity_key))

    async def list_records(
        self,
        *,
        event_type: EventType | None = None,
        company: str | None = None,
        since: datetime | None = None,
        limit: int = 100,
    ) -> list[TrackedRecord]:
        rows = [
            record
            for record in self.records.values()
            if (event_type is None or record.event_type is event_type)
            and (company is None or record.company.casefold() == company.casefold())
            and (since is None or record.found_at >= since)
        ]
        rows.sort(key=lambda record: (record.found_at, record.id), reverse=True)
        return rows[:limit]

    async def mark_notification_sent(self, record_id: str) -> None:
        for key, record in self.records.items():
            if record.id == record_id:
                self.records[key] = replace(record, notification_sent=True)
                return

    async def count_records_since(self, event_type: EventType, since: datetime) -> dict[str, int]:
        counts: dict[str, int] = {}
        for record in self.records.values():
            if record.event_type is event_type and record.found_at >= since:
                counts[record.company] = counts.get(record.company, 0) + 1
        return counts

    async def create_system_log(self, entry: SystemLog) -> None:
        self.system_logs.append(entry)

    async def create_health_metric(self, metric: HealthMetric) -> None:
        self.health_metrics.append(metric)

    async def create_analytics(self, entry: AnalyticsEntry) -> None:
        self.analytics.append(entry)
