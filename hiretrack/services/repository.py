from __future__ import annotations

import json
from dataclasses import asdict
from datetime import datetime
from functools import lru_cache
from typing import Any

import asyncpg  # type: ignore[import-untyped]

from hiretrack.core.config import get_settings
from hiretrack.services.dedupe import MergeOutcome, candidate_identity_key, resolve_merge
from hiretrack.services.models import (
    AnalyticsEntry,
    Candidate,
    Company,
    EventType,
    HealthMetric,
    SourceKind,
    SystemLog,
    TrackedRecord,
)
from hiretrack.services.store import InMemoryRepository

APPLY_ATTEMPTS = 3
CONNECTION_ERRORS = (OSError, asyncpg.InterfaceError)

_RECORD_COLUMNS = """
  id::text as id,
  record_type,
  identity_key,
  subject,
  company,
  source,
  confidence,
  verified,
  notification_sent,
  attributes,
  link,
  raw_text,
  found_at,
  updated_at
"""


class RepositoryError(Exception):
    """Base repository error."""


class RepositoryUnavailableError(RepositoryError):
    """Raised when the database is unavailable or not configured."""


class RepositoryConflictError(RepositoryError):
    """Raised when a write keeps losing the race for an identity key."""


class PostgresRepository:
    def __init__(self, database_url: str | None, min_pool_size: int, max_pool_size: int) -> None:
        self.database_url = database_url
        self.min_pool_size = min_pool_size
        self.max_pool_size = max_pool_size
        self._pool: asyncpg.Pool | None = None

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

    async def ping(self) -> None:
        pool = await self._get_pool()
        try:
            await pool.fetchval("select 1")
        except CONNECTION_ERRORS as exc:
            raise RepositoryUnavailableError("database unavailable") from exc

    async def list_companies(self) -> list[Company]:
        rows = await self._fetch(
            """
            select name, aliases, website, social_handle, career_page_url, is_active
            from companies
            order by created_at asc, name asc
            """
        )
        return [
            Company(
                name=row["name"],
                aliases=tuple(row["aliases"] or ()),
                website=row["website"],
                social_handle=row["social_handle"],
                career_page_url=row["career_page_url"],
                active=bool(row["is_active"]),
            )
            for row in rows
        ]

    async def apply_candidate(
        self,
        candidate: Candidate,
        *,
        include_position: bool = False,
        auto_verify_min_confidence: int | None = None,
    ) -> MergeOutcome:
        """Atomically insert, replace or discard a candidate against its stored record.

        A lost insert race re-reads the winner and re-applies the confidence rule.
        """
        key = candidate_identity_key(candidate, include_position=include_position)
        pool = await self._get_pool()

        for _ in range(APPLY_ATTEMPTS):
            try:
                async with pool.acquire() as conn:
                    async with conn.transaction():
                        row = await conn.fetchrow(
                            f"""
                            select {_RECORD_COLUMNS}
                            from tracked_records
                            where record_type = $1 and identity_key = $2
                            for update
                            """,
                            candidate.event_type.value,
                            key,
                        )
                        existing = self._record_row_to_model(row) if row else None
                        outcome = resolve_merge(
                            candidate,
                            existing,
                            include_position=include_position,
                            auto_verify_min_confidence=auto_verify_min_confidence,
                        )
                        if outcome.decision == "discarded":
                            return outcome
                        if outcome.decision == "replaced":
                            await self._update_record(conn, outcome.record)
                            return outcome
                        if await self._insert_record(conn, outcome.record):
                            return outcome
            except CONNECTION_ERRORS as exc:
                raise RepositoryUnavailableError("database unavailable") from exc

        raise RepositoryConflictError(f"could not settle record for {candidate.event_type.value}:{key}")

    async def get_record(self, event_type: EventType, identity_key: str) -> TrackedRecord | None:
        row = await self._fetchrow(
            f"""
            select {_RECORD_COLUMNS}
            from tracked_records
            where record_type = $1 and identity_key = $2
            """,
            event_type.value,
            identity_key,
        )
        return self._record_row_to_model(row) if row else None

    async def list_records(
        self,
        *,
        event_type: EventType | None = None,
        company: str | None = None,
        since: datetime | None = None,
        limit: int = 100,
    ) -> list[TrackedRecord]:
        rows = await self._fetch(
            f"""
            select {_RECORD_COLUMNS}
            from tracked_records
            where ($1::text is null or record_type = $1)
              and ($2::text is null or lower(company) = lower($2))
              and ($3::timestamptz is null or found_at >= $3)
            order by found_at desc, id desc
            limit $4
            """,
            event_type.value if event_type else None,
            company,
            since,
            limit,
        )
        return [self._record_row_to_model(row) for row in rows]

    async def mark_notification_sent(self, record_id: str) -> None:
        await self._execute(
            """
            update tracked_records
            set notification_sent = true
            where id = $1::uuid
            """,
            record_id,
        )

    async def count_records_since(self, event_type: EventType, since: datetime) -> dict[str, int]:
        rows = await self._fetch(
            """
            select company, count(*)::int as total
            from tracked_records
            where record_type = $1 and found_at >= $2
            group by company
            order by company asc
            """,
            event_type.value,
            since,
        )
        return {row["company"]: row["total"] for row in rows}

    async def create_system_log(self, entry: SystemLog) -> None:
        await self._execute(
            """
            insert into system_logs (recorded_at, level, service, message, metadata)
            values ($1, $2, $3, $4, $5::jsonb)
            """,
            entry.recorded_at,
            entry.level,
            entry.service,
            entry.message,
            json.dumps(entry.metadata, default=str),
        )

    async def create_health_metric(self, metric: HealthMetric) -> None:
        await self._execute(
            """
            insert into health_metrics (recorded_at, service, status, response_time_ms, error_message, metadata)
            values ($1, $2, $3, $4, $5, $6::jsonb)
            """,
            metric.recorded_at,
            metric.service,
            metric.status,
            metric.response_time_ms,
            metric.error_message,
            json.dumps(metric.metadata, default=str),
        )

    async def create_analytics(self, entry: AnalyticsEntry) -> None:
        payload = asdict(entry)
        await self._execute(
            """
            insert into analytics (
              recorded_at,
              record_type,
              total_companies,
              active_companies,
              jobs_found,
              hires_found,
              successful_scans,
              failed_scans,
              avg_response_time_ms,
              metadata
            )
            values ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10::jsonb)
            """,
            payload["recorded_at"],
            payload["record_type"],
            payload["total_companies"],
            payload["active_companies"],
            payload["jobs_found"],
            payload["hires_found"],
            payload["successful_scans"],
            payload["failed_scans"],
            payload["avg_response_time_ms"],
            json.dumps(payload["metadata"], default=str),
        )

    async def _insert_record(self, conn: asyncpg.Connection, record: TrackedRecord) -> bool:
        row = await conn.fetchrow(
            """
            insert into tracked_records (
              id,
              record_type,
              identity_key,
              subject,
              company,
              source,
              confidence,
              verified,
              notification_sent,
              attributes,
              link,
              raw_text,
              found_at,
              updated_at
            )
            values ($1::uuid, $2, $3, $4, $5, $6, $7, $8, $9, $10::jsonb, $11, $12, $13, $14)
            on conflict (record_type, identity_key) do nothing
            returning id::text as id
            """,
            record.id,
            record.event_type.value,
            record.identity_key,
            record.subject,
            record.company,
            record.source.value,
            record.confidence,
            record.verified,
            record.notification_sent,
            json.dumps(record.attributes),
            record.link,
            record.raw_text,
            record.found_at,
            record.updated_at,
        )
        return row is not None

    async def _update_record(self, conn: asyncpg.Connection, record: TrackedRecord) -> None:
        await conn.execute(
            """
            update tracked_records
            set
              subject = $2,
              source = $3,
              confidence = $4,
              verified = $5,
              notification_sent = $6,
              attributes = $7::jsonb,
              link = $8,
              raw_text = $9,
              updated_at = $10
            where id = $1::uuid
            """,
            record.id,
            record.subject,
            record.source.value,
            record.confidence,
            record.verified,
            record.notification_sent,
            json.dumps(record.attributes),
            record.link,
            record.raw_text,
            record.updated_at,
        )

    async def _fetch(self, query: str, *args: Any) -> list[asyncpg.Record]:
        pool = await self._get_pool()
        try:
            return await pool.fetch(query, *args)
        except CONNECTION_ERRORS as exc:
            raise RepositoryUnavailableError("database unavailable") from exc

    async def _fetchrow(self, query: str, *args: Any) -> asyncpg.Record | None:
        pool = await self._get_pool()
        try:
            return await pool.fetchrow(query, *args)
        except CONNECTION_ERRORS as exc:
            raise RepositoryUnavailableError("database unavailable") from exc

    async def _execute(self, query: str, *args: Any) -> None:
        pool = await self._get_pool()
        try:
            await pool.execute(query, *args)
        except CONNECTION_ERRORS as exc:
            raise RepositoryUnavailableError("database unavailable") from exc

    async def _get_pool(self) -> asyncpg.Pool:
        if not self.database_url:
            raise RepositoryUnavailableError("HT_DATABASE_URL is required")

        if self._pool is not None:
            return self._pool

        try:
            self._pool = await asyncpg.create_pool(
                dsn=self.database_url,
                min_size=self.min_pool_size,
                max_size=self.max_pool_size,
                command_timeout=15,
            )
            return self._pool
        except Exception as exc:  # pragma: no cover - depends on environment
            raise RepositoryUnavailableError("database unavailable") from exc

    @staticmethod
    def _record_row_to_model(row: asyncpg.Record) -> TrackedRecord:
        attributes: Any = row["attributes"]
        if isinstance(attributes, str):
            try:
                attributes = json.loads(attributes)
            except json.JSONDecodeError:
                attributes = {}
        if not isinstance(attributes, dict):
            attributes = {}
        return TrackedRecord(
            id=row["id"],
            event_type=EventType(row["record_type"]),
            identity_key=row["identity_key"],
            subject=row["subject"],
            company=row["company"],
            source=SourceKind(row["source"]),
            confidence=int(row["confidence"]),
            verified=bool(row["verified"]),
            notification_sent=bool(row["notification_sent"]),
            attributes=attributes,
            link=row["link"],
            raw_text=row["raw_text"] or "",
            found_at=row["found_at"],
            updated_at=row["updated_at"],
        )


EventRepository = PostgresRepository | InMemoryRepository


@lru_cache
def get_repository() -> EventRepository:
    settings = get_settings()
    if not settings.database_url:
        return InMemoryRepository()
    return PostgresRepository(
        database_url=settings.database_url,
        min_pool_size=settings.database_pool_min_size,
        max_pool_size=settings.database_pool_max_size,
    )
