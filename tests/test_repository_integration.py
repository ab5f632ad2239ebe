from __future__ import annotations

import asyncio
import os
from datetime import datetime, timezone
from pathlib import Path

import asyncpg  # type: ignore[import-untyped]
import pytest

from hiretrack.services.models import Candidate, EventType, SourceKind, SystemLog
from hiretrack.services.repository import PostgresRepository, RepositoryUnavailableError

SCHEMA_PATH = Path(__file__).resolve().parents[1] / "db" / "schema.sql"


@pytest.fixture(scope="session")
def database_url() -> str:
    url = os.getenv("HT_DATABASE_URL") or os.getenv("DATABASE_URL")
    if not url:
        pytest.skip("integration tests require HT_DATABASE_URL or DATABASE_URL")
    return url


@pytest.fixture
def reset_tables(database_url: str) -> None:
    asyncio.run(_reset(database_url))


def test_apply_candidate_inserts_then_upgrades_in_place(database_url: str, reset_tables: None) -> None:
    async def scenario() -> None:
        repository = PostgresRepository(database_url, 1, 4)
        try:
            inserted = await repository.apply_candidate(_candidate(70, SourceKind.OFFICIAL_API))
            upgraded = await repository.apply_candidate(
                _candidate(95, SourceKind.PUSH), auto_verify_min_confidence=90
            )
            discarded = await repository.apply_candidate(_candidate(60, SourceKind.SEARCH))

            assert inserted.decision == "inserted"
            assert upgraded.decision == "replaced"
            assert upgraded.renotify
            assert discarded.decision == "discarded"

            stored = await repository.get_record(EventType.HIRE, "jane doe|acme")
            assert stored is not None
            assert stored.id == inserted.record.id
            assert stored.confidence == 95
            assert stored.verified
            assert stored.attributes == {"position": "VP of Engineering"}

            await repository.mark_notification_sent(stored.id)
            listed = await repository.list_records(event_type=EventType.HIRE, company="ACME")
            assert [record.notification_sent for record in listed] == [True]
        finally:
            await repository.close()

    asyncio.run(scenario())


def test_concurrent_applies_leave_one_row(database_url: str, reset_tables: None) -> None:
    async def scenario() -> None:
        repository = PostgresRepository(database_url, 1, 6)
        try:
            outcomes = await asyncio.gather(
                *(repository.apply_candidate(_candidate(confidence, SourceKind.SCRAPE)) for confidence in (60, 90, 75, 85))
            )
            assert sum(outcome.decision == "inserted" for outcome in outcomes) == 1

            counts = await repository.count_records_since(EventType.HIRE, datetime(2000, 1, 1, tzinfo=timezone.utc))
            assert counts == {"Acme": 1}
            stored = await repository.get_record(EventType.HIRE, "jane doe|acme")
            assert stored is not None and stored.confidence == 90
        finally:
            await repository.close()

    asyncio.run(scenario())


def test_missing_database_url_is_unavailable() -> None:
    with pytest.raises(RepositoryUnavailableError):
        asyncio.run(PostgresRepository(None, 1, 1).ping())


class DeadPool:
    async def fetch(self, *args: object) -> object:
        raise ConnectionRefusedError("connection refused")

    fetchrow = fetch
    execute = fetch


def test_lost_connection_surfaces_as_unavailable() -> None:
    repository = PostgresRepository("postgresql://tracker@db.invalid/hiretrack", 1, 1)
    repository._pool = DeadPool()

    async def scenario() -> None:
        with pytest.raises(RepositoryUnavailableError):
            await repository.list_companies()
        with pytest.raises(RepositoryUnavailableError):
            await repository.mark_notification_sent("00000000-0000-0000-0000-000000000000")
        with pytest.raises(RepositoryUnavailableError):
            await repository.count_records_since(EventType.JOB, datetime(2000, 1, 1, tzinfo=timezone.utc))
        with pytest.raises(RepositoryUnavailableError):
            await repository.create_system_log(SystemLog(level="info", service="tracker", message="hi"))

    asyncio.run(scenario())


async def _reset(database_url: str) -> None:
    conn = await asyncpg.connect(database_url)
    try:
        await conn.execute(SCHEMA_PATH.read_text())
        await conn.execute("truncate table tracked_records, analytics, health_metrics, system_logs, companies")
    finally:
        await conn.close()


def _candidate(confidence: int, source: SourceKind) -> Candidate:
    return Candidate(
        event_type=EventType.HIRE,
        subject="Jane Doe",
        company="Acme",
        source=source,
        raw_text="We are pleased to announce Jane Doe as our new VP of Engineering",
        provenance="test",
        position="VP of Engineering",
        confidence=confidence,
    )
