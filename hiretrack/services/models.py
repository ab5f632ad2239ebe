from __future__ import annotations

import re
from collections import Counter
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal


class EventType(str, Enum):
    HIRE = "hire"
    JOB = "job"


class SourceKind(str, Enum):
    PUSH = "push"
    OFFICIAL_API = "official_api"
    SCRAPE = "scrape"
    SEARCH = "search"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True, frozen=True)
class Company:
    name: str
    aliases: tuple[str, ...] = ()
    website: str | None = None
    social_handle: str | None = None
    career_page_url: str | None = None
    active: bool = True

    @property
    def names(self) -> tuple[str, ...]:
        return (self.name, *self.aliases)

    def matches_organization(self, organization_urn: str) -> bool:
        org_id = organization_urn.rsplit(":", maxsplit=1)[-1].strip()
        if not org_id or not self.social_handle:
            return False
        handle = self.social_handle.strip().rstrip("/")
        return re.split(r"[/:]", handle)[-1] == org_id


@dataclass(slots=True)
class RawItem:
    text: str
    source: SourceKind
    provenance: str
    link: str | None = None
    fetched_at: datetime = field(default_factory=utcnow)


@dataclass(slots=True)
class Candidate:
    event_type: EventType
    subject: str
    company: str
    source: SourceKind
    raw_text: str
    provenance: str
    found_at: datetime = field(default_factory=utcnow)
    position: str | None = None
    department: str | None = None
    previous_company: str | None = None
    start_date: str | None = None
    location: str | None = None
    job_type: str | None = None
    salary: str | None = None
    description: str | None = None
    link: str | None = None
    template: str | None = None
    confidence: int | None = None

    def attributes(self) -> dict[str, str]:
        keys = (
            ("position", "department", "previous_company", "start_date")
            if self.event_type is EventType.HIRE
            else ("location", "job_type", "salary", "description")
        )
        values = {key: getattr(self, key) for key in keys}
        return {key: value for key, value in values.items() if value}


@dataclass(slots=True)
class TrackedRecord:
    id: str
    event_type: EventType
    identity_key: str
    subject: str
    company: str
    source: SourceKind
    confidence: int
    verified: bool = False
    notification_sent: bool = False
    attributes: dict[str, Any] = field(default_factory=dict)
    link: str | None = None
    raw_text: str = ""
    found_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def kind_label(self) -> str:
        return "NewHire" if self.event_type is EventType.HIRE else "JobPosting"

    @property
    def position(self) -> str | None:
        return self.attributes.get("position")


@dataclass(slots=True)
class CycleStats:
    event_type: str
    started_at: datetime = field(default_factory=utcnow)
    finished_at: datetime | None = None
    companies: int = 0
    successful_scans: int = 0
    failed_scans: int = 0
    raw_items: int = 0
    candidates: int = 0
    rejected: Counter[str] = field(default_factory=Counter)
    inserted: int = 0
    replaced: int = 0
    discarded: int = 0
    notified: int = 0
    conflicts: int = 0
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.error is None

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["rejected"] = dict(self.rejected)
        payload["rejected_total"] = sum(self.rejected.values())
        payload["succeeded"] = self.succeeded
        return payload


HealthStatus = Literal["healthy", "degraded", "down"]


@dataclass(slots=True)
class HealthMetric:
    service: str
    status: HealthStatus
    response_time_ms: int | None = None
    error_message: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    recorded_at: datetime = field(default_factory=utcnow)


@dataclass(slots=True)
class SystemLog:
    level: str
    service: str
    message: str
    metadata: dict[str, Any] = field(default_factory=dict)
    recorded_at: datetime = field(default_factory=utcnow)


@dataclass(slots=True)
class AnalyticsEntry:
    record_type: str
    total_companies: int = 0
    active_companies: int = 0
    jobs_found: int = 0
    hires_found: int = 0
    successful_scans: int = 0
    failed_scans: int = 0
    avg_response_time_ms: int | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    recorded_at: datetime = field(default_factory=utcnow)
