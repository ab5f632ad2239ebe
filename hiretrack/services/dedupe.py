from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass, replace
from typing import Literal
from uuid import uuid4

from hiretrack.services.models import Candidate, EventType, TrackedRecord, utcnow

_WHITESPACE_RE = re.compile(r"\s+")

MergeDecision = Literal["inserted", "replaced", "discarded"]


@dataclass(slots=True)
class MergeOutcome:
    decision: MergeDecision
    record: TrackedRecord
    previous_confidence: int | None = None
    renotify: bool = False

    @property
    def accepted(self) -> bool:
        return self.decision != "discarded"

    @property
    def should_notify(self) -> bool:
        return self.decision == "inserted" or self.renotify


def _normalize_part(value: str | None) -> str:
    if not value:
        return ""
    return _WHITESPACE_RE.sub(" ", value.casefold()).strip()


def identity_key(
    subject: str,
    company: str,
    *,
    position: str | None = None,
    include_position: bool = False,
) -> str:
    parts = [_normalize_part(subject), _normalize_part(company)]
    if include_position:
        parts.append(_normalize_part(position))
    return "|".join(parts)


def candidate_identity_key(candidate: Candidate, *, include_position: bool = False) -> str:
    return identity_key(
        candidate.subject,
        candidate.company,
        position=candidate.position,
        include_position=include_position and candidate.event_type is EventType.HIRE,
    )


def merge_batch(candidates: Iterable[Candidate], *, include_position: bool = False) -> list[Candidate]:
    """Keep the highest-confidence candidate per identity key, in first-seen key order."""
    best: dict[tuple[EventType, str], Candidate] = {}
    for candidate in candidates:
        key = (candidate.event_type, candidate_identity_key(candidate, include_position=include_position))
        current = best.get(key)
        if current is None or _confidence(candidate) > _confidence(current):
            best[key] = candidate
    return list(best.values())


def resolve_verified(confidence: int, auto_verify_min_confidence: int | None) -> bool:
    if auto_verify_min_confidence is None:
        return False
    return confidence >= auto_verify_min_confidence


def build_record(candidate: Candidate, *, key: str, verified: bool) -> TrackedRecord:
    now = utcnow()
    return TrackedRecord(
        id=str(uuid4()),
        event_type=candidate.event_type,
        identity_key=key,
        subject=candidate.subject,
        company=candidate.company,
        source=candidate.source,
        confidence=_confidence(candidate),
        verified=verified,
        notification_sent=False,
        attributes=candidate.attributes(),
        link=candidate.link,
        raw_text=candidate.raw_text,
        found_at=candidate.found_at,
        updated_at=now,
    )


def resolve_merge(
    candidate: Candidate,
    existing: TrackedRecord | None,
    *,
    include_position: bool = False,
    auto_verify_min_confidence: int | None = None,
) -> MergeOutcome:
    key = candidate_identity_key(candidate, include_position=include_position)
    confidence = _confidence(candidate)
    verified = resolve_verified(confidence, auto_verify_min_confidence)

    if existing is None:
        return MergeOutcome(decision="inserted", record=build_record(candidate, key=key, verified=verified))

    if confidence <= existing.confidence:
        return MergeOutcome(decision="discarded", record=existing, previous_confidence=existing.confidence)

    verified = verified or existing.verified
    renotify = verified != existing.verified
    updated = replace(
        existing,
        subject=candidate.subject,
        source=candidate.source,
        confidence=confidence,
        verified=verified,
        notification_sent=existing.notification_sent and not renotify,
        attributes={**existing.attributes, **candidate.attributes()},
        link=candidate.link or existing.link,
        raw_text=candidate.raw_text,
        updated_at=utcnow(),
    )
    return MergeOutcome(
        decision="replaced",
        record=updated,
        previous_confidence=existing.confidence,
        renotify=renotify,
    )


def merge(
    candidates: Iterable[Candidate],
    existing: Iterable[TrackedRecord],
    *,
    include_position: bool = False,
    auto_verify_min_confidence: int | None = None,
) -> list[TrackedRecord]:
    """Merge a batch against known records and return the records that were inserted or replaced."""
    known = {(record.event_type, record.identity_key): record for record in existing}
    accepted: dict[tuple[EventType, str], TrackedRecord] = {}
    for candidate in merge_batch(candidates, include_position=include_position):
        key = (candidate.event_type, candidate_identity_key(candidate, include_position=include_position))
        outcome = resolve_merge(
            candidate,
            known.get(key),
            include_position=include_position,
            auto_verify_min_confidence=auto_verify_min_confidence,
        )
        if outcome.accepted:
            known[key] = outcome.record
            accepted[key] = outcome.record
    return list(accepted.values())


def _confidence(candidate: Candidate) -> int:
    return candidate.confidence if candidate.confidence is not None else 0
