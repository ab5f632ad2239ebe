from __future__ import annotations

import re
from dataclasses import dataclass, field

from hiretrack.services.models import Candidate, EventType, SourceKind

EXECUTIVE_TERMS = (
    "ceo",
    "cto",
    "cfo",
    "coo",
    "cmo",
    "cpo",
    "ciso",
    "chief",
    "president",
    "vp",
    "vice president",
    "director",
    "head of",
    "managing director",
    "general counsel",
    "partner",
    "founder",
)

COURTEOUS_PHRASES = (
    "pleased to announce",
    "excited to announce",
    "thrilled to announce",
    "delighted to announce",
    "proud to announce",
    "happy to announce",
    "pleased to welcome",
    "excited to welcome",
    "thrilled to welcome",
    "delighted to welcome",
    "please join us in welcoming",
    "please welcome",
    "join us in welcoming",
    "warm welcome",
)

PROFESSIONAL_JOB_TERMS = (
    "engineer",
    "developer",
    "manager",
    "director",
    "analyst",
    "specialist",
    "designer",
    "architect",
    "scientist",
    "consultant",
    "lead",
    "senior",
    "principal",
    "head",
    "officer",
)


@dataclass(frozen=True, slots=True)
class ScoringPolicy:
    base: dict[SourceKind, int] = field(
        default_factory=lambda: {
            SourceKind.PUSH: 70,
            SourceKind.OFFICIAL_API: 70,
            SourceKind.SCRAPE: 60,
            SourceKind.SEARCH: 45,
        }
    )
    ceiling: dict[SourceKind, int] = field(
        default_factory=lambda: {
            SourceKind.PUSH: 97,
            SourceKind.OFFICIAL_API: 95,
            SourceKind.SCRAPE: 90,
            SourceKind.SEARCH: 80,
        }
    )
    executive_bonus: int = 15
    courteous_bonus: int = 5
    previous_company_bonus: int = 5
    start_date_bonus: int = 5
    professional_title_bonus: int = 10
    location_bonus: int = 5
    salary_bonus: int = 5
    executive_terms: tuple[str, ...] = EXECUTIVE_TERMS
    courteous_phrases: tuple[str, ...] = COURTEOUS_PHRASES
    professional_job_terms: tuple[str, ...] = PROFESSIONAL_JOB_TERMS


class ConfidenceScorer:
    """Additive confidence heuristic clamped to a per-channel ceiling."""

    def __init__(self, policy: ScoringPolicy | None = None) -> None:
        self.policy = policy or ScoringPolicy()

    def floor(self, source: SourceKind) -> int:
        return self.policy.base[source]

    def score(self, candidate: Candidate, raw_text: str | None = None) -> int:
        text = _flatten(raw_text if raw_text is not None else candidate.raw_text)
        policy = self.policy
        total = policy.base[candidate.source]

        if candidate.event_type is EventType.HIRE:
            if _has_term(_flatten(candidate.position or ""), policy.executive_terms):
                total += policy.executive_bonus
            if any(phrase in text for phrase in policy.courteous_phrases):
                total += policy.courteous_bonus
            if candidate.previous_company:
                total += policy.previous_company_bonus
            if candidate.start_date:
                total += policy.start_date_bonus
        else:
            if _has_term(_flatten(candidate.subject), policy.professional_job_terms):
                total += policy.professional_title_bonus
            if candidate.location or candidate.job_type:
                total += policy.location_bonus
            if candidate.salary:
                total += policy.salary_bonus

        return max(0, min(total, policy.ceiling[candidate.source], 100))


def _flatten(text: str) -> str:
    return " ".join(re.findall(r"[a-z0-9]+", text.lower()))


def _has_term(flat_text: str, terms: tuple[str, ...]) -> bool:
    padded = f" {flat_text} "
    return any(f" {term} " in padded for term in terms)
