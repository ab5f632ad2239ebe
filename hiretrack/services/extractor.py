"""Template-driven extraction of hire and job candidates from unstructured text.

Every channel feeds the same :class:`PatternExtractor`; channel differences live in
the template table (which templates apply to which source) rather than in
per-channel extractor types. Each template carries two named groups:
``subject`` (person name or job title) and ``detail`` (role for hires,
location for jobs).

Person names are matched as two to four capitalized words. Names outside that
Western convention are not recovered.
"""

from __future__ import annotations

import re
from collections.abc import Iterator, Sequence
from dataclasses import dataclass
from datetime import datetime

from hiretrack.core.urls import normalize_link
from hiretrack.services.models import Candidate, Company, EventType, SourceKind, utcnow

_NAME_WORD = r"[A-Z][a-z]+(?:[A-Z][a-z]+)?(?:[-'][A-Z]?[a-z]+)?"
NAME = rf"\b(?P<subject>{_NAME_WORD}(?:[ \t]+{_NAME_WORD}){{1,3}})"

_ROLE_WORD = r"(?:&|[A-Za-z][\w&/+'-]*)"
_ROLE_END = (
    r"(?=[ \t]*(?:[.!?,;:()\n]|$)"
    r"|[ \t]+(?:at|from|to|in|on|with|effective|starting|who|which|after|where|bringing|following"
    r"|she|he|they|this|today|and[ \t]+(?:will|has|is|brings))\b)"
)
ROLE = rf"(?P<detail>{_ROLE_WORD}(?:[ \t]+{_ROLE_WORD}){{0,7}}?){_ROLE_END}"

_LEAD_IN = r"(?i:(?:(?:our|the|a|an|its)[ \t]+)?(?:new[ \t]+)?)"
_EXEC_ROLE = (
    r"(?P<detail>Chief[ \t]+[A-Z][a-z]+(?:[ \t]+[A-Z][a-z]+)?[ \t]+Officer|C[EFOTMP]O|CISO"
    r"|(?:Senior[ \t]+|Executive[ \t]+)?(?:VP|Vice[ \t]+President)[ \t]+of[ \t]+[A-Z][a-z]+"
    r"|Head[ \t]+of[ \t]+[A-Z][a-z]+|Managing[ \t]+Director|General[ \t]+Counsel)"
)

_JOB_TITLE = r"(?P<subject>[A-Za-z][\w/&+-]*(?:[ \t]+(?:&|[\w/&+().-]+)){0,9}?)"
_JOB_TITLE_END = (
    r"(?=[ \t]*(?:[.!?,;:|\n]|$)"
    r"|[ \t]+(?:to|at|with|who|for[ \t]+our|based|in|on|and[ \t]+more)\b)"
)
_LOCATION = r"(?P<detail>Remote|Hybrid|[A-Z][a-z]+(?:[ \t]+[A-Z][a-z]+)*(?:,[ \t]*[A-Z][A-Za-z]+(?:[ \t]+[A-Z][a-z]+)*)?)"


@dataclass(frozen=True, slots=True)
class ExtractionTemplate:
    name: str
    event_type: EventType
    pattern: re.Pattern[str]
    sources: frozenset[SourceKind] | None = None

    def applies_to(self, source: SourceKind) -> bool:
        return self.sources is None or source in self.sources


def _template(
    name: str,
    event_type: EventType,
    pattern: str,
    *,
    sources: set[SourceKind] | None = None,
    flags: int = 0,
) -> ExtractionTemplate:
    return ExtractionTemplate(
        name=name,
        event_type=event_type,
        pattern=re.compile(pattern, flags),
        sources=frozenset(sources) if sources is not None else None,
    )


HIRE_TEMPLATES: tuple[ExtractionTemplate, ...] = (
    _template(
        "announcement",
        EventType.HIRE,
        r"(?i:(?:pleased|excited|proud|thrilled|delighted|happy|honou?red)[ \t]+to[ \t]+(?:announce|welcome|share)"
        r"(?:[ \t]+that)?)[ \t]+"
        + NAME
        + r"[ \t]+(?i:(?:has[ \t]+|will[ \t]+be[ \t]+)?(?:(?:joined|joining)(?:[ \t]+(?:us|our[ \t]+team|the[ \t]+team))?[ \t]+)?as)"
        + r"[ \t]+"
        + _LEAD_IN
        + ROLE,
    ),
    _template(
        "appointment",
        EventType.HIRE,
        NAME
        + r"[ \t]+(?i:(?:has[ \t]+been|was|is|will[ \t]+be)[ \t]+(?:appointed|named|promoted))"
        + r"[ \t]+(?i:(?:as|to)[ \t]+)?"
        + _LEAD_IN
        + ROLE,
    ),
    _template(
        "welcome",
        EventType.HIRE,
        r"(?i:welcome|welcoming|introducing|say[ \t]+hello[ \t]+to)[ \t]+"
        + NAME
        + r"[ \t]+(?:(?i:to[ \t]+(?:our|the)[ \t]+team|who[ \t]+(?:has[ \t]+)?joined[ \t]+us)[ \t]+)?(?i:as)[ \t]+"
        + _LEAD_IN
        + ROLE,
    ),
    _template(
        "joined_as",
        EventType.HIRE,
        NAME
        + r"[ \t]+(?i:(?:has[ \t]+)?(?:joined|joins|is[ \t]+joining))"
        + r"(?:[ \t]+(?i:us|our[ \t]+team|the[ \t]+team|the[ \t]+company)|[ \t]+[A-Z][\w&-]*(?:[ \t]+[A-Z][\w&-]*){0,3})?"
        + r"[ \t]+(?i:as)[ \t]+"
        + _LEAD_IN
        + ROLE,
    ),
    _template(
        "press_release",
        EventType.HIRE,
        r"(?i:appoints|names|hires|welcomes|taps)[ \t]+" + NAME + r"[ \t]+(?i:as)[ \t]+" + _LEAD_IN + ROLE,
    ),
    _template(
        "title_first",
        EventType.HIRE,
        r"(?i:new[ \t]+)?" + _EXEC_ROLE + r"[ \t]+" + NAME + r"[ \t]+(?i:joins|has[ \t]+joined|starts)",
    ),
    _template(
        "joins",
        EventType.HIRE,
        NAME + r"[ \t]+(?i:joins|has[ \t]+joined)[ \t]+" + ROLE,
    ),
)

JOB_TEMPLATES: tuple[ExtractionTemplate, ...] = (
    _template(
        "search_hiring_title",
        EventType.JOB,
        r"(?i:hiring)[ \t]+" + _JOB_TITLE + r"[ \t]+in[ \t]+" + _LOCATION + r"[ \t]*(?:\||$)",
        sources={SourceKind.SEARCH},
        flags=re.MULTILINE,
    ),
    _template(
        "search_result_title",
        EventType.JOB,
        r"^(?P<subject>[^|\n]{4,120}?)[ \t]+(?:-|–|at|@)[ \t]+(?P<detail>[^|\n]{2,80}?)[ \t]*(?:\||$)",
        sources={SourceKind.SEARCH},
        flags=re.MULTILINE,
    ),
    _template(
        "hiring_announcement",
        EventType.JOB,
        r"(?i:we(?:['’]re|[ \t]+are)[ \t]+hiring|now[ \t]+hiring|is[ \t]+hiring|are[ \t]+looking[ \t]+for|join[ \t]+us[ \t]+as)"
        r"[ \t]*:?[ \t]*(?i:(?:an?|our|the)[ \t]+)?(?i:new[ \t]+)?"
        + _JOB_TITLE
        + _JOB_TITLE_END
        + r"(?:[ \t]+(?i:in|based[ \t]+in)[ \t]+"
        + _LOCATION
        + r")?",
    ),
    _template(
        "listing_line",
        EventType.JOB,
        r"^[ \t]*(?P<subject>[A-Z][\w/&+().,'-]*(?:[ \t]+(?:&|[\w(][\w/&+().,'-]*)){0,9})[ \t]*"
        r"(?:[-–|·][ \t]*" + _LOCATION + r")?[ \t]*$",
        sources={SourceKind.SCRAPE},
        flags=re.MULTILINE,
    ),
)

DEFAULT_TEMPLATES: tuple[ExtractionTemplate, ...] = HIRE_TEMPLATES + JOB_TEMPLATES

_PREVIOUS_COMPANY_PATTERNS = (
    re.compile(r"(?i:formerly|previously)[ \t]+(?i:at|with)[ \t]+([A-Z][\w&.-]*(?:[ \t]+[A-Z][\w&.-]*){0,4})"),
    re.compile(r"(?i:coming[ \t]+from|joins[ \t]+us[ \t]+from|joined[ \t]+us[ \t]+from)[ \t]+([A-Z][\w&.-]*(?:[ \t]+[A-Z][\w&.-]*){0,4})"),
)
_START_DATE_PATTERNS = (
    re.compile(r"(?i:starting|begins|joined|joins)[ \t]+(?i:on[ \t]+)?([A-Z][a-z]+[ \t]+\d{1,2}(?:st|nd|rd|th)?(?:,[ \t]+\d{4})?)"),
    re.compile(r"(?i:effective|as[ \t]+of)[ \t]+([A-Z][a-z]+[ \t]+\d{1,2}(?:st|nd|rd|th)?(?:,[ \t]+\d{4})?)"),
)
_DEPARTMENT_PATTERN = re.compile(
    r"\b(?:in|to|join|joins|joining|lead|leads|leading)[ \t]+(?:our|the)[ \t]+"
    r"(engineering|marketing|sales|finance|hr|human[ \t]+resources|operations|product|design|legal|compliance"
    r"|technology|data|analytics|research|security|people)[ \t]+(?:team|department|org|organization)",
    re.IGNORECASE,
)
_DEPARTMENT_FROM_ROLE = re.compile(r"\b(?:of|for)[ \t]+([A-Z][a-z]+(?:[ \t]+[A-Z][a-z]+)?)$")
_JOB_TYPE_PATTERN = re.compile(
    r"\b(Full[- ]time|Part[- ]time|Contract|Temporary|Permanent|Internship|Freelance)\b", re.IGNORECASE
)
_SALARY_PATTERN = re.compile(
    r"[£$€][ \t]*[\d,]+(?:k)?(?:[ \t]*[-–][ \t]*[£$€]?[ \t]*[\d,]+(?:k)?)?(?:[ \t]*(?:per[ \t]+)?(?:year|annum|month|hour|yr))?",
    re.IGNORECASE,
)
_CONTEXT_LOCATION_PATTERN = re.compile(r"\b(Remote|Hybrid|On-site|Onsite)\b", re.IGNORECASE)
_CONTEXT_WINDOW = 300
_DESCRIPTION_LIMIT = 500


class CandidateStream:
    """Lazy, finite view over the candidates found in one piece of text.

    Iterating again re-runs the extraction from the start.
    """

    def __init__(
        self,
        extractor: PatternExtractor,
        text: str,
        company: Company,
        source: SourceKind,
        *,
        event_type: EventType | None,
        provenance: str,
        link: str | None,
        found_at: datetime | None,
    ) -> None:
        self._extractor = extractor
        self._text = text
        self._company = company
        self._source = source
        self._event_type = event_type
        self._provenance = provenance
        self._link = link
        self._found_at = found_at

    def __iter__(self) -> Iterator[Candidate]:
        return self._extractor._iter_candidates(
            self._text,
            self._company,
            self._source,
            event_type=self._event_type,
            provenance=self._provenance,
            link=self._link,
            found_at=self._found_at or utcnow(),
        )


class PatternExtractor:
    def __init__(self, templates: Sequence[ExtractionTemplate] = DEFAULT_TEMPLATES) -> None:
        self.templates = tuple(templates)

    def extract(
        self,
        text: str,
        company: Company,
        source: SourceKind,
        *,
        event_type: EventType | None = None,
        provenance: str = "",
        link: str | None = None,
        found_at: datetime | None = None,
    ) -> CandidateStream:
        return CandidateStream(
            self,
            text,
            company,
            source,
            event_type=event_type,
            provenance=provenance,
            link=link,
            found_at=found_at,
        )

    def _iter_candidates(
        self,
        text: str,
        company: Company,
        source: SourceKind,
        *,
        event_type: EventType | None,
        provenance: str,
        link: str | None,
        found_at: datetime,
    ) -> Iterator[Candidate]:
        if not text or not text.strip():
            return
        normalized_link = normalize_link(link)
        claimed: dict[EventType, list[tuple[int, int]]] = {EventType.HIRE: [], EventType.JOB: []}
        seen_subjects: set[tuple[EventType, str]] = set()

        for template in self.templates:
            if event_type is not None and template.event_type is not event_type:
                continue
            if not template.applies_to(source):
                continue
            for match in template.pattern.finditer(text):
                subject = (match.group("subject") or "").strip()
                if not subject:
                    continue
                span = match.span("subject")
                if _overlaps(span, claimed[template.event_type]):
                    continue
                subject_key = (template.event_type, " ".join(subject.lower().split()))
                if subject_key in seen_subjects:
                    continue
                claimed[template.event_type].append(span)
                seen_subjects.add(subject_key)

                detail = (match.groupdict().get("detail") or "").strip() or None
                candidate = Candidate(
                    event_type=template.event_type,
                    subject=subject,
                    company=company.name,
                    source=source,
                    raw_text=text,
                    provenance=provenance,
                    found_at=found_at,
                    link=normalized_link,
                    template=template.name,
                )
                context = _context(text, match.start(), match.end())
                if template.event_type is EventType.HIRE:
                    _fill_hire_attributes(candidate, detail, context)
                else:
                    _fill_job_attributes(candidate, detail, context, company)
                yield candidate


def _overlaps(span: tuple[int, int], claimed: list[tuple[int, int]]) -> bool:
    start, end = span
    return any(start < other_end and other_start < end for other_start, other_end in claimed)


def _context(text: str, start: int, end: int) -> str:
    return text[max(0, start - _CONTEXT_WINDOW) : min(len(text), end + _CONTEXT_WINDOW)]


def _first_group(patterns: Sequence[re.Pattern[str]], text: str) -> str | None:
    for pattern in patterns:
        match = pattern.search(text)
        if match:
            return match.group(1).strip()
    return None


def _fill_hire_attributes(candidate: Candidate, role: str | None, context: str) -> None:
    candidate.position = role
    candidate.previous_company = _first_group(_PREVIOUS_COMPANY_PATTERNS, context)
    candidate.start_date = _first_group(_START_DATE_PATTERNS, context)
    department = _DEPARTMENT_PATTERN.search(context)
    if department:
        candidate.department = " ".join(department.group(1).split()).title()
    elif role:
        from_role = _DEPARTMENT_FROM_ROLE.search(role)
        if from_role:
            candidate.department = from_role.group(1)


def _fill_job_attributes(candidate: Candidate, location: str | None, context: str, company: Company) -> None:
    if location and any(name.casefold() in location.casefold() for name in company.names):
        location = None
    if location is None:
        context_location = _CONTEXT_LOCATION_PATTERN.search(context)
        location = context_location.group(1) if context_location else None
    candidate.location = location
    job_type = _JOB_TYPE_PATTERN.search(context)
    candidate.job_type = job_type.group(1) if job_type else None
    salary = _SALARY_PATTERN.search(context)
    candidate.salary = salary.group(0).strip() if salary else None
    description = " ".join(context.split())
    candidate.description = description[:_DESCRIPTION_LIMIT] or None
