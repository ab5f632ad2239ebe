from __future__ import annotations

import re
from dataclasses import dataclass, field, replace

from hiretrack.services.models import Candidate, EventType

_TOKEN_RE = re.compile(r"[a-z0-9]+")
_NAME_TOKEN_RE = re.compile(r"^[A-Z][a-z]+$")
_NON_LETTER_RE = re.compile(r"[^A-Za-z\s]")
_POSITION_JUNK_RE = re.compile(r"[^A-Za-z\s&/-]")
_EDGE_NON_LETTER_RE = re.compile(r"^[^A-Za-z]+|[^A-Za-z)]+$")
_TRAILING_PAREN_RE = re.compile(r"\s*\((?:remote|hybrid|on-?site)\)\s*$", re.IGNORECASE)
_STOP_WORDS = {"a", "an", "and", "at", "for", "in", "of", "on", "or", "the", "to", "with"}

NAME_LEAD_IN_WORDS = {
    "welcome",
    "welcoming",
    "introducing",
    "congratulations",
    "congrats",
    "please",
    "today",
    "new",
    "meet",
}

NAME_BLOCKLIST = (
    "team",
    "company",
    "organization",
    "group",
    "department",
    "basketball",
    "football",
    "baseball",
    "hockey",
    "sports",
    "superstar",
    "allstar",
    "player",
    "striker",
    "midfielder",
    "defender",
    "goalkeeper",
    "quarterback",
    "tennis",
    "soccer",
    "coach",
    "league",
    "season",
    "championship",
    "tournament",
    "stadium",
    "club",
    "united",
    "rovers",
    "wanderers",
    "eagles",
    "content",
    "market",
    "evolution",
    "podcast",
    "webinar",
    "award",
)

BUSINESS_ROLE_KEYWORDS = (
    "ceo",
    "cto",
    "cfo",
    "coo",
    "cmo",
    "cpo",
    "cro",
    "ciso",
    "chief",
    "president",
    "vp",
    "svp",
    "evp",
    "director",
    "head",
    "manager",
    "lead",
    "senior",
    "principal",
    "officer",
    "executive",
    "partner",
    "founder",
    "counsel",
    "analyst",
    "specialist",
    "coordinator",
    "engineer",
    "developer",
    "architect",
    "consultant",
    "advisor",
    "scientist",
    "designer",
    "associate",
    "administrator",
    "recruiter",
    "accountant",
    "controller",
    "strategist",
)

PROFESSIONAL_TITLE_KEYWORDS = (
    "engineer",
    "developer",
    "manager",
    "director",
    "lead",
    "senior",
    "principal",
    "analyst",
    "specialist",
    "coordinator",
    "designer",
    "architect",
    "consultant",
    "executive",
    "officer",
    "head",
    "chief",
    "vp",
    "scientist",
    "administrator",
    "associate",
    "representative",
    "intern",
    "accountant",
    "recruiter",
    "counsel",
    "owner",
    "strategist",
    "technician",
)

CANONICAL_JOB_TITLES = (
    "software engineer",
    "data scientist",
    "product manager",
    "account executive",
    "customer success manager",
    "sales development representative",
    "business development manager",
    "marketing manager",
    "financial analyst",
    "devops engineer",
    "site reliability engineer",
    "quality assurance tester",
    "ux researcher",
    "content writer",
    "copywriter",
    "customer support agent",
    "compliance officer",
    "risk analyst",
    "payments operations specialist",
    "trader",
    "underwriter",
    "paralegal",
    "bookkeeper",
    "office administrator",
)

BLOCKED_TITLE_TERMS = (
    "apply",
    "click",
    "here",
    "more",
    "view",
    "see all",
    "all jobs",
    "jobs",
    "careers",
    "openings",
    "opportunities",
    "working at",
    "life at",
    "benefits",
    "culture",
    "cookie",
    "cookies",
    "privacy",
    "terms",
    "blog",
    "login",
    "sign in",
    "subscribe",
    "newsletter",
    "read",
)


@dataclass(frozen=True, slots=True)
class ValidationPolicy:
    min_name_tokens: int = 2
    max_name_tokens: int = 4
    min_title_length: int = 5
    max_title_length: int = 100
    fuzzy_title_overlap: float = 0.70
    name_blocklist: tuple[str, ...] = NAME_BLOCKLIST
    role_keywords: tuple[str, ...] = BUSINESS_ROLE_KEYWORDS
    title_keywords: tuple[str, ...] = PROFESSIONAL_TITLE_KEYWORDS
    canonical_titles: tuple[str, ...] = CANONICAL_JOB_TITLES
    blocked_title_terms: tuple[str, ...] = BLOCKED_TITLE_TERMS
    name_lead_in_words: frozenset[str] = field(default_factory=lambda: frozenset(NAME_LEAD_IN_WORDS))


class Validator:
    def __init__(self, policy: ValidationPolicy | None = None) -> None:
        self.policy = policy or ValidationPolicy()

    def normalize(self, candidate: Candidate) -> Candidate:
        if candidate.event_type is EventType.HIRE:
            return replace(
                candidate,
                subject=self.normalize_name(candidate.subject),
                position=self.normalize_position(candidate.position),
            )
        return replace(candidate, subject=self.normalize_title(candidate.subject))

    def validate(self, candidate: Candidate) -> bool:
        return self.rejection_reason(candidate) is None

    def rejection_reason(self, candidate: Candidate) -> str | None:
        if candidate.event_type is EventType.HIRE:
            return self._hire_rejection(candidate)
        return self._job_rejection(candidate)

    def normalize_name(self, name: str) -> str:
        cleaned = " ".join(_NON_LETTER_RE.sub("", name).split())
        tokens = [token[:1].upper() + token[1:].lower() for token in cleaned.split(" ") if token]
        while len(tokens) > self.policy.min_name_tokens and tokens[0].lower() in self.policy.name_lead_in_words:
            tokens.pop(0)
        return " ".join(tokens)

    @staticmethod
    def normalize_position(position: str | None) -> str | None:
        if not position:
            return None
        cleaned = " ".join(_POSITION_JUNK_RE.sub("", position).split())
        words = cleaned.split(" ")
        while words and words[0].lower() in {"our", "the", "a", "an", "new", "its", "as"}:
            words.pop(0)
        while words and (words[-1].lower() in _STOP_WORDS or words[-1] in {"&", "-", "/"}):
            words.pop()
        return " ".join(words) or None

    @staticmethod
    def normalize_title(title: str) -> str:
        cleaned = " ".join(title.replace("\t", " ").split())
        cleaned = _TRAILING_PAREN_RE.sub("", cleaned)
        return _EDGE_NON_LETTER_RE.sub("", cleaned).strip()

    def _hire_rejection(self, candidate: Candidate) -> str | None:
        name = candidate.subject
        tokens = name.split()
        if not self.policy.min_name_tokens <= len(tokens) <= self.policy.max_name_tokens:
            return "subject_token_count"
        if not all(_NAME_TOKEN_RE.match(token) for token in tokens):
            return "subject_shape"
        lowered_name = name.lower()
        if any(term in lowered_name for term in self.policy.name_blocklist):
            return "subject_blocklisted"
        if lowered_name == candidate.company.strip().lower():
            return "subject_is_company"

        position = candidate.position
        if not position:
            return "position_missing"
        if _contains_keyword(position, self.policy.role_keywords):
            return None
        if _is_title_case(position):
            return None
        return "position_not_business"

    def _job_rejection(self, candidate: Candidate) -> str | None:
        title = candidate.subject
        if not self.policy.min_title_length <= len(title) <= self.policy.max_title_length:
            return "title_length"
        if _contains_keyword(title, self.policy.blocked_title_terms):
            return "title_blocked"
        if _contains_keyword(title, self.policy.title_keywords):
            return None
        if best_title_overlap(title, self.policy.canonical_titles) >= self.policy.fuzzy_title_overlap:
            return None
        return "title_not_professional"


def _contains_keyword(text: str, keywords: tuple[str, ...]) -> bool:
    padded = f" {' '.join(_TOKEN_RE.findall(text.lower()))} "
    return any(f" {keyword} " in padded for keyword in keywords)


def _is_title_case(text: str) -> bool:
    words = [word for word in text.split() if word.lower() not in _STOP_WORDS and word not in {"&", "-", "/"}]
    if not words:
        return False
    return all(word[0].isupper() and word.replace("-", "").replace("/", "").isalpha() for word in words)


def _tokenize(value: str) -> set[str]:
    return {token for token in _TOKEN_RE.findall(value.lower()) if token not in _STOP_WORDS}


def best_title_overlap(title: str, canonical_titles: tuple[str, ...]) -> float:
    """Share of a canonical title's tokens present in ``title``; best over the allow-list."""
    title_tokens = _tokenize(title)
    if not title_tokens:
        return 0.0
    best = 0.0
    for canonical in canonical_titles:
        canonical_tokens = _tokenize(canonical)
        if not canonical_tokens:
            continue
        best = max(best, len(title_tokens & canonical_tokens) / len(canonical_tokens))
    return best
