from __future__ import annotations

import logging

from pydantic import TypeAdapter, ValidationError

from hiretrack.core.config import Settings
from hiretrack.schemas.companies import CompanyIn
from hiretrack.services.models import Company
from hiretrack.services.repository import EventRepository

logger = logging.getLogger(__name__)

_ROSTER_ADAPTER = TypeAdapter(list[CompanyIn])


def parse_roster_json(raw: str) -> list[Company]:
    entries = _ROSTER_ADAPTER.validate_json(raw)
    return [
        Company(
            name=entry.name.strip(),
            aliases=tuple(alias.strip() for alias in entry.aliases if alias.strip()),
            website=entry.website,
            social_handle=entry.social_handle,
            career_page_url=entry.career_page_url,
            active=entry.active,
        )
        for entry in entries
    ]


async def load_roster(repository: EventRepository, settings: Settings) -> list[Company]:
    """Active companies in registration order; duplicate names keep their first entry."""
    if settings.companies_json:
        try:
            companies = parse_roster_json(settings.companies_json)
        except ValidationError:
            logger.exception("HT_COMPANIES_JSON is not a valid company roster")
            raise
    else:
        companies = await repository.list_companies()

    roster: list[Company] = []
    seen: set[str] = set()
    for company in companies:
        key = company.name.casefold()
        if not company.active or key in seen:
            continue
        seen.add(key)
        roster.append(company)
    return roster
