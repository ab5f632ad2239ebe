"""Source adapters: one per channel, each turning a company into raw text items."""

from __future__ import annotations

import asyncio
import json
import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any, ClassVar, Protocol

import httpx
from bs4 import BeautifulSoup
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError
from playwright.async_api import async_playwright

from hiretrack.core.config import Settings
from hiretrack.core.urls import normalize_link
from hiretrack.services.models import Company, EventType, RawItem, SourceKind

logger = logging.getLogger(__name__)

PUSH_NOTIFICATION_TYPE = "ORGANIZATION_SOCIAL_ACTION_NOTIFICATIONS"
PUSH_ACTIONS = frozenset({"SHARE", "ADMIN_COMMENT"})
PROCESSED_IDS_HIGH_WATER = 500
PROCESSED_IDS_KEEP = 250
ORGANIZATION_URN_PREFIX = "urn:li:organization:"
POST_URL_TEMPLATE = "https://www.linkedin.com/feed/update/{urn}"

HIRE_SEARCH_QUERIES = (
    '"{name}" "pleased to announce" "joined" site:linkedin.com',
    '"{name}" "excited to welcome" site:linkedin.com',
    '"{name}" "has joined" OR "appointed" OR "names" press release',
    '"{name}" "joins" OR "welcome" site:twitter.com',
)
JOB_SEARCH_QUERIES = (
    '"{name}" "we\'re hiring" OR "now hiring" site:linkedin.com',
    '"{name}" hiring jobs site:linkedin.com/jobs',
)

_DROP_TAGS = ("script", "style", "noscript", "template", "svg")


class SourceUnavailableError(Exception):
    """Raised when a channel cannot produce items for a company this cycle."""

    def __init__(self, source: SourceKind, company: str, reason: str) -> None:
        super().__init__(f"{source.value} unavailable for {company}: {reason}")
        self.source = source
        self.company = company
        self.reason = reason


class RateBudget:
    """Token bucket: ``calls`` per ``window_seconds``, refilled continuously."""

    def __init__(self, calls: int, window_seconds: float, clock: Callable[[], float] = time.monotonic) -> None:
        self.capacity = float(max(0, calls))
        self.tokens = self.capacity
        self.refill_rate = self.capacity / window_seconds if window_seconds > 0 else 0.0
        self._clock = clock
        self._last_refill = clock()

    def _refill(self) -> None:
        now = self._clock()
        elapsed = max(0.0, now - self._last_refill)
        self.tokens = min(self.capacity, self.tokens + elapsed * self.refill_rate)
        self._last_refill = now

    def try_acquire(self, tokens: float = 1.0) -> bool:
        self._refill()
        if self.tokens >= tokens:
            self.tokens -= tokens
            return True
        return False

    @property
    def remaining(self) -> int:
        self._refill()
        return int(self.tokens)


class RecentNotificationIds:
    """Insertion-ordered id set trimmed to the newest entries once it grows past a high-water mark."""

    def __init__(self, high_water: int = PROCESSED_IDS_HIGH_WATER, keep: int = PROCESSED_IDS_KEEP) -> None:
        self.high_water = high_water
        self.keep = keep
        self._ids: dict[str, None] = {}

    def __contains__(self, notification_id: object) -> bool:
        return notification_id in self._ids

    def __len__(self) -> int:
        return len(self._ids)

    def add(self, notification_id: str) -> None:
        self._ids[notification_id] = None
        if len(self._ids) > self.high_water:
            newest = list(self._ids)[-self.keep :]
            self._ids = dict.fromkeys(newest)

    def clear(self) -> None:
        self._ids.clear()


class SourceAdapter(ABC):
    kind: ClassVar[SourceKind]

    def enabled_for(self, company: Company, event_type: EventType) -> bool:
        return True

    @abstractmethod
    async def fetch_raw_items(self, company: Company, *, event_type: EventType) -> list[RawItem]:
        """Return raw text items for one company, or raise SourceUnavailableError."""


@dataclass(slots=True)
class PushBatch:
    notifications: int = 0
    accepted: int = 0
    ignored: int = 0
    duplicates: int = 0
    unmatched: int = 0
    companies: list[Company] = field(default_factory=list)
    pending_ids: dict[str, list[str]] = field(default_factory=dict)

    def commit(self, company: Company, processed: RecentNotificationIds) -> None:
        """Mark a company's notifications processed once its records are persisted."""
        for notification_id in self.pending_ids.pop(company.name, []):
            processed.add(notification_id)

    def to_dict(self) -> dict[str, int]:
        return {
            "notifications": self.notifications,
            "accepted": self.accepted,
            "ignored": self.ignored,
            "duplicates": self.duplicates,
            "unmatched": self.unmatched,
        }


class PushAdapter(SourceAdapter):
    """Holds items delivered by verified push notifications until the pipeline drains them."""

    kind = SourceKind.PUSH

    def __init__(self) -> None:
        self._pending: dict[str, list[RawItem]] = {}

    def enabled_for(self, company: Company, event_type: EventType) -> bool:
        return event_type is EventType.HIRE

    def accept(self, body: bytes, companies: Sequence[Company], processed: RecentNotificationIds) -> PushBatch:
        try:
            payload = json.loads(body)
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise SourceUnavailableError(self.kind, "*", "malformed payload") from exc
        if not isinstance(payload, dict):
            raise SourceUnavailableError(self.kind, "*", "malformed payload")

        batch = PushBatch()
        if payload.get("type") != PUSH_NOTIFICATION_TYPE:
            logger.info("Ignoring push payload of type %s", payload.get("type"))
            return batch

        notifications = payload.get("notifications")
        if not isinstance(notifications, list):
            raise SourceUnavailableError(self.kind, "*", "notifications missing")

        seen: set[str] = set()
        for notification in notifications:
            batch.notifications += 1
            if not isinstance(notification, dict):
                batch.ignored += 1
                continue
            notification_id = str(notification.get("notificationId") or "").strip()
            if notification_id and (notification_id in processed or notification_id in seen):
                batch.duplicates += 1
                continue
            if notification_id:
                seen.add(notification_id)

            # Notifications that carry nothing to persist are settled immediately.
            if notification.get("action") not in PUSH_ACTIONS:
                batch.ignored += 1
                _settle_id(notification_id, processed)
                continue
            text = _notification_text(notification)
            if not text:
                batch.ignored += 1
                _settle_id(notification_id, processed)
                continue

            company = _resolve_company(str(notification.get("organizationalEntity") or ""), companies)
            if company is None:
                batch.unmatched += 1
                _settle_id(notification_id, processed)
                continue

            source_post = notification.get("sourcePost")
            item = RawItem(
                text=text,
                source=self.kind,
                provenance=f"push:notification:{notification_id or 'unknown'}",
                link=POST_URL_TEMPLATE.format(urn=source_post) if isinstance(source_post, str) and source_post else None,
            )
            self._pending.setdefault(company.name, []).append(item)
            if notification_id:
                batch.pending_ids.setdefault(company.name, []).append(notification_id)
            batch.accepted += 1
            if company not in batch.companies:
                batch.companies.append(company)
        return batch

    async def fetch_raw_items(self, company: Company, *, event_type: EventType) -> list[RawItem]:
        return self._pending.pop(company.name, [])

    def discard(self, companies: Iterable[Company]) -> None:
        for company in companies:
            self._pending.pop(company.name, None)

    def clear(self) -> None:
        self._pending.clear()


def _settle_id(notification_id: str, processed: RecentNotificationIds) -> None:
    if notification_id:
        processed.add(notification_id)


def _notification_text(notification: dict[str, Any]) -> str:
    decorated_post = notification.get("decoratedSourcePost")
    if isinstance(decorated_post, dict) and isinstance(decorated_post.get("text"), str):
        return decorated_post["text"].strip()
    activity = notification.get("decoratedGeneratedActivity")
    if isinstance(activity, dict):
        for key in ("share", "comment"):
            nested = activity.get(key)
            if isinstance(nested, dict) and isinstance(nested.get("text"), str):
                return nested["text"].strip()
    return ""


def _resolve_company(organization_urn: str, companies: Iterable[Company]) -> Company | None:
    if not organization_urn:
        return None
    for company in companies:
        if company.matches_organization(organization_urn):
            return company
    return None


def organization_id(company: Company) -> str | None:
    handle = (company.social_handle or "").strip().rstrip("/")
    if not handle:
        return None
    if handle.startswith(ORGANIZATION_URN_PREFIX):
        return handle[len(ORGANIZATION_URN_PREFIX) :]
    tail = handle.rsplit("/", maxsplit=1)[-1]
    return tail if tail.isdigit() else None


class OfficialApiAdapter(SourceAdapter):
    """Paginated pull of an organization's posts, metered by a per-endpoint rate budget."""

    kind = SourceKind.OFFICIAL_API

    def __init__(
        self,
        *,
        base_url: str,
        access_token: str | None,
        api_version: str,
        page_size: int,
        max_pages: int,
        budget: RateBudget,
        timeout_seconds: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.access_token = access_token
        self.api_version = api_version
        self.page_size = max(1, page_size)
        self.max_pages = max(1, max_pages)
        self.budget = budget
        self.timeout_seconds = timeout_seconds
        self.transport = transport

    def enabled_for(self, company: Company, event_type: EventType) -> bool:
        return bool(self.access_token) and organization_id(company) is not None

    async def fetch_raw_items(self, company: Company, *, event_type: EventType) -> list[RawItem]:
        org_id = organization_id(company)
        if not self.access_token or org_id is None:
            return []

        headers = {
            "Authorization": f"Bearer {self.access_token}",
            "LinkedIn-Version": self.api_version,
            "X-Restli-Protocol-Version": "2.0.0",
        }
        items: list[RawItem] = []
        async with httpx.AsyncClient(timeout=self.timeout_seconds, transport=self.transport) as client:
            for page in range(self.max_pages):
                if not self.budget.try_acquire():
                    if items:
                        logger.warning("Rate budget exhausted for %s after %s pages", company.name, page)
                        break
                    raise SourceUnavailableError(self.kind, company.name, "rate budget exhausted")

                params = {
                    "q": "author",
                    "author": f"{ORGANIZATION_URN_PREFIX}{org_id}",
                    "count": self.page_size,
                    "start": page * self.page_size,
                }
                try:
                    response = await client.get(f"{self.base_url}/posts", params=params, headers=headers)
                    response.raise_for_status()
                    payload = response.json()
                except httpx.HTTPError as exc:
                    raise SourceUnavailableError(self.kind, company.name, str(exc) or type(exc).__name__) from exc
                except ValueError as exc:
                    raise SourceUnavailableError(self.kind, company.name, "malformed payload") from exc

                elements = payload.get("elements") if isinstance(payload, dict) else None
                if not isinstance(elements, list):
                    raise SourceUnavailableError(self.kind, company.name, "malformed payload")

                for element in elements:
                    item = self._element_to_item(element)
                    if item is not None:
                        items.append(item)
                if len(elements) < self.page_size:
                    break
        return items

    def _element_to_item(self, element: Any) -> RawItem | None:
        if not isinstance(element, dict):
            return None
        text = element.get("commentary")
        if not isinstance(text, str) or not text.strip():
            return None
        post_id = element.get("id")
        link = POST_URL_TEMPLATE.format(urn=post_id) if isinstance(post_id, str) and post_id else None
        return RawItem(text=text.strip(), source=self.kind, provenance=f"official_api:{post_id or 'unknown'}", link=link)


class PageRenderer(Protocol):
    async def render(self, url: str, *, timeout_seconds: float, settle_seconds: float) -> str: ...


class PlaywrightRenderer:
    """Headless Chromium renderer; a navigation timeout still yields whatever DOM has loaded."""

    async def render(self, url: str, *, timeout_seconds: float, settle_seconds: float) -> str:
        async with async_playwright() as playwright:
            browser = await playwright.chromium.launch(headless=True)
            try:
                page = await browser.new_page()
                try:
                    await page.goto(url, wait_until="networkidle", timeout=timeout_seconds * 1000)
                except PlaywrightTimeoutError:
                    logger.warning("Page load timed out for %s, using partial render", url)
                if settle_seconds > 0:
                    await page.wait_for_timeout(settle_seconds * 1000)
                return await page.content()
            finally:
                await browser.close()


def html_to_text(html: str) -> str:
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(_DROP_TAGS):
        tag.decompose()
    lines = (" ".join(line.split()) for line in soup.get_text("\n").splitlines())
    return "\n".join(line for line in lines if line)


class ScrapeAdapter(SourceAdapter):
    kind = SourceKind.SCRAPE

    def __init__(
        self,
        renderer: PageRenderer,
        *,
        timeout_seconds: float = 30.0,
        settle_seconds: float = 2.0,
        enabled: bool = True,
    ) -> None:
        self.renderer = renderer
        self.timeout_seconds = timeout_seconds
        self.settle_seconds = settle_seconds
        self.enabled = enabled

    def enabled_for(self, company: Company, event_type: EventType) -> bool:
        return self.enabled and self.target_url(company, event_type) is not None

    @staticmethod
    def target_url(company: Company, event_type: EventType) -> str | None:
        if event_type is EventType.JOB:
            return normalize_link(company.career_page_url)
        return normalize_link(company.social_handle) or normalize_link(company.website)

    async def fetch_raw_items(self, company: Company, *, event_type: EventType) -> list[RawItem]:
        url = self.target_url(company, event_type)
        if url is None:
            return []
        try:
            html = await self.renderer.render(
                url,
                timeout_seconds=self.timeout_seconds,
                settle_seconds=self.settle_seconds,
            )
        except PlaywrightError as exc:
            raise SourceUnavailableError(self.kind, company.name, str(exc) or "render failed") from exc

        text = html_to_text(html) if html else ""
        if not text:
            return []
        return [RawItem(text=text, source=self.kind, provenance=f"scrape:{url}", link=url)]


class SearchAdapter(SourceAdapter):
    """Keyword queries against a generic search API; title and snippet form the item text."""

    kind = SourceKind.SEARCH

    def __init__(
        self,
        *,
        base_url: str,
        api_key: str | None,
        engine_id: str | None,
        results_per_query: int = 10,
        date_restrict: str = "w1",
        query_delay_seconds: float = 1.0,
        timeout_seconds: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url
        self.api_key = api_key
        self.engine_id = engine_id
        self.results_per_query = max(1, min(results_per_query, 10))
        self.date_restrict = date_restrict
        self.query_delay_seconds = query_delay_seconds
        self.timeout_seconds = timeout_seconds
        self.transport = transport

    def enabled_for(self, company: Company, event_type: EventType) -> bool:
        return bool(self.api_key and self.engine_id)

    @staticmethod
    def queries(company: Company, event_type: EventType) -> list[str]:
        templates = HIRE_SEARCH_QUERIES if event_type is EventType.HIRE else JOB_SEARCH_QUERIES
        return [template.format(name=company.name) for template in templates]

    async def fetch_raw_items(self, company: Company, *, event_type: EventType) -> list[RawItem]:
        if not self.enabled_for(company, event_type):
            return []

        items: list[RawItem] = []
        seen_links: set[str] = set()
        async with httpx.AsyncClient(timeout=self.timeout_seconds, transport=self.transport) as client:
            for index, query in enumerate(self.queries(company, event_type)):
                if index and self.query_delay_seconds > 0:
                    await asyncio.sleep(self.query_delay_seconds)
                params = {
                    "key": self.api_key,
                    "cx": self.engine_id,
                    "q": query,
                    "num": self.results_per_query,
                    "dateRestrict": self.date_restrict,
                }
                try:
                    response = await client.get(self.base_url, params=params)
                    response.raise_for_status()
                    payload = response.json()
                except httpx.HTTPError as exc:
                    raise SourceUnavailableError(self.kind, company.name, str(exc) or type(exc).__name__) from exc
                except ValueError as exc:
                    raise SourceUnavailableError(self.kind, company.name, "malformed payload") from exc

                results = payload.get("items", []) if isinstance(payload, dict) else []
                for result in results if isinstance(results, list) else []:
                    if not isinstance(result, dict):
                        continue
                    link = normalize_link(result.get("link"))
                    if link and link in seen_links:
                        continue
                    title = str(result.get("title") or "").strip()
                    snippet = " ".join(str(result.get("snippet") or "").split())
                    text = "\n".join(part for part in (title, snippet) if part)
                    if not text:
                        continue
                    if link:
                        seen_links.add(link)
                    items.append(RawItem(text=text, source=self.kind, provenance=f"search:{query}", link=link))
        return items


@dataclass(slots=True)
class SourceSet:
    push: PushAdapter
    primary: list[SourceAdapter]
    search: SearchAdapter


def build_sources(
    settings: Settings,
    *,
    renderer: PageRenderer | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> SourceSet:
    budget = RateBudget(settings.official_api_budget_calls, settings.official_api_budget_window_seconds)
    official = OfficialApiAdapter(
        base_url=settings.official_api_base_url,
        access_token=settings.official_api_access_token,
        api_version=settings.official_api_version,
        page_size=settings.official_api_page_size,
        max_pages=settings.official_api_max_pages,
        budget=budget,
        timeout_seconds=settings.http_timeout_seconds,
        transport=transport,
    )
    scrape = ScrapeAdapter(
        renderer or PlaywrightRenderer(),
        timeout_seconds=settings.scrape_timeout_seconds,
        settle_seconds=settings.scrape_settle_seconds,
        enabled=settings.scrape_enabled,
    )
    search = SearchAdapter(
        base_url=settings.search_base_url,
        api_key=settings.search_api_key,
        engine_id=settings.search_engine_id,
        results_per_query=settings.search_results_per_query,
        date_restrict=settings.search_date_restrict,
        query_delay_seconds=settings.search_query_delay_seconds,
        timeout_seconds=settings.http_timeout_seconds,
        transport=transport,
    )
    return SourceSet(push=PushAdapter(), primary=[official, scrape], search=search)
