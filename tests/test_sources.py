from __future__ import annotations

import asyncio
import json
from typing import Any

import httpx
import pytest
from playwright.async_api import Error as PlaywrightError

from hiretrack.core.config import Settings
from hiretrack.services.models import Company, EventType, SourceKind
from hiretrack.services.sources import (
    PUSH_NOTIFICATION_TYPE,
    OfficialApiAdapter,
    PushAdapter,
    RateBudget,
    RecentNotificationIds,
    ScrapeAdapter,
    SearchAdapter,
    SourceUnavailableError,
    build_sources,
    html_to_text,
    organization_id,
)

ACME = Company(
    name="Acme",
    website="https://acme.example",
    social_handle="urn:li:organization:1001",
    career_page_url="https://acme.example/careers/",
)
GLOBEX = Company(name="Globex", social_handle="https://www.linkedin.com/company/2002/")


def test_organization_id_reads_urns_and_profile_urls() -> None:
    assert organization_id(ACME) == "1001"
    assert organization_id(GLOBEX) == "2002"
    assert organization_id(Company(name="Initech", social_handle="https://www.linkedin.com/company/initech")) is None
    assert organization_id(Company(name="Hooli")) is None


def test_company_matches_exact_organization_id_only() -> None:
    assert ACME.matches_organization("urn:li:organization:1001")
    assert not ACME.matches_organization("urn:li:organization:1")
    assert GLOBEX.matches_organization("urn:li:organization:2002")


def test_rate_budget_refills_over_time() -> None:
    now = [0.0]
    budget = RateBudget(2, 10.0, clock=lambda: now[0])

    assert budget.try_acquire()
    assert budget.try_acquire()
    assert not budget.try_acquire()

    now[0] = 5.0
    assert budget.remaining == 1
    assert budget.try_acquire()
    assert not budget.try_acquire()


def test_recent_notification_ids_trim_to_newest() -> None:
    processed = RecentNotificationIds(high_water=4, keep=2)
    for index in range(5):
        processed.add(f"n-{index}")

    assert len(processed) == 2
    assert "n-3" in processed and "n-4" in processed
    assert "n-0" not in processed


def test_push_adapter_accepts_matching_share_notifications() -> None:
    adapter = PushAdapter()
    processed = RecentNotificationIds()
    body = _push_body(
        [
            _notification("n-1", "SHARE", "urn:li:organization:1001", "We are pleased to announce Jane Doe as our new CTO"),
            _notification("n-2", "LIKE", "urn:li:organization:1001", "Nice"),
            _notification("n-3", "SHARE", "urn:li:organization:9999", "Welcome Bob Jones as Head of Sales"),
            _notification("n-1", "SHARE", "urn:li:organization:1001", "repeat delivery"),
            {
                "notificationId": "n-4",
                "action": "ADMIN_COMMENT",
                "organizationalEntity": "urn:li:organization:2002",
                "decoratedGeneratedActivity": {"comment": {"text": "Welcome Ada Byron as Head of Design"}},
            },
        ]
    )

    batch = adapter.accept(body, [ACME, GLOBEX], processed)

    assert batch.to_dict() == {"notifications": 5, "accepted": 2, "ignored": 1, "duplicates": 1, "unmatched": 1}
    assert [company.name for company in batch.companies] == ["Acme", "Globex"]
    assert "n-2" in processed and "n-3" in processed
    assert "n-1" not in processed and "n-4" not in processed
    assert batch.pending_ids == {"Acme": ["n-1"], "Globex": ["n-4"]}

    batch.commit(ACME, processed)
    assert "n-1" in processed
    assert batch.pending_ids == {"Globex": ["n-4"]}

    items = asyncio.run(adapter.fetch_raw_items(ACME, event_type=EventType.HIRE))
    assert len(items) == 1
    assert items[0].source is SourceKind.PUSH
    assert items[0].provenance == "push:notification:n-1"
    assert items[0].link == "https://www.linkedin.com/feed/update/urn:li:share:n-1"
    assert asyncio.run(adapter.fetch_raw_items(ACME, event_type=EventType.HIRE)) == []


def test_push_adapter_ignores_other_payload_types() -> None:
    batch = PushAdapter().accept(json.dumps({"type": "OTHER"}).encode(), [ACME], RecentNotificationIds())
    assert batch.notifications == 0
    assert batch.companies == []


def test_push_adapter_rejects_malformed_payload() -> None:
    with pytest.raises(SourceUnavailableError) as excinfo:
        PushAdapter().accept(b"{not json", [ACME], RecentNotificationIds())
    assert excinfo.value.reason == "malformed payload"


def test_official_api_paginates_until_short_page() -> None:
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        start = int(request.url.params["start"])
        elements = [{"id": f"urn:li:share:{start + index}", "commentary": f"post {start + index}"} for index in range(2)]
        if start >= 2:
            elements = elements[:1]
        return httpx.Response(200, json={"elements": elements})

    adapter = _official(handler, page_size=2, max_pages=5)
    items = asyncio.run(adapter.fetch_raw_items(ACME, event_type=EventType.HIRE))

    assert [item.text for item in items] == ["post 0", "post 1", "post 2"]
    assert len(requests) == 2
    first = requests[0]
    assert first.url.path == "/rest/posts"
    assert first.url.params["author"] == "urn:li:organization:1001"
    assert first.url.params["q"] == "author"
    assert first.headers["Authorization"] == "Bearer token-1"
    assert first.headers["LinkedIn-Version"] == "202401"
    assert items[0].provenance == "official_api:urn:li:share:0"


def test_official_api_budget_exhaustion_is_a_source_failure() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected once the budget is spent")

    adapter = _official(handler, budget=RateBudget(0, 60.0))

    with pytest.raises(SourceUnavailableError) as excinfo:
        asyncio.run(adapter.fetch_raw_items(ACME, event_type=EventType.HIRE))
    assert excinfo.value.reason == "rate budget exhausted"


def test_official_api_keeps_pages_fetched_before_budget_runs_out() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"elements": [{"commentary": "a"}, {"commentary": "b"}]})

    adapter = _official(handler, page_size=2, max_pages=3, budget=RateBudget(1, 3600.0))
    items = asyncio.run(adapter.fetch_raw_items(ACME, event_type=EventType.JOB))

    assert [item.text for item in items] == ["a", "b"]


def test_official_api_http_error_is_a_source_failure() -> None:
    adapter = _official(lambda request: httpx.Response(503, json={"message": "down"}))

    with pytest.raises(SourceUnavailableError) as excinfo:
        asyncio.run(adapter.fetch_raw_items(ACME, event_type=EventType.HIRE))
    assert excinfo.value.source is SourceKind.OFFICIAL_API
    assert excinfo.value.company == "Acme"


def test_official_api_disabled_without_token_or_organization() -> None:
    adapter = OfficialApiAdapter(
        base_url="https://api.example/rest",
        access_token=None,
        api_version="202401",
        page_size=10,
        max_pages=1,
        budget=RateBudget(10, 60.0),
    )
    assert not adapter.enabled_for(ACME, EventType.HIRE)
    assert not _official(lambda request: httpx.Response(200)).enabled_for(Company(name="Hooli"), EventType.HIRE)


def test_search_adapter_builds_queries_and_dedupes_links() -> None:
    seen_queries: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        params = request.url.params
        seen_queries.append(params["q"])
        assert params["key"] == "search-key"
        assert params["cx"] == "engine-1"
        assert params["dateRestrict"] == "w1"
        return httpx.Response(
            200,
            json={
                "items": [
                    {
                        "title": "Senior Data Engineer - Acme | LinkedIn",
                        "snippet": "Acme is hiring a  Senior Data Engineer.",
                        "link": "https://www.linkedin.com/jobs/view/42/?trk=feed",
                    }
                ]
            },
        )

    adapter = SearchAdapter(
        base_url="https://search.example/v1",
        api_key="search-key",
        engine_id="engine-1",
        query_delay_seconds=0,
        transport=httpx.MockTransport(handler),
    )
    items = asyncio.run(adapter.fetch_raw_items(ACME, event_type=EventType.JOB))

    assert seen_queries == SearchAdapter.queries(ACME, EventType.JOB)
    assert all('"Acme"' in query for query in seen_queries)
    assert len(items) == 1
    assert items[0].text == "Senior Data Engineer - Acme | LinkedIn\nAcme is hiring a Senior Data Engineer."
    assert items[0].link == "https://www.linkedin.com/jobs/view/42"


def test_search_adapter_requires_credentials() -> None:
    adapter = SearchAdapter(base_url="https://search.example/v1", api_key=None, engine_id="engine-1")
    assert not adapter.enabled_for(ACME, EventType.HIRE)
    assert asyncio.run(adapter.fetch_raw_items(ACME, event_type=EventType.HIRE)) == []


def test_html_to_text_drops_scripts_and_collapses_whitespace() -> None:
    html = "<html><head><style>p{}</style></head><body><h1>Open   roles</h1><script>var x=1</script><li>Senior Backend Engineer - London</li></body></html>"
    assert html_to_text(html) == "Open roles\nSenior Backend Engineer - London"


def test_scrape_adapter_targets_career_page_for_jobs() -> None:
    renderer = FakeRenderer("<ul><li>Product Designer - Remote</li></ul>")
    adapter = ScrapeAdapter(renderer, timeout_seconds=5, settle_seconds=0)

    items = asyncio.run(adapter.fetch_raw_items(ACME, event_type=EventType.JOB))

    assert renderer.urls == ["https://acme.example/careers"]
    assert items[0].text == "Product Designer - Remote"
    assert items[0].provenance == "scrape:https://acme.example/careers"
    assert ScrapeAdapter.target_url(ACME, EventType.HIRE) == "https://acme.example/"


def test_scrape_adapter_maps_render_errors_to_source_failure() -> None:
    adapter = ScrapeAdapter(FakeRenderer(error=PlaywrightError("net::ERR_NAME_NOT_RESOLVED")))

    with pytest.raises(SourceUnavailableError) as excinfo:
        asyncio.run(adapter.fetch_raw_items(ACME, event_type=EventType.JOB))
    assert excinfo.value.source is SourceKind.SCRAPE


def test_scrape_adapter_can_be_disabled() -> None:
    adapter = ScrapeAdapter(FakeRenderer(""), enabled=False)
    assert not adapter.enabled_for(ACME, EventType.JOB)
    assert not ScrapeAdapter(FakeRenderer("")).enabled_for(Company(name="Hooli"), EventType.JOB)


def test_build_sources_wires_settings() -> None:
    settings = Settings(official_api_access_token="token-1", search_api_key="k", search_engine_id="cx")
    sources = build_sources(settings, renderer=FakeRenderer(""))

    assert [adapter.kind for adapter in sources.primary] == [SourceKind.OFFICIAL_API, SourceKind.SCRAPE]
    assert sources.search.enabled_for(ACME, EventType.JOB)
    assert sources.push.enabled_for(ACME, EventType.HIRE)
    assert not sources.push.enabled_for(ACME, EventType.JOB)


class FakeRenderer:
    def __init__(self, html: str = "", *, error: Exception | None = None) -> None:
        self.html = html
        self.error = error
        self.urls: list[str] = []

    async def render(self, url: str, *, timeout_seconds: float, settle_seconds: float) -> str:
        self.urls.append(url)
        if self.error is not None:
            raise self.error
        return self.html


def _official(handler, *, page_size: int = 50, max_pages: int = 3, budget: RateBudget | None = None) -> OfficialApiAdapter:
    return OfficialApiAdapter(
        base_url="https://api.example/rest",
        access_token="token-1",
        api_version="202401",
        page_size=page_size,
        max_pages=max_pages,
        budget=budget or RateBudget(100, 3600.0),
        transport=httpx.MockTransport(handler),
    )


def _push_body(notifications: list[dict[str, Any]]) -> bytes:
    return json.dumps({"type": PUSH_NOTIFICATION_TYPE, "notifications": notifications}).encode()


def _notification(notification_id: str, action: str, organization: str, text: str) -> dict[str, Any]:
    return {
        "notificationId": notification_id,
        "action": action,
        "organizationalEntity": organization,
        "sourcePost": f"urn:li:share:{notification_id}",
        "decoratedSourcePost": {"text": text},
    }
