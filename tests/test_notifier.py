from __future__ import annotations

import asyncio
import json
import logging

import httpx
import pytest

from hiretrack.core.config import Settings
from hiretrack.services import notifier as notifier_module
from hiretrack.services.models import EventType, HealthMetric, SourceKind, TrackedRecord
from hiretrack.services.notifier import (
    HIRE_SHEET_RANGE,
    JOB_SHEET_RANGE,
    EmailNotifier,
    NotificationFanOut,
    NotificationPayload,
    SheetsSink,
    SlackNotifier,
    build_fan_out,
)


def test_slack_hire_message_includes_person_position_and_link() -> None:
    bodies: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        bodies.append(json.loads(request.content))
        return httpx.Response(200, text="ok")

    slack = SlackNotifier("https://hooks.example/T1", transport=httpx.MockTransport(handler))
    asyncio.run(slack.send(NotificationPayload.from_record(_hire_record())))

    (body,) = bodies
    assert body["text"] == "New hire at Acme: Jane Doe (VP of Engineering)"
    fields = [field["text"] for field in body["blocks"][1]["fields"]]
    assert "*Person:*\nJane Doe" in fields
    assert "*Position:*\nVP of Engineering" in fields
    assert "*Confidence:*\n90%" in fields
    assert "View source" in body["blocks"][2]["elements"][0]["text"]


def test_sheet_rows_follow_record_type() -> None:
    hire_range, hire_row = SheetsSink.record_row(_hire_record())
    job_range, job_row = SheetsSink.record_row(_job_record())

    assert hire_range == HIRE_SHEET_RANGE
    assert hire_row[:3] == ["Jane Doe", "Acme", "VP of Engineering"]
    assert hire_row[-1] == "no"
    assert job_range == JOB_SHEET_RANGE
    assert job_row[:3] == ["Acme", "Senior Data Engineer", "Remote"]


def test_sheets_append_posts_values_with_bearer_token() -> None:
    captured: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        captured.append(request)
        return httpx.Response(200, json={})

    sheets = SheetsSink(
        base_url="https://sheets.example/v4/spreadsheets",
        spreadsheet_id="sheet-1",
        access_token="token-1",
        transport=httpx.MockTransport(handler),
    )
    asyncio.run(sheets.append_record(_job_record()))

    (request,) = captured
    assert request.method == "POST"
    assert request.url.path == "/v4/spreadsheets/sheet-1/values/Job Postings!A:H:append"
    assert request.url.params["valueInputOption"] == "USER_ENTERED"
    assert request.headers["Authorization"] == "Bearer token-1"
    assert json.loads(request.content)["values"][0][1] == "Senior Data Engineer"


def test_fan_out_logs_channel_failures_without_raising(caplog: pytest.LogCaptureFixture) -> None:
    slack_calls: list[int] = []

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "hooks.example":
            slack_calls.append(1)
            return httpx.Response(500, text="boom")
        return httpx.Response(200, json={})

    fan_out = build_fan_out(
        Settings(
            slack_webhook_url="https://hooks.example/T1",
            sheets_spreadsheet_id="sheet-1",
            sheets_access_token="token-1",
        ),
        transport=httpx.MockTransport(handler),
    )

    with caplog.at_level(logging.WARNING, logger="hiretrack.services.notifier"):
        result = asyncio.run(fan_out.deliver(_hire_record()))

    assert slack_calls == [1]
    assert result.delivered == ["sheets"]
    assert "slack" in result.failed
    assert not result.notified
    assert "Delivery to slack failed" in caplog.text


def test_unconfigured_channels_are_skipped() -> None:
    fan_out = build_fan_out(Settings())
    result = asyncio.run(fan_out.deliver(_hire_record()))

    assert result.delivered == []
    assert result.failed == {}


def test_email_is_sent_through_smtp(monkeypatch: pytest.MonkeyPatch) -> None:
    sent: list = []

    class FakeSMTP:
        def __init__(self, host: str, port: int, timeout: float) -> None:
            self.host = host
            self.port = port

        def __enter__(self) -> FakeSMTP:
            return self

        def __exit__(self, *exc_info) -> None:
            return None

        def starttls(self) -> None:
            sent.append("starttls")

        def login(self, username: str, password: str) -> None:
            sent.append(("login", username))

        def send_message(self, message) -> None:
            sent.append(message)

    monkeypatch.setattr(notifier_module.smtplib, "SMTP", FakeSMTP)
    email = EmailNotifier(
        host="smtp.example",
        port=587,
        username="bot",
        password="secret",
        sender="bot@example.com",
        recipient="team@example.com",
    )
    fan_out = NotificationFanOut(
        slack=SlackNotifier(None),
        email=email,
        sheets=SheetsSink(base_url="https://sheets.example", spreadsheet_id=None, access_token=None),
    )

    result = asyncio.run(fan_out.deliver(_hire_record()))

    assert result.delivered == ["email"]
    assert result.notified
    assert sent[:2] == ["starttls", ("login", "bot")]
    message = sent[2]
    assert message["Subject"] == "New hire at Acme: Jane Doe (VP of Engineering)"
    assert "Position: VP of Engineering" in message.get_content()


def test_record_health_appends_to_health_sheet() -> None:
    paths: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        paths.append(request.url.path)
        return httpx.Response(200, json={})

    fan_out = build_fan_out(
        Settings(sheets_spreadsheet_id="sheet-1", sheets_access_token="token-1"),
        transport=httpx.MockTransport(handler),
    )
    result = asyncio.run(fan_out.record_health(HealthMetric(service="database", status="down", error_message="x")))

    assert result.delivered == ["sheets"]
    assert paths == ["/v4/spreadsheets/sheet-1/values/Health Metrics!A:E:append"]


def _hire_record() -> TrackedRecord:
    return TrackedRecord(
        id="rec-1",
        event_type=EventType.HIRE,
        identity_key="jane doe|acme",
        subject="Jane Doe",
        company="Acme",
        source=SourceKind.PUSH,
        confidence=90,
        attributes={"position": "VP of Engineering"},
        link="https://www.linkedin.com/feed/update/urn:li:share:1",
    )


def _job_record() -> TrackedRecord:
    return TrackedRecord(
        id="rec-2",
        event_type=EventType.JOB,
        identity_key="senior data engineer|acme",
        subject="Senior Data Engineer",
        company="Acme",
        source=SourceKind.SEARCH,
        confidence=65,
        attributes={"location": "Remote"},
    )
