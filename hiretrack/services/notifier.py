from __future__ import annotations

import asyncio
import logging
import smtplib
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from email.message import EmailMessage
from typing import Any

import httpx

from hiretrack.core.config import Settings
from hiretrack.services.models import EventType, HealthMetric, TrackedRecord

logger = logging.getLogger(__name__)

DELIVERY_ERRORS = (httpx.HTTPError, smtplib.SMTPException, OSError)

HIRE_SHEET_RANGE = "New Hires!A:J"
JOB_SHEET_RANGE = "Job Postings!A:H"
SUMMARY_SHEET_RANGE = "Summary!A:F"
HEALTH_SHEET_RANGE = "Health Metrics!A:E"


@dataclass(slots=True, frozen=True)
class NotificationPayload:
    record_type: EventType
    subject: str
    company: str
    position: str | None
    confidence: int
    source: str
    link: str | None

    @classmethod
    def from_record(cls, record: TrackedRecord) -> NotificationPayload:
        return cls(
            record_type=record.event_type,
            subject=record.subject,
            company=record.company,
            position=record.position if record.event_type is EventType.HIRE else record.subject,
            confidence=record.confidence,
            source=record.source.value,
            link=record.link,
        )

    @property
    def headline(self) -> str:
        if self.record_type is EventType.HIRE:
            return f"New hire at {self.company}: {self.subject} ({self.position or 'position unknown'})"
        return f"New job at {self.company}: {self.subject}"


class SlackNotifier:
    def __init__(
        self,
        webhook_url: str | None,
        *,
        timeout_seconds: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.webhook_url = webhook_url
        self.timeout_seconds = timeout_seconds
        self.transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.webhook_url)

    async def send(self, payload: NotificationPayload) -> None:
        title = "New Hire Detected" if payload.record_type is EventType.HIRE else "New Job Alert"
        label = "Person" if payload.record_type is EventType.HIRE else "Title"
        fields = [
            {"type": "mrkdwn", "text": f"*{label}:*\n{payload.subject}"},
            {"type": "mrkdwn", "text": f"*Company:*\n{payload.company}"},
            {"type": "mrkdwn", "text": f"*Confidence:*\n{payload.confidence}%"},
            {"type": "mrkdwn", "text": f"*Source:*\n{payload.source}"},
        ]
        if payload.record_type is EventType.HIRE:
            fields.insert(2, {"type": "mrkdwn", "text": f"*Position:*\n{payload.position or 'Unknown'}"})
        blocks: list[dict[str, Any]] = [
            {"type": "section", "text": {"type": "mrkdwn", "text": f"*{title}*"}},
            {"type": "section", "fields": fields},
        ]
        if payload.link:
            blocks.append({"type": "context", "elements": [{"type": "mrkdwn", "text": f"<{payload.link}|View source>"}]})
        await self._post({"text": payload.headline, "blocks": blocks})

    async def send_system_message(self, text: str) -> None:
        await self._post({"text": text})

    async def _post(self, body: dict[str, Any]) -> None:
        if not self.webhook_url:
            return
        async with httpx.AsyncClient(timeout=self.timeout_seconds, transport=self.transport) as client:
            response = await client.post(self.webhook_url, json=body)
            response.raise_for_status()


class EmailNotifier:
    def __init__(
        self,
        *,
        host: str | None,
        port: int,
        username: str | None,
        password: str | None,
        sender: str | None,
        recipient: str | None,
    ) -> None:
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.sender = sender
        self.recipient = recipient

    @property
    def configured(self) -> bool:
        return bool(self.host and self.sender and self.recipient)

    def build_message(self, payload: NotificationPayload) -> EmailMessage:
        message = EmailMessage()
        message["Subject"] = payload.headline
        message["From"] = self.sender or ""
        message["To"] = self.recipient or ""
        lines = [
            f"Company: {payload.company}",
            f"{'Person' if payload.record_type is EventType.HIRE else 'Title'}: {payload.subject}",
        ]
        if payload.record_type is EventType.HIRE:
            lines.append(f"Position: {payload.position or 'Unknown'}")
        lines.extend(
            [
                f"Confidence: {payload.confidence}%",
                f"Source: {payload.source}",
                f"Link: {payload.link or 'N/A'}",
            ]
        )
        message.set_content("\n".join(lines))
        return message

    async def send(self, payload: NotificationPayload) -> None:
        if not self.configured:
            return
        await asyncio.to_thread(self._send_sync, self.build_message(payload))

    def _send_sync(self, message: EmailMessage) -> None:
        with smtplib.SMTP(self.host or "", self.port, timeout=30) as server:
            server.starttls()
            if self.username and self.password:
                server.login(self.username, self.password)
            server.send_message(message)


class SheetsSink:
    """Append-only rows in a spreadsheet through the values:append REST call."""

    def __init__(
        self,
        *,
        base_url: str,
        spreadsheet_id: str | None,
        access_token: str | None,
        timeout_seconds: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.spreadsheet_id = spreadsheet_id
        self.access_token = access_token
        self.timeout_seconds = timeout_seconds
        self.transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.spreadsheet_id and self.access_token)

    @staticmethod
    def record_row(record: TrackedRecord) -> tuple[str, list[Any]]:
        found = record.found_at.isoformat()
        attributes = record.attributes
        if record.event_type is EventType.HIRE:
            return HIRE_SHEET_RANGE, [
                record.subject,
                record.company,
                attributes.get("position", ""),
                attributes.get("start_date", ""),
                attributes.get("previous_company", ""),
                record.link or "",
                record.source.value,
                record.confidence,
                found,
                "yes" if record.verified else "no",
            ]
        return JOB_SHEET_RANGE, [
            record.company,
            record.subject,
            attributes.get("location", ""),
            attributes.get("job_type", ""),
            found,
            record.link or "",
            record.source.value,
            record.confidence,
        ]

    async def append_record(self, record: TrackedRecord) -> None:
        sheet_range, row = self.record_row(record)
        await self.append_rows(sheet_range, [row])

    async def append_health(self, metric: HealthMetric) -> None:
        row = [
            metric.recorded_at.isoformat(),
            metric.service,
            metric.status,
            metric.response_time_ms if metric.response_time_ms is not None else "",
            metric.error_message or "",
        ]
        await self.append_rows(HEALTH_SHEET_RANGE, [row])

    async def append_rows(self, sheet_range: str, rows: list[list[Any]]) -> None:
        if not self.configured:
            return
        url = f"{self.base_url}/{self.spreadsheet_id}/values/{sheet_range}:append"
        async with httpx.AsyncClient(timeout=self.timeout_seconds, transport=self.transport) as client:
            response = await client.post(
                url,
                params={"valueInputOption": "USER_ENTERED", "insertDataOption": "INSERT_ROWS"},
                json={"values": rows},
                headers={"Authorization": f"Bearer {self.access_token}"},
            )
            response.raise_for_status()

    async def check(self) -> None:
        if not self.configured:
            return
        async with httpx.AsyncClient(timeout=self.timeout_seconds, transport=self.transport) as client:
            response = await client.get(
                f"{self.base_url}/{self.spreadsheet_id}",
                params={"fields": "spreadsheetId"},
                headers={"Authorization": f"Bearer {self.access_token}"},
            )
            response.raise_for_status()


@dataclass(slots=True)
class DeliveryResult:
    delivered: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)

    @property
    def notified(self) -> bool:
        return any(channel in self.delivered for channel in ("slack", "email"))


class NotificationFanOut:
    def __init__(self, slack: SlackNotifier, email: EmailNotifier, sheets: SheetsSink) -> None:
        self.slack = slack
        self.email = email
        self.sheets = sheets

    async def deliver(self, record: TrackedRecord) -> DeliveryResult:
        payload = NotificationPayload.from_record(record)
        result = DeliveryResult()
        await self._attempt(result, "sheets", self.sheets.configured, lambda: self.sheets.append_record(record))
        await self._attempt(result, "slack", self.slack.configured, lambda: self.slack.send(payload))
        await self._attempt(result, "email", self.email.configured, lambda: self.email.send(payload))
        return result

    async def broadcast(
        self,
        text: str,
        sheet_range: str | None = None,
        rows: list[list[Any]] | None = None,
    ) -> DeliveryResult:
        result = DeliveryResult()
        if sheet_range and rows:
            await self._attempt(
                result, "sheets", self.sheets.configured, lambda: self.sheets.append_rows(sheet_range, rows)
            )
        await self._attempt(result, "slack", self.slack.configured, lambda: self.slack.send_system_message(text))
        return result

    async def record_health(self, metric: HealthMetric) -> DeliveryResult:
        result = DeliveryResult()
        await self._attempt(result, "sheets", self.sheets.configured, lambda: self.sheets.append_health(metric))
        return result

    @staticmethod
    async def _attempt(
        result: DeliveryResult,
        channel: str,
        configured: bool,
        send: Callable[[], Awaitable[None]],
    ) -> None:
        if not configured:
            return
        try:
            await send()
        except DELIVERY_ERRORS as exc:
            logger.warning("Delivery to %s failed: %s", channel, exc)
            result.failed[channel] = str(exc) or type(exc).__name__
            return
        result.delivered.append(channel)


def build_fan_out(settings: Settings, *, transport: httpx.AsyncBaseTransport | None = None) -> NotificationFanOut:
    return NotificationFanOut(
        slack=SlackNotifier(settings.slack_webhook_url, timeout_seconds=settings.http_timeout_seconds, transport=transport),
        email=EmailNotifier(
            host=settings.smtp_host,
            port=settings.smtp_port,
            username=settings.smtp_username,
            password=settings.smtp_password,
            sender=settings.email_from,
            recipient=settings.email_to,
        ),
        sheets=SheetsSink(
            base_url=settings.sheets_base_url,
            spreadsheet_id=settings.sheets_spreadsheet_id,
            access_token=settings.sheets_access_token,
            timeout_seconds=settings.http_timeout_seconds,
            transport=transport,
        ),
    )
