from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass

from opentelemetry import trace

from hiretrack.core.config import Settings
from hiretrack.core.security import verify_signature
from hiretrack.core.telemetry import traced
from hiretrack.services.companies import load_roster
from hiretrack.services.dedupe import merge_batch
from hiretrack.services.extractor import PatternExtractor
from hiretrack.services.health import HealthMonitor
from hiretrack.services.models import Candidate, Company, CycleStats, EventType, RawItem, TrackedRecord, utcnow
from hiretrack.services.notifier import NotificationFanOut
from hiretrack.services.repository import (
    EventRepository,
    RepositoryConflictError,
    RepositoryUnavailableError,
)
from hiretrack.services.scoring import ConfidenceScorer
from hiretrack.services.sources import (
    PushBatch,
    RecentNotificationIds,
    SourceAdapter,
    SourceSet,
    SourceUnavailableError,
)
from hiretrack.services.validator import Validator

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


@dataclass(slots=True)
class PushResult:
    batch: PushBatch
    stats: CycleStats

    def to_dict(self) -> dict[str, object]:
        return {
            **self.batch.to_dict(),
            "candidates": self.stats.candidates,
            "rejected": sum(self.stats.rejected.values()),
            "inserted": self.stats.inserted,
            "replaced": self.stats.replaced,
            "discarded": self.stats.discarded,
            "notified": self.stats.notified,
        }


class TrackingPipeline:
    """Fetch, extract, validate, score, merge, persist and announce for one event type."""

    def __init__(
        self,
        *,
        settings: Settings,
        repository: EventRepository,
        sources: SourceSet,
        fan_out: NotificationFanOut,
        health: HealthMonitor,
        extractor: PatternExtractor | None = None,
        validator: Validator | None = None,
        scorer: ConfidenceScorer | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.settings = settings
        self.repository = repository
        self.sources = sources
        self.fan_out = fan_out
        self.health = health
        self.extractor = extractor or PatternExtractor()
        self.validator = validator or Validator()
        self.scorer = scorer or ConfidenceScorer()
        self._sleep = sleep

    async def run_cycle(self, event_type: EventType) -> CycleStats:
        stats = CycleStats(event_type=event_type.value)
        response_times_ms: list[int] = []
        roster: list[Company] = []
        with traced(tracer, "tracker.cycle", event_type=event_type.value) as span:
            try:
                roster = await load_roster(self.repository, self.settings)
                for index, company in enumerate(roster):
                    if index and self.settings.inter_company_delay_seconds > 0:
                        await self._sleep(self.settings.inter_company_delay_seconds)
                    stats.companies += 1
                    await self._process_company(company, event_type, stats, response_times_ms)
            except RepositoryUnavailableError as exc:
                stats.error = str(exc) or "repository unavailable"
                logger.error("%s cycle aborted: %s", event_type.value, stats.error)

            stats.finished_at = utcnow()
            span.set_attribute("hiretrack.inserted", stats.inserted)
            span.set_attribute("hiretrack.failed_scans", stats.failed_scans)

        logger.info(
            "%s cycle finished: companies=%s candidates=%s inserted=%s replaced=%s discarded=%s failed_scans=%s",
            event_type.value,
            stats.companies,
            stats.candidates,
            stats.inserted,
            stats.replaced,
            stats.discarded,
            stats.failed_scans,
        )
        if stats.error is None:
            await self.health.record_cycle(stats, roster_size=len(roster), response_times_ms=response_times_ms)
        await self.health.log(
            "error" if stats.error else "info",
            f"{event_type.value} cycle {'failed' if stats.error else 'completed'}",
            stats.to_dict(),
        )
        return stats

    async def process_push(self, body: bytes, signature: str | None, processed: RecentNotificationIds) -> PushResult:
        """Verify, parse and settle a push delivery; nothing is mutated when verification fails."""
        verify_signature(self.settings.webhook_secret, body, signature)

        stats = CycleStats(event_type="push")
        with traced(tracer, "tracker.push"):
            roster = await load_roster(self.repository, self.settings)
            batch = self.sources.push.accept(body, roster, processed)
            try:
                for company in batch.companies:
                    stats.companies += 1
                    items = await self.sources.push.fetch_raw_items(company, event_type=EventType.HIRE)
                    stats.successful_scans += 1
                    stats.raw_items += len(items)
                    candidates = self.prepare_items(items, company, EventType.HIRE, stats)
                    await self._settle(candidates, stats)
                    batch.commit(company, processed)
            except RepositoryUnavailableError:
                # Unsettled notifications stay unprocessed so a redelivery is not treated as a duplicate.
                self.sources.push.discard(batch.companies)
                raise
        stats.finished_at = utcnow()
        logger.info("push processed: %s", batch.to_dict())
        return PushResult(batch=batch, stats=stats)

    def prepare_items(
        self,
        items: Iterable[RawItem],
        company: Company,
        event_type: EventType,
        stats: CycleStats,
    ) -> list[Candidate]:
        prepared: list[Candidate] = []
        for item in items:
            for candidate in self.extractor.extract(
                item.text,
                company,
                item.source,
                event_type=event_type,
                provenance=item.provenance,
                link=item.link,
                found_at=item.fetched_at,
            ):
                stats.candidates += 1
                normalized = self.validator.normalize(candidate)
                reason = self.validator.rejection_reason(normalized)
                if reason is not None:
                    stats.rejected[reason] += 1
                    continue
                normalized.confidence = self.scorer.score(normalized, item.text)
                if normalized.confidence < self.settings.min_persist_confidence:
                    stats.rejected["below_min_confidence"] += 1
                    continue
                prepared.append(normalized)
        return prepared

    async def _process_company(
        self,
        company: Company,
        event_type: EventType,
        stats: CycleStats,
        response_times_ms: list[int],
    ) -> None:
        with traced(tracer, "tracker.company", company=company.name):
            adapters: list[SourceAdapter] = [
                adapter for adapter in self.sources.primary if adapter.enabled_for(company, event_type)
            ]
            search = self.sources.search
            search_enabled = search.enabled_for(company, event_type)
            if self.settings.search_mode == "always" and search_enabled:
                adapters.append(search)

            candidates: list[Candidate] = []
            for adapter in adapters:
                candidates.extend(await self._collect(adapter, company, event_type, stats, response_times_ms))

            if self.settings.search_mode == "fallback" and search_enabled and not candidates:
                candidates.extend(await self._collect(search, company, event_type, stats, response_times_ms))

            await self._settle(candidates, stats)

    async def _collect(
        self,
        adapter: SourceAdapter,
        company: Company,
        event_type: EventType,
        stats: CycleStats,
        response_times_ms: list[int],
    ) -> list[Candidate]:
        started = time.perf_counter()
        try:
            items = await adapter.fetch_raw_items(company, event_type=event_type)
        except SourceUnavailableError as exc:
            stats.failed_scans += 1
            logger.warning("Skipping %s for %s: %s", exc.source.value, company.name, exc.reason)
            return []
        except RepositoryUnavailableError:
            raise
        except Exception:
            stats.failed_scans += 1
            logger.exception("Unexpected %s failure for %s", adapter.kind.value, company.name)
            return []
        finally:
            response_times_ms.append(int((time.perf_counter() - started) * 1000))
        stats.successful_scans += 1
        stats.raw_items += len(items)
        return self.prepare_items(items, company, event_type, stats)

    async def _settle(self, candidates: list[Candidate], stats: CycleStats) -> None:
        include_position = self.settings.hire_identity_includes_position
        survivors = merge_batch(candidates, include_position=include_position)
        stats.discarded += len(candidates) - len(survivors)
        for candidate in survivors:
            try:
                outcome = await self.repository.apply_candidate(
                    candidate,
                    include_position=include_position,
                    auto_verify_min_confidence=self.settings.auto_verify_min_confidence,
                )
            except RepositoryConflictError as exc:
                stats.conflicts += 1
                logger.warning("Persistence conflict left unresolved: %s", exc)
                continue

            if outcome.decision == "inserted":
                stats.inserted += 1
            elif outcome.decision == "replaced":
                stats.replaced += 1
            else:
                stats.discarded += 1

            if outcome.should_notify:
                await self._notify(outcome.record, stats)

    async def _notify(self, record: TrackedRecord, stats: CycleStats) -> None:
        result = await self.fan_out.deliver(record)
        if result.notified:
            await self.repository.mark_notification_sent(record.id)
            stats.notified += 1
        elif result.failed:
            logger.warning("No alert delivered for %s %s", record.kind_label, record.identity_key)
