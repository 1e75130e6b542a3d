"""Periodic sync of provider search results into the concert catalog."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Mapping

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from api.repository import ConcertRepository
from providers.base import BaseProvider
from providers.models import JobResult

logger = logging.getLogger(__name__)

SYNC_JOB_ID = "concert_sync"
DEFAULT_INTERVAL_MINUTES = 60


class ScheduledJobManager:
    """Runs one sync pass on start() and then every ``interval_minutes``.

    ``stop()`` only cancels future runs; a pass already in flight completes.
    The manager keeps no dedup state between runs: re-syncing the same events
    is idempotent because the repository upserts by natural key.
    """

    def __init__(
        self,
        providers: Mapping[str, BaseProvider],
        repository: ConcertRepository,
        scheduler: AsyncIOScheduler | None = None,
        interval_minutes: int = DEFAULT_INTERVAL_MINUTES,
    ) -> None:
        self.providers = providers
        self.repository = repository
        self.interval_minutes = interval_minutes
        self._scheduler = scheduler or AsyncIOScheduler()
        self._owns_scheduler = scheduler is None
        self._job = None
        self.last_run: datetime | None = None
        self.last_result: JobResult | None = None

    @property
    def is_running(self) -> bool:
        return self._job is not None

    def start(self) -> None:
        if self.is_running:
            logger.info("Scheduled jobs already running")
            return

        if not self._scheduler.running:
            self._scheduler.start()
        self._job = self._scheduler.add_job(
            self.run_jobs,
            "interval",
            minutes=self.interval_minutes,
            id=SYNC_JOB_ID,
            next_run_time=datetime.now(timezone.utc),
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        logger.info("Started concert sync every %d minute(s)", self.interval_minutes)

    def stop(self) -> None:
        if self._job is not None:
            try:
                self._job.remove()
            except JobLookupError:
                pass
            self._job = None
        if self._owns_scheduler and self._scheduler.running:
            self._scheduler.shutdown(wait=False)
        logger.info("Scheduled jobs stopped")

    async def run_jobs(self) -> JobResult:
        """One pass: fetch every provider concurrently, upsert, then clean up."""
        started = datetime.now(timezone.utc)
        errors: list[str] = []
        processed = 0

        logger.info("Running scheduled concert sync for %s", ", ".join(self.providers) or "no providers")
        names = list(self.providers)
        outcomes = await asyncio.gather(
            *(self._sync_provider(self.providers[name]) for name in names),
            return_exceptions=True,
        )
        for name, outcome in zip(names, outcomes):
            provider = self.providers[name]
            if isinstance(outcome, BaseException):
                logger.error("%s fetch failed: %s", provider.display_name, outcome)
                errors.append(f"{provider.display_name} fetch failed: {outcome}")
                continue
            count, provider_errors = outcome
            processed += count
            errors.extend(provider_errors)

        try:
            removed = await self.repository.cleanup_old_concerts()
            logger.info("Removed %d past concert(s)", removed)
        except Exception as exc:
            logger.error("Cleanup failed: %s", exc)
            errors.append(f"Cleanup failed: {exc}")

        result = JobResult(
            success=not errors,
            processed=processed,
            errors=errors,
            timestamp=started,
        )
        self.last_run = started
        self.last_result = result
        if result.success:
            logger.info("Scheduled sync completed: %d concert(s) processed", processed)
        else:
            logger.warning(
                "Scheduled sync completed with %d error(s); %d concert(s) processed",
                len(errors), processed,
            )
        return result

    async def _sync_provider(self, provider: BaseProvider) -> tuple[int, list[str]]:
        response = await provider.search_events(provider.sync_params())
        logger.info("Found %d events from %s", len(response.events), provider.display_name)

        processed = 0
        errors: list[str] = []
        for event in response.events:
            try:
                concert = provider.transform_event(event)
                await self.repository.upsert_concert(concert)
                processed += 1
            except Exception as exc:
                errors.append(
                    f"Failed to process {provider.display_name} event {event.get('id')}: {exc}"
                )
        return processed, errors

    def status(self) -> dict[str, Any]:
        return {
            "is_running": self.is_running,
            "last_run": self.last_run,
            "interval_minutes": self.interval_minutes,
            "last_result": self.last_result,
        }
